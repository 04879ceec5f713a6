# Copyright 2023 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#

from __future__ import annotations

from typing import Any, AsyncGenerator, Sequence
import logging
import os

from widetable.data._async._mutate_row import _MutateRowOperationAsync
from widetable.data._async._mutate_rows import _MutateRowsOperationAsync
from widetable.data._async._read_rows import RowVisitor
from widetable.data._async._read_rows import _ReadRowsOperationAsync
from widetable.data._helpers import TABLE_DEFAULT
from widetable.data._helpers import _encode_key
from widetable.data._helpers import _get_timeouts
from widetable.data._helpers import _validate_timeouts
from widetable.data._retry import DEFAULT_RETRYABLE_INTERNAL_MESSAGES
from widetable.data._retry import RetryPolicy
from widetable.data._transport import DataTransport
from widetable.data.exceptions import ConfigurationError
from widetable.data.exceptions import FailedMutationEntryError
from widetable.data.exceptions import MutationsExceptionGroup
from widetable.data.mutations import ConditionalMutation
from widetable.data.mutations import Mutation
from widetable.data.mutations import RowMutationEntry
from widetable.data.read_rows_query import ReadRowsQuery
from widetable.data.read_rows_query import RowList
from widetable.data.read_rows_query import RowRange
from widetable.data.read_rows_query import RowRangeList
from widetable.data.row import Row

LOGGER = logging.getLogger(__name__)

# setting this environment variable to "1" makes the client ignore server
# retry hints, and use only its own backoff parameters
DISABLE_RETRY_INFO_ENV = "DISABLE_RETRY_INFO"


class DataClientAsync:
    def __init__(
        self,
        transport: DataTransport,
        *,
        project: str | None = None,
        disable_retry_info: bool | None = None,
        retryable_internal_messages: Sequence[str] | None = None,
        backoff_initial: float = 0.01,
        backoff_multiplier: float = 2,
        backoff_maximum: float = 60,
    ):
        """
        Create a client instance for the table data API

        Args:
            transport: the transport used to send requests. The client does
                not establish connections itself.
            project: the project which the client acts on behalf of.
            disable_retry_info: if True, retry hints sent by the server are
                ignored. Overridden to True when the DISABLE_RETRY_INFO
                environment variable is "1".
            retryable_internal_messages: message substrings that make an
                INTERNAL error retryable. Defaults to known transient
                stream reset messages.
            backoff_initial: the first delay between attempts, in seconds
            backoff_multiplier: growth factor of the delay between attempts
            backoff_maximum: the largest delay between attempts, in seconds
        Raises:
          - ConfigurationError if the backoff parameters are invalid
        """
        if backoff_initial <= 0 or backoff_maximum < backoff_initial:
            raise ConfigurationError(
                "backoff_initial must be > 0 and <= backoff_maximum"
            )
        if backoff_multiplier < 1:
            raise ConfigurationError("backoff_multiplier must be >= 1")
        if os.environ.get(DISABLE_RETRY_INFO_ENV) == "1":
            if not disable_retry_info:
                LOGGER.info(
                    "%s is set: server retry info will be ignored",
                    DISABLE_RETRY_INFO_ENV,
                )
            disable_retry_info = True
        if retryable_internal_messages is None:
            retryable_internal_messages = DEFAULT_RETRYABLE_INTERNAL_MESSAGES
        self.transport = transport
        self.project = project
        self.retry_policy = RetryPolicy(
            initial=backoff_initial,
            multiplier=backoff_multiplier,
            maximum=backoff_maximum,
            retryable_internal_messages=tuple(retryable_internal_messages),
            disable_retry_info=bool(disable_retry_info),
        )

    @property
    def disable_retry_info(self) -> bool:
        return self.retry_policy.disable_retry_info

    def get_table(
        self,
        instance_id: str,
        table_id: str,
        app_profile_id: str | None = None,
        **kwargs: Any,
    ) -> TableAsync:
        """
        Returns a table instance for making data API requests. All arguments are passed
        directly to the TableAsync constructor.
        """
        return TableAsync(self, instance_id, table_id, app_profile_id, **kwargs)

    async def close(self):
        await self.transport.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


class TableAsync:
    """
    Main Data API surface

    Table object maintains table_id, and app_profile_id context, and passes them with
    each call
    """

    def __init__(
        self,
        client: DataClientAsync,
        instance_id: str,
        table_id: str,
        app_profile_id: str | None = None,
        *,
        default_read_rows_operation_timeout: float = 600,
        default_read_rows_attempt_timeout: float | None = 20,
        default_mutate_rows_operation_timeout: float = 600,
        default_mutate_rows_attempt_timeout: float | None = 60,
        default_operation_timeout: float = 60,
        default_attempt_timeout: float | None = 20,
    ):
        """
        Initialize a Table instance

        Args:
            instance_id: The instance ID to associate with this table.
            table_id: The ID of the table.
            app_profile_id: The app profile to associate with requests.
            default_read_rows_operation_timeout: The default timeout for read rows
                operations, in seconds. If not set, defaults to 600 seconds (10 minutes)
            default_read_rows_attempt_timeout: The default timeout for individual
                read rows rpc requests, in seconds. If not set, defaults to 20 seconds
            default_mutate_rows_operation_timeout: The default timeout for mutate rows
                operations, in seconds. If not set, defaults to 600 seconds (10 minutes)
            default_mutate_rows_attempt_timeout: The default timeout for individual
                mutate rows rpc requests, in seconds. If not set, defaults to 60 seconds
            default_operation_timeout: The default timeout for all other operations, in
                seconds. If not set, defaults to 60 seconds
            default_attempt_timeout: The default timeout for all other individual rpc
                requests, in seconds. If not set, defaults to 20 seconds
        Raises:
          - ConfigurationError if any default timeout is invalid
        """
        # validate timeouts
        _validate_timeouts(
            default_operation_timeout, default_attempt_timeout, allow_none=True
        )
        _validate_timeouts(
            default_read_rows_operation_timeout,
            default_read_rows_attempt_timeout,
            allow_none=True,
        )
        _validate_timeouts(
            default_mutate_rows_operation_timeout,
            default_mutate_rows_attempt_timeout,
            allow_none=True,
        )

        self.client = client
        self.instance_id = instance_id
        self.table_id = table_id
        project_prefix = f"projects/{client.project}/" if client.project else ""
        self.table_name = f"{project_prefix}instances/{instance_id}/tables/{table_id}"
        self.app_profile_id = app_profile_id

        self.default_operation_timeout = default_operation_timeout
        self.default_attempt_timeout = default_attempt_timeout
        self.default_read_rows_operation_timeout = default_read_rows_operation_timeout
        self.default_read_rows_attempt_timeout = default_read_rows_attempt_timeout
        self.default_mutate_rows_operation_timeout = (
            default_mutate_rows_operation_timeout
        )
        self.default_mutate_rows_attempt_timeout = default_mutate_rows_attempt_timeout

    def _build_query(
        self,
        query: ReadRowsQuery | RowList | RowRangeList | RowRange,
        limit: int | None,
        reverse: bool | None,
    ) -> ReadRowsQuery:
        if isinstance(query, ReadRowsQuery):
            if limit is not None or reverse is not None:
                raise ConfigurationError(
                    "limit and reverse must be set on the ReadRowsQuery itself"
                )
            return query
        return ReadRowsQuery.from_row_set(
            query, limit=limit, reverse=bool(reverse)
        )

    def _read_rows_operation(
        self,
        query: ReadRowsQuery | RowList | RowRangeList | RowRange,
        limit: int | None,
        reverse: bool | None,
        operation_timeout: float | TABLE_DEFAULT,
        attempt_timeout: float | None | TABLE_DEFAULT,
        deadline: float | None,
    ) -> _ReadRowsOperationAsync:
        operation_timeout, attempt_timeout = _get_timeouts(
            operation_timeout, attempt_timeout, self, deadline
        )
        return _ReadRowsOperationAsync(
            self._build_query(query, limit, reverse),
            self.client.transport,
            self,
            operation_timeout=operation_timeout,
            attempt_timeout=attempt_timeout,
            retry_policy=self.client.retry_policy,
        )

    async def read_rows_stream(
        self,
        query: ReadRowsQuery | RowList | RowRangeList | RowRange,
        *,
        limit: int | None = None,
        reverse: bool | None = None,
        operation_timeout: float | TABLE_DEFAULT = TABLE_DEFAULT.READ_ROWS,
        attempt_timeout: float | None | TABLE_DEFAULT = TABLE_DEFAULT.READ_ROWS,
        deadline: float | None = None,
    ) -> AsyncGenerator[Row, None]:
        """
        Read a set of rows from the table, based on the specified query.
        Returns an iterator to asynchronously stream back row data.

        Failed requests within operation_timeout will be retried, resuming
        after the last row received.

        Args:
            - query: a ReadRowsQuery, or a RowList, RowRangeList or RowRange
                to read
            - limit: the maximum number of rows to return, when query is a
                row set. None or 0 means no limit
            - reverse: if True, rows are returned in descending key order,
                when query is a row set
            - operation_timeout: the time budget for the entire operation, in seconds.
                 Failed requests will be retried within the budget.
                 Defaults to the Table's default_read_rows_operation_timeout
            - attempt_timeout: the time budget for an individual network request, in seconds.
                If it takes longer than this time to complete, the request will be cancelled with
                a DeadlineExceeded exception, and a retry will be attempted.
                Defaults to the Table's default_read_rows_attempt_timeout.
                If None, defaults to operation_timeout.
            - deadline: an absolute deadline on the time.monotonic() clock.
                If set, replaces operation_timeout
        Returns:
            - an asynchronous iterator that yields rows returned by the query
        Raises:
            - ConfigurationError: if the options are invalid or conflicting
            - DeadlineExceeded: raised after operation timeout
                will be chained with a RetryExceptionGroup containing GoogleAPIError exceptions
                from any retries that failed
            - GoogleAPIError: raised if the request encounters an unrecoverable error
        """
        operation = self._read_rows_operation(
            query, limit, reverse, operation_timeout, attempt_timeout, deadline
        )
        return operation.start_operation()

    async def read_rows(
        self,
        query: ReadRowsQuery | RowList | RowRangeList | RowRange,
        visitor: RowVisitor,
        *,
        limit: int | None = None,
        reverse: bool | None = None,
        operation_timeout: float | TABLE_DEFAULT = TABLE_DEFAULT.READ_ROWS,
        attempt_timeout: float | None | TABLE_DEFAULT = TABLE_DEFAULT.READ_ROWS,
        deadline: float | None = None,
    ) -> None:
        """
        Read a set of rows from the table, passing each row to visitor in scan order.

        Delivery stops early, without error, when visitor returns False.
        Coroutine functions are accepted as visitors.

        Failed requests within operation_timeout will be retried, resuming
        after the last row received, so that no row is delivered twice.

        Args:
            - query: a ReadRowsQuery, or a RowList, RowRangeList or RowRange
                to read
            - visitor: called with each row. Return False to stop the scan
            - limit, reverse, operation_timeout, attempt_timeout, deadline:
                see read_rows_stream
        Raises:
            - ConfigurationError: if the options are invalid or conflicting
            - DeadlineExceeded: raised after operation timeout
            - GoogleAPIError: raised if the request encounters an unrecoverable error
        """
        operation = self._read_rows_operation(
            query, limit, reverse, operation_timeout, attempt_timeout, deadline
        )
        await operation.run(visitor)

    async def read_row(
        self,
        row_key: str | bytes,
        *,
        row_filter: dict[str, Any] | None = None,
        operation_timeout: float | TABLE_DEFAULT = TABLE_DEFAULT.READ_ROWS,
        attempt_timeout: float | None | TABLE_DEFAULT = TABLE_DEFAULT.READ_ROWS,
        deadline: float | None = None,
    ) -> Row | None:
        """
        Read a single row from the table, based on the specified key.

        Returns:
            - a Row object if the row exists, otherwise None
        """
        if row_key is None:
            raise ConfigurationError("row_key must be a string or bytes")
        query = ReadRowsQuery(row_keys=row_key, row_filter=row_filter, limit=1)
        results: list[Row] = []
        await self.read_rows(
            query,
            results.append,
            operation_timeout=operation_timeout,
            attempt_timeout=attempt_timeout,
            deadline=deadline,
        )
        if len(results) == 0:
            return None
        return results[0]

    async def mutate_row(
        self,
        row_key: str | bytes,
        mutations: list[Mutation] | Mutation,
        *,
        operation_timeout: float | TABLE_DEFAULT = TABLE_DEFAULT.DEFAULT,
        attempt_timeout: float | None | TABLE_DEFAULT = TABLE_DEFAULT.DEFAULT,
        deadline: float | None = None,
    ):
        """
         Mutates a row atomically.

         Cells already present in the row are left unchanged unless explicitly changed
         by ``mutation``.

         Idempotent operations (i.e, all mutations have an explicit timestamp) will be
         retried on server failure. Non-idempotent operations will not.

         Args:
            - row_key: the row to apply mutations to
            - mutations: the set of mutations to apply to the row
            - operation_timeout: the time budget for the entire operation, in seconds.
                Failed requests will be retried within the budget.
                Defaults to the Table's default_operation_timeout
            - attempt_timeout: the time budget for an individual network request, in seconds.
                Defaults to the Table's default_attempt_timeout.
                If None, defaults to operation_timeout.
            - deadline: an absolute deadline on the time.monotonic() clock.
                If set, replaces operation_timeout
        Raises:
             - DeadlineExceeded: raised after operation timeout
                 will be chained with a RetryExceptionGroup containing all
                 GoogleAPIError exceptions from any retries that failed
             - GoogleAPIError: raised on non-idempotent operations that cannot be
                 safely retried.
        """
        await self.apply(
            row_key,
            mutations,
            operation_timeout=operation_timeout,
            attempt_timeout=attempt_timeout,
            deadline=deadline,
        )

    async def check_and_mutate_row(
        self,
        row_key: str | bytes,
        predicate: dict[str, Any] | None,
        *,
        true_case_mutations: Mutation | list[Mutation] | None = None,
        false_case_mutations: Mutation | list[Mutation] | None = None,
        operation_timeout: float | TABLE_DEFAULT = TABLE_DEFAULT.DEFAULT,
        deadline: float | None = None,
    ) -> bool:
        """
        Mutates a row atomically based on the output of a predicate filter

        Non-idempotent operation: will not be retried

        Args:
            - row_key: the key of the row to mutate
            - predicate: the filter to be applied to the contents of the specified row.
                Depending on whether or not any results are yielded,
                either true_case_mutations or false_case_mutations will be executed.
                If None, checks that the row contains any values at all.
            - true_case_mutations: changes applied if predicate yields at least one cell
            - false_case_mutations: changes applied if predicate yields no cells
            - operation_timeout: the time budget for the operation, in seconds.
                Defaults to the Table's default_operation_timeout
        Returns:
            - bool indicating whether the predicate was true or false
        Raises:
            - GoogleAPIError exceptions from the rpc call
        """
        conditional = ConditionalMutation(
            predicate,
            true_case_mutations or [],
            false_case_mutations or [],
        )
        return await self.apply(
            row_key,
            conditional,
            operation_timeout=operation_timeout,
            attempt_timeout=None,
            deadline=deadline,
        )

    async def apply(
        self,
        row_key: str | bytes,
        mutation: list[Mutation] | Mutation | ConditionalMutation,
        *,
        operation_timeout: float | TABLE_DEFAULT = TABLE_DEFAULT.DEFAULT,
        attempt_timeout: float | None | TABLE_DEFAULT = TABLE_DEFAULT.DEFAULT,
        deadline: float | None = None,
    ) -> bool | None:
        """
        Apply a plain or conditional mutation to a single row.

        Plain mutations are retried on transient errors if they are idempotent.
        Conditional mutations are sent exactly once.

        Returns:
            - for a ConditionalMutation, whether its predicate matched. Otherwise None
        Raises:
            - DeadlineExceeded: raised after operation timeout
            - GoogleAPIError: raised on errors that cannot be retried
        """
        operation_timeout, attempt_timeout = _get_timeouts(
            operation_timeout, attempt_timeout, self, deadline
        )
        operation = _MutateRowOperationAsync(
            self.client.transport,
            self,
            _encode_key(row_key),
            mutation,
            operation_timeout,
            attempt_timeout,
            self.client.retry_policy,
        )
        return await operation.start()

    async def bulk_mutate_rows(
        self,
        mutation_entries: list[RowMutationEntry],
        *,
        operation_timeout: float | TABLE_DEFAULT = TABLE_DEFAULT.MUTATE_ROWS,
        attempt_timeout: float | None | TABLE_DEFAULT = TABLE_DEFAULT.MUTATE_ROWS,
        deadline: float | None = None,
    ):
        """
        Applies mutations for multiple rows in a single batched request.

        Each individual RowMutationEntry is applied atomically, but separate entries
        may be applied in arbitrary order (even for entries targetting the same row)

        Idempotent entries (i.e., entries with mutations with explicit timestamps)
        will be retried on failure. Non-idempotent will not, and will reported in a
        raised exception group

        Args:
            - mutation_entries: the batches of mutations to apply
            - operation_timeout: the time budget for the entire operation, in seconds.
                Failed requests will be retried within the budget.
                Defaults to the Table's default_mutate_rows_operation_timeout
            - attempt_timeout: the time budget for an individual network request, in seconds.
                Defaults to the Table's default_mutate_rows_attempt_timeout.
                If None, defaults to operation_timeout.
            - deadline: an absolute deadline on the time.monotonic() clock.
                If set, replaces operation_timeout
        Raises:
            - MutationsExceptionGroup if one or more mutations fails
                Contains details about any failed entries in .exceptions
            - DeadlineExceeded if the deadline passed with entries still pending
        """
        errors = await self._bulk_mutate(
            mutation_entries, operation_timeout, attempt_timeout, deadline
        )
        if errors:
            failed = [
                FailedMutationEntryError(idx, mutation_entries[idx], exc)
                for idx, exc in enumerate(errors)
                if exc is not None
            ]
            raise MutationsExceptionGroup(failed, len(mutation_entries))

    async def apply_bulk(
        self,
        row_keys: Sequence[str | bytes],
        mutations: Sequence[Mutation | list[Mutation]],
        *,
        operation_timeout: float | TABLE_DEFAULT = TABLE_DEFAULT.MUTATE_ROWS,
        attempt_timeout: float | None | TABLE_DEFAULT = TABLE_DEFAULT.MUTATE_ROWS,
        deadline: float | None = None,
    ) -> list[Exception | None] | None:
        """
        Apply mutations[i] to row_keys[i] for every i, in a single batched request.

        Returns:
            - None if every entry was applied. Otherwise a list of the same
                length as row_keys holding None for applied entries and the
                final error for failed ones
        Raises:
            - ConfigurationError: if row_keys and mutations differ in length
            - DeadlineExceeded: if the deadline passed before the batch
                completed. No per-entry results are returned in that case
        """
        if len(row_keys) != len(mutations):
            raise ConfigurationError(
                f"got {len(row_keys)} row keys but {len(mutations)} mutations"
            )
        entries = [RowMutationEntry(key, mut) for key, mut in zip(row_keys, mutations)]
        return await self._bulk_mutate(
            entries, operation_timeout, attempt_timeout, deadline
        )

    async def _bulk_mutate(
        self,
        mutation_entries: list[RowMutationEntry],
        operation_timeout: float | TABLE_DEFAULT,
        attempt_timeout: float | None | TABLE_DEFAULT,
        deadline: float | None,
    ) -> list[Exception | None] | None:
        operation_timeout, attempt_timeout = _get_timeouts(
            operation_timeout, attempt_timeout, self, deadline
        )
        operation = _MutateRowsOperationAsync(
            self.client.transport,
            self,
            mutation_entries,
            operation_timeout,
            attempt_timeout,
            self.client.retry_policy,
        )
        return await operation.start()
