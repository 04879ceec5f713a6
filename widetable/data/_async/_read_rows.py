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

from typing import (
    TYPE_CHECKING,
    AsyncGenerator,
    Awaitable,
    Callable,
    Union,
)
import asyncio
import enum
import inspect
import logging

from widetable.data._helpers import _make_request
from widetable.data._transport import READ_ROWS
from widetable.data._transport import _close_stream
from widetable.data.exceptions import InvalidChunk
from widetable.data.read_rows_query import ReadRowsQuery
from widetable.data.read_rows_query import RowSet
from widetable.data.row import Row

if TYPE_CHECKING:
    from widetable.data._async.client import TableAsync
    from widetable.data._retry import RetryPolicy
    from widetable.data._transport import DataTransport

LOGGER = logging.getLogger(__name__)

RowVisitor = Callable[[Row], Union[bool, Awaitable[bool], None]]


class ReadRowsState(enum.Enum):
    IDLE = "IDLE"
    STREAMING = "STREAMING"
    NARROWING = "NARROWING"
    DONE = "DONE"
    FAILED = "FAILED"


class _ReadRowsOperationAsync:
    """
    ReadRowsOperation streams the rows selected by a query, and resumes the
    scan after retryable stream failures.

    Progress is tracked as the last row key seen (a delivered row, or a
    last-scanned marker from the server) and the number of rows still allowed
    by the limit. Before each retry, the row set is narrowed so that rows
    already seen are excluded, and the limit is reduced by the rows already
    delivered. Reversed scans narrow from the other end.
    """

    __slots__ = (
        "query",
        "row_set",
        "state",
        "scheduler",
        "_transport",
        "_table_name",
        "_app_profile_id",
        "_last_seen_row_key",
        "_remaining_count",
    )

    def __init__(
        self,
        query: ReadRowsQuery,
        transport: "DataTransport",
        table: "TableAsync",
        operation_timeout: float,
        attempt_timeout: float | None,
        retry_policy: "RetryPolicy",
    ):
        self.query = query
        self.row_set: RowSet = query.row_set
        self.state = ReadRowsState.IDLE
        self.scheduler = retry_policy.new_scheduler(operation_timeout, attempt_timeout)
        self._transport = transport
        self._table_name = table.table_name
        self._app_profile_id = table.app_profile_id
        self._last_seen_row_key: bytes | None = None
        self._remaining_count: int | None = query.limit or None

    def _is_complete(self) -> bool:
        return not self.row_set.valid() or self._remaining_count == 0

    async def start_operation(self) -> AsyncGenerator[Row, None]:
        """
        Start the read_rows operation, retrying on retryable errors.

        Closing the generator early stops the scan.
        """
        self.state = ReadRowsState.STREAMING
        try:
            while not self._is_complete():
                timeout = self.scheduler.start_attempt()
                attempt = self._read_rows_attempt(timeout)
                try:
                    async for row in attempt:
                        yield row
                except Exception as exc:
                    if not self.scheduler.classifier.is_retryable(exc):
                        self.scheduler.raise_terminal(exc)
                    self.state = ReadRowsState.NARROWING
                    self._narrow()
                    if self._is_complete():
                        break
                    await self.scheduler.backoff(exc)
                    self.state = ReadRowsState.STREAMING
                    continue
                finally:
                    await attempt.aclose()
                # stream finished cleanly
                break
            self.state = ReadRowsState.DONE
        except GeneratorExit:
            # consumer stopped reading
            self.state = ReadRowsState.DONE
            raise
        except (Exception, asyncio.CancelledError):
            self.state = ReadRowsState.FAILED
            raise

    async def run(self, visitor: RowVisitor) -> None:
        """
        Hand each row to visitor until the scan completes or visitor returns
        False. Coroutine visitors are awaited.
        """
        rows = self.start_operation()
        try:
            async for row in rows:
                keep_going = visitor(row)
                if inspect.isawaitable(keep_going):
                    keep_going = await keep_going
                if keep_going is False:
                    break
        finally:
            await rows.aclose()

    async def _read_rows_attempt(self, timeout: float) -> AsyncGenerator[Row, None]:
        """
        Attempt a single read_rows rpc call, using the current row set and
        remaining limit.
        """
        revised_query = ReadRowsQuery.from_row_set(
            self.row_set,
            limit=self._remaining_count,
            row_filter=self.query.filter,
            reverse=self.query.reverse,
        )
        request = _make_request(
            self._table_name, self._app_profile_id, **revised_query._to_dict()
        )
        stream = self._transport.open_stream(READ_ROWS, request, timeout=timeout)
        try:
            async for response in stream:
                for row in response.rows:
                    self._check_order(row.row_key)
                    if self._remaining_count is not None:
                        self._remaining_count -= 1
                        if self._remaining_count < 0:
                            raise InvalidChunk("emit count exceeds row limit")
                    self._last_seen_row_key = row.row_key
                    yield row
                # sent when the server scanned past rows that were filtered out
                if response.last_scanned_row_key:
                    self._check_order(response.last_scanned_row_key)
                    self._last_seen_row_key = response.last_scanned_row_key
        finally:
            await _close_stream(stream)

    def _check_order(self, row_key: bytes) -> None:
        last = self._last_seen_row_key
        if last is None:
            return
        if self.query.reverse and row_key >= last:
            raise InvalidChunk("row keys should be strictly decreasing")
        if not self.query.reverse and row_key <= last:
            raise InvalidChunk("row keys should be strictly increasing")

    def _narrow(self) -> None:
        if self._last_seen_row_key is None:
            return
        self.row_set = self._revise_row_set(
            self.row_set, self._last_seen_row_key, self.query.reverse
        )
        LOGGER.debug(
            "Resuming read_rows after %r: row_set=%r remaining=%s",
            self._last_seen_row_key,
            self.row_set,
            self._remaining_count,
        )

    @staticmethod
    def _revise_row_set(
        row_set: RowSet, last_seen_row_key: bytes, reverse: bool = False
    ) -> RowSet:
        """
        Revise the rows in the request to avoid ones we've already processed.

        Args:
          - row_set: the row set from the request
          - last_seen_row_key: the last row key encountered
          - reverse: whether the scan runs in descending key order
        Returns:
          - a new row set excluding last_seen_row_key and everything before it
              in scan order. May be empty
        """
        if reverse:
            return row_set.retain_rows_before(last_seen_row_key)
        return row_set.retain_rows_after(last_seen_row_key)
