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

from typing import TYPE_CHECKING, Sequence
import enum
import logging

from google.api_core import exceptions as core_exceptions
from widetable.data._helpers import _make_request
from widetable.data._transport import MUTATE_ROWS
from widetable.data._transport import _close_stream
from widetable.data._transport import _is_ok
from widetable.data.exceptions import InvalidChunk

if TYPE_CHECKING:
    from widetable.data._async.client import TableAsync
    from widetable.data._retry import RetryPolicy
    from widetable.data._transport import DataTransport
    from widetable.data.mutations import RowMutationEntry

LOGGER = logging.getLogger(__name__)


class EntryState(enum.Enum):
    PENDING = "PENDING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class _MutateRowsOperationAsync:
    """
    MutateRowsOperation manages the logic of sending a set of row mutations,
    and retrying on failed entries. Each round sends only the entries that are
    still pending, and maps the statuses in the response back to the original
    entry indices.

    An entry stays pending only if it failed with a retryable error and is
    idempotent. Any other failure is final for that entry.
    """

    def __init__(
        self,
        transport: "DataTransport",
        table: "TableAsync",
        mutation_entries: Sequence["RowMutationEntry"],
        operation_timeout: float,
        attempt_timeout: float | None,
        retry_policy: "RetryPolicy",
    ):
        """
        Args:
          - transport: the transport to send requests over
          - table: the table associated with the request
          - mutation_entries: a list of RowMutationEntry objects to send to the server
          - operation_timeout: the timeout to use for the entire operation, in seconds.
          - attempt_timeout: the timeout to use for each mutate_rows attempt, in seconds.
              If not specified, the request will run until operation_timeout is reached.
          - retry_policy: the client retry configuration
        """
        self._transport = transport
        self._table_name = table.table_name
        self._app_profile_id = table.app_profile_id
        self.mutations = list(mutation_entries)
        self.states = [EntryState.PENDING] * len(self.mutations)
        self.errors: dict[int, list[Exception]] = {}
        self.scheduler = retry_policy.new_scheduler(operation_timeout, attempt_timeout)
        self.round_count = 0

    @property
    def remaining_indices(self) -> list[int]:
        return [
            idx for idx, state in enumerate(self.states) if state == EntryState.PENDING
        ]

    async def start(self) -> list[Exception | None] | None:
        """
        Start the operation, and run until completion

        Returns:
          - None if every entry succeeded. Otherwise a list with one item per
              input entry: None for entries that succeeded, and the final
              error for entries that failed
        Raises:
          - DeadlineExceeded: if the deadline passed while entries were still
              pending. No per-entry results are reported in that case
        """
        while self.remaining_indices:
            timeout = self.scheduler.start_attempt()
            retry_exc = await self._run_attempt(timeout)
            if self.remaining_indices:
                await self.scheduler.backoff(retry_exc)
        if EntryState.FAILED not in self.states:
            return None
        return [
            self.errors[idx][-1] if state == EntryState.FAILED else None
            for idx, state in enumerate(self.states)
        ]

    async def _run_attempt(self, timeout: float) -> Exception | None:
        """
        Run a single attempt of the mutate_rows rpc.

        Returns:
          - the retryable error that left entries pending, if any
        """
        # track mutations in this request that have not been finalized yet
        active_request_indices = {
            req_idx: orig_idx for req_idx, orig_idx in enumerate(self.remaining_indices)
        }
        request = _make_request(
            self._table_name,
            self._app_profile_id,
            entries=[
                self.mutations[idx]._to_dict()
                for idx in active_request_indices.values()
            ],
        )
        self.round_count += 1
        LOGGER.debug(
            "mutate_rows round %d: sending %d entries",
            self.round_count,
            len(active_request_indices),
        )
        retry_exc: Exception | None = None
        stream = None
        try:
            stream = self._transport.open_stream(MUTATE_ROWS, request, timeout=timeout)
            async for response in stream:
                for result in response.entries:
                    # convert sub-request index to global index
                    orig_idx = active_request_indices.pop(result.index, None)
                    if orig_idx is None:
                        LOGGER.warning(
                            "mutate_rows response has unexpected entry index %s",
                            result.index,
                        )
                        continue
                    if _is_ok(result.code):
                        self.states[orig_idx] = EntryState.SUCCEEDED
                        continue
                    entry_error = core_exceptions.from_grpc_status(
                        result.code, result.message, details=result.details
                    )
                    if self._handle_entry_error(orig_idx, entry_error):
                        retry_exc = entry_error
        except Exception as exc:
            # stream failed: entries without a status share the stream error
            for idx in active_request_indices.values():
                self._handle_entry_error(idx, exc)
            return exc
        finally:
            if stream is not None:
                await _close_stream(stream)
        for idx in active_request_indices.values():
            self._handle_entry_error(
                idx, InvalidChunk("mutate_rows stream ended without a status for entry")
            )
        return retry_exc

    def _handle_entry_error(self, idx: int, exc: Exception) -> bool:
        """
        Record an error for a given mutation index, and decide whether the
        entry stays pending for the next round.

        Args:
          - idx: the index of the mutation that failed
          - exc: the exception to add to the list
        Returns:
          - True if the entry will be retried
        """
        entry = self.mutations[idx]
        self.errors.setdefault(idx, []).append(exc)
        if entry.is_idempotent() and self.scheduler.classifier.is_retryable(exc):
            return True
        self.states[idx] = EntryState.FAILED
        return False
