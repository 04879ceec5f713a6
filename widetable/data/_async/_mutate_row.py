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

from typing import TYPE_CHECKING
import logging

from widetable.data._helpers import _make_request
from widetable.data._transport import CHECK_AND_MUTATE_ROW
from widetable.data._transport import MUTATE_ROW
from widetable.data.exceptions import ConfigurationError
from widetable.data.mutations import ConditionalMutation
from widetable.data.mutations import Mutation

if TYPE_CHECKING:
    from widetable.data._async.client import TableAsync
    from widetable.data._retry import RetryPolicy
    from widetable.data._transport import DataTransport

LOGGER = logging.getLogger(__name__)


class _MutateRowOperationAsync:
    """
    MutateRowOperation sends a single-row write, retrying it on transient
    failures when doing so cannot change the outcome.

    Plain mutations are retried only if every mutation is idempotent (has
    an explicit timestamp). Conditional mutations are always sent once.
    """

    def __init__(
        self,
        transport: "DataTransport",
        table: "TableAsync",
        row_key: bytes,
        mutation: list[Mutation] | Mutation | ConditionalMutation,
        operation_timeout: float,
        attempt_timeout: float | None,
        retry_policy: "RetryPolicy",
    ):
        """
        Args:
          - transport: the transport to send requests over
          - table: the table associated with the request
          - row_key: the row to write
          - mutation: the mutations to apply, or a ConditionalMutation
          - operation_timeout: the timeout to use for the entire operation, in seconds.
          - attempt_timeout: the timeout to use for each attempt, in seconds.
          - retry_policy: the client retry configuration
        """
        if isinstance(mutation, Mutation):
            mutation = [mutation]
        self._transport = transport
        self.is_conditional = isinstance(mutation, ConditionalMutation)
        if self.is_conditional:
            self._method = CHECK_AND_MUTATE_ROW
            fields = mutation._to_dict()
            self.is_idempotent = mutation.is_idempotent()
        else:
            if not mutation:
                raise ConfigurationError("mutations must not be empty")
            self._method = MUTATE_ROW
            fields = {"mutations": [m._to_dict() for m in mutation]}
            self.is_idempotent = all(m.is_idempotent() for m in mutation)
        self.request = _make_request(
            table.table_name, table.app_profile_id, row_key=row_key, **fields
        )
        self.scheduler = retry_policy.new_scheduler(operation_timeout, attempt_timeout)

    async def start(self) -> bool | None:
        """
        Run the write until it succeeds, fails permanently, or runs out of time

        Returns:
          - for conditional mutations, whether the predicate matched. Otherwise None
        Raises:
          - DeadlineExceeded: if the operation deadline passed before a successful attempt
          - GoogleAPICallError: if an attempt failed and could not be retried
        """
        while True:
            timeout = self.scheduler.start_attempt()
            try:
                response = await self._transport.invoke_unary(
                    self._method, self.request, timeout=timeout
                )
            except Exception as exc:
                if not self.is_idempotent:
                    LOGGER.debug("Not retrying non-idempotent %s: %r", self._method, exc)
                    self.scheduler.raise_terminal(exc)
                if not self.scheduler.classifier.is_retryable(exc):
                    self.scheduler.raise_terminal(exc)
                await self.scheduler.backoff(exc)
                continue
            if self.is_conditional:
                return bool(response.predicate_matched)
            return None
