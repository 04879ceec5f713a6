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
"""
Error classification and backoff shared by every retrying operation.

`RetryClassifier` decides whether a failed attempt may be retried.
`RetryPolicy` is the immutable, client-wide retry configuration.
`BackoffScheduler` is created per operation from a policy, and owns the
operation deadline, the sleep between attempts, and the history of failed
attempts used to build the final error.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, NoReturn
import asyncio
import logging
import time

from grpc import StatusCode
from google.api_core import exceptions as core_exceptions
from google.api_core.retry import RetryFailureReason
from google.api_core.retry import exponential_sleep_generator
from google.rpc import error_details_pb2

from widetable.data._helpers import _retry_exception_factory

LOGGER = logging.getLogger(__name__)

DEFAULT_RETRYABLE_CODES = (
    StatusCode.UNAVAILABLE,
    StatusCode.ABORTED,
    # raised by the transport when a single attempt times out. The operation
    # deadline is enforced by BackoffScheduler and never reaches the classifier
    StatusCode.DEADLINE_EXCEEDED,
)

# INTERNAL errors whose message contains one of these are transient
DEFAULT_RETRYABLE_INTERNAL_MESSAGES = (
    "rst_stream",
    "rst stream",
    "stream terminated by rst_stream",
    "received unexpected eos on data frame from server",
)


class RetryClassifier:
    """
    Maps a failed attempt to retryable or non-retryable.

    Only GoogleAPICallErrors are considered. INTERNAL errors are retryable
    only if their message matches the configured allow-list. When retry info
    is honored, an error carrying a server RetryInfo hint is retryable.
    """

    def __init__(
        self,
        retryable_codes: Iterable[StatusCode] = DEFAULT_RETRYABLE_CODES,
        retryable_internal_messages: Iterable[str] = DEFAULT_RETRYABLE_INTERNAL_MESSAGES,
        honor_retry_info: bool = True,
    ):
        self.retryable_codes = frozenset(retryable_codes)
        self.retryable_internal_messages = tuple(
            msg.lower() for msg in retryable_internal_messages
        )
        self.honor_retry_info = honor_retry_info

    def is_retryable(self, exc: Exception) -> bool:
        if not isinstance(exc, core_exceptions.GoogleAPICallError):
            return False
        if self.retry_info_delay(exc) is not None:
            return True
        code = exc.grpc_status_code
        if code in self.retryable_codes:
            return True
        if code == StatusCode.INTERNAL:
            message = (exc.message or "").lower()
            return any(msg in message for msg in self.retryable_internal_messages)
        return False

    def retry_info_delay(self, exc: Exception) -> float | None:
        """
        Returns the server-suggested delay in seconds, or None if the error
        carries no RetryInfo or retry info is not honored.
        """
        if not self.honor_retry_info:
            return None
        details = getattr(exc, "details", None) or []
        for detail in details:
            if isinstance(detail, error_details_pb2.RetryInfo) and detail.HasField(
                "retry_delay"
            ):
                return detail.retry_delay.ToTimedelta().total_seconds()
        return None

    def __call__(self, exc: Exception) -> bool:
        return self.is_retryable(exc)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Client-wide retry configuration. Fixed once the client is constructed.

    Attributes:
      - initial: the first backoff delay, in seconds
      - multiplier: growth factor applied to the delay after each retry
      - maximum: the largest delay between two attempts, in seconds
      - retryable_internal_messages: message substrings that make an
            INTERNAL error retryable
      - disable_retry_info: if True, server RetryInfo hints are ignored and
            only the client backoff parameters are used
    """

    initial: float = 0.01
    multiplier: float = 2
    maximum: float = 60
    retryable_internal_messages: tuple[str, ...] = DEFAULT_RETRYABLE_INTERNAL_MESSAGES
    disable_retry_info: bool = False
    classifier: RetryClassifier = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(
            self,
            "classifier",
            RetryClassifier(
                retryable_internal_messages=self.retryable_internal_messages,
                honor_retry_info=not self.disable_retry_info,
            ),
        )

    def new_scheduler(
        self, operation_timeout: float, attempt_timeout: float | None = None
    ) -> BackoffScheduler:
        return BackoffScheduler(self, operation_timeout, attempt_timeout)


class BackoffScheduler:
    """
    Per-operation retry state: deadline, backoff delays and failed attempts.

    The deadline starts counting when the scheduler is created. No attempt is
    started once it has passed, including the first one.
    """

    def __init__(
        self,
        policy: RetryPolicy,
        operation_timeout: float,
        attempt_timeout: float | None = None,
    ):
        self.operation_timeout = operation_timeout
        self.attempt_timeout = attempt_timeout
        self.deadline = time.monotonic() + operation_timeout
        self.classifier = policy.classifier
        self._sleep_generator = exponential_sleep_generator(
            policy.initial, policy.maximum, multiplier=policy.multiplier
        )
        self.errors: list[Exception] = []
        self.attempt_count = 0

    def remaining(self) -> float:
        return self.deadline - time.monotonic()

    def expired(self) -> bool:
        return self.remaining() <= 0

    def start_attempt(self) -> float:
        """
        Register a new attempt.

        Returns:
          - the timeout to use for the attempt, in seconds
        Raises:
          - DeadlineExceeded: if the operation deadline has passed
        """
        remaining = self.remaining()
        if remaining <= 0:
            self.raise_deadline_exceeded()
        self.attempt_count += 1
        if self.attempt_timeout is None:
            return remaining
        return min(self.attempt_timeout, remaining)

    async def backoff(self, exc: Exception) -> None:
        """
        Record a retryable failure and wait before the next attempt.

        The wait is cut short at the operation deadline, and is cancelled with
        the surrounding task.
        """
        self.errors.append(exc)
        delay = self.classifier.retry_info_delay(exc)
        if delay is None:
            delay = next(self._sleep_generator)
        delay = max(0.0, min(delay, self.remaining()))
        LOGGER.debug(
            "Attempt %d failed with retryable error %r; retrying in %.3fs",
            self.attempt_count,
            exc,
            delay,
        )
        await asyncio.sleep(delay)

    def raise_deadline_exceeded(self) -> NoReturn:
        exc, cause = _retry_exception_factory(
            self.errors, RetryFailureReason.TIMEOUT, self.operation_timeout
        )
        raise exc from cause

    def raise_terminal(self, exc: Exception) -> NoReturn:
        """
        Raise a non-retryable error, chained to any earlier retryable failures
        """
        source_exc, cause = _retry_exception_factory(
            self.errors + [exc], RetryFailureReason.NON_RETRYABLE_ERROR, None
        )
        raise source_exc from cause
