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
Helper functions used in various places in the library.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Any
import enum
import time

from google.api_core import exceptions as core_exceptions
from google.api_core.retry import RetryFailureReason
from widetable.data.exceptions import ConfigurationError
from widetable.data.exceptions import RetryExceptionGroup

if TYPE_CHECKING:
    from widetable.data._async.client import TableAsync


# enum used on method calls when table defaults should be used
class TABLE_DEFAULT(enum.Enum):
    # default for mutate_row, check_and_mutate_row and apply
    DEFAULT = "DEFAULT"
    # default for read_rows, read_rows_stream and read_row
    READ_ROWS = "READ_ROWS_DEFAULT"
    # default for bulk_mutate_rows and apply_bulk
    MUTATE_ROWS = "MUTATE_ROWS_DEFAULT"


def _encode_key(key: str | bytes, name: str = "row_key") -> bytes:
    """Convert a row key to bytes, rejecting anything but str and bytes"""
    if isinstance(key, str):
        return key.encode("utf-8")
    elif not isinstance(key, bytes):
        raise ConfigurationError(f"{name} must be a string or bytes")
    return key


def _retry_exception_factory(
    exc_list: list[Exception],
    reason: RetryFailureReason,
    timeout_val: float | None,
) -> tuple[Exception, Exception | None]:
    """
    Build retry error based on exceptions encountered during operation

    Args:
      - exc_list: list of exceptions encountered during operation
      - reason: the reason the retry loop stopped
      - timeout_val: the operation timeout value in seconds, for constructing
            the error message
    Returns:
      - tuple of the exception to raise, and a cause exception if applicable
    """
    exc_list = list(exc_list)
    if reason == RetryFailureReason.TIMEOUT:
        # if failed due to timeout, raise deadline exceeded as primary exception
        if timeout_val is not None and timeout_val > 0:
            message = f"operation_timeout of {timeout_val:0.1f}s exceeded"
        else:
            # no timeout value, or an absolute deadline already passed at the start
            message = "operation deadline exceeded"
        source_exc: Exception = core_exceptions.DeadlineExceeded(message)
    elif exc_list:
        # otherwise, raise non-retryable error as primary exception
        source_exc = exc_list.pop()
    else:
        source_exc = RuntimeError("failed with unspecified exception")
    # use the retry exception group as the cause of the exception
    cause_exc: Exception | None = RetryExceptionGroup(exc_list) if exc_list else None
    source_exc.__cause__ = cause_exc
    return source_exc, cause_exc


def _get_timeouts(
    operation: float | TABLE_DEFAULT,
    attempt: float | None | TABLE_DEFAULT,
    table: "TableAsync",
    deadline: float | None = None,
) -> tuple[float, float]:
    """
    Convert passed in timeout values to floats, using table defaults if necessary.

    attempt will use operation value if None, or if larger than operation.

    If an absolute deadline (on the time.monotonic() clock) is passed, it
    replaces the operation timeout. An already expired deadline is not a
    configuration error: it yields a non-positive operation timeout, and the
    operation fails with DeadlineExceeded before sending any request.

    Args:
        - operation: The timeout value to use for the entire operation, in seconds.
        - attempt: The timeout value to use for each attempt, in seconds.
        - table: The table to use for default values.
        - deadline: optional absolute deadline for the operation
    Returns:
        - A tuple of (operation_timeout, attempt_timeout)
    Raises:
        - ConfigurationError if the resulting timeouts are invalid
    """
    # load table defaults if necessary
    if operation == TABLE_DEFAULT.DEFAULT:
        final_operation = table.default_operation_timeout
    elif operation == TABLE_DEFAULT.READ_ROWS:
        final_operation = table.default_read_rows_operation_timeout
    elif operation == TABLE_DEFAULT.MUTATE_ROWS:
        final_operation = table.default_mutate_rows_operation_timeout
    else:
        final_operation = operation
    if attempt == TABLE_DEFAULT.DEFAULT:
        attempt = table.default_attempt_timeout
    elif attempt == TABLE_DEFAULT.READ_ROWS:
        attempt = table.default_read_rows_attempt_timeout
    elif attempt == TABLE_DEFAULT.MUTATE_ROWS:
        attempt = table.default_mutate_rows_attempt_timeout

    if deadline is None:
        _validate_timeouts(final_operation, attempt, allow_none=True)
    else:
        _validate_timeouts(1, attempt, allow_none=True)
        final_operation = deadline - time.monotonic()

    if attempt is None:
        # no timeout specified, use operation timeout for both
        final_attempt = final_operation
    else:
        # cap attempt timeout at operation timeout
        final_attempt = min(attempt, final_operation)
    return final_operation, final_attempt


def _validate_timeouts(
    operation_timeout: float, attempt_timeout: float | None, allow_none: bool = False
):
    """
    Helper function that will verify that timeout values are valid, and raise
    an exception if they are not.

    Args:
      - operation_timeout: The timeout value to use for the entire operation, in seconds.
      - attempt_timeout: The timeout value to use for each attempt, in seconds.
      - allow_none: If True, attempt_timeout can be None. If False, None values will raise an exception.
    Raises:
      - ConfigurationError if operation_timeout or attempt_timeout are invalid.
    """
    if operation_timeout is None:
        raise ConfigurationError("operation_timeout cannot be None")
    if operation_timeout <= 0:
        raise ConfigurationError("operation_timeout must be greater than 0")
    if not allow_none and attempt_timeout is None:
        raise ConfigurationError("attempt_timeout must not be None")
    elif attempt_timeout is not None:
        if attempt_timeout <= 0:
            raise ConfigurationError("attempt_timeout must be greater than 0")


def _make_request(
    table_name: str, app_profile_id: str | None, **fields
) -> dict[str, Any]:
    """
    Create a request dict carrying the routing fields of the table.
    """
    request: dict[str, Any] = {"table_name": table_name}
    if app_profile_id is not None:
        request["app_profile_id"] = app_profile_id
    request.update(fields)
    return request
