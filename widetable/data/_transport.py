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
Contract between the retry engine and the rpc transport.

The transport owns connections, encoding and per-attempt timeouts. It
raises google.api_core GoogleAPICallError subclasses on failure, and never
retries on its own.
"""
from __future__ import annotations

from typing import Any, AsyncIterator
from dataclasses import dataclass, field
import abc

from grpc import StatusCode

from widetable.data.row import Row

MUTATE_ROW = "MutateRow"
CHECK_AND_MUTATE_ROW = "CheckAndMutateRow"
MUTATE_ROWS = "MutateRows"
READ_ROWS = "ReadRows"


class DataTransport(abc.ABC):
    """Async transport for the table data api"""

    @abc.abstractmethod
    async def invoke_unary(
        self, method: str, request: dict[str, Any], *, timeout: float | None = None
    ) -> Any:
        """Send a single request and return its response"""
        raise NotImplementedError

    @abc.abstractmethod
    def open_stream(
        self, method: str, request: dict[str, Any], *, timeout: float | None = None
    ) -> AsyncIterator[Any]:
        """Send a single request and return an async iterator over its responses"""
        raise NotImplementedError

    async def close(self) -> None:
        pass


@dataclass
class CheckAndMutateRowResponse:
    predicate_matched: bool = False


@dataclass
class MutateRowsResponse:
    @dataclass
    class Entry:
        # index into the entries of the request this status belongs to
        index: int
        code: int | StatusCode = StatusCode.OK
        message: str = ""
        details: list[Any] = field(default_factory=list)

    entries: list[Entry] = field(default_factory=list)


@dataclass
class ReadRowsResponse:
    # committed rows, in scan order
    rows: list[Row] = field(default_factory=list)
    # set when the server scanned past rows that were filtered out
    last_scanned_row_key: bytes | None = None


def _is_ok(code: int | StatusCode) -> bool:
    if isinstance(code, StatusCode):
        return code == StatusCode.OK
    return code == 0


async def _close_stream(stream: AsyncIterator[Any]) -> None:
    """Release a response stream, if the transport supports it"""
    aclose = getattr(stream, "aclose", None)
    if aclose is not None:
        await aclose()
