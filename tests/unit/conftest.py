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
"""
In-memory transport used by the unit tests.

Each call to invoke_unary or open_stream consumes the next scripted result
for its method. A scripted unary result is a response or an exception. A
scripted stream is a list of responses and exceptions, or a callable that
builds that list from the request. An exception scripted in place of a
stream is raised by open_stream itself, before any stream exists. An
awaitable in a stream is awaited in place, so a test can hold the stream
blocked in receive.
"""
import copy
import inspect

import pytest

from widetable.data._transport import DataTransport


class FakeTransport(DataTransport):
    def __init__(self):
        self.scripts = {}
        self.requests = []
        self.timeouts = []
        self.closed = False
        self.streams_closed = 0

    def script(self, method, *results):
        self.scripts.setdefault(method, []).extend(results)
        return self

    def requests_for(self, method):
        return [req for m, req in self.requests if m == method]

    def _next(self, method, request, timeout):
        self.requests.append((method, copy.deepcopy(request)))
        self.timeouts.append(timeout)
        queue = self.scripts.get(method)
        if not queue:
            raise AssertionError(f"unexpected {method} call")
        return queue.pop(0)

    async def invoke_unary(self, method, request, *, timeout=None):
        result = self._next(method, request, timeout)
        if isinstance(result, Exception):
            raise result
        return result

    def open_stream(self, method, request, *, timeout=None):
        result = self._next(method, request, timeout)
        if isinstance(result, Exception):
            raise result
        if callable(result):
            result = result(request)
        return self._stream(list(result))

    async def _stream(self, items):
        try:
            for item in items:
                if inspect.isawaitable(item):
                    await item
                    continue
                if isinstance(item, Exception):
                    raise item
                yield item
        finally:
            self.streams_closed += 1

    async def close(self):
        self.closed = True


@pytest.fixture(autouse=True)
def _clear_retry_info_env(monkeypatch):
    monkeypatch.delenv("DISABLE_RETRY_INFO", raising=False)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def client(transport):
    from widetable.data import DataClientAsync

    return DataClientAsync(transport, project="project")


@pytest.fixture
def table(client):
    return client.get_table("instance", "table", app_profile_id="profile")
