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

import dataclasses
from unittest import mock
from unittest.mock import AsyncMock

import pytest

from google.api_core import exceptions as core_exceptions
from google.protobuf import duration_pb2
from google.rpc import error_details_pb2

from widetable.data.exceptions import InvalidChunk
from widetable.data.exceptions import RetryExceptionGroup


def _retry_info(seconds):
    return error_details_pb2.RetryInfo(
        retry_delay=duration_pb2.Duration(seconds=seconds)
    )


class TestRetryClassifier:
    def _make_one(self, *args, **kwargs):
        from widetable.data._retry import RetryClassifier

        return RetryClassifier(*args, **kwargs)

    @pytest.mark.parametrize(
        "exc,expected",
        [
            (core_exceptions.ServiceUnavailable("unavailable"), True),
            (core_exceptions.Aborted("aborted"), True),
            (core_exceptions.DeadlineExceeded("attempt timed out"), True),
            (core_exceptions.FailedPrecondition("precondition"), False),
            (core_exceptions.InvalidArgument("bad request"), False),
            (core_exceptions.NotFound("missing"), False),
            (core_exceptions.InternalServerError("internal"), False),
            (core_exceptions.InternalServerError("stream terminated by RST_STREAM"), True),
            (core_exceptions.InternalServerError("RST STREAM"), True),
            (
                core_exceptions.InternalServerError(
                    "Received unexpected EOS on DATA frame from server"
                ),
                True,
            ),
            (InvalidChunk("malformed"), False),
            (RuntimeError("not an rpc error"), False),
        ],
    )
    def test_is_retryable(self, exc, expected):
        classifier = self._make_one()
        assert classifier.is_retryable(exc) is expected
        assert classifier(exc) is expected

    def test_custom_internal_messages(self):
        classifier = self._make_one(retryable_internal_messages=["Connection Reset"])
        assert classifier.is_retryable(
            core_exceptions.InternalServerError("connection reset by peer")
        )
        assert not classifier.is_retryable(
            core_exceptions.InternalServerError("rst_stream")
        )

    def test_retry_info_makes_error_retryable(self):
        exc = core_exceptions.FailedPrecondition("busy", details=[_retry_info(3)])
        classifier = self._make_one()
        assert classifier.retry_info_delay(exc) == 3
        assert classifier.is_retryable(exc)

    def test_retry_info_ignored_when_disabled(self):
        exc = core_exceptions.FailedPrecondition("busy", details=[_retry_info(3)])
        classifier = self._make_one(honor_retry_info=False)
        assert classifier.retry_info_delay(exc) is None
        assert not classifier.is_retryable(exc)

    def test_retry_info_delay_without_details(self):
        classifier = self._make_one()
        assert classifier.retry_info_delay(core_exceptions.Aborted("x")) is None
        assert classifier.retry_info_delay(RuntimeError("x")) is None


class TestRetryPolicy:
    def _make_one(self, **kwargs):
        from widetable.data._retry import RetryPolicy

        return RetryPolicy(**kwargs)

    def test_defaults(self):
        from widetable.data._retry import DEFAULT_RETRYABLE_INTERNAL_MESSAGES

        policy = self._make_one()
        assert policy.initial == 0.01
        assert policy.multiplier == 2
        assert policy.maximum == 60
        assert policy.retryable_internal_messages == DEFAULT_RETRYABLE_INTERNAL_MESSAGES
        assert policy.disable_retry_info is False
        assert policy.classifier.honor_retry_info is True

    def test_frozen(self):
        policy = self._make_one()
        with pytest.raises(dataclasses.FrozenInstanceError):
            policy.disable_retry_info = True

    def test_classifier_follows_policy(self):
        policy = self._make_one(
            disable_retry_info=True, retryable_internal_messages=("custom",)
        )
        assert policy.classifier.honor_retry_info is False
        assert policy.classifier.retryable_internal_messages == ("custom",)

    def test_new_scheduler(self):
        policy = self._make_one()
        scheduler = policy.new_scheduler(10, 2)
        assert scheduler.operation_timeout == 10
        assert scheduler.attempt_timeout == 2
        assert scheduler.classifier is policy.classifier
        assert scheduler.errors == []
        assert scheduler.attempt_count == 0


class TestBackoffScheduler:
    def _make_one(self, operation_timeout=10, attempt_timeout=None, **kwargs):
        from widetable.data._retry import RetryPolicy

        return RetryPolicy(**kwargs).new_scheduler(operation_timeout, attempt_timeout)

    def test_start_attempt(self):
        with mock.patch("time.monotonic", return_value=100):
            scheduler = self._make_one(10, 3)
            assert scheduler.deadline == 110
            assert scheduler.start_attempt() == 3
        with mock.patch("time.monotonic", return_value=108):
            # attempt timeout capped by time remaining
            assert scheduler.start_attempt() == 2
        assert scheduler.attempt_count == 2

    def test_start_attempt_no_attempt_timeout(self):
        with mock.patch("time.monotonic", return_value=100):
            scheduler = self._make_one(10)
            assert scheduler.start_attempt() == 10

    @pytest.mark.parametrize("operation_timeout", [0, -5])
    def test_start_attempt_after_deadline(self, operation_timeout):
        scheduler = self._make_one(operation_timeout)
        assert scheduler.expired()
        with pytest.raises(core_exceptions.DeadlineExceeded):
            scheduler.start_attempt()
        assert scheduler.attempt_count == 0

    def test_deadline_exceeded_chains_errors(self):
        scheduler = self._make_one(-1)
        first = core_exceptions.Aborted("first")
        second = core_exceptions.ServiceUnavailable("second")
        scheduler.errors.extend([first, second])
        with pytest.raises(core_exceptions.DeadlineExceeded) as e:
            scheduler.raise_deadline_exceeded()
        cause = e.value.__cause__
        assert isinstance(cause, RetryExceptionGroup)
        assert list(cause.exceptions) == [first, second]

    def test_raise_terminal(self):
        scheduler = self._make_one()
        earlier = core_exceptions.Aborted("earlier")
        scheduler.errors.append(earlier)
        final = core_exceptions.FailedPrecondition("final")
        with pytest.raises(core_exceptions.FailedPrecondition) as e:
            scheduler.raise_terminal(final)
        assert e.value is final
        assert list(e.value.__cause__.exceptions) == [earlier]

    def test_raise_terminal_first_attempt(self):
        scheduler = self._make_one()
        final = core_exceptions.FailedPrecondition("final")
        with pytest.raises(core_exceptions.FailedPrecondition) as e:
            scheduler.raise_terminal(final)
        assert e.value.__cause__ is None

    @pytest.mark.asyncio
    async def test_backoff_uses_exponential_delay(self):
        scheduler = self._make_one(60, initial=1, multiplier=2, maximum=4)
        exc = core_exceptions.Aborted("x")
        with mock.patch("asyncio.sleep", AsyncMock()) as sleep_mock:
            for _ in range(5):
                await scheduler.backoff(exc)
        delays = [call.args[0] for call in sleep_mock.call_args_list]
        assert len(delays) == 5
        assert all(0 <= d <= 4 for d in delays)
        assert scheduler.errors == [exc] * 5

    @pytest.mark.asyncio
    async def test_backoff_uses_retry_info(self):
        scheduler = self._make_one(60)
        exc = core_exceptions.Aborted("x", details=[_retry_info(7)])
        with mock.patch("asyncio.sleep", AsyncMock()) as sleep_mock:
            await scheduler.backoff(exc)
        sleep_mock.assert_awaited_once_with(7)

    @pytest.mark.asyncio
    async def test_backoff_ignores_retry_info_when_disabled(self):
        scheduler = self._make_one(60, initial=0.5, maximum=0.5, disable_retry_info=True)
        exc = core_exceptions.Aborted("x", details=[_retry_info(7)])
        with mock.patch("asyncio.sleep", AsyncMock()) as sleep_mock:
            await scheduler.backoff(exc)
        assert sleep_mock.call_args.args[0] <= 1

    @pytest.mark.asyncio
    async def test_backoff_capped_at_deadline(self):
        with mock.patch("time.monotonic", return_value=100):
            scheduler = self._make_one(2)
            exc = core_exceptions.Aborted("x", details=[_retry_info(30)])
            with mock.patch("asyncio.sleep", AsyncMock()) as sleep_mock:
                await scheduler.backoff(exc)
        sleep_mock.assert_awaited_once_with(2)
