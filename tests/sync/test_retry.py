"""
Tests for RetryPolicy backoff and retry classification.
"""

import pytest

from core.models.config import RetryConfig
from core.sync.errors import IndexWriteError, SyncError
from core.sync.retry import RetryPolicy


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


class TestRetryPolicy:

    def test_delays_grow_exponentially_and_cap(self):
        policy = RetryPolicy(base_delay=1.0, multiplier=2.0, max_delay=5.0)

        assert policy.delay_for(1) == 1.0
        assert policy.delay_for(2) == 2.0
        assert policy.delay_for(3) == 4.0
        assert policy.delay_for(4) == 5.0
        assert policy.delay_for(0) == 0.0

    def test_from_config(self):
        policy = RetryPolicy.from_config(RetryConfig(max_attempts=5, base_delay_seconds=0.5))
        assert policy.max_attempts == 5
        assert policy.base_delay == 0.5

    def test_invalid_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)

    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self):
        sleep = RecordingSleep()
        policy = RetryPolicy(max_attempts=3, sleep=sleep)
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise IndexWriteError("index busy")
            return "ok"

        assert await policy.call(flaky) == "ok"
        assert len(calls) == 3
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_raises_last_error_when_exhausted(self):
        policy = RetryPolicy(max_attempts=2, sleep=RecordingSleep())

        async def always_fails():
            raise ConnectionError("down")

        with pytest.raises(ConnectionError):
            await policy.call(always_fails)

    @pytest.mark.asyncio
    async def test_non_retryable_error_propagates_immediately(self):
        sleep = RecordingSleep()
        policy = RetryPolicy(max_attempts=5, sleep=sleep)
        calls = []

        async def broken():
            calls.append(1)
            raise SyncError("bad data")

        with pytest.raises(SyncError):
            await policy.call(broken)
        assert len(calls) == 1
        assert sleep.delays == []
