"""
Tests for the circuit breaker and the fetch retry policy.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from stormwatch.exceptions import CircuitOpenError, UpstreamFormatError, UpstreamUnavailable
from stormwatch.resilience import (
    CircuitBreaker,
    CircuitState,
    retry_policy,
)


class TestCircuitBreaker:

    def test_opens_after_threshold(self):
        breaker = CircuitBreaker(name="test", failure_threshold=2)
        breaker.record_failure(RuntimeError("1"))
        assert breaker.state == CircuitState.CLOSED
        breaker.record_failure(RuntimeError("2"))
        assert breaker.is_open

    def test_success_resets_failure_count(self):
        breaker = CircuitBreaker(name="test", failure_threshold=2)
        breaker.record_failure(RuntimeError("1"))
        breaker.record_success()
        breaker.record_failure(RuntimeError("2"))
        assert breaker.state == CircuitState.CLOSED

    def test_half_open_after_recovery_timeout(self):
        breaker = CircuitBreaker(name="test", failure_threshold=1, recovery_timeout=60)
        breaker.record_failure(RuntimeError("down"))
        breaker._last_failure_time = datetime.now(timezone.utc) - timedelta(seconds=61)
        assert breaker.state == CircuitState.HALF_OPEN
        breaker.record_success()
        assert breaker.state == CircuitState.CLOSED

    def test_half_open_failure_reopens(self):
        breaker = CircuitBreaker(name="test", failure_threshold=1, recovery_timeout=0)
        breaker.record_failure(RuntimeError("down"))
        assert breaker.state == CircuitState.HALF_OPEN
        breaker.record_failure(RuntimeError("still down"))
        assert breaker._state == CircuitState.OPEN

    def test_call_async_rejects_when_open(self):
        breaker = CircuitBreaker(name="test", failure_threshold=1, recovery_timeout=60)
        calls = []

        @breaker.call_async
        async def flaky():
            calls.append(1)
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            asyncio.run(flaky())
        with pytest.raises(CircuitOpenError):
            asyncio.run(flaky())
        assert len(calls) == 1

    def test_status_reports_counts(self):
        breaker = CircuitBreaker(name="oracle", failure_threshold=3)
        breaker.record_failure(RuntimeError("down"))
        status = breaker.get_status()
        assert status["name"] == "oracle"
        assert status["state"] == "closed"
        assert status["failure_count"] == 1
        assert status["last_failure"] is not None


class TestRetryPolicy:

    def _run(self, error, attempts=3):
        calls = []

        async def scenario():
            async for attempt in retry_policy(max_attempts=attempts, min_wait=0):
                with attempt:
                    calls.append(1)
                    raise error

        with pytest.raises(type(error)):
            asyncio.run(scenario())
        return len(calls)

    def test_unavailable_retried_until_exhausted(self):
        assert self._run(UpstreamUnavailable("timeout")) == 3

    def test_format_error_not_retried(self):
        assert self._run(UpstreamFormatError("bad json")) == 1

    def test_recovers_on_later_attempt(self):
        calls = []

        async def scenario():
            async for attempt in retry_policy(max_attempts=3, min_wait=0):
                with attempt:
                    calls.append(1)
                    if len(calls) < 2:
                        raise UpstreamUnavailable("blip")
                    result = "ok"
            return result

        assert asyncio.run(scenario()) == "ok"
        assert len(calls) == 2
