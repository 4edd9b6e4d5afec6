"""
Resilience patterns for STORMWATCH.

Circuit breaker around the forecast oracle and the tenacity retry policy
the orchestrator applies to adapter fetches. Adapters never retry on their
own, so every retry decision is made here.
"""
import functools
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from stormwatch.exceptions import CircuitOpenError, UpstreamUnavailable

logger = logging.getLogger(__name__)

T = TypeVar('T')


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing if service recovered


@dataclass
class CircuitBreaker:
    """
    Thread-safe circuit breaker.

    Stops calling a failing service for ``recovery_timeout`` seconds after
    ``failure_threshold`` consecutive failures, then lets trial calls through.

    Usage:
        breaker = CircuitBreaker(name="forecast_oracle")

        @breaker.call_async
        async def call_oracle():
            ...
    """
    name: str
    failure_threshold: int = 5
    recovery_timeout: int = 60  # seconds
    half_open_max_calls: int = 1

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _success_count: int = field(default=0, init=False)
    _last_failure_time: Optional[datetime] = field(default=None, init=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False)
    _half_open_calls: int = field(default=0, init=False)

    @property
    def state(self) -> CircuitState:
        """Current state, after applying any elapsed recovery timeout."""
        return self._check_state()

    @property
    def is_open(self) -> bool:
        return self._check_state() == CircuitState.OPEN

    def _check_state(self) -> CircuitState:
        with self._lock:
            if self._state == CircuitState.OPEN and self._last_failure_time:
                elapsed = (datetime.now(timezone.utc) - self._last_failure_time).total_seconds()
                if elapsed >= self.recovery_timeout:
                    self._state = CircuitState.HALF_OPEN
                    self._half_open_calls = 0
                    logger.info(f"Circuit breaker '{self.name}' transitioning to HALF_OPEN")
            return self._state

    def _open(self):
        self._state = CircuitState.OPEN
        self._last_failure_time = datetime.now(timezone.utc)
        logger.warning(f"Circuit breaker '{self.name}' OPENED after {self._failure_count} failures")

    def record_success(self):
        with self._lock:
            self._success_count += 1
            if self._state == CircuitState.HALF_OPEN:
                self._half_open_calls += 1
                if self._half_open_calls >= self.half_open_max_calls:
                    self._state = CircuitState.CLOSED
                    self._failure_count = 0
                    logger.info(f"Circuit breaker '{self.name}' CLOSED - service recovered")
            else:
                self._failure_count = 0

    def record_failure(self, error: Exception):
        with self._lock:
            self._failure_count += 1
            self._last_failure_time = datetime.now(timezone.utc)
            logger.warning(f"Circuit breaker '{self.name}' recorded failure: {error}")

            if self._state == CircuitState.HALF_OPEN:
                self._open()
            elif self._state == CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
                self._open()

    def call_async(self, func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        """Async decorator to wrap a coroutine function with the breaker."""
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            if self._check_state() == CircuitState.OPEN:
                raise CircuitOpenError(
                    f"Circuit breaker '{self.name}' is OPEN. "
                    f"Service unavailable, try again in {self.recovery_timeout}s"
                )
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                self.record_failure(e)
                raise
            self.record_success()
            return result

        return wrapper

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'name': self.name,
                'state': self._state.value,
                'failure_count': self._failure_count,
                'success_count': self._success_count,
                'last_failure': self._last_failure_time.isoformat() if self._last_failure_time else None,
                'failure_threshold': self.failure_threshold,
                'recovery_timeout_seconds': self.recovery_timeout,
            }


def retry_policy(
    max_attempts: int = 2,
    min_wait: float = 1.0,
    max_wait: float = 30.0,
    exceptions: tuple = (UpstreamUnavailable,),
) -> AsyncRetrying:
    """
    Build the orchestrator's retry policy for one adapter call.

    Only transient network failures are retried; a payload that failed to
    parse will fail the same way again.

    Args:
        max_attempts: Total attempts including the first call
        min_wait: Minimum wait between attempts (seconds)
        max_wait: Maximum wait between attempts (seconds)
        exceptions: Exception types that trigger a retry
    """
    return AsyncRetrying(
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=wait_exponential(multiplier=min_wait, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(exceptions),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
