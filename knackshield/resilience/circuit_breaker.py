"""Circuit breaker for upstream calls.

Provides:
- Three states: CLOSED (normal), OPEN (failing fast), HALF_OPEN (probing)
- Configurable consecutive-failure threshold
- Automatic recovery probe after a timeout
"""

import asyncio
import functools
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from ..errors import CircuitOpenError, PermanentUpstreamError
from ..monitoring.metrics import circuit_breaker_trips

logger = logging.getLogger(__name__)

T = TypeVar("T")


def counts_as_failure(error: BaseException) -> bool:
    """Whether an error should count against the circuit.

    A 4xx answer proves the upstream is reachable, so it never trips the breaker.
    """
    return not isinstance(error, PermanentUpstreamError)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"  # Normal operation
    OPEN = "OPEN"  # Upstream failing, reject calls
    HALF_OPEN = "HALF_OPEN"  # Testing if upstream recovered


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""

    failure_threshold: int = 5  # Consecutive failures before opening
    recovery_timeout: float = 60.0  # Seconds before trying half-open
    half_open_max_calls: int = 1  # Concurrent probes allowed in half-open
    failure_predicate: Callable[[BaseException], bool] = field(default=counts_as_failure)

    @classmethod
    def from_settings(cls, settings: Any) -> "CircuitBreakerConfig":
        """Build a config from application settings."""
        return cls(
            failure_threshold=settings.circuit_failure_threshold,
            recovery_timeout=settings.circuit_recovery_timeout,
        )


class CircuitBreaker:
    """Circuit breaker protecting calls to the upstream API.

    Usage:
        breaker = CircuitBreaker("knack")
        records = await breaker.execute(lambda: client.get_records("object_1"))

        # Or as a decorator:
        @breaker.protect
        async def fetch():
            ...
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
    ):
        """Initialize circuit breaker.

        Args:
            name: Breaker name for logging and metrics
            config: Circuit breaker configuration
        """
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None
        self._half_open_calls = 0
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        """Get current state, checking for automatic transitions."""
        with self._lock:
            self._check_state_transition()
            return self._state

    @property
    def failure_count(self) -> int:
        with self._lock:
            return self._failure_count

    @property
    def is_open(self) -> bool:
        """Check if circuit is open (blocking calls)."""
        return self.state == CircuitState.OPEN

    def can_execute(self) -> bool:
        """Check if a call may proceed, reserving a probe slot in HALF_OPEN."""
        with self._lock:
            self._check_state_transition()

            if self._state == CircuitState.CLOSED:
                return True

            if self._state == CircuitState.OPEN:
                return False

            if self._half_open_calls < self.config.half_open_max_calls:
                self._half_open_calls += 1
                return True
            return False

    def record_success(self) -> None:
        """Record a successful call."""
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._transition_to_closed()
            else:
                self._failure_count = 0

    def record_failure(self) -> None:
        """Record a failed call."""
        with self._lock:
            self._failure_count += 1
            self._last_failure_time = time.monotonic()

            if self._state == CircuitState.HALF_OPEN:
                # Any failure in half-open goes back to open with a fresh timer
                self._transition_to_open()
            elif self._state == CircuitState.CLOSED:
                if self._failure_count >= self.config.failure_threshold:
                    self._transition_to_open()

    def _record_error(self, error: BaseException) -> None:
        if self.config.failure_predicate(error):
            self.record_failure()
        else:
            self.record_success()

    def _check_state_transition(self) -> None:
        """Move OPEN to HALF_OPEN once the recovery timeout has elapsed."""
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            elapsed = time.monotonic() - self._last_failure_time
            if elapsed >= self.config.recovery_timeout:
                self._transition_to_half_open()

    def _transition_to_open(self) -> None:
        logger.warning(f"Circuit breaker {self.name} OPENED after {self._failure_count} failures")
        self._state = CircuitState.OPEN
        self._half_open_calls = 0
        circuit_breaker_trips.inc(name=self.name)

    def _transition_to_half_open(self) -> None:
        logger.info(f"Circuit breaker {self.name} entering HALF_OPEN for recovery test")
        self._state = CircuitState.HALF_OPEN
        self._half_open_calls = 0

    def _transition_to_closed(self) -> None:
        logger.info(f"Circuit breaker {self.name} CLOSED - upstream recovered")
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._half_open_calls = 0

    def reset(self) -> None:
        """Manually reset the circuit breaker."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._last_failure_time = None
            self._half_open_calls = 0
        logger.info(f"Circuit breaker {self.name} manually reset")

    def _release_probe(self) -> None:
        """Give back a HALF_OPEN probe slot for a call that never finished."""
        with self._lock:
            if self._state == CircuitState.HALF_OPEN and self._half_open_calls > 0:
                self._half_open_calls -= 1

    def _reject(self) -> CircuitOpenError:
        return CircuitOpenError(f"Circuit breaker {self.name} is {self._state.value}")

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run an async operation through the breaker.

        A cancelled call (an attempt timeout cancels the awaiting task) counts
        as a failure, so a hanging upstream trips the circuit like an erroring one.

        Raises:
            CircuitOpenError: Without invoking ``operation`` while the circuit is open
        """
        if not self.can_execute():
            raise self._reject()

        try:
            result = await operation()
        except asyncio.CancelledError:
            logger.warning(f"Circuit breaker {self.name}: call cancelled, counting as failure")
            self.record_failure()
            raise
        except Exception as e:
            self._record_error(e)
            raise
        self.record_success()
        return result

    def execute_sync(self, operation: Callable[[], T]) -> T:
        """Blocking counterpart of ``execute``."""
        if not self.can_execute():
            raise self._reject()

        try:
            result = operation()
        except Exception as e:
            self._record_error(e)
            raise
        except BaseException:
            self._release_probe()
            raise
        self.record_success()
        return result

    def protect(self, func: Callable) -> Callable:
        """Decorator to protect a function with this breaker."""

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            return await self.execute(lambda: func(*args, **kwargs))

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs) -> Any:
            return self.execute_sync(lambda: func(*args, **kwargs))

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    def get_status(self) -> dict[str, Any]:
        """Get circuit breaker status."""
        with self._lock:
            self._check_state_transition()
            return {
                "name": self.name,
                "state": self._state.value,
                "failure_count": self._failure_count,
                "last_failure": self._last_failure_time,
            }
