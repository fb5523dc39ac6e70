"""Retry with exponential backoff.

Provides automatic retry for transient upstream failures with:
- Bounded retry count
- Exponential backoff capped at a maximum delay, plus up to 10% jitter
- A retry predicate that refuses permanent (4xx/validation) failures
- No retries for non-idempotent writes unless the caller asserts idempotency
"""

import asyncio
import functools
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar

from ..errors import (
    CircuitOpenError,
    PermanentUpstreamError,
    RateLimitedError,
    TransientUpstreamError,
    UnauthorizedError,
    UpstreamThrottledError,
)
from ..monitoring.metrics import upstream_retries_total
from .timeout import with_async_timeout

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Exceptions to NOT retry (permanent failures)
NON_RETRYABLE_EXCEPTIONS = (
    PermanentUpstreamError,
    RateLimitedError,
    CircuitOpenError,
    UnauthorizedError,
    ValueError,
    TypeError,
    KeyError,
    AttributeError,
)


def is_retryable_error(error: BaseException) -> bool:
    """Default retry predicate.

    Network failures, 5xx responses and timeouts are retryable. Validation and
    4xx failures are not: retrying them burns upstream quota and cannot succeed.
    """
    if isinstance(error, NON_RETRYABLE_EXCEPTIONS):
        return False
    if isinstance(error, TransientUpstreamError):
        return True
    # ConnectionError and the builtin TimeoutError are both OSError subclasses
    return isinstance(error, (OSError, asyncio.TimeoutError))


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_retries: int = 3  # Retries after the first attempt
    base_delay: float = 1.0  # Base delay in seconds
    max_delay: float = 30.0  # Maximum delay in seconds
    backoff_factor: float = 2.0  # Exponential backoff base
    jitter: float = 0.1  # Up to 10% extra delay
    retry_predicate: Callable[[BaseException], bool] = field(default=is_retryable_error)
    attempt_timeout: Optional[float] = None  # Per-attempt timeout in seconds

    @classmethod
    def from_settings(cls, settings: Any) -> "RetryConfig":
        """Build a config from application settings."""
        return cls(
            max_retries=settings.retry_max_retries,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            backoff_factor=settings.retry_backoff_factor,
            attempt_timeout=settings.upstream_timeout_seconds,
        )


def calculate_backoff(
    attempt: int,
    config: RetryConfig,
    with_jitter: bool = True,
) -> float:
    """Calculate backoff delay for a retry attempt.

    Args:
        attempt: Current attempt number (0-indexed)
        config: Retry configuration
        with_jitter: Add up to ``config.jitter`` of random extra delay

    Returns:
        Delay in seconds
    """
    try:
        delay = config.base_delay * (config.backoff_factor**attempt)
    except OverflowError:
        delay = config.max_delay
    delay = min(delay, config.max_delay)

    if with_jitter and config.jitter > 0:
        delay += random.uniform(0, delay * config.jitter)

    return delay


def _retry_delay(error: BaseException, attempt: int, config: RetryConfig) -> float:
    delay = calculate_backoff(attempt, config)
    if isinstance(error, UpstreamThrottledError) and error.retry_after > delay:
        # Never come back sooner than the upstream asked
        return error.retry_after
    return delay


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    config: Optional[RetryConfig] = None,
    *,
    idempotent: bool = True,
    name: str = "operation",
    on_retry: Optional[Callable[[BaseException, int], None]] = None,
) -> T:
    """Run an async operation with bounded retries and exponential backoff.

    Args:
        operation: Zero-argument callable returning a fresh awaitable per attempt
        config: Retry configuration
        idempotent: False for mutating calls; those get exactly one attempt
        name: Operation name for logging
        on_retry: Optional callback on retry (exception, attempt_number)

    Returns:
        Operation result

    Raises:
        Exception: The last error, once it is non-retryable or retries run out
    """
    config = config or RetryConfig()
    attempts = config.max_retries + 1 if idempotent else 1
    if not idempotent and config.max_retries > 0:
        logger.debug(f"{name} is not idempotent; retries disabled")

    for attempt in range(attempts):
        try:
            if config.attempt_timeout:
                return await with_async_timeout(
                    operation(),
                    config.attempt_timeout,
                    error_message=f"{name} timed out",
                )
            return await operation()
        except Exception as e:
            if not config.retry_predicate(e):
                logger.warning(f"Non-retryable error in {name}: {e}")
                raise

            if attempt == attempts - 1:
                logger.error(f"All {attempts} attempts failed for {name}: {e}")
                raise

            delay = _retry_delay(e, attempt, config)
            logger.warning(
                f"Attempt {attempt + 1}/{attempts} failed for {name}: {e}. "
                f"Retrying in {delay:.2f}s"
            )
            upstream_retries_total.inc()

            if on_retry:
                try:
                    on_retry(e, attempt + 1)
                except Exception as callback_error:
                    logger.debug(f"on_retry callback failed for {name}: {callback_error}")

            await asyncio.sleep(delay)

    raise RuntimeError(f"{name} made no attempts")  # pragma: no cover


def run_with_retry_sync(
    operation: Callable[[], T],
    config: Optional[RetryConfig] = None,
    *,
    idempotent: bool = True,
    name: str = "operation",
) -> T:
    """Blocking counterpart of ``run_with_retry`` for thread-bound callers."""
    config = config or RetryConfig()
    attempts = config.max_retries + 1 if idempotent else 1

    for attempt in range(attempts):
        try:
            return operation()
        except Exception as e:
            if not config.retry_predicate(e):
                logger.warning(f"Non-retryable error in {name}: {e}")
                raise

            if attempt == attempts - 1:
                logger.error(f"All {attempts} attempts failed for {name}: {e}")
                raise

            delay = _retry_delay(e, attempt, config)
            logger.warning(
                f"Attempt {attempt + 1}/{attempts} failed for {name}: {e}. "
                f"Retrying in {delay:.2f}s"
            )
            upstream_retries_total.inc()
            time.sleep(delay)

    raise RuntimeError(f"{name} made no attempts")  # pragma: no cover


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    backoff_factor: float = 2.0,
    retry_predicate: Callable[[BaseException], bool] = is_retryable_error,
    idempotent: bool = True,
):
    """Decorator for retry with exponential backoff.

    Args:
        max_retries: Retries after the first attempt
        base_delay: Base delay between retries
        max_delay: Maximum delay between retries
        backoff_factor: Exponential growth factor
        retry_predicate: Decides whether an error is worth retrying
        idempotent: Set False on mutating calls to disable retries

    Returns:
        Decorated function

    Usage:
        @retry_with_backoff(max_retries=3)
        async def fetch_partners():
            ...
    """
    config = RetryConfig(
        max_retries=max_retries,
        base_delay=base_delay,
        max_delay=max_delay,
        backoff_factor=backoff_factor,
        retry_predicate=retry_predicate,
    )

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            return await run_with_retry(
                lambda: func(*args, **kwargs),
                config,
                idempotent=idempotent,
                name=func.__name__,
            )

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs) -> Any:
            return run_with_retry_sync(
                lambda: func(*args, **kwargs),
                config,
                idempotent=idempotent,
                name=func.__name__,
            )

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator
