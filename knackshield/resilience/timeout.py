"""Timeout wrappers for upstream calls.

Timeouts are enforced per attempt inside the retry executor, so a slow
upstream call becomes an ``UpstreamTimeoutError`` that the executor can retry.
"""

import asyncio
import functools
import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from ..errors import UpstreamTimeoutError

logger = logging.getLogger(__name__)


@dataclass
class TimeoutConfig:
    """Configuration for timeout wrapper."""

    timeout_seconds: float = 30.0
    on_timeout: Optional[Callable[[str], None]] = None


def _notify(config: TimeoutConfig, name: str) -> None:
    if config.on_timeout:
        try:
            config.on_timeout(name)
        except Exception as e:
            logger.debug(f"on_timeout callback failed for {name}: {e}")


def with_timeout(
    seconds: float = 30.0,
    on_timeout: Optional[Callable[[str], None]] = None,
):
    """Decorator to add timeout to a function.

    Args:
        seconds: Timeout in seconds
        on_timeout: Optional callback when timeout occurs

    Returns:
        Decorated function

    Usage:
        @with_timeout(10)
        async def fetch_devices():
            ...
    """
    config = TimeoutConfig(timeout_seconds=seconds, on_timeout=on_timeout)

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            try:
                return await asyncio.wait_for(
                    func(*args, **kwargs),
                    timeout=config.timeout_seconds,
                )
            except asyncio.TimeoutError:
                logger.warning(f"Timeout after {config.timeout_seconds}s in {func.__name__}")
                _notify(config, func.__name__)
                raise UpstreamTimeoutError(
                    f"{func.__name__} timed out after {config.timeout_seconds}s",
                    config.timeout_seconds,
                ) from None

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs) -> Any:
            executor = ThreadPoolExecutor(max_workers=1)
            future = executor.submit(func, *args, **kwargs)
            try:
                return future.result(timeout=config.timeout_seconds)
            except FuturesTimeoutError:
                logger.warning(f"Timeout after {config.timeout_seconds}s in {func.__name__}")
                _notify(config, func.__name__)
                raise UpstreamTimeoutError(
                    f"{func.__name__} timed out after {config.timeout_seconds}s",
                    config.timeout_seconds,
                ) from None
            finally:
                # The worker thread cannot be interrupted; let it finish on its own.
                executor.shutdown(wait=False)

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


async def with_async_timeout(
    awaitable: Awaitable,
    timeout_seconds: float,
    error_message: str = "Operation timed out",
) -> Any:
    """Await with a timeout.

    Args:
        awaitable: Coroutine or future to await
        timeout_seconds: Timeout in seconds
        error_message: Error message for timeout

    Returns:
        Awaitable result

    Raises:
        UpstreamTimeoutError: If timeout is exceeded
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
    except asyncio.TimeoutError:
        raise UpstreamTimeoutError(
            f"{error_message} after {timeout_seconds}s",
            timeout_seconds,
        ) from None
