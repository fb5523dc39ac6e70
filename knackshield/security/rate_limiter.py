"""Rate limiting for inbound requests and outbound upstream calls.

Provides:
- Fixed-window per-client limiter for the request gate
- Read-only status lookups that never consume a request slot
- Periodic background cleanup of expired windows
- Token bucket throttle keeping our own upstream traffic under its ceiling
"""

import asyncio
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

UNKNOWN_CLIENT = "unknown"


@dataclass(frozen=True)
class RateLimitConfig:
    """Configuration for a rate-limited route category."""

    max_requests: int
    window_seconds: float
    key_prefix: Optional[str] = None  # Route category

    def __post_init__(self):
        if self.max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be positive")


@dataclass
class RateLimitWindow:
    """Request count for one client in the current window."""

    count: int
    reset_at: float  # time.monotonic() value


@dataclass
class RateLimitStatus:
    """Read-only view of a client's quota."""

    allowed: bool
    remaining: int
    retry_after: int  # Seconds until the window resets
    reset_at: float


def get_client_ip(headers: Mapping[str, str], client_host: Optional[str] = None) -> str:
    """Derive the client identifier from request headers.

    Takes the first X-Forwarded-For hop, then X-Real-IP, then the peer address.
    Unattributable clients share the "unknown" bucket rather than going unthrottled.
    """
    forwarded_for = headers.get("x-forwarded-for") or headers.get("X-Forwarded-For")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first

    real_ip = headers.get("x-real-ip") or headers.get("X-Real-IP")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    if client_host:
        return client_host

    return UNKNOWN_CLIENT


class FixedWindowRateLimiter:
    """Fixed-window rate limiter keyed by client and route category.

    A request is allowed while the window's count is below ``max_requests``.
    Bursts of up to twice the limit are possible across a window boundary.

    Usage:
        limiter = FixedWindowRateLimiter()
        config = RateLimitConfig(max_requests=30, window_seconds=3600, key_prefix="device-write")
        if not limiter.check(client_ip, config):
            status = limiter.get_status(client_ip, config)
            ...  # 429 with Retry-After: status.retry_after
    """

    def __init__(self):
        self._windows: dict[str, RateLimitWindow] = {}
        self._lock = threading.Lock()
        self._cleanup_task: Optional[asyncio.Task] = None

    @staticmethod
    def _key(client_id: str, config: RateLimitConfig) -> str:
        prefix = f"{config.key_prefix}:" if config.key_prefix else ""
        return f"ratelimit:{prefix}{client_id}"

    def check(self, client_id: str, config: RateLimitConfig) -> bool:
        """Check and consume one request slot.

        Returns:
            True if the request is allowed
        """
        key = self._key(client_id, config)
        now = time.monotonic()

        with self._lock:
            window = self._windows.get(key)

            if window is None or now >= window.reset_at:
                self._windows[key] = RateLimitWindow(count=1, reset_at=now + config.window_seconds)
                return True

            if window.count < config.max_requests:
                window.count += 1
                return True

            return False

    def get_status(self, client_id: str, config: RateLimitConfig) -> RateLimitStatus:
        """Get quota status without consuming a slot."""
        key = self._key(client_id, config)
        now = time.monotonic()

        with self._lock:
            window = self._windows.get(key)
            if window is None or now >= window.reset_at:
                return RateLimitStatus(
                    allowed=True,
                    remaining=config.max_requests,
                    retry_after=0,
                    reset_at=now + config.window_seconds,
                )
            count, reset_at = window.count, window.reset_at

        remaining = max(0, config.max_requests - count)
        return RateLimitStatus(
            allowed=remaining > 0,
            remaining=remaining,
            retry_after=max(1, math.ceil(reset_at - now)),
            reset_at=reset_at,
        )

    def reset(self, client_id: str, config: RateLimitConfig) -> None:
        """Forget a client's window."""
        with self._lock:
            self._windows.pop(self._key(client_id, config), None)

    def cleanup_expired(self) -> int:
        """Purge windows whose reset time has passed.

        Returns:
            Number of windows removed
        """
        now = time.monotonic()
        with self._lock:
            expired = [key for key, window in self._windows.items() if now >= window.reset_at]
            for key in expired:
                del self._windows[key]

        if expired:
            logger.info(f"[RATE_LIMITER] Cleaned up {len(expired)} expired entries")
        return len(expired)

    def stats(self) -> dict[str, int]:
        """Get limiter statistics."""
        with self._lock:
            return {"active_entries": len(self._windows)}

    def start_cleanup(self, interval_seconds: float = 300.0) -> asyncio.Task:
        """Start the periodic cleanup sweep on the running event loop."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.get_running_loop().create_task(
                self._cleanup_loop(interval_seconds)
            )
        return self._cleanup_task

    async def stop_cleanup(self) -> None:
        """Stop the periodic cleanup sweep."""
        task, self._cleanup_task = self._cleanup_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _cleanup_loop(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                self.cleanup_expired()
            except Exception as e:
                logger.error(f"Rate limiter cleanup failed: {e}")


class UpstreamThrottle:
    """Token bucket pacing our own calls to the upstream API.

    Usage:
        throttle = UpstreamThrottle(requests_per_second=10)
        await throttle.wait()
        ...  # send the request
    """

    def __init__(self, requests_per_second: float = 10.0, burst_size: Optional[int] = None):
        """Initialize throttle.

        Args:
            requests_per_second: Sustained request rate
            burst_size: Max tokens (defaults to requests_per_second)
        """
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")
        self.requests_per_second = requests_per_second
        self.burst_size = burst_size or max(1, int(requests_per_second))
        self._tokens = float(self.burst_size)
        self._last_update = time.monotonic()
        self._lock = threading.Lock()

    def _refill_tokens(self) -> None:
        now = time.monotonic()
        elapsed = now - self._last_update
        self._last_update = now
        self._tokens = min(self.burst_size, self._tokens + elapsed * self.requests_per_second)

    def acquire(self, tokens: int = 1) -> tuple[bool, float]:
        """Try to take tokens without waiting.

        Returns:
            Tuple of (allowed, retry_after_seconds)
        """
        with self._lock:
            self._refill_tokens()

            if self._tokens >= tokens:
                self._tokens -= tokens
                return True, 0.0

            tokens_needed = tokens - self._tokens
            return False, tokens_needed / self.requests_per_second

    async def wait(self, tokens: int = 1) -> None:
        """Wait until tokens are available, then take them."""
        while True:
            allowed, wait_time = self.acquire(tokens)
            if allowed:
                return
            logger.debug(f"Upstream throttle engaged, waiting {wait_time:.3f}s")
            await asyncio.sleep(wait_time)

    @property
    def available_tokens(self) -> float:
        """Get number of available tokens."""
        with self._lock:
            self._refill_tokens()
            return self._tokens
