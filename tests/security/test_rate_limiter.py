"""Tests for rate limiting."""

import asyncio
import time
import pytest

from knackshield.security.rate_limiter import (
    UNKNOWN_CLIENT,
    FixedWindowRateLimiter,
    RateLimitConfig,
    UpstreamThrottle,
    get_client_ip,
)


class TestRateLimitConfig:
    """Test config validation."""

    def test_rejects_zero_requests(self):
        with pytest.raises(ValueError):
            RateLimitConfig(max_requests=0, window_seconds=1)

    def test_rejects_non_positive_window(self):
        with pytest.raises(ValueError):
            RateLimitConfig(max_requests=1, window_seconds=0)


class TestFixedWindowRateLimiter:
    """Test fixed-window admission."""

    def test_boundary(self):
        """Test max requests are allowed and the next is denied."""
        limiter = FixedWindowRateLimiter()
        config = RateLimitConfig(max_requests=5, window_seconds=60)

        assert all(limiter.check("1.2.3.4", config) for _ in range(5))
        assert limiter.check("1.2.3.4", config) is False

    def test_fresh_window_after_expiry(self):
        """Test a new window starts once the old one has expired."""
        limiter = FixedWindowRateLimiter()
        config = RateLimitConfig(max_requests=5, window_seconds=0.05)

        for _ in range(5):
            limiter.check("1.2.3.4", config)
        assert limiter.check("1.2.3.4", config) is False

        time.sleep(0.07)
        assert limiter.check("1.2.3.4", config) is True
        assert limiter.get_status("1.2.3.4", config).remaining == 4

    def test_clients_are_independent(self):
        limiter = FixedWindowRateLimiter()
        config = RateLimitConfig(max_requests=1, window_seconds=60)

        assert limiter.check("a", config) is True
        assert limiter.check("b", config) is True
        assert limiter.check("a", config) is False

    def test_categories_are_independent(self):
        """Test the same client has separate windows per route category."""
        limiter = FixedWindowRateLimiter()
        sync = RateLimitConfig(max_requests=1, window_seconds=60, key_prefix="sync")
        admin = RateLimitConfig(max_requests=1, window_seconds=60, key_prefix="admin")

        assert limiter.check("a", sync) is True
        assert limiter.check("a", admin) is True
        assert limiter.check("a", sync) is False

    def test_get_status_is_read_only(self):
        """Test status lookups never consume a slot."""
        limiter = FixedWindowRateLimiter()
        config = RateLimitConfig(max_requests=2, window_seconds=60)

        for _ in range(10):
            status = limiter.get_status("a", config)
        assert status.allowed is True
        assert status.remaining == 2
        assert status.retry_after == 0

        limiter.check("a", config)
        assert limiter.get_status("a", config).remaining == 1

    def test_status_when_exhausted(self):
        limiter = FixedWindowRateLimiter()
        config = RateLimitConfig(max_requests=1, window_seconds=30)
        limiter.check("a", config)

        status = limiter.get_status("a", config)
        assert status.allowed is False
        assert status.remaining == 0
        assert 1 <= status.retry_after <= 30

    def test_reset(self):
        limiter = FixedWindowRateLimiter()
        config = RateLimitConfig(max_requests=1, window_seconds=60)
        limiter.check("a", config)

        limiter.reset("a", config)
        assert limiter.check("a", config) is True

    def test_cleanup_expired(self):
        limiter = FixedWindowRateLimiter()
        short = RateLimitConfig(max_requests=1, window_seconds=0.01)
        long = RateLimitConfig(max_requests=1, window_seconds=60)
        limiter.check("a", short)
        limiter.check("b", long)
        time.sleep(0.03)

        assert limiter.cleanup_expired() == 1
        assert limiter.stats() == {"active_entries": 1}

    @pytest.mark.asyncio
    async def test_background_cleanup(self):
        limiter = FixedWindowRateLimiter()
        limiter.check("a", RateLimitConfig(max_requests=1, window_seconds=0.01))

        limiter.start_cleanup(interval_seconds=0.02)
        await asyncio.sleep(0.06)
        await limiter.stop_cleanup()

        assert limiter.stats() == {"active_entries": 0}

    @pytest.mark.asyncio
    async def test_stop_cleanup_without_start(self):
        await FixedWindowRateLimiter().stop_cleanup()


class TestGetClientIp:
    """Test client identification."""

    def test_first_forwarded_hop(self):
        assert get_client_ip({"x-forwarded-for": "10.0.0.1, 10.0.0.2"}) == "10.0.0.1"

    def test_real_ip(self):
        assert get_client_ip({"x-real-ip": "10.0.0.3"}) == "10.0.0.3"

    def test_peer_address(self):
        assert get_client_ip({}, client_host="10.0.0.4") == "10.0.0.4"

    def test_unknown(self):
        assert get_client_ip({}) == UNKNOWN_CLIENT == "unknown"


class TestUpstreamThrottle:
    """Test outbound token bucket."""

    def test_burst_then_wait(self):
        throttle = UpstreamThrottle(requests_per_second=10)

        for _ in range(10):
            allowed, _ = throttle.acquire()
            assert allowed is True

        allowed, wait = throttle.acquire()
        assert allowed is False
        assert 0 < wait <= 0.1

    @pytest.mark.asyncio
    async def test_wait_paces_requests(self):
        throttle = UpstreamThrottle(requests_per_second=50, burst_size=1)

        start = time.monotonic()
        for _ in range(3):
            await throttle.wait()
        assert time.monotonic() - start >= 0.03

    def test_rejects_non_positive_rate(self):
        with pytest.raises(ValueError):
            UpstreamThrottle(requests_per_second=0)
