"""Tests for security module."""

import pytest


def test_security_imports():
    """Test that security module can be imported."""
    from knackshield.security import (
        FixedWindowRateLimiter,
        RateLimitConfig,
        UpstreamThrottle,
        ApiKeyRegistry,
        ROUTE_PROTECTION,
        SecretManager,
        validate_api_key,
    )

    assert FixedWindowRateLimiter is not None
    assert UpstreamThrottle is not None
    assert ApiKeyRegistry is not None
    assert len(ROUTE_PROTECTION) > 0
    assert SecretManager is not None
    assert validate_api_key is not None
