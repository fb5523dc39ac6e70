"""Tests for resilience module."""

import pytest


def test_resilience_imports():
    """Test that resilience module can be imported."""
    from knackshield.resilience import (
        retry_with_backoff,
        run_with_retry,
        RetryConfig,
        CircuitBreaker,
        CircuitState,
        with_timeout,
        TimeoutConfig,
        DegradationRegistry,
        FallbackData,
    )

    assert retry_with_backoff is not None
    assert run_with_retry is not None
    assert CircuitBreaker is not None
    assert with_timeout is not None
    assert DegradationRegistry is not None
