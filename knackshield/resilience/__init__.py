"""Resilience layer for knackshield.

This module provides:
- Retry with exponential backoff
- Circuit breakers
- Timeout wrappers
- Graceful degradation with fallbacks
"""

from .circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState
from .degradation import DegradationRegistry, FallbackData
from .retry import (
    RetryConfig,
    calculate_backoff,
    is_retryable_error,
    retry_with_backoff,
    run_with_retry,
)
from .timeout import TimeoutConfig, with_async_timeout, with_timeout

__all__ = [
    "run_with_retry",
    "retry_with_backoff",
    "RetryConfig",
    "calculate_backoff",
    "is_retryable_error",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    "with_timeout",
    "with_async_timeout",
    "TimeoutConfig",
    "DegradationRegistry",
    "FallbackData",
]
