"""Monitoring module for knackshield.

This module provides:
- Counters and gauges for cache, upstream and protection behavior
- Prometheus text rendering
"""

from .metrics import (
    Counter,
    Gauge,
    auth_failures_total,
    cache_requests_total,
    cache_revalidations_total,
    circuit_breaker_trips,
    degraded_features,
    generate_metrics,
    rate_limit_rejections_total,
    reset_metrics,
    upstream_requests_total,
    upstream_retries_total,
)

__all__ = [
    "Counter",
    "Gauge",
    "cache_requests_total",
    "cache_revalidations_total",
    "upstream_requests_total",
    "upstream_retries_total",
    "circuit_breaker_trips",
    "rate_limit_rejections_total",
    "auth_failures_total",
    "degraded_features",
    "generate_metrics",
    "reset_metrics",
]
