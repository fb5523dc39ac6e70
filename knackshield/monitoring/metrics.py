"""Prometheus-style metrics for the resilience layer.

Rendered as Prometheus text on the application's /metrics route:
- Cache metrics: cache_requests_total, cache_revalidations_total
- Upstream metrics: upstream_requests_total, upstream_retries_total
- Protection metrics: circuit_breaker_trips, rate_limit_rejections_total,
  auth_failures_total, degraded_features
"""

import logging
import threading
from typing import Optional

logger = logging.getLogger(__name__)


class _Metric:
    """Shared storage for labelled metric values."""

    metric_type = "untyped"

    def __init__(self, name: str, description: str, labels: Optional[list[str]] = None):
        self.name = name
        self.description = description
        self._label_names = labels or []
        self._values: dict[tuple, float] = {}
        self._lock = threading.Lock()

    def _key(self, labels: dict[str, str]) -> tuple:
        return tuple(str(labels.get(l, "")) for l in self._label_names)

    def get(self, **labels) -> float:
        """Get the current value for a label set (0 if never touched)."""
        with self._lock:
            return self._values.get(self._key(labels), 0.0)

    def get_all(self) -> dict[tuple, float]:
        """Get all values."""
        with self._lock:
            return self._values.copy()

    def clear(self) -> None:
        """Drop all recorded values."""
        with self._lock:
            self._values.clear()

    def to_prometheus(self) -> str:
        """Format as Prometheus text."""
        lines = [
            f"# HELP {self.name} {self.description}",
            f"# TYPE {self.name} {self.metric_type}",
        ]
        with self._lock:
            for label_values, value in self._values.items():
                if label_values:
                    labels_str = ",".join(
                        f'{l}="{v}"' for l, v in zip(self._label_names, label_values)
                    )
                    lines.append(f"{self.name}{{{labels_str}}} {value}")
                else:
                    lines.append(f"{self.name} {value}")
        return "\n".join(lines)


class Counter(_Metric):
    """A counter metric that can only increase."""

    metric_type = "counter"

    def inc(self, value: float = 1.0, **labels) -> None:
        """Increment the counter."""
        if value < 0:
            raise ValueError("Counters can only increase")
        key = self._key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + value


class Gauge(_Metric):
    """A gauge metric that can increase or decrease."""

    metric_type = "gauge"

    def set(self, value: float, **labels) -> None:
        """Set the gauge value."""
        with self._lock:
            self._values[self._key(labels)] = value

    def inc(self, value: float = 1.0, **labels) -> None:
        """Increment the gauge."""
        key = self._key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + value

    def dec(self, value: float = 1.0, **labels) -> None:
        """Decrement the gauge."""
        self.inc(-value, **labels)


# =============================================================================
# Cache Metrics
# =============================================================================

cache_requests_total = Counter(
    "knackshield_cache_requests_total",
    "Cache lookups by result",
    labels=["result"],  # hit, stale, miss
)

cache_revalidations_total = Counter(
    "knackshield_cache_revalidations_total",
    "Background revalidations by outcome",
    labels=["outcome"],  # success, failure
)

# =============================================================================
# Upstream Metrics
# =============================================================================

upstream_requests_total = Counter(
    "knackshield_upstream_requests_total",
    "Requests sent to the upstream API",
    labels=["method", "outcome"],
)

upstream_retries_total = Counter(
    "knackshield_upstream_retries_total",
    "Retried upstream operations",
)

# =============================================================================
# Protection Metrics
# =============================================================================

circuit_breaker_trips = Counter(
    "knackshield_circuit_breaker_trips_total",
    "Times a circuit breaker opened",
    labels=["name"],
)

rate_limit_rejections_total = Counter(
    "knackshield_rate_limit_rejections_total",
    "Inbound requests rejected by the rate limiter",
    labels=["category"],
)

auth_failures_total = Counter(
    "knackshield_auth_failures_total",
    "Inbound requests rejected for bad or missing credentials",
)

degraded_features = Gauge(
    "knackshield_degraded_features",
    "1 while a feature is degraded, 0 otherwise",
    labels=["feature"],
)

ALL_METRICS = [
    cache_requests_total,
    cache_revalidations_total,
    upstream_requests_total,
    upstream_retries_total,
    circuit_breaker_trips,
    rate_limit_rejections_total,
    auth_failures_total,
    degraded_features,
]


def generate_metrics() -> str:
    """Generate Prometheus text for all metrics."""
    return "\n\n".join(metric.to_prometheus() for metric in ALL_METRICS) + "\n"


def reset_metrics() -> None:
    """Clear all metric values."""
    for metric in ALL_METRICS:
        metric.clear()
