"""Tests for metrics."""

import pytest

from knackshield.monitoring.metrics import (
    Counter,
    Gauge,
    cache_requests_total,
    generate_metrics,
    reset_metrics,
)


class TestCounter:
    """Test counter metric."""

    def test_inc(self):
        counter = Counter("test_total", "Test counter", labels=["result"])
        counter.inc(result="hit")
        counter.inc(2, result="hit")

        assert counter.get(result="hit") == 3
        assert counter.get(result="miss") == 0

    def test_cannot_decrease(self):
        with pytest.raises(ValueError):
            Counter("test_total", "Test counter").inc(-1)

    def test_prometheus_format(self):
        counter = Counter("test_total", "Test counter", labels=["result"])
        counter.inc(result="hit")

        text = counter.to_prometheus()
        assert "# HELP test_total Test counter" in text
        assert "# TYPE test_total counter" in text
        assert 'test_total{result="hit"} 1.0' in text


class TestGauge:
    """Test gauge metric."""

    def test_set_inc_dec(self):
        gauge = Gauge("test_gauge", "Test gauge")
        gauge.set(5)
        gauge.inc()
        gauge.dec(3)

        assert gauge.get() == 3


class TestRegistry:
    """Test module-level metrics."""

    def test_generate_metrics(self):
        cache_requests_total.inc(result="stale")
        text = generate_metrics()

        assert 'knackshield_cache_requests_total{result="stale"} 1.0' in text
        assert "knackshield_circuit_breaker_trips_total" in text

    def test_reset(self):
        cache_requests_total.inc(result="hit")
        reset_metrics()
        assert cache_requests_total.get(result="hit") == 0
