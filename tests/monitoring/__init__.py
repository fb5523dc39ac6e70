"""Tests for monitoring module."""

import pytest


def test_monitoring_imports():
    """Test that monitoring module can be imported."""
    from knackshield.monitoring import Counter, Gauge, generate_metrics, reset_metrics

    assert Counter is not None
    assert Gauge is not None
    assert generate_metrics is not None
    assert reset_metrics is not None
