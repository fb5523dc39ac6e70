"""Pytest configuration and fixtures for knackshield tests."""

import pytest

from knackshield.cache import DurableStore, TwoTierCache
from knackshield.config import Settings
from knackshield.monitoring.metrics import reset_metrics
from knackshield.resilience import DegradationRegistry, RetryConfig


@pytest.fixture(autouse=True)
def use_test_environment(monkeypatch):
    """Ensure tests never pick up real credentials."""
    for name in (
        "KNACK_APP_ID",
        "KNACK_API_KEY",
        "API_KEY_SYNC",
        "API_KEY_ADMIN",
        "API_KEY_CRON",
        "VAULT_ADDR",
        "VAULT_TOKEN",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def clean_metrics():
    """Start every test with empty metrics."""
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture
def test_settings(tmp_path):
    """Settings for tests, isolated from .env files."""
    return Settings(
        _env_file=None,
        knack_app_id="app-123",
        knack_api_key="knack-key-456",
        knack_base_url="https://knack.test/v1",
        cache_dir=str(tmp_path / "cache"),
        retry_base_delay=0.01,
        retry_max_delay=0.05,
        upstream_requests_per_second=1000,
        api_key_sync="sync-key-0123456789",
        api_key_admin="admin-key-0123456789",
    )


@pytest.fixture
def fast_retry():
    """Retry config with millisecond delays."""
    return RetryConfig(max_retries=2, base_delay=0.01, max_delay=0.02, jitter=0)


@pytest.fixture
def cache_dir(tmp_path):
    return tmp_path / "cache"


@pytest.fixture
def degradation():
    return DegradationRegistry()


@pytest.fixture
def cache(cache_dir, fast_retry, degradation):
    """Fresh two-tier cache in a temporary directory."""
    c = TwoTierCache(
        DurableStore(cache_dir),
        retry_config=fast_retry,
        degradation=degradation,
        default_ttl=60.0,
    )
    yield c
    c._writer.shutdown(wait=True)
