"""Tests for cache entries."""

import time

import pytest

from knackshield.cache.entry import CacheEntry, now_ms
from knackshield.errors import CacheCorruptionError


class TestCacheEntry:
    """Test freshness and validation."""

    def test_fresh_within_ttl(self):
        """Test entry is fresh while age is below ttl."""
        entry = CacheEntry.create("api:devices:all", [1, 2], ttl_seconds=60)
        assert entry.is_fresh()

    def test_stale_at_exact_ttl(self):
        """Test freshness boundary: age == ttl is already stale."""
        now = now_ms()
        entry = CacheEntry(key="k", data=1, created_at=now - 1000, ttl_ms=1000)
        assert entry.is_fresh(now) is False
        assert entry.is_fresh(now - 1) is True

    def test_becomes_stale(self):
        """Test entry goes stale after its ttl elapses."""
        entry = CacheEntry.create("k", "v", ttl_seconds=0.05)
        time.sleep(0.07)
        assert entry.is_fresh() is False

    @pytest.mark.parametrize("ttl", [0, -1])
    def test_rejects_non_positive_ttl(self, ttl):
        """Test ttl must be positive."""
        with pytest.raises(ValueError):
            CacheEntry(key="k", data=None, created_at=now_ms(), ttl_ms=ttl)

    def test_entries_are_immutable(self):
        """Test entries cannot be partially mutated."""
        entry = CacheEntry.create("k", {"a": 1}, ttl_seconds=1)
        with pytest.raises(AttributeError):
            entry.data = {"a": 2}


class TestDurableLayout:
    """Test the on-disk dictionary layout."""

    def test_to_dict_layout(self):
        """Test serialized fields."""
        entry = CacheEntry(key="api:metrics:v1", data={"total": 3}, created_at=1000.0, ttl_ms=5000.0)
        assert entry.to_dict() == {
            "data": {"total": 3},
            "timestamp": 1000.0,
            "ttl": 5000.0,
            "key": "api:metrics:v1",
        }

    def test_from_dict(self):
        """Test rebuilding an entry."""
        entry = CacheEntry.from_dict({"data": [1], "timestamp": 10, "ttl": 20, "key": "k"})
        assert entry.key == "k"
        assert entry.created_at == 10.0
        assert entry.ttl_ms == 20.0

    @pytest.mark.parametrize(
        "payload",
        [
            [],
            {"data": 1, "timestamp": 1, "ttl": 1},
            {"data": 1, "timestamp": "soon", "ttl": 1, "key": "k"},
            {"data": 1, "timestamp": 1, "ttl": 0, "key": "k"},
            {"data": 1, "timestamp": 1, "ttl": 1, "key": 42},
        ],
    )
    def test_malformed_payload_is_corruption(self, payload):
        """Test malformed payloads raise CacheCorruptionError."""
        with pytest.raises(CacheCorruptionError):
            CacheEntry.from_dict(payload)
