"""Tests for cache module."""

import pytest


def test_cache_imports():
    """Test that cache module can be imported."""
    from knackshield.cache import (
        CacheEntry,
        CacheKeys,
        DurableStore,
        TwoTierCache,
        build_key,
        sanitize_key,
    )

    assert CacheEntry is not None
    assert CacheKeys is not None
    assert DurableStore is not None
    assert TwoTierCache is not None
    assert build_key is not None
    assert sanitize_key is not None
