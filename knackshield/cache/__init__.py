"""Cache module for knackshield.

This module provides:
- Cache entries with TTL and their durable file layout
- Deterministic cache key naming
- A file-backed durable store
- The two-tier stale-while-revalidate cache
"""

from .entry import CacheEntry, CacheLookup
from .keys import CacheKeys, build_key, record_key, record_prefix
from .store import DurableStore, sanitize_key
from .two_tier import TwoTierCache

__all__ = [
    "CacheEntry",
    "CacheLookup",
    "CacheKeys",
    "build_key",
    "record_key",
    "record_prefix",
    "DurableStore",
    "sanitize_key",
    "TwoTierCache",
]
