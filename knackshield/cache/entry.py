"""Cache entry model and its on-disk representation."""

import time
from dataclasses import dataclass
from typing import Any, Optional

from ..errors import CacheCorruptionError


def now_ms() -> float:
    """Wall-clock time in milliseconds (entries must survive restarts)."""
    return time.time() * 1000


@dataclass(frozen=True)
class CacheEntry:
    """A cached value. Replaced whole on every refresh, never mutated."""

    key: str
    data: Any
    created_at: float  # epoch milliseconds
    ttl_ms: float

    def __post_init__(self):
        if self.ttl_ms <= 0:
            raise ValueError(f"ttl must be positive, got {self.ttl_ms}ms for {self.key}")

    @classmethod
    def create(cls, key: str, data: Any, ttl_seconds: float) -> "CacheEntry":
        return cls(key=key, data=data, created_at=now_ms(), ttl_ms=ttl_seconds * 1000)

    def age_ms(self, now: Optional[float] = None) -> float:
        return (now_ms() if now is None else now) - self.created_at

    def is_fresh(self, now: Optional[float] = None) -> bool:
        return self.age_ms(now) < self.ttl_ms

    def to_dict(self) -> dict[str, Any]:
        """Serialize in the durable file layout."""
        return {
            "data": self.data,
            "timestamp": self.created_at,
            "ttl": self.ttl_ms,
            "key": self.key,
        }

    @classmethod
    def from_dict(cls, payload: Any) -> "CacheEntry":
        """Rebuild an entry from the durable file layout.

        Raises:
            CacheCorruptionError: If required fields are missing or malformed
        """
        if not isinstance(payload, dict):
            raise CacheCorruptionError("cache payload is not an object")
        try:
            key = payload["key"]
            timestamp = float(payload["timestamp"])
            ttl = float(payload["ttl"])
            data = payload["data"]
        except (KeyError, TypeError, ValueError) as e:
            raise CacheCorruptionError(f"malformed cache payload: {e}") from e

        if not isinstance(key, str):
            raise CacheCorruptionError("cache key is not a string")
        try:
            return cls(key=key, data=data, created_at=timestamp, ttl_ms=ttl)
        except ValueError as e:
            raise CacheCorruptionError(str(e)) from e


@dataclass(frozen=True)
class CacheLookup:
    """Result of a cache read."""

    data: Any
    is_stale: bool
