"""Two-tier cache: in-memory index backed by a durable file store.

Reads consult memory first, then disk. Expired entries are still served,
flagged stale, and ``get_or_fetch`` refreshes them in the background with
at most one refresh in flight per key. Disk writes happen on a worker thread
so the in-memory state never waits on I/O.
"""

import asyncio
import json
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Union

from ..monitoring.metrics import cache_requests_total, cache_revalidations_total
from ..resilience.degradation import DegradationRegistry
from ..resilience.retry import RetryConfig, run_with_retry
from .entry import CacheEntry, CacheLookup, now_ms
from .store import DurableStore

logger = logging.getLogger(__name__)

FetchFn = Callable[[], Awaitable[Any]]

# (invalidate_all epoch, per-key version); a write only lands while its token is current
_Token = tuple[int, Optional[int]]


def _matches_prefix(key: str, prefix: str) -> bool:
    return key == prefix or key.startswith(prefix + ":")


class TwoTierCache:
    """Memory + durable cache with stale-while-revalidate.

    Usage:
        cache = TwoTierCache(cache_dir=".cache/knack")
        devices = await cache.get_or_fetch(
            CacheKeys.devices, 300, lambda: client.get_all_records("object_7")
        )
    """

    def __init__(
        self,
        store: Optional[DurableStore] = None,
        *,
        cache_dir: Union[str, Path, None] = None,
        retry_config: Optional[RetryConfig] = None,
        degradation: Optional[DegradationRegistry] = None,
        default_ttl: float = 1800.0,
    ):
        """Initialize cache.

        Args:
            store: Durable store (built from ``cache_dir`` when omitted)
            cache_dir: Directory for the durable tier
            retry_config: Retry policy for fetches
            degradation: Registry notified when background refreshes fail
            default_ttl: TTL in seconds when callers pass none
        """
        if store is None:
            if cache_dir is None:
                raise ValueError("TwoTierCache needs a store or a cache_dir")
            store = DurableStore(cache_dir)
        self.store = store
        self.retry_config = retry_config or RetryConfig()
        self.degradation = degradation
        self.default_ttl = default_ttl

        self._memory: dict[str, CacheEntry] = {}
        self._versions: dict[str, int] = {}
        self._epoch = 0
        self._counter = 0
        self._lock = threading.Lock()

        self._revalidations: dict[str, asyncio.Task] = {}
        self._misses: dict[str, asyncio.Task] = {}
        self._writes: set[Future] = set()
        self._writer = ThreadPoolExecutor(max_workers=2, thread_name_prefix="knackshield-cache")

    # ------------------------------------------------------------------
    # Versioning
    # ------------------------------------------------------------------

    def _bump(self, key: str) -> int:
        """Give ``key`` a new version. Caller holds the lock."""
        self._counter += 1
        self._versions[key] = self._counter
        return self._counter

    def _token(self, key: str) -> _Token:
        with self._lock:
            return (self._epoch, self._versions.get(key))

    def _is_current(self, key: str, token: _Token) -> bool:
        with self._lock:
            return (self._epoch, self._versions.get(key)) == token

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    def get(self, key: str, allow_stale: bool = True) -> Optional[CacheLookup]:
        """Look up a key in memory, then on disk.

        Returns:
            ``CacheLookup`` (possibly stale) or None on a miss
        """
        with self._lock:
            entry = self._memory.get(key)
            token = (self._epoch, self._versions.get(key))

        if entry is None:
            entry = self.store.read(key)
            if entry is not None:
                with self._lock:
                    if (self._epoch, self._versions.get(key)) != token:
                        # Invalidated while we were reading the file
                        entry = None
                    else:
                        entry = self._memory.setdefault(key, entry)

        if entry is None:
            cache_requests_total.inc(result="miss")
            logger.debug(f"Cache MISS: {key}")
            return None

        is_stale = not entry.is_fresh()
        if is_stale and not allow_stale:
            cache_requests_total.inc(result="miss")
            return None

        cache_requests_total.inc(result="stale" if is_stale else "hit")
        logger.debug(f"Cache {'STALE' if is_stale else 'HIT'}: {key}")
        return CacheLookup(data=entry.data, is_stale=is_stale)

    def set(self, key: str, data: Any, ttl_seconds: Optional[float] = None) -> None:
        """Store a value in memory now and on disk in the background."""
        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds
        entry = CacheEntry.create(key, data, ttl)
        with self._lock:
            self._memory[key] = entry
            self._bump(key)
            token = (self._epoch, self._versions[key])
        self._schedule_write(entry, token)

    def _set_if_current(self, key: str, data: Any, ttl_seconds: float, token: _Token) -> bool:
        entry = CacheEntry.create(key, data, ttl_seconds)
        with self._lock:
            if (self._epoch, self._versions.get(key)) != token:
                return False
            self._memory[key] = entry
            self._bump(key)
            new_token = (self._epoch, self._versions[key])
        self._schedule_write(entry, new_token)
        return True

    def invalidate(self, key: str) -> None:
        """Remove a key from both tiers immediately."""
        with self._lock:
            self._memory.pop(key, None)
            self._bump(key)
        self.store.delete(key)
        logger.info(f"Cache INVALIDATE: {key}")

    def invalidate_many(self, keys: list[str]) -> None:
        for key in keys:
            self.invalidate(key)

    def invalidate_prefix(self, prefix: str) -> int:
        """Remove every key equal to ``prefix`` or nested under ``prefix:``."""
        with self._lock:
            keys = {k for k in self._memory if _matches_prefix(k, prefix)}
        keys.update(k for k in self.store.keys() if _matches_prefix(k, prefix))
        for key in keys:
            self.invalidate(key)
        return len(keys)

    def invalidate_all(self) -> None:
        """Remove every key from both tiers immediately."""
        with self._lock:
            self._memory.clear()
            self._versions.clear()
            self._epoch += 1
        removed = self.store.clear()
        logger.info(f"Cache CLEAR ALL ({removed} files removed)")

    # ------------------------------------------------------------------
    # Stale-while-revalidate
    # ------------------------------------------------------------------

    async def get_or_fetch(
        self,
        key: str,
        ttl_seconds: Optional[float],
        fetch_fn: FetchFn,
        *,
        feature: Optional[str] = None,
    ) -> Any:
        """Serve cached data, refreshing stale entries in the background.

        Args:
            key: Cache key
            ttl_seconds: TTL for freshly fetched data
            fetch_fn: Zero-argument coroutine function performing the upstream fetch
            feature: Degradation feature marked when a background refresh fails

        Returns:
            Cached (fresh or stale) or freshly fetched data

        Raises:
            Exception: Only on a hard miss whose fetch fails after retries
        """
        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl}s for {key}")
        lookup = self.get(key)
        if lookup is not None:
            if lookup.is_stale:
                self._schedule_revalidation(key, ttl, fetch_fn, feature)
            return lookup.data

        with self._lock:
            task = self._misses.get(key)
        if task is None:
            logger.info(f"Cache MISS: {key} - fetching from upstream")
            task = asyncio.get_running_loop().create_task(
                self._fetch_and_store(key, ttl, fetch_fn, self._token(key))
            )
            with self._lock:
                self._misses[key] = task
            task.add_done_callback(lambda t: self._forget(self._misses, key, t))
        return await asyncio.shield(task)

    async def _fetch_and_store(self, key: str, ttl: float, fetch_fn: FetchFn, token: _Token) -> Any:
        data = await run_with_retry(fetch_fn, self.retry_config, name=f"fetch {key}")
        if not self._set_if_current(key, data, ttl, token):
            logger.info(f"Not caching {key}: invalidated during fetch")
        return data

    def _schedule_revalidation(
        self,
        key: str,
        ttl: float,
        fetch_fn: FetchFn,
        feature: Optional[str],
    ) -> asyncio.Task:
        with self._lock:
            task = self._revalidations.get(key)
            if task is not None:
                return task
            token = (self._epoch, self._versions.get(key))
            task = asyncio.get_running_loop().create_task(
                self._revalidate(key, ttl, fetch_fn, feature, token)
            )
            self._revalidations[key] = task
        logger.info(f"Cache STALE: {key} - serving stale data and revalidating in background")
        task.add_done_callback(lambda t: self._forget(self._revalidations, key, t))
        return task

    async def _revalidate(
        self,
        key: str,
        ttl: float,
        fetch_fn: FetchFn,
        feature: Optional[str],
        token: _Token,
    ) -> None:
        try:
            data = await run_with_retry(fetch_fn, self.retry_config, name=f"revalidate {key}")
        except Exception as e:
            logger.error(f"Background revalidation failed for {key}: {e}")
            cache_revalidations_total.inc(outcome="failure")
            if self.degradation is not None and feature:
                self.degradation.mark_degraded(feature)
            return

        cache_revalidations_total.inc(outcome="success")
        if not self._set_if_current(key, data, ttl, token):
            logger.info(f"Dropping revalidated data for {key}: entry changed meanwhile")
        if self.degradation is not None and feature and self.degradation.is_degraded(feature):
            self.degradation.mark_recovered(feature)

    def _forget(self, registry: dict[str, asyncio.Task], key: str, task: asyncio.Task) -> None:
        with self._lock:
            if registry.get(key) is task:
                del registry[key]
        if not task.cancelled() and task.exception() is not None:
            # Retrieved here so an unawaited failure is not reported as lost
            logger.debug(f"Fetch for {key} failed: {task.exception()}")

    def revalidation_in_flight(self, key: str) -> bool:
        with self._lock:
            return key in self._revalidations

    # ------------------------------------------------------------------
    # Durable writes
    # ------------------------------------------------------------------

    def _schedule_write(self, entry: CacheEntry, token: _Token) -> None:
        future = self._writer.submit(self._write_entry, entry, token)
        with self._lock:
            self._writes.add(future)
        future.add_done_callback(self._forget_write)

    def _forget_write(self, future: Future) -> None:
        with self._lock:
            self._writes.discard(future)

    def _write_entry(self, entry: CacheEntry, token: _Token) -> None:
        try:
            self.store.write(entry, is_current=lambda: self._is_current(entry.key, token))
        except Exception as e:
            logger.error(f"Failed to write cache to disk for key {entry.key}: {e}")

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def load_from_disk(self) -> int:
        """Populate memory from the durable tier, stale entries included."""
        loaded = 0
        for entry in self.store.iter_entries():
            with self._lock:
                if entry.key not in self._memory:
                    self._memory[entry.key] = entry
                    loaded += 1
        logger.info(f"Loaded {loaded} cached entries from disk")
        return loaded

    def prune_expired(self, grace_seconds: float = 0.0) -> int:
        """Drop entries that expired more than ``grace_seconds`` ago.

        Returns:
            Number of keys removed
        """
        now = now_ms()
        grace_ms = grace_seconds * 1000
        with self._lock:
            expired = {
                k for k, e in self._memory.items() if e.age_ms(now) > e.ttl_ms + grace_ms
            }
        expired.update(
            e.key for e in self.store.iter_entries() if e.age_ms(now) > e.ttl_ms + grace_ms
        )
        for key in expired:
            self.invalidate(key)
        return len(expired)

    def stats(self) -> dict[str, Any]:
        """Get cache statistics."""
        now = now_ms()
        with self._lock:
            entries = list(self._memory.values())
            revalidating = len(self._revalidations)
            pending_writes = len(self._writes)

        return {
            "total_entries": len(entries),
            "stale_entries": sum(1 for e in entries if not e.is_fresh(now)),
            "oldest_entry": min((e.created_at for e in entries), default=0),
            "newest_entry": max((e.created_at for e in entries), default=0),
            "total_size": sum(len(json.dumps(e.data, default=str)) for e in entries),
            "revalidations_in_flight": revalidating,
            "pending_writes": pending_writes,
        }

    def write_metadata(self) -> None:
        """Write the advisory metadata sidecar next to the entry files."""
        stats = self.stats()
        self.store.write_metadata(
            {
                "totalEntries": stats["total_entries"],
                "oldestEntry": stats["oldest_entry"],
                "newestEntry": stats["newest_entry"],
                "totalSize": stats["total_size"],
            }
        )

    async def flush(self) -> None:
        """Wait for in-flight fetches, refreshes and disk writes to finish."""
        while True:
            with self._lock:
                tasks = list(self._revalidations.values()) + list(self._misses.values())
                writes = list(self._writes)
            if not tasks and not writes:
                return
            await asyncio.gather(
                *tasks,
                *(asyncio.wrap_future(f) for f in writes),
                return_exceptions=True,
            )

    async def close(self) -> None:
        """Finish background work, write metadata and stop the writer thread."""
        await self.flush()
        try:
            self.write_metadata()
        except OSError as e:
            logger.error(f"Failed to write cache metadata: {e}")
        self._writer.shutdown(wait=True)
