"""Record service: the resilience layer assembled around the Knack client.

Reads are served through the two-tier cache, with upstream fetches passing
the circuit breaker inside the retry executor. Writes go straight upstream
through the same breaker and executor, then invalidate every key the caller
names plus all cached queries of the written object, then land in the audit
log.
"""

import logging
from typing import Any, Awaitable, Callable, Optional

from .audit import AuditLog
from .cache.keys import record_key, record_prefix
from .cache.two_tier import TwoTierCache
from .config import Settings, settings as default_settings
from .resilience.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState
from .resilience.degradation import DegradationRegistry
from .resilience.retry import RetryConfig, run_with_retry
from .upstream.client import KnackClient

logger = logging.getLogger(__name__)


class RecordService:
    """Cached, fault-tolerant access to Knack records.

    Usage:
        service = RecordService.from_settings(settings)
        page = await service.read("object_7", {"page": 1, "rows_per_page": 50})
        await service.update(
            "object_7", "abc123", {"field_1": "x"},
            invalidate=[CacheKeys.devices], actor="admin",
        )
    """

    def __init__(
        self,
        client: KnackClient,
        cache: TwoTierCache,
        breaker: Optional[CircuitBreaker] = None,
        retry_config: Optional[RetryConfig] = None,
        degradation: Optional[DegradationRegistry] = None,
        audit: Optional[AuditLog] = None,
        default_ttl: Optional[float] = None,
    ):
        self.client = client
        self.cache = cache
        self.breaker = breaker or CircuitBreaker("knack")
        self.retry_config = retry_config or cache.retry_config
        self.degradation = degradation or cache.degradation or DegradationRegistry()
        self.audit = audit or AuditLog()
        self.default_ttl = default_ttl or cache.default_ttl

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "RecordService":
        """Build a service with every component configured from settings."""
        config = config or default_settings
        retry_config = RetryConfig.from_settings(config)
        degradation = DegradationRegistry()
        cache = TwoTierCache(
            cache_dir=config.cache_dir,
            retry_config=retry_config,
            degradation=degradation,
            default_ttl=config.cache_default_ttl_seconds,
        )
        return cls(
            client=KnackClient(config=config),
            cache=cache,
            breaker=CircuitBreaker("knack", CircuitBreakerConfig.from_settings(config)),
            retry_config=retry_config,
            degradation=degradation,
            audit=AuditLog(capacity=config.audit_log_capacity),
            default_ttl=config.cache_default_ttl_seconds,
        )

    def _guarded(self, operation: Callable[[], Awaitable[Any]]) -> Callable[[], Awaitable[Any]]:
        async def call() -> Any:
            return await self.breaker.execute(operation)

        return call

    async def _cached(
        self,
        key: str,
        ttl: Optional[float],
        fetch: Callable[[], Awaitable[Any]],
        feature: Optional[str],
    ) -> Any:
        async def lookup() -> Any:
            return await self.cache.get_or_fetch(
                key,
                self.default_ttl if ttl is None else ttl,
                self._guarded(fetch),
                feature=feature,
            )

        if feature is None:
            return await lookup()
        return await self.degradation.with_fallback(feature, lookup)

    async def read(
        self,
        object_key: str,
        options: Optional[dict[str, Any]] = None,
        ttl: Optional[float] = None,
        key: Optional[str] = None,
        feature: Optional[str] = None,
    ) -> dict[str, Any]:
        """Read one page of records.

        Args:
            object_key: Knack object key
            options: Page, sort and filter options
            ttl: Cache TTL in seconds
            key: Cache key (derived from object and options when omitted)
            feature: Degradation feature whose fallback covers a failed hard miss
        """
        cache_key = key or record_key(object_key, {**(options or {}), "scope": "page"})
        return await self._cached(
            cache_key, ttl, lambda: self.client.get_records(object_key, options), feature
        )

    async def read_all(
        self,
        object_key: str,
        options: Optional[dict[str, Any]] = None,
        ttl: Optional[float] = None,
        key: Optional[str] = None,
        feature: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        """Read every record of an object, across all pages."""
        cache_key = key or record_key(object_key, {**(options or {}), "scope": "all"})
        return await self._cached(
            cache_key, ttl, lambda: self.client.get_all_records(object_key, options), feature
        )

    async def _write(
        self,
        action: str,
        object_key: str,
        operation: Callable[[], Awaitable[Any]],
        *,
        record_id: Optional[str] = None,
        idempotent: bool,
        invalidate: Optional[list[str]],
        actor: str,
    ) -> Any:
        result = await run_with_retry(
            self._guarded(operation),
            self.retry_config,
            idempotent=idempotent,
            name=f"{action} {object_key}",
        )

        self.cache.invalidate_many(list(invalidate or []))
        removed = self.cache.invalidate_prefix(record_prefix(object_key))
        logger.info(f"{action} {object_key}: invalidated {len(invalidate or [])} named keys, {removed} queries")

        self.audit.log(
            actor,
            action,
            object_key,
            resource_id=record_id or (result.get("id") if isinstance(result, dict) else None),
            detail={"invalidated": list(invalidate or [])},
        )
        return result

    async def create(
        self,
        object_key: str,
        data: dict[str, Any],
        *,
        invalidate: Optional[list[str]] = None,
        actor: str = "system",
    ) -> dict[str, Any]:
        """Create a record. Not retried: a repeated POST could duplicate it."""
        return await self._write(
            "CREATE",
            object_key,
            lambda: self.client.create_record(object_key, data),
            idempotent=False,
            invalidate=invalidate,
            actor=actor,
        )

    async def update(
        self,
        object_key: str,
        record_id: str,
        data: dict[str, Any],
        *,
        invalidate: Optional[list[str]] = None,
        actor: str = "system",
    ) -> dict[str, Any]:
        """Update a record."""
        return await self._write(
            "UPDATE",
            object_key,
            lambda: self.client.update_record(object_key, record_id, data),
            record_id=record_id,
            idempotent=True,
            invalidate=invalidate,
            actor=actor,
        )

    async def delete(
        self,
        object_key: str,
        record_id: str,
        *,
        invalidate: Optional[list[str]] = None,
        actor: str = "system",
    ) -> dict[str, Any]:
        """Delete a record."""
        return await self._write(
            "DELETE",
            object_key,
            lambda: self.client.delete_record(object_key, record_id),
            record_id=record_id,
            idempotent=True,
            invalidate=invalidate,
            actor=actor,
        )

    def health(self) -> dict[str, Any]:
        """Summarize upstream, breaker, cache and degradation state."""
        breaker = self.breaker.get_status()
        degraded = self.degradation.degraded_features()
        configured = self.client.is_configured()

        if not configured or breaker["state"] == CircuitState.OPEN.value:
            status = "unhealthy"
        elif degraded or breaker["state"] == CircuitState.HALF_OPEN.value:
            status = "degraded"
        else:
            status = "healthy"

        return {
            "status": status,
            "upstream_configured": configured,
            "circuit_breaker": breaker,
            "cache": self.cache.stats(),
            "degraded_features": degraded,
        }

    async def close(self) -> None:
        await self.cache.close()
        await self.client.close()
