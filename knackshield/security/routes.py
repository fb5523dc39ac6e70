"""Route protection table for the request gate.

Each rule names a path pattern (``[param]`` segments match one path segment),
an optional HTTP method, whether credentials are required and which key
type they must match, and the fixed-window rate limit for the route category.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Any, Optional

from .rate_limiter import RateLimitConfig
from .vault import SecretManager

logger = logging.getLogger(__name__)

HOUR = 60 * 60


class ApiKeyType(str, Enum):
    """API key roles."""

    SYNC = "SYNC"
    ADMIN = "ADMIN"
    CRON = "CRON"  # Scheduled jobs; falls back to the sync key


@dataclass(frozen=True)
class RouteRule:
    """Protection settings for one route."""

    pattern: str
    method: Optional[str] = None  # None matches any method
    requires_auth: bool = False
    key_type: Optional[ApiKeyType] = None
    rate_limit: Optional[RateLimitConfig] = None

    def matches(self, method: str, path: str) -> bool:
        if self.method and self.method.upper() != method.upper():
            return False
        return match_route(path, self.pattern)


ROUTE_PROTECTION: tuple[RouteRule, ...] = (
    # Sync endpoints (10 requests per hour)
    RouteRule(
        "/api/sync",
        requires_auth=True,
        key_type=ApiKeyType.SYNC,
        rate_limit=RateLimitConfig(10, HOUR, "sync"),
    ),
    # Cron endpoints (5 requests per hour)
    RouteRule(
        "/api/cron/sync",
        requires_auth=True,
        key_type=ApiKeyType.CRON,
        rate_limit=RateLimitConfig(5, HOUR, "cron"),
    ),
    # Admin cache control (5 requests per hour)
    RouteRule(
        "/api/cache/invalidate",
        requires_auth=True,
        key_type=ApiKeyType.ADMIN,
        rate_limit=RateLimitConfig(5, HOUR, "admin"),
    ),
    # Record mutations
    RouteRule(
        "/api/records/[object_key]",
        method="POST",
        requires_auth=True,
        key_type=ApiKeyType.ADMIN,
        rate_limit=RateLimitConfig(30, HOUR, "record-write"),
    ),
    RouteRule(
        "/api/records/[object_key]/[record_id]",
        method="PUT",
        requires_auth=True,
        key_type=ApiKeyType.ADMIN,
        rate_limit=RateLimitConfig(30, HOUR, "record-write"),
    ),
    RouteRule(
        "/api/records/[object_key]/[record_id]",
        method="DELETE",
        requires_auth=True,
        key_type=ApiKeyType.ADMIN,
        rate_limit=RateLimitConfig(20, HOUR, "record-delete"),
    ),
    # Public reads (rate limited only)
    RouteRule(
        "/api/records/[object_key]",
        method="GET",
        rate_limit=RateLimitConfig(100, HOUR, "public-records"),
    ),
)

SECURITY_HEADERS: dict[str, str] = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Content-Security-Policy": "default-src 'self'",
}

BYPASS_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"^/_next/",
        r"^/static/",
        r"\.(jpg|png|gif|svg|css|js|ico)$",
    )
)


@lru_cache(maxsize=256)
def _pattern_regex(pattern: str) -> re.Pattern:
    parts = re.split(r"(\[[^\]]+\])", pattern)
    body = "".join("[^/]+" if p.startswith("[") else re.escape(p) for p in parts)
    return re.compile(f"^{body}$")


def match_route(path: str, pattern: str) -> bool:
    """Match a request path against a route pattern.

    Supports exact matches and ``[param]`` segments, e.g. ``/api/records/[id]``
    matches ``/api/records/object_1``. Query strings are ignored.
    """
    route_path = path.split("?", 1)[0]
    if route_path == pattern:
        return True
    return bool(_pattern_regex(pattern).match(route_path))


def find_route_rule(
    method: str,
    path: str,
    rules: tuple[RouteRule, ...] = ROUTE_PROTECTION,
) -> Optional[RouteRule]:
    """Return the first rule matching the request, if any."""
    for rule in rules:
        if rule.matches(method, path):
            return rule
    return None


def is_protected_route(method: str, path: str, rules: tuple[RouteRule, ...] = ROUTE_PROTECTION) -> bool:
    """Check if a route requires authentication."""
    rule = find_route_rule(method, path, rules)
    return bool(rule and rule.requires_auth)


def get_rate_limit_config_for_route(
    method: str,
    path: str,
    rules: tuple[RouteRule, ...] = ROUTE_PROTECTION,
) -> Optional[RateLimitConfig]:
    """Get the rate limit for a route."""
    rule = find_route_rule(method, path, rules)
    return rule.rate_limit if rule else None


def should_bypass(path: str) -> bool:
    """Static assets skip the gate entirely."""
    return any(pattern.search(path) for pattern in BYPASS_PATTERNS)


class ApiKeyRegistry:
    """Expected API keys per key type."""

    def __init__(self, keys: Optional[dict[ApiKeyType, Optional[str]]] = None):
        self._keys = dict(keys or {})

    @classmethod
    def from_settings(
        cls,
        settings: Any,
        secret_manager: Optional[SecretManager] = None,
    ) -> "ApiKeyRegistry":
        """Resolve keys from Vault (when enabled) or from settings."""
        if settings.vault_enabled:
            manager = secret_manager or SecretManager()
            return cls(
                {
                    ApiKeyType.SYNC: manager.get_api_key("sync"),
                    ApiKeyType.ADMIN: manager.get_api_key("admin"),
                    ApiKeyType.CRON: manager.get_api_key("cron"),
                }
            )
        return cls(
            {
                ApiKeyType.SYNC: settings.api_key_sync,
                ApiKeyType.ADMIN: settings.api_key_admin,
                ApiKeyType.CRON: settings.api_key_cron,
            }
        )

    def expected_key(self, key_type: ApiKeyType) -> Optional[str]:
        """Get the configured key for a type."""
        key = self._keys.get(key_type)
        if key_type == ApiKeyType.CRON and not key:
            return self._keys.get(ApiKeyType.SYNC)
        return key
