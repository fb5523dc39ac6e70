"""Security module for knackshield.

This module provides:
- Fixed-window rate limiting for inbound requests
- Upstream request throttling
- API key extraction and constant-time validation
- Route protection rules
- HashiCorp Vault integration for gate credentials
"""

from .api_keys import (
    constant_time_compare,
    extract_api_key,
    generate_api_key,
    mask_key,
    validate_api_key,
)
from .rate_limiter import (
    FixedWindowRateLimiter,
    RateLimitConfig,
    RateLimitStatus,
    UpstreamThrottle,
    get_client_ip,
)
from .routes import (
    ROUTE_PROTECTION,
    SECURITY_HEADERS,
    ApiKeyRegistry,
    ApiKeyType,
    RouteRule,
    find_route_rule,
    match_route,
)
from .vault import SecretManager, SecretNotFoundError, VaultClient

__all__ = [
    "FixedWindowRateLimiter",
    "RateLimitConfig",
    "RateLimitStatus",
    "UpstreamThrottle",
    "get_client_ip",
    "constant_time_compare",
    "extract_api_key",
    "generate_api_key",
    "mask_key",
    "validate_api_key",
    "ROUTE_PROTECTION",
    "SECURITY_HEADERS",
    "ApiKeyRegistry",
    "ApiKeyType",
    "RouteRule",
    "find_route_rule",
    "match_route",
    "SecretManager",
    "SecretNotFoundError",
    "VaultClient",
]
