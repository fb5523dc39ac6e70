"""knackshield - resilience and caching layer for the Knack records API."""

__version__ = "0.1.0"

from .audit import AuditEntry, AuditLog
from .cache import CacheKeys, TwoTierCache
from .resilience import CircuitBreaker, DegradationRegistry, RetryConfig, run_with_retry
from .security import FixedWindowRateLimiter
from .service import RecordService
from .upstream import KnackClient

__all__ = [
    "__version__",
    "AuditEntry",
    "AuditLog",
    "CacheKeys",
    "TwoTierCache",
    "CircuitBreaker",
    "DegradationRegistry",
    "RetryConfig",
    "run_with_retry",
    "FixedWindowRateLimiter",
    "RecordService",
    "KnackClient",
]
