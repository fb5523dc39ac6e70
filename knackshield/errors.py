"""Error taxonomy for the resilience layer.

Transient upstream failures are retried and absorbed by stale cache data or
registered fallbacks. Permanent upstream failures and gate rejections propagate
unchanged. Cache corruption never leaves the durable store.
"""

from typing import Optional


class KnackShieldError(Exception):
    """Base class for all knackshield errors."""

    pass


class UpstreamError(KnackShieldError):
    """Failure talking to the upstream records API."""

    def __init__(self, message: str = "", status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class TransientUpstreamError(UpstreamError):
    """Upstream failure that may succeed on retry."""

    pass


class NetworkError(TransientUpstreamError):
    """Connection-level failure (DNS, refused, reset)."""

    pass


class UpstreamTimeoutError(TransientUpstreamError):
    """Upstream call exceeded its timeout."""

    def __init__(self, message: str = "", timeout: float = 0.0):
        super().__init__(message)
        self.timeout = timeout


class UpstreamServerError(TransientUpstreamError):
    """Upstream answered with a 5xx status."""

    pass


class UpstreamThrottledError(TransientUpstreamError):
    """Upstream answered 429; carries the advertised wait."""

    def __init__(self, message: str = "", retry_after: float = 0.0):
        super().__init__(message, status=429)
        self.retry_after = retry_after


class PermanentUpstreamError(UpstreamError):
    """Upstream failure that retrying cannot fix."""

    pass


class UpstreamClientError(PermanentUpstreamError):
    """Upstream answered with a 4xx status."""

    pass


class UpstreamValidationError(PermanentUpstreamError):
    """Upstream rejected the payload as invalid."""

    pass


class UpstreamNotConfiguredError(PermanentUpstreamError):
    """Upstream credentials are missing."""

    pass


class RateLimitedError(KnackShieldError):
    """Local throttling decision; the upstream was never contacted."""

    def __init__(self, message: str = "Too many requests", retry_after: int = 0):
        super().__init__(message)
        self.retry_after = retry_after


class CircuitOpenError(KnackShieldError):
    """Raised when a circuit breaker is open."""

    pass


class UnauthorizedError(KnackShieldError):
    """Request gate rejected the presented credentials."""

    pass


class CacheCorruptionError(KnackShieldError):
    """A durable cache file could not be decoded."""

    pass


def error_for_status(
    status: int,
    message: str = "",
    retry_after: float = 0.0,
) -> UpstreamError:
    """Map an upstream HTTP status to the matching error class.

    Args:
        status: HTTP status code of the failed response
        message: Error message
        retry_after: Seconds advertised by a 429 response

    Returns:
        Error instance (not raised)
    """
    message = message or f"Knack API error: {status}"
    if status == 429:
        return UpstreamThrottledError(message, retry_after=retry_after)
    if status >= 500:
        return UpstreamServerError(message, status=status)
    if status in (400, 422):
        return UpstreamValidationError(message, status=status)
    if status >= 400:
        return UpstreamClientError(message, status=status)
    return UpstreamError(message, status=status)
