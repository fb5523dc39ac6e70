"""Request gate for inbound traffic."""

from .middleware import (
    UNAUTHORIZED_BODY,
    RequestGate,
    RequestGateMiddleware,
    apply_security_headers,
)

__all__ = [
    "UNAUTHORIZED_BODY",
    "RequestGate",
    "RequestGateMiddleware",
    "apply_security_headers",
]
