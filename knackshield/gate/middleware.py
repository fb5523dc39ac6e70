"""Request gate: per-route rate limiting and API key checks.

Runs before any cache or upstream work. Throttling is decided first, so a
client with an exhausted window gets 429 whether or not its credentials are
valid. Every response leaving the app, success or failure, carries the
hardening headers.
"""

import logging
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from ..monitoring.metrics import auth_failures_total, rate_limit_rejections_total
from ..security.api_keys import extract_api_key, log_security_event, validate_api_key
from ..security.rate_limiter import FixedWindowRateLimiter, get_client_ip
from ..security.routes import (
    ROUTE_PROTECTION,
    SECURITY_HEADERS,
    ApiKeyRegistry,
    RouteRule,
    find_route_rule,
    should_bypass,
)

logger = logging.getLogger(__name__)

UNAUTHORIZED_BODY = {
    "error": "Unauthorized",
    "message": "Invalid or missing API key",
}

INTERNAL_ERROR_BODY = {
    "error": "InternalServerError",
    "message": "Internal server error",
}


def apply_security_headers(response: Response) -> Response:
    """Add the hardening headers to a response."""
    for name, value in SECURITY_HEADERS.items():
        response.headers[name] = value
    return response


def client_id_for(request: Request) -> str:
    return get_client_ip(request.headers, request.client.host if request.client else None)


class RequestGate:
    """Rate limit and credential checks for protected routes.

    Usage:
        gate = RequestGate(FixedWindowRateLimiter(), ApiKeyRegistry.from_settings(settings))
        response = gate.throttle(request) or gate.authorize(request)
        if response is not None:
            return response  # 429 or 401
    """

    def __init__(
        self,
        limiter: FixedWindowRateLimiter,
        key_registry: ApiKeyRegistry,
        rules: tuple[RouteRule, ...] = ROUTE_PROTECTION,
    ):
        self.limiter = limiter
        self.key_registry = key_registry
        self.rules = rules

    def rule_for(self, request: Request) -> Optional[RouteRule]:
        return find_route_rule(request.method, request.url.path, self.rules)

    def throttle(self, request: Request) -> Optional[JSONResponse]:
        """Consume a rate-limit slot.

        Returns:
            None when allowed, otherwise a 429 response with Retry-After
        """
        rule = self.rule_for(request)
        if rule is None or rule.rate_limit is None:
            return None

        config = rule.rate_limit
        client_id = client_id_for(request)
        if self.limiter.check(client_id, config):
            return None

        status = self.limiter.get_status(client_id, config)
        category = config.key_prefix or "default"
        rate_limit_rejections_total.inc(category=category)
        log_security_event(
            "RATE_LIMIT_EXCEEDED",
            client=client_id,
            path=request.url.path,
            method=request.method,
            category=category,
        )
        return JSONResponse(
            status_code=429,
            content={
                "error": "Too Many Requests",
                "message": f"Rate limit exceeded. Try again in {status.retry_after} seconds.",
                "retryAfter": status.retry_after,
            },
            headers={
                "Retry-After": str(status.retry_after),
                "X-RateLimit-Limit": str(config.max_requests),
                "X-RateLimit-Remaining": str(status.remaining),
            },
        )

    def authorize(self, request: Request) -> Optional[JSONResponse]:
        """Check credentials for routes that require them.

        Missing, wrong and unconfigured keys all produce the same 401 body.

        Returns:
            None when allowed, otherwise a 401 response
        """
        rule = self.rule_for(request)
        if rule is None or not rule.requires_auth:
            return None

        provided = extract_api_key(request.headers)
        expected = self.key_registry.expected_key(rule.key_type) if rule.key_type else None
        if validate_api_key(provided, expected):
            return None

        if expected is None:
            logger.error(f"No API key configured for {rule.key_type} ({request.url.path})")
        auth_failures_total.inc()
        log_security_event(
            "AUTH_FAILURE",
            provided_key=provided,
            client=client_id_for(request),
            path=request.url.path,
            method=request.method,
            reason="missing" if provided is None else "invalid",
        )
        return JSONResponse(status_code=401, content=dict(UNAUTHORIZED_BODY))

    def check(self, request: Request) -> Optional[JSONResponse]:
        """Throttle, then authorize."""
        return self.throttle(request) or self.authorize(request)


class RequestGateMiddleware(BaseHTTPMiddleware):
    """Starlette middleware running the request gate in front of every route."""

    def __init__(self, app: object, gate: RequestGate) -> None:
        super().__init__(app)  # type: ignore[arg-type]
        self.gate = gate

    async def _forward(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        try:
            return await call_next(request)
        except Exception as e:
            logger.exception(f"Unhandled {type(e).__name__} on {request.method} {request.url.path}")
            return JSONResponse(status_code=500, content=dict(INTERNAL_ERROR_BODY))

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if should_bypass(request.url.path):
            return apply_security_headers(await self._forward(request, call_next))

        rejection = self.gate.check(request)
        if rejection is not None:
            return apply_security_headers(rejection)

        return apply_security_headers(await self._forward(request, call_next))
