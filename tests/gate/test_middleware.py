"""Tests for the request gate middleware."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from knackshield.gate.middleware import (
    INTERNAL_ERROR_BODY,
    UNAUTHORIZED_BODY,
    RequestGate,
    RequestGateMiddleware,
)
from knackshield.monitoring.metrics import auth_failures_total, rate_limit_rejections_total
from knackshield.security.rate_limiter import FixedWindowRateLimiter, RateLimitConfig
from knackshield.security.routes import SECURITY_HEADERS, ApiKeyRegistry, ApiKeyType, RouteRule

ADMIN_KEY = "admin-key-0123456789"

RULES = (
    RouteRule(
        "/admin",
        requires_auth=True,
        key_type=ApiKeyType.ADMIN,
        rate_limit=RateLimitConfig(3, 3600, "admin"),
    ),
    RouteRule("/public", rate_limit=RateLimitConfig(2, 3600, "public")),
)


@pytest.fixture
def gate():
    return RequestGate(
        FixedWindowRateLimiter(),
        ApiKeyRegistry({ApiKeyType.ADMIN: ADMIN_KEY}),
        rules=RULES,
    )


@pytest.fixture
def client(gate):
    app = FastAPI()
    app.add_middleware(RequestGateMiddleware, gate=gate)

    @app.post("/admin")
    async def admin():
        return {"ok": True}

    @app.get("/public")
    async def public():
        return {"ok": True}

    @app.get("/open")
    async def open_route():
        return {"ok": True}

    @app.get("/broken")
    async def broken():
        raise RuntimeError("unexpected")

    return TestClient(app)


def assert_hardened(response):
    for name, value in SECURITY_HEADERS.items():
        assert response.headers[name] == value


class TestAuthorize:
    """Test credential checks."""

    def test_valid_bearer_token(self, client):
        response = client.post("/admin", headers={"Authorization": f"Bearer {ADMIN_KEY}"})
        assert response.status_code == 200

    def test_valid_x_api_key(self, client):
        response = client.post("/admin", headers={"X-API-Key": ADMIN_KEY})
        assert response.status_code == 200

    def test_missing_and_wrong_keys_are_indistinguishable(self, client):
        """Test absence and mismatch produce the same 401 body."""
        missing = client.post("/admin")
        wrong = client.post("/admin", headers={"X-API-Key": "not-the-key"})

        assert missing.status_code == wrong.status_code == 401
        assert missing.json() == wrong.json() == UNAUTHORIZED_BODY
        assert auth_failures_total.get() == 2

    def test_unconfigured_key_rejects(self):
        gate = RequestGate(FixedWindowRateLimiter(), ApiKeyRegistry(), rules=RULES)
        app = FastAPI()
        app.add_middleware(RequestGateMiddleware, gate=gate)

        @app.post("/admin")
        async def admin():
            return {"ok": True}

        response = TestClient(app).post("/admin", headers={"X-API-Key": "anything"})
        assert response.status_code == 401
        assert response.json() == UNAUTHORIZED_BODY

    def test_unprotected_route_passes(self, client):
        assert client.get("/open").status_code == 200


class TestThrottle:
    """Test rate limiting."""

    def test_public_route_limited(self, client):
        assert client.get("/public").status_code == 200
        assert client.get("/public").status_code == 200

        response = client.get("/public")
        assert response.status_code == 429
        assert int(response.headers["Retry-After"]) >= 1
        assert response.json()["retryAfter"] == int(response.headers["Retry-After"])
        assert rate_limit_rejections_total.get(category="public") == 1

    def test_throttle_runs_before_authorize(self, client):
        """Test a bad credential with an exhausted window gets 429, not 401."""
        for _ in range(3):
            client.post("/admin", headers={"X-API-Key": "wrong"})

        response = client.post("/admin", headers={"X-API-Key": "wrong"})
        assert response.status_code == 429

    def test_forwarded_clients_have_separate_windows(self, client):
        for _ in range(2):
            client.get("/public", headers={"X-Forwarded-For": "10.0.0.1"})

        assert client.get("/public", headers={"X-Forwarded-For": "10.0.0.1"}).status_code == 429
        assert client.get("/public", headers={"X-Forwarded-For": "10.0.0.2"}).status_code == 200


class TestSecurityHeaders:
    """Test hardening headers on every response."""

    def test_on_success(self, client):
        assert_hardened(client.get("/open"))

    def test_on_401(self, client):
        assert_hardened(client.post("/admin"))

    def test_on_429(self, client):
        for _ in range(2):
            client.get("/public")
        assert_hardened(client.get("/public"))

    def test_on_404(self, client):
        response = client.get("/nowhere")
        assert response.status_code == 404
        assert_hardened(response)

    def test_on_unhandled_error(self, client):
        """Test an unexpected exception still leaves through the gate."""
        response = client.get("/broken")

        assert response.status_code == 500
        assert response.json() == INTERNAL_ERROR_BODY
        assert_hardened(response)
