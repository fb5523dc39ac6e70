"""FastAPI application hosting the request gate and record service.

The gate middleware wraps every route; domain errors are mapped to HTTP
responses by the handlers registered here so they also pass back through the
gate and pick up the hardening headers.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import Body, FastAPI, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel

from . import __version__
from .config import Settings, settings as default_settings
from .errors import (
    CircuitOpenError,
    KnackShieldError,
    PermanentUpstreamError,
    RateLimitedError,
    TransientUpstreamError,
    UnauthorizedError,
    UpstreamNotConfiguredError,
)
from .gate.middleware import UNAUTHORIZED_BODY, RequestGate, RequestGateMiddleware
from .monitoring.metrics import generate_metrics
from .security.rate_limiter import FixedWindowRateLimiter
from .security.routes import ApiKeyRegistry
from .service import RecordService

logger = logging.getLogger(__name__)


class InvalidateRequest(BaseModel):
    """Body of POST /api/cache/invalidate."""

    keys: list[str] = []
    prefix: Optional[str] = None
    all: bool = False


def status_for_error(error: Exception) -> int:
    """HTTP status for a domain error."""
    if isinstance(error, (UpstreamNotConfiguredError, CircuitOpenError, TransientUpstreamError)):
        return 503
    if isinstance(error, PermanentUpstreamError):
        return error.status or 400
    if isinstance(error, RateLimitedError):
        return 429
    if isinstance(error, UnauthorizedError):
        return 401
    return 500


def create_app(
    service: Optional[RecordService] = None,
    gate: Optional[RequestGate] = None,
    config: Optional[Settings] = None,
) -> FastAPI:
    """Build the application.

    Args:
        service: Record service (built from settings when omitted)
        gate: Request gate (built from settings when omitted)
        config: Settings used for anything not passed explicitly
    """
    config = config or default_settings
    service = service or RecordService.from_settings(config)
    gate = gate or RequestGate(FixedWindowRateLimiter(), ApiKeyRegistry.from_settings(config))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup/shutdown lifecycle."""
        service.cache.load_from_disk()
        gate.limiter.start_cleanup(config.rate_limit_cleanup_interval)
        logger.info("knackshield started")
        yield
        logger.info("knackshield shutting down")
        await gate.limiter.stop_cleanup()
        await service.close()

    app = FastAPI(title="knackshield", version=__version__, lifespan=lifespan)
    app.add_middleware(RequestGateMiddleware, gate=gate)
    app.state.service = service
    app.state.gate = gate

    @app.exception_handler(KnackShieldError)
    async def knackshield_error_handler(request: Request, exc: KnackShieldError):
        status = status_for_error(exc)
        if status >= 500:
            logger.error(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc}")
        else:
            logger.warning(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc}")

        if isinstance(exc, UnauthorizedError):
            return JSONResponse(status_code=401, content=dict(UNAUTHORIZED_BODY))

        headers = {}
        if isinstance(exc, RateLimitedError) and exc.retry_after:
            headers["Retry-After"] = str(exc.retry_after)
        return JSONResponse(
            status_code=status,
            content={"error": type(exc).__name__, "message": str(exc)},
            headers=headers,
        )

    @app.get("/api/health")
    async def health():
        report = service.health()
        return JSONResponse(
            status_code=503 if report["status"] == "unhealthy" else 200,
            content=report,
        )

    @app.get("/metrics", response_class=PlainTextResponse)
    async def metrics():
        return generate_metrics()

    @app.get("/api/records/{object_key}")
    async def list_records(
        object_key: str,
        page: Optional[int] = Query(default=None, ge=1),
        rows_per_page: Optional[int] = Query(default=None, ge=1, le=1000),
        sort_field: Optional[str] = None,
        sort_order: Optional[str] = Query(default=None, pattern="^(asc|desc)$"),
        all_pages: bool = Query(default=False, alias="all"),
    ):
        options = {
            "page": page,
            "rows_per_page": rows_per_page,
            "sort_field": sort_field,
            "sort_order": sort_order,
        }
        options = {k: v for k, v in options.items() if v is not None}
        if all_pages:
            records = await service.read_all(object_key, options)
            return {"records": records, "total_records": len(records)}
        return await service.read(object_key, options)

    @app.post("/api/records/{object_key}")
    async def create_record(
        object_key: str,
        data: dict[str, Any] = Body(...),
        invalidate: list[str] = Query(default=[]),
    ):
        return await service.create(object_key, data, invalidate=invalidate, actor="admin")

    @app.put("/api/records/{object_key}/{record_id}")
    async def update_record(
        object_key: str,
        record_id: str,
        data: dict[str, Any] = Body(...),
        invalidate: list[str] = Query(default=[]),
    ):
        return await service.update(object_key, record_id, data, invalidate=invalidate, actor="admin")

    @app.delete("/api/records/{object_key}/{record_id}")
    async def delete_record(
        object_key: str,
        record_id: str,
        invalidate: list[str] = Query(default=[]),
    ):
        return await service.delete(object_key, record_id, invalidate=invalidate, actor="admin")

    @app.post("/api/cache/invalidate")
    async def invalidate_cache(body: InvalidateRequest):
        if body.all:
            service.cache.invalidate_all()
            service.audit.log("admin", "INVALIDATE", "cache", detail={"all": True})
            return {"success": True, "invalidated": "all"}

        service.cache.invalidate_many(body.keys)
        removed = service.cache.invalidate_prefix(body.prefix) if body.prefix else 0
        service.audit.log(
            "admin",
            "INVALIDATE",
            "cache",
            detail={"keys": body.keys, "prefix": body.prefix},
        )
        return {"success": True, "invalidated": len(body.keys) + removed}

    async def sync(actor: str) -> dict[str, Any]:
        service.cache.invalidate_all()
        service.audit.log(actor, "SYNC", "cache")
        return {"success": True, "timestamp": service.audit.recent(1)[0].timestamp.isoformat()}

    @app.post("/api/sync")
    async def manual_sync():
        return await sync("sync")

    @app.post("/api/cron/sync")
    async def cron_sync():
        return await sync("cron")

    return app
