"""
FastAPI Application — Entry Point

Capture Inbox API

Architecture:
  - All routes are versioned under /v1/
  - Authentication is a single static API key (X-API-Key header or
    ?apiKey=), enforced on every /v1 router
  - Long-lived collaborators (record store, storage, job queue, share
    staging) are built once here and parked on app.state
  - Processing happens in the Celery worker (capture_inbox.workers)
  - Structured JSON error responses on all 4xx/5xx

Middleware stack (innermost → outermost):
  1. Request ID + logging — X-Request-ID on every response, one log line
     per request with latency
  2. CORS — open in development, closed otherwise
  3. Gzip — compress responses > 1 KB

/health and /ready are excluded from auth.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from capture_inbox.api.v1.captures import router as captures_router
from capture_inbox.api.v1.purposes import router as purposes_router
from capture_inbox.api.v1.share import router as share_router
from capture_inbox.api.v1.todos import router as todos_router
from capture_inbox.auth.api_key import require_api_key
from capture_inbox.core.config import settings
from capture_inbox.db.session import AsyncSessionLocal, check_db_health, create_schema, engine
from capture_inbox.schemas.captures import CaptureErrors, ErrorDetail, ErrorResponse
from capture_inbox.services.captures import JobQueue
from capture_inbox.services.records import CaptureRecordStore
from capture_inbox.services.share_staging import ShareStagingStore
from capture_inbox.storage.base import StorageAdapter

logger = logging.getLogger(__name__)

logging.basicConfig(
    level=logging.DEBUG if settings.debug else getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)


# ---------------------------------------------------------------------------
# Application lifespan — startup / shutdown hooks
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Run on startup: create missing tables, validate DB connectivity.
    Run on shutdown: clean up the connection pool.
    """
    logger.info(
        "Starting Capture Inbox | env=%s storage=%s queue=%s",
        settings.app_env, settings.storage_driver.value, settings.queue_name,
    )

    await create_schema(engine)

    db_health = await check_db_health()
    if db_health["status"] != "ok":
        logger.critical("Database health check failed at startup: %s", db_health)
        raise RuntimeError(f"DB unavailable: {db_health}")

    logger.info("Database: connected")

    yield

    logger.info("Shutting down Capture Inbox")
    await engine.dispose()


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(
    *,
    record_store: CaptureRecordStore | None = None,
    storage:      StorageAdapter | None = None,
    queue:        JobQueue | None = None,
    share_store:  ShareStagingStore | None = None,
) -> FastAPI:
    app = FastAPI(
        title="Capture Inbox",
        description=(
            "Screenshot inbox: encrypted storage, asynchronous OCR and "
            "heuristic analysis, status streaming, purposes and todos."
        ),
        version="1.0.0",
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
        openapi_url="/openapi.json" if not settings.is_production else None,
        lifespan=lifespan,
    )

    # ----------------------------------------------------------------
    # Collaborators — built once, injected via app.state
    # ----------------------------------------------------------------

    if storage is None:
        from capture_inbox.storage.factory import get_storage
        storage = get_storage(settings)

    if queue is None:
        from capture_inbox.workers.celery_app import celery_app
        from capture_inbox.workers.queue import CaptureQueue
        queue = CaptureQueue.from_settings(settings, celery_app)

    app.state.record_store = record_store if record_store is not None else CaptureRecordStore(AsyncSessionLocal)
    app.state.storage      = storage
    app.state.queue        = queue
    app.state.share_store  = (
        share_store if share_store is not None
        else ShareStagingStore(settings.share_staging_ttl_seconds)
    )

    # ----------------------------------------------------------------
    # Middleware (applied in reverse order — last added = outermost)
    # ----------------------------------------------------------------

    app.add_middleware(GZipMiddleware, minimum_size=1024)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.app_env == "development" else [],
        allow_methods=["GET", "POST", "DELETE", "PATCH"],
        allow_headers=["Content-Type", "X-API-Key", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
    )

    @app.middleware("http")
    async def request_id_and_logging(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        start = time.perf_counter()

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = request_id

        logger.info(
            "HTTP %s %s %d %.1fms | request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            request_id,
        )
        return response

    # ----------------------------------------------------------------
    # Exception handlers — uniform structured error responses
    # ----------------------------------------------------------------

    def _request_id(request: Request) -> str | None:
        return getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID")

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Flatten ErrorResponse details raised by services into the body."""
        if isinstance(exc.detail, dict) and "error_code" in exc.detail:
            body = ErrorResponse.model_validate(exc.detail)
        else:
            body = ErrorResponse(error_code="HTTP_ERROR", message=str(exc.detail))
        body.request_id = body.request_id or _request_id(request)
        return JSONResponse(
            status_code=exc.status_code,
            content=body.model_dump(mode="json"),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Convert Pydantic/FastAPI validation errors to structured ErrorResponse."""
        details = [
            ErrorDetail(
                field=".".join(str(loc) for loc in err["loc"]),
                message=err["msg"],
                code="VALIDATION_ERROR",
            )
            for err in exc.errors()
        ]
        body = CaptureErrors.validation_error(details)
        body.request_id = _request_id(request)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=body.model_dump(mode="json"),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Catch-all for unhandled exceptions — never expose stack traces."""
        request_id = _request_id(request) or str(uuid.uuid4())
        logger.exception(
            "Unhandled exception | path=%s request_id=%s",
            request.url.path, request_id,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=CaptureErrors.internal_error(request_id).model_dump(mode="json"),
            headers={"X-Request-ID": request_id},
        )

    # ----------------------------------------------------------------
    # Routers
    # ----------------------------------------------------------------

    protected = [Depends(require_api_key)]
    app.include_router(captures_router, prefix="/v1", dependencies=protected)
    app.include_router(purposes_router, prefix="/v1", dependencies=protected)
    app.include_router(todos_router,    prefix="/v1", dependencies=protected)
    app.include_router(share_router,    prefix="/v1", dependencies=protected)

    # ----------------------------------------------------------------
    # Health & readiness endpoints (no auth)
    # ----------------------------------------------------------------

    @app.get(
        "/health",
        tags=["Operations"],
        summary="Liveness probe",
        description="Returns 200 if the process is alive. No external checks.",
    )
    async def health() -> dict:
        return {"status": "ok", "service": "capture-inbox-api"}

    @app.get(
        "/ready",
        tags=["Operations"],
        summary="Readiness probe",
        description="Returns 200 only if the database is reachable.",
    )
    async def readiness(request: Request) -> JSONResponse:
        db_status = await check_db_health()
        checks = {"database": db_status}

        queue_health = getattr(request.app.state.queue, "check_health", None)
        if queue_health is not None:
            checks["queue"] = await run_in_threadpool(queue_health)
        checks["storage"] = await request.app.state.storage.check_health()

        if db_status["status"] != "ok":
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "not_ready", **checks},
            )
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={"status": "ready", **checks},
        )

    return app


# ---------------------------------------------------------------------------
# Application instance (imported by uvicorn)
# ---------------------------------------------------------------------------

app = create_app()


# ---------------------------------------------------------------------------
# Local development entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "capture_inbox.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.app_env == "development",
        log_level="debug" if settings.debug else "info",
        access_log=True,
    )
