"""Bank Reconciliation Backend - FastAPI Application."""

import os
import time
import traceback
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from bankrec.config import settings
from bankrec.database import engine
from bankrec.deps import DbSession
from bankrec.logger import configure_logging, get_logger
from bankrec.routers import accounts, events, matching, reconciliations, rules, transactions
from bankrec.services.matching_config import load_matching_config

# Initialize logging early
configure_logging()
logger = get_logger(__name__)


def _init_otel_instrumentation() -> None:
    """Trace requests, queries and outbound collaborator calls when OTEL is configured."""
    if not settings.otel_exporter_otlp_endpoint:
        return

    try:
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
        from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
    except ImportError:  # pragma: no cover - instrumentation is an optional extra
        logger.warning("OTEL instrumentation not available", exc_info=True)
        return

    FastAPIInstrumentor.instrument()
    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)
    HTTPXClientInstrumentor().instrument()
    logger.info("OTEL instrumentation initialized", components=["fastapi", "sqlalchemy", "httpx"])


_init_otel_instrumentation()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # Warm the matching config cache
    config = load_matching_config()
    logger.info(
        "Application started",
        version="0.1.0",
        environment=settings.environment,
        auto_confirm_threshold=config.auto_confirm_threshold,
        record_service=bool(settings.record_service_url),
        trust_service=bool(settings.trust_service_url),
    )
    yield
    await engine.dispose()
    logger.info("Application shutting down")


app = FastAPI(
    title="Bank Reconciliation API",
    description="Bank transaction matching, pattern learning and period reconciliation",
    version="0.1.0",
    lifespan=lifespan,
)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next: Any) -> Response:
    """Tag every log line of a request with its id, method and path."""
    request_id = request.headers.get("X-Request-ID") or str(uuid4())
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, method=request.method, path=request.url.path)

    started = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        logger.exception("Request failed", duration_ms=round((time.perf_counter() - started) * 1000, 2))
        raise

    logger.info(
        "Request handled",
        status_code=response.status_code,
        duration_ms=round((time.perf_counter() - started) * 1000, 2),
    )
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = structlog.contextvars.get_contextvars().get("request_id")
    body: dict[str, Any] = {"detail": "Internal server error", "request_id": request_id}
    if settings.debug:
        body["detail"] = str(exc)
        body["trace"] = traceback.format_exception(exc)
    return JSONResponse(status_code=500, content=body)


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
)

app.include_router(accounts.router)
app.include_router(transactions.router)
app.include_router(rules.router)
app.include_router(matching.router)
app.include_router(reconciliations.router)
app.include_router(events.router)


@app.get("/health")
async def health_check(db: DbSession) -> Response:
    """Returns 200 when the database answers, 503 otherwise."""
    checks: dict[str, bool] = {}
    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception as exc:
        logger.error("Health check: database unreachable", error=str(exc), error_type=type(exc).__name__)
        checks["database"] = False

    healthy = all(checks.values())
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "healthy" if healthy else "unhealthy",
            "timestamp": datetime.now(UTC).isoformat(),
            "git_sha": os.getenv("GIT_COMMIT_SHA", "unknown"),
            "checks": checks,
        },
    )
