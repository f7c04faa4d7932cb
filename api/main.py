"""
api/main.py -- FastAPI application entry point for AuditDesk.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for the dashboard origin(s)
  3. SlowAPIMiddleware     -- enforces per-route and default rate limits

Lifespan builds ONE SQLAlchemy Engine from DATABASE_URL and injects it into
both stores, so users and audit records share a database. Shutdown disposes
the engine's pool.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.audits import router as audits_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.dashboard import router as dashboard_router
from api.routes.v1.risks import router as risks_router
from api.routes.v1.users import router as users_router
from audit.sequence import IdentifierAllocationError
from audit.store import AuditStore
from auth.dependencies import get_current_user
from auth.models import Principal
from auth.store import UserStore
from core.config import get_settings
from core.database import create_db_engine

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("auditdesk.api")

API_VERSION = "1.0.0"

_settings = get_settings()

# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the shared engine and both stores; dispose the engine on shutdown."""
    logger.info("AuditDesk API starting up")
    engine = create_db_engine(_settings.database_url)
    app.state.user_store = UserStore(engine)
    app.state.audit_store = AuditStore(engine)
    logger.info(
        "Stores initialized (users_present=%s, debug=%s)",
        app.state.user_store.has_users(),
        _settings.debug,
    )

    yield

    engine.dispose()
    logger.info("AuditDesk API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="AuditDesk API",
    description="Internal audit management: plans, risk assessments, engagements, findings and reports.",
    version=API_VERSION,
    lifespan=lifespan,
    # /docs and /redoc are served below behind the access gate.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Request order: TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPIMiddleware reads the limiter from app.state.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(audits_router, prefix="/api/v1", tags=["Audits"])
app.include_router(risks_router, prefix="/api/v1", tags=["Risks"])
app.include_router(dashboard_router, prefix="/api/v1", tags=["Dashboard"])


# ---------------------------------------------------------------------------
# API documentation (bearer token required)
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(user: Principal = Depends(get_current_user)):
    return get_swagger_ui_html(openapi_url="/openapi.json", title="AuditDesk API")


@app.get("/redoc", include_in_schema=False)
async def redoc(user: Principal = Depends(get_current_user)):
    return get_redoc_html(openapi_url="/openapi.json", title="AuditDesk API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every failure is rendered as {"error": {"code", "message", ...}}.
# ---------------------------------------------------------------------------


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Body, path or query parameters that fail pydantic validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(IdentifierAllocationError)
async def allocation_error_handler(request: Request, exc: IdentifierAllocationError) -> JSONResponse:
    """Return 409 when a numbered insert could not get a unique identifier."""
    logger.error("Identifier allocation exhausted on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=409,
        content=ErrorResponse(
            error=ErrorDetail(
                code="conflict",
                message="Could not allocate a unique identifier. Please retry.",
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Render HTTPException in the error envelope.

    Routes and the access gate raise with a dict detail, which becomes the
    error object as is. Headers (WWW-Authenticate on 401s) are kept.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log the traceback and answer 500 internal_error."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Public and exempt from rate limiting.
# ---------------------------------------------------------------------------


@limiter.exempt
@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> JSONResponse:
    """Return API liveness, version and database reachability.

    503 with status "degraded" when the database does not answer.
    """
    audit_store: AuditStore = request.app.state.audit_store
    try:
        db_ok = audit_store.ping()
    except SQLAlchemyError:
        logger.exception("Health check: database unreachable")
        db_ok = False
    body = HealthResponse(
        status="ok" if db_ok else "degraded",
        version=API_VERSION,
        components={"api": "ok", "database": "ok" if db_ok else "unavailable"},
    )
    return JSONResponse(status_code=200 if db_ok else 503, content=body.model_dump())
