"""
api/main.py -- FastAPI application entry point for credgate.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware        -- adds CORS headers for the frontend origin
  2. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  3. log_requests          -- one access log line per request
  4. authentication_gate   -- places a Principal on request.state.principal

Lifespan builds the signing key, database engine, stores and services once and
hangs them on app.state; routes and the gate read them from there. A missing or
weak SECRET_KEY aborts startup.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.users import router as users_router
from auth.accounts import AccountService, LinkBuilder, TokenLifetimes
from auth.credentials import CredentialService
from auth.ephemeral import EphemeralTokenStore
from auth.errors import ConfigurationError
from auth.gate import authentication_gate
from auth.keys import SigningKey
from auth.models import TokenKind
from auth.notifier import LoggingNotifier, Notifier
from auth.schema import make_engine
from auth.store import IdentityStore
from auth.tokens import SessionTokenCodec
from core.clock import Clock, utcnow
from core.config import Settings, get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("credgate.api")


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def wire_services(
    app: FastAPI,
    settings: Settings,
    key: SigningKey,
    engine: Engine,
    notifier: Notifier,
    clock: Clock = utcnow,
) -> None:
    """Build the stores and services and attach them to app.state."""
    identity_store = IdentityStore(engine)
    codec = SessionTokenCodec(key, settings.session_ttl_ms)

    app.state.engine = engine
    app.state.clock = clock
    app.state.codec = codec
    app.state.identity_store = identity_store
    app.state.credentials = CredentialService(identity_store, codec)
    app.state.accounts = AccountService(
        identities=identity_store,
        verifications=EphemeralTokenStore(engine, TokenKind.VERIFICATION),
        password_resets=EphemeralTokenStore(engine, TokenKind.PASSWORD_RESET),
        invites=EphemeralTokenStore(engine, TokenKind.INVITE),
        notifier=notifier,
        lifetimes=TokenLifetimes.from_settings(settings),
        links=LinkBuilder(settings.public_base_url, settings.frontend_base_url),
    )


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. The signing key is built first so a bad SECRET_KEY fails fast,
    before any database file is created.
    """
    settings = get_settings()
    logger.info("credgate API starting up")
    try:
        key = SigningKey.from_secret(settings.secret_key)
    except ConfigurationError:
        logger.critical("Refusing to start: SECRET_KEY is missing or invalid")
        raise

    engine = make_engine(settings.database_url)
    wire_services(app, settings, key, engine, LoggingNotifier())
    logger.info(
        "Auth initialized (has_users=%s, session_ttl_ms=%d)",
        app.state.identity_store.has_users(),
        settings.session_ttl_ms,
    )

    yield

    engine.dispose()
    logger.info("credgate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="credgate API",
    description="Session tokens, email verification, password reset and invites.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() wraps the app, so the last class registered is the
# outermost. @app.middleware("http") functions are added the same way.
# Registration order below is innermost first: the gate runs closest to the
# routes, after logging, rate limiting and CORS.
# ---------------------------------------------------------------------------

app.middleware("http")(authentication_gate)


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


app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[get_settings().frontend_base_url],
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
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
                detail=str(exc.detail),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
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


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with a dict detail ({"code", "message"}).
    A dict detail is used directly as the error field; anything else is
    wrapped in a generic http_<status> error.
    """
    if isinstance(exc.detail, dict):
        content = {"error": ErrorDetail(**exc.detail).model_dump()}
    else:
        content = ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump()
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The traceback goes to the log only. The client receives a generic message.
    """
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
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version, and whether the database answers."""
    database = "ok"
    try:
        with request.app.state.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.warning("Health check: database unreachable", exc_info=True)
        database = "error"
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=VERSION,
        components={"app": "ok", "database": database},
    )
