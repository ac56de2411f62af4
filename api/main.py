"""
api/main.py -- FastAPI application entry point for the S4 API.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware          -- browser origins, credentials, preflight
  2. log_requests            -- one access line per request
  3. SlowAPIMiddleware       -- per-route limits from api.limiter
  4. authenticate_requests   -- resolves the caller for every non-public /api route

Starlette makes the LAST registered middleware the outermost one, so they
are registered below in the reverse of that order.

Lifespan builds the authentication core on app.state (ticket store, resolver,
rate limiter, audit sink) and owns the ticket sweeper task, which is stopped
on shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.auth import router as auth_router
from api.routes.progress import router as progress_router
from auth.audit import LoggingAuditSink
from auth.dependencies import failure_detail, get_current_identity, resolve_request
from auth.models import AuthFailure, Identity
from auth.ratelimit import MemoryRateLimiter
from auth.resolver import TokenResolver
from auth.tickets import TicketStore
from auth.tokens import JwtCodec
from core.config import HEALTH_ROUTE, Settings, get_settings, is_public_route
from core.progress import ProgressBoard

APP_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("s4.api")


# ---------------------------------------------------------------------------
# Application state
# ---------------------------------------------------------------------------


def configure_state(app: FastAPI, settings: Settings, clock: Callable[[], float] = time.time) -> None:
    """Build the authentication core and attach it to app.state.

    Everything is constructed here, per application, rather than at import
    time, so tests can build an isolated core with their own settings/clock.
    """
    app.state.settings = settings
    app.state.jwt_codec = JwtCodec(clock=clock)
    app.state.ticket_store = TicketStore(default_ttl_seconds=settings.sse_ticket_ttl_seconds, clock=clock)
    app.state.audit = LoggingAuditSink(enabled=settings.audit_log_enabled)
    app.state.token_resolver = TokenResolver(settings, app.state.ticket_store, app.state.jwt_codec, app.state.audit)
    app.state.rate_limiter = MemoryRateLimiter()
    app.state.progress = ProgressBoard()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the auth core on startup; stop the ticket sweeper on shutdown."""
    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())
    configure_state(app, settings)
    app.state.ticket_store.start_sweeper(settings.ticket_sweep_interval_seconds)
    logger.info(
        "S4 API starting up (auth_mode=%s, auth_disabled=%s, environment=%s)",
        settings.auth_mode,
        settings.auth_disabled,
        settings.environment,
    )

    yield

    await app.state.ticket_store.stop_sweeper()
    logger.info("S4 API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="S4 API",
    description="Storage console API: authentication, one-time streaming tickets, progress streams.",
    version=APP_VERSION,
    lifespan=lifespan,
    # Auth-protected equivalents of /docs and /redoc are registered below.
    docs_url=None,
    redoc_url=None,
)

# Attach the shared limiter to app.state so SlowAPIMiddleware can locate it.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Authentication middleware
#
# Every /api route except the public ones (health, auth info, login) needs a
# caller. Resolving here, before routing, means a ticket on a streaming URL is
# consumed exactly once: the route's get_current_identity() dependency later
# finds the identity already on request.state.
# ---------------------------------------------------------------------------


def _requires_auth(request: Request) -> bool:
    path = request.url.path
    if request.method == "OPTIONS":
        return False
    if path != HEALTH_ROUTE and not path.startswith(HEALTH_ROUTE + "/"):
        return False
    return not is_public_route(path)


@app.middleware("http")
async def authenticate_requests(request: Request, call_next):
    if _requires_auth(request):
        result = resolve_request(request)
        if isinstance(result, AuthFailure):
            logger.debug("Rejected %s %s: %s", request.method, request.url.path, result.message)
            return JSONResponse(status_code=result.status_code, content={"error": failure_detail(result)})
    return await call_next(request)


app.add_middleware(SlowAPIMiddleware)


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


app.add_middleware(
    CORSMiddleware,
    # Reflects the request origin.
    allow_origin_regex=".*",
    allow_credentials=True,
    allow_methods=["GET", "PUT", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Cookie"],
    expose_headers=["Content-Disposition"],
    max_age=3600,
)


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api", tags=["Auth"])
app.include_router(progress_router, prefix="/api", tags=["Progress"])


@app.get("/docs", include_in_schema=False)
async def docs(identity: Identity = Depends(get_current_identity)):
    """Swagger UI -- requires authentication."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="S4 API")


@app.get("/redoc", include_in_schema=False)
async def redoc(identity: Identity = Depends(get_current_identity)):
    """ReDoc UI -- requires authentication."""
    return get_redoc_html(openapi_url="/openapi.json", title="S4 API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a slowapi limit is exceeded."""
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


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with detail={"code": ..., "message": ...}.
    A dict detail is used directly as the error field; headers (Retry-After,
    Cache-Control) are carried over.
    """
    headers = getattr(exc, "headers", None)
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=headers)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
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
# Public and unthrottled -- load balancers poll it.
# ---------------------------------------------------------------------------


@app.get(HEALTH_ROUTE, tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=APP_VERSION)
