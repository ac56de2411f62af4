"""
api/routes/auth.py -- Authentication REST endpoints.

Routes:
  GET  /api/auth/info            -- auth mode and whether login is required (public)
  POST /api/auth/login           -- password login; sets signed JWT cookie (public)
  POST /api/auth/logout          -- clears the cookie
  GET  /api/auth/me              -- current identity
  POST /api/auth/sse-ticket      -- one-time ticket for a streaming endpoint
  GET  /api/auth/ticket-metrics  -- ticket counters (read-only)

Security:
  Login is throttled to LOGIN_RATE_LIMIT attempts per minute per client
  address and ticket issuance to TICKET_RATE_LIMIT per minute. Both are
  audited when the limit trips.
  Credentials are compared in constant time (Settings.validate_credentials).
  Cache-Control: no-store on every login response.
  The ticket store's clear()/reset_metrics() are deliberately not routed.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from slowapi.util import get_remote_address

from api.limiter import limiter
from api.models import (
    AuthInfoResponse,
    LoginRequest,
    LoginResponse,
    MeResponse,
    TicketMetricsResponse,
    TicketRequest,
    TicketResponse,
    UserInfo,
)
from auth.audit import AuditEvent, AuditEventType, AuditSink
from auth.dependencies import get_current_identity, try_get_current_identity
from auth.models import Identity, ResourceType
from auth.ratelimit import RateLimiter
from auth.tickets import TicketStore
from auth.tokens import JwtCodec, clear_auth_cookie, set_auth_cookie
from core.config import Settings

logger = logging.getLogger("s4.api")

_RATE_WINDOW_MS = 60_000

_STREAM_URLS: dict[ResourceType, str] = {
    ResourceType.transfer: "/transfer/progress/{resource}?ticket={ticket}",
    ResourceType.upload: "/objects/upload-progress/{resource}?ticket={ticket}",
}

router = APIRouter()


def _enforce_rate_limit(request: Request, action: str, limit: int, identity: Identity | None = None) -> None:
    """Raise HTTP 429 if client address has used up limit for action this minute."""
    rate_limiter: RateLimiter = request.app.state.rate_limiter
    client_ip = get_remote_address(request)
    key = f"{action}:{client_ip}"
    if not rate_limiter.check(key, limit, _RATE_WINDOW_MS):
        return

    retry_after = rate_limiter.reset_time(key)
    logger.warning("Rate limit exceeded action=%s ip=%s retry_after=%ds", action, client_ip, retry_after)
    audit: AuditSink = request.app.state.audit
    audit.record(
        AuditEvent(
            event_type=AuditEventType.rate_limit_exceeded,
            user_id=identity.id if identity else "unknown",
            username=identity.username if identity else "unknown",
            action=action,
            resource=f"auth:{action}",
            status="denied",
            client_ip=client_ip,
        )
    )
    raise HTTPException(
        status_code=429,
        detail={
            "code": "rate_limited",
            "message": f"Too many {action} requests. Maximum {limit} per minute.",
            "retryAfter": retry_after,
        },
        headers={"Retry-After": str(retry_after)},
    )


def _user_info(identity: Identity) -> UserInfo:
    return UserInfo(id=identity.id, username=identity.username, roles=list(identity.roles))


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit("60/minute")  # must be ABOVE @router to preserve FastAPI introspection
@router.get("/auth/info", response_model=AuthInfoResponse)
def auth_info(request: Request) -> AuthInfoResponse:
    """Tell the browser whether it needs to show a login form."""
    settings: Settings = request.app.state.settings
    return AuthInfoResponse(authMode=settings.auth_mode, authRequired=settings.auth_enabled)


@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest | None = None) -> JSONResponse:
    """Authenticate with UI_USERNAME / UI_PASSWORD; return a JWT and set the cookie.

    The same message is returned for a wrong username and a wrong password.
    """
    settings: Settings = request.app.state.settings
    audit: AuditSink = request.app.state.audit
    no_store = {"Cache-Control": "no-store"}

    if not settings.auth_enabled:
        raise HTTPException(
            status_code=400,
            detail={"code": "bad_request", "message": "Authentication is not enabled"},
            headers=no_store,
        )

    _enforce_rate_limit(request, "login", settings.login_rate_limit)

    if body is None or not body.username or not body.password:
        raise HTTPException(
            status_code=400,
            detail={"code": "bad_request", "message": "Username and password are required"},
            headers=no_store,
        )

    client_ip = get_remote_address(request)
    if not settings.validate_credentials(body.username, body.password):
        logger.info("Failed login attempt for username=%s ip=%s", body.username, client_ip)
        audit.record(
            AuditEvent(
                event_type=AuditEventType.login_failure,
                user_id="unknown",
                username=body.username,
                action="login",
                resource="auth:login",
                status="failure",
                details="Invalid credentials",
                client_ip=client_ip,
            )
        )
        raise HTTPException(
            status_code=401,
            detail={"code": "bad_credentials", "message": "Invalid username or password"},
            headers=no_store,
        )

    identity = Identity(id="admin", username=body.username, roles=["admin"])
    codec: JwtCodec = request.app.state.jwt_codec
    token = codec.sign(identity, settings.jwt_secret, settings.jwt_expiration_seconds)

    logger.info("Successful login for username=%s ip=%s", identity.username, client_ip)
    audit.record(
        AuditEvent.for_identity(
            identity,
            AuditEventType.login_success,
            action="login",
            resource="auth:login",
            status="success",
            client_ip=client_ip,
        )
    )

    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            token=token,
            user=_user_info(identity),
            expiresIn=settings.jwt_expiration_seconds,
        ).model_dump(),
    )
    set_auth_cookie(resp, token, settings.cookie_secret, settings.auth_cookie_options())
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout")
def logout(request: Request) -> JSONResponse:
    """Clear the auth cookie. The JWT itself stays valid until it expires."""
    identity = try_get_current_identity(request)
    if identity is not None:
        audit: AuditSink = request.app.state.audit
        audit.record(
            AuditEvent.for_identity(
                identity,
                AuditEventType.logout,
                action="logout",
                resource="auth:logout",
                status="success",
                client_ip=get_remote_address(request),
            )
        )
    resp = JSONResponse(content={"message": "Logged out successfully"})
    clear_auth_cookie(resp)
    return resp


@router.get("/auth/me", response_model=MeResponse)
def me(identity: Identity = Depends(get_current_identity)) -> MeResponse:
    return MeResponse(user=_user_info(identity))


@router.post("/auth/sse-ticket", response_model=TicketResponse)
def issue_sse_ticket(
    request: Request,
    body: TicketRequest | None = None,
    identity: Identity = Depends(get_current_identity),
) -> TicketResponse:
    """Issue a one-time ticket for a transfer or upload progress stream.

    The client opens the returned sseUrl (prefixed with /api) with
    EventSource. The ticket works once, for that resource only, and expires
    after SSE_TICKET_TTL_SECONDS.
    """
    settings: Settings = request.app.state.settings
    _enforce_rate_limit(request, "sse-ticket", settings.ticket_rate_limit, identity)

    if body is None or not body.resource or not body.resourceType:
        raise HTTPException(
            status_code=400,
            detail={"code": "bad_request", "message": "Resource and resourceType are required"},
        )
    try:
        resource_type = ResourceType(body.resourceType)
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail={"code": "bad_request", "message": "Invalid resourceType. Must be 'transfer' or 'upload'"},
        ) from None

    store: TicketStore = request.app.state.ticket_store
    issued = store.issue(identity, body.resource, resource_type)
    expires_in = max(0, (issued.expires_at - store.now_ms()) // 1000)

    audit: AuditSink = request.app.state.audit
    audit.record(
        AuditEvent.for_identity(
            identity,
            AuditEventType.ticket_issued,
            action="sse-ticket",
            resource=f"{resource_type.value}:{body.resource}",
            status="success",
            client_ip=get_remote_address(request),
        )
    )

    return TicketResponse(
        ticket=issued.ticket,
        sseUrl=_STREAM_URLS[resource_type].format(resource=body.resource, ticket=issued.ticket),
        expiresAt=issued.expires_at,
        expiresIn=expires_in,
    )


@router.get("/auth/ticket-metrics", response_model=TicketMetricsResponse)
def ticket_metrics(request: Request, identity: Identity = Depends(get_current_identity)) -> TicketMetricsResponse:
    store: TicketStore = request.app.state.ticket_store
    m = store.metrics()
    return TicketMetricsResponse(
        generated=m.generated,
        validated=m.validated,
        expired=m.expired,
        invalidResource=m.invalid_resource,
        invalidType=m.invalid_type,
        notFound=m.not_found,
        storeSize=store.size(),
    )
