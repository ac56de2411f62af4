"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

All credential handling lives in auth.resolver.TokenResolver; these helpers
only adapt its Identity | AuthFailure outcome to FastAPI:

try_get_current_identity() is the soft variant (returns None on failure).
get_current_identity() raises HTTPException with the failure's status code.
authorize_location() raises HTTP 403 when a non-admin touches a location it
was not granted.

The resolver instance is created in the application lifespan and read from
app.state.token_resolver.

auth/dependencies.py may import from fastapi (for HTTPException/Request)
because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.audit import AuditEvent, AuditEventType, AuditSink
from auth.models import AuthFailure, FailureKind, Identity
from auth.resolver import TokenResolver

_FAILURE_CODES: dict[FailureKind, str] = {
    FailureKind.unauthorized: "unauthorized",
    FailureKind.bad_request: "bad_request",
    FailureKind.internal: "internal_error",
}


def failure_detail(failure: AuthFailure) -> dict:
    return {"code": _FAILURE_CODES[failure.kind], "message": failure.message}


def resolve_request(request: Request) -> Identity | AuthFailure:
    resolver: TokenResolver = request.app.state.token_resolver
    return resolver.resolve(request)


def try_get_current_identity(request: Request) -> Identity | None:
    """Return the caller's Identity, or None. Never raises."""
    result = resolve_request(request)
    return result if isinstance(result, Identity) else None


def get_current_identity(request: Request) -> Identity:
    """Require authentication.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: Identity = Depends(get_current_identity)): ...
    """
    result = resolve_request(request)
    if isinstance(result, AuthFailure):
        raise HTTPException(status_code=result.status_code, detail=failure_detail(result))
    return result


def authorize_location(identity: Identity, location_id: str, audit: AuditSink | None = None) -> None:
    """Raise HTTP 403 unless identity may access location_id. Admins may access all.

    A denial is recorded on audit when one is given.
    """
    if identity.is_admin:
        return
    if location_id not in identity.allowed_locations:
        if audit is not None:
            audit.record(
                AuditEvent.for_identity(
                    identity,
                    AuditEventType.access_denied,
                    action="access",
                    resource=f"location:{location_id}",
                    status="denied",
                )
            )
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": f"Access denied to location: {location_id}"},
        )
