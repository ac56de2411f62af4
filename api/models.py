"""
API request and response models for the S4 REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Field names follow the browser client's camelCase where it reads them
(expiresIn, resourceType, ...).
"""

from typing import Optional

from pydantic import BaseModel

# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    error: ErrorDetail


# ---------------------------------------------------------------------------
# Health / info
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str


class AuthInfoResponse(BaseModel):
    authMode: str
    authRequired: bool


# ---------------------------------------------------------------------------
# Login / identity
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/auth/login.

    Both fields default to "" so a missing field reaches the route handler
    and gets the same 400 as an empty one, instead of a 422.
    """

    username: str = ""
    password: str = ""


class UserInfo(BaseModel):
    id: str
    username: str
    roles: list[str]


class LoginResponse(BaseModel):
    token: str
    user: UserInfo
    expiresIn: int


class MeResponse(BaseModel):
    user: UserInfo


# ---------------------------------------------------------------------------
# One-time tickets
# ---------------------------------------------------------------------------


class TicketRequest(BaseModel):
    """Request body for POST /api/auth/sse-ticket.

    resourceType is a plain string so an unknown value yields the route's own
    400 message rather than a generic validation error.
    """

    resource: str = ""
    resourceType: str = ""


class TicketResponse(BaseModel):
    ticket: str
    sseUrl: str
    expiresAt: int
    expiresIn: int


class TicketMetricsResponse(BaseModel):
    generated: int
    validated: int
    expired: int
    invalidResource: int
    invalidType: int
    notFound: int
    storeSize: int
