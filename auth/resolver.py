"""
auth/resolver.py -- Decide who is making a request.

Credential sources, in priority order (first definitive answer wins):
  1. An identity already attached to request.state by an earlier hook.
  2. Auth-disabled mode: fixed admin identity for deployments behind an
     authenticating proxy.
  3. Signed "s4_auth_token" cookie -- set by the browser login flow.
  4. Authorization: Bearer <token> header -- API clients.
  5. ?ticket=... query parameter -- one-time tickets for streaming endpoints,
     only consulted when 3 and 4 produced nothing.

resolve() returns either an Identity or an AuthFailure. It never raises for a
credential problem, so the HTTP boundary can map outcomes to responses in one
place.

Step 1 matters because the authentication middleware and the route-level
dependency both call resolve() on the same request. The first call attaches
the identity; the second returns it without touching the ticket store, so a
ticket is never consumed twice.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import re

from starlette.requests import Request

from auth.audit import AuditEvent, AuditEventType, AuditSink
from auth.models import AuthFailure, FailureKind, Identity, ResourceType
from auth.tickets import TicketStore
from auth.tokens import JwtCodec, VerificationError, VerificationErrorKind, unsign_cookie_value
from core.config import AUTH_COOKIE_NAME, Settings

logger = logging.getLogger("s4.auth")

TICKET_PARAM = "ticket"

# Matched in full against the raw (still percent-encoded) path so an encoded
# object key containing %2F stays one segment. A trailing slash or extra
# segment is not a stream URL, so its ticket is never spent.
_STREAM_PATHS: tuple[tuple[re.Pattern[str], ResourceType], ...] = (
    (re.compile(r"/api/transfer/progress/([^/]+)"), ResourceType.transfer),
    (re.compile(r"/api/objects/upload-progress/([^/]+)"), ResourceType.upload),
)

_VERIFICATION_MESSAGES: dict[VerificationErrorKind, str] = {
    VerificationErrorKind.expired: "Token has expired",
    VerificationErrorKind.malformed: "Invalid token",
    VerificationErrorKind.invalid_payload: "Invalid token payload",
}

MISSING_CREDENTIAL = "Missing or invalid Authorization header"


def proxy_identity() -> Identity:
    """Identity used for every request when auth is disabled."""
    return Identity(id="proxy-user", username="proxy-user", roles=["admin"], allowed_locations=[])


def stream_resource(path: str) -> tuple[str, ResourceType] | None:
    """Map a streaming endpoint path to its (resource, resource_type) scope."""
    path = path.split("?", 1)[0]
    for pattern, resource_type in _STREAM_PATHS:
        match = pattern.fullmatch(path)
        if match:
            return match.group(1), resource_type
    return None


def raw_request_path(request: Request) -> str:
    raw = request.scope.get("raw_path")
    if raw:
        return raw.decode("latin-1")
    return request.url.path


class TokenResolver:
    def __init__(
        self,
        settings: Settings,
        tickets: TicketStore,
        codec: JwtCodec | None = None,
        audit: AuditSink | None = None,
    ) -> None:
        self.settings = settings
        self.tickets = tickets
        self.codec = codec or JwtCodec()
        self.audit = audit

    def resolve(self, request: Request) -> Identity | AuthFailure:
        existing = getattr(request.state, "identity", None)
        if existing is not None:
            return existing

        result = self._resolve(request)
        if isinstance(result, Identity):
            request.state.identity = result
        return result

    def _resolve(self, request: Request) -> Identity | AuthFailure:
        if self.settings.auth_disabled:
            return proxy_identity()

        token = unsign_cookie_value(request.cookies.get(AUTH_COOKIE_NAME), self.settings.cookie_secret)

        if not token:
            auth_header = request.headers.get("Authorization", "")
            if auth_header.startswith("Bearer "):
                token = auth_header[7:] or None

        if not token:
            ticket = request.query_params.get(TICKET_PARAM)
            if ticket:
                return self._from_ticket(request, ticket)
            return AuthFailure(FailureKind.unauthorized, MISSING_CREDENTIAL)

        return self._from_token(request, token)

    def _from_ticket(self, request: Request, ticket: str) -> Identity | AuthFailure:
        path = raw_request_path(request)
        logger.debug("Ticket authentication attempt path=%s ticket=%s...", path, ticket[:10])

        scope = stream_resource(path)
        if scope is None:
            return AuthFailure(FailureKind.bad_request, "Invalid SSE endpoint for ticket authentication")

        resource, resource_type = scope
        record = self.tickets.validate_and_consume(ticket, resource, resource_type)
        if record is None:
            return AuthFailure(FailureKind.unauthorized, "Invalid or expired ticket")

        # Issuance already required an authenticated caller; no JWT to verify.
        return Identity(id=record.user_id, username=record.username, roles=list(record.roles))

    def _from_token(self, request: Request, token: str) -> Identity | AuthFailure:
        result = self.codec.verify(token, self.settings.jwt_secret)
        if isinstance(result, Identity):
            return result
        return self._verification_failure(request, result)

    def _verification_failure(self, request: Request, error: VerificationError) -> AuthFailure:
        if error.kind is VerificationErrorKind.other:
            logger.error(
                "Error verifying JWT on %s %s: %s",
                request.method,
                request.url.path,
                error.detail,
                exc_info=error.cause,
            )
            return AuthFailure(FailureKind.internal, "Authentication error")
        if error.kind is VerificationErrorKind.expired and self.audit is not None:
            self.audit.record(
                AuditEvent(
                    event_type=AuditEventType.token_expired,
                    user_id="unknown",
                    username="unknown",
                    action=request.method,
                    resource=request.url.path,
                    status="denied",
                    details=error.detail or None,
                    client_ip=request.client.host if request.client else None,
                )
            )
        return AuthFailure(FailureKind.unauthorized, _VERIFICATION_MESSAGES[error.kind])
