"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores, the codec, and
the resolver do the work; these types only own the shape.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ResourceType(str, Enum):
    """Kind of streaming endpoint a ticket is scoped to."""

    transfer = "transfer"
    upload = "upload"


@dataclass
class Identity:
    """The caller of one request.

    Built fresh per request and never persisted. allowed_locations is empty for
    admins (the admin role bypasses location checks) and for identities built
    from tickets.
    """

    id: str
    username: str
    roles: list[str] = field(default_factory=list)
    allowed_locations: list[str] = field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        return "admin" in self.roles


@dataclass(frozen=True)
class TicketRecord:
    """What a one-time ticket stands for. Timestamps are epoch milliseconds."""

    user_id: str
    username: str
    roles: tuple[str, ...]
    resource: str
    resource_type: ResourceType
    created_at: int
    expires_at: int


@dataclass
class TicketMetrics:
    generated: int = 0
    validated: int = 0
    expired: int = 0
    invalid_resource: int = 0
    invalid_type: int = 0
    not_found: int = 0


class FailureKind(str, Enum):
    """Closed set of credential resolution failures, one per HTTP status."""

    unauthorized = "unauthorized"
    bad_request = "bad_request"
    internal = "internal"


@dataclass(frozen=True)
class AuthFailure:
    kind: FailureKind
    message: str

    @property
    def status_code(self) -> int:
        return _FAILURE_STATUS[self.kind]


_FAILURE_STATUS: dict[FailureKind, int] = {
    FailureKind.unauthorized: 401,
    FailureKind.bad_request: 400,
    FailureKind.internal: 500,
}
