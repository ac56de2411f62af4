"""
auth/audit.py -- Security audit events.

AuditSink.record() is fire-and-forget: an audit failure must never turn a
successful login into a 500, so implementations swallow their own errors and
report them to the application log instead.

LoggingAuditSink writes one line per event to the "s4.audit" logger. Route
that logger to its own handler to ship audit events separately.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from auth.models import Identity

logger = logging.getLogger("s4.audit")


class AuditEventType(str, Enum):
    login_success = "auth.login.success"
    login_failure = "auth.login.failure"
    logout = "auth.logout"
    token_expired = "auth.token.expired"
    ticket_issued = "auth.ticket.issued"
    access_denied = "access.denied"
    rate_limit_exceeded = "access.ratelimit"


@dataclass
class AuditEvent:
    event_type: AuditEventType
    user_id: str
    username: str
    action: str
    resource: str
    status: str  # "success", "failure", "denied"
    details: str | None = None
    client_ip: str | None = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @classmethod
    def for_identity(cls, identity: Identity, event_type: AuditEventType, **kwargs) -> "AuditEvent":
        return cls(event_type=event_type, user_id=identity.id, username=identity.username, **kwargs)


class AuditSink(ABC):
    @abstractmethod
    def record(self, event: AuditEvent) -> None:
        """Record event. Must not raise."""


class LoggingAuditSink(AuditSink):
    def __init__(self, enabled: bool = True, target: logging.Logger = logger) -> None:
        self.enabled = enabled
        self._logger = target

    def record(self, event: AuditEvent) -> None:
        if not self.enabled:
            return
        try:
            self._logger.info(
                "Audit event type=%s user=%s(%s) action=%s resource=%s status=%s ip=%s details=%s ts=%s",
                event.event_type.value,
                event.username,
                event.user_id,
                event.action,
                event.resource,
                event.status,
                event.client_ip or "-",
                event.details or "-",
                event.timestamp,
            )
        except Exception:
            logging.getLogger("s4.auth").exception("Failed to record audit event %s", event.event_type)
