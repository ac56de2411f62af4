"""
auth/tickets.py -- One-time, resource-scoped tickets for streaming endpoints.

EventSource cannot send an Authorization header, and putting a JWT in a query
string leaks a long-lived credential into proxy and access logs. Instead an
authenticated client asks for a ticket, then opens
/api/transfer/progress/<jobId>?ticket=... (or the upload equivalent). The
ticket is:

  - 256 random bits, base64url without padding
  - valid for a short TTL (60 s by default)
  - bound to one (resource, resource_type) pair
  - consumed by the first successful validation

Lifecycle per ticket: issued -> consumed, or issued -> expired. Both end
states remove the record. Abandoned tickets are removed by sweep(), which the
application runs on an interval through start_sweeper().

Concurrency: one threading.Lock guards the dict. Sync FastAPI routes run in a
thread pool, so two requests carrying the same ticket can race; the
lookup-check-delete sequence in validate_and_consume() runs entirely under
the lock so only one of them wins.

Mismatched resource or resource type does NOT consume the ticket, so a client
that raced its own URL construction can retry. See DESIGN.md.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import secrets
import threading
import time
from collections.abc import Callable
from dataclasses import replace
from typing import NamedTuple

from auth.models import Identity, ResourceType, TicketMetrics, TicketRecord

logger = logging.getLogger("s4.tickets")

DEFAULT_TTL_SECONDS = 60
DEFAULT_SWEEP_INTERVAL_SECONDS = 60.0
_TICKET_BYTES = 32


class IssuedTicket(NamedTuple):
    ticket: str
    expires_at: int  # epoch milliseconds


def _new_ticket() -> str:
    return base64.urlsafe_b64encode(secrets.token_bytes(_TICKET_BYTES)).rstrip(b"=").decode("ascii")


class TicketStore:
    """In-memory ticket store owned by the application lifespan.

    Example:
        store = TicketStore(default_ttl_seconds=60)
        issued = store.issue(identity, "job-1", ResourceType.transfer)
        record = store.validate_and_consume(issued.ticket, "job-1", ResourceType.transfer)
    """

    def __init__(
        self,
        default_ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.default_ttl_seconds = default_ttl_seconds
        self._clock = clock
        self._tickets: dict[str, TicketRecord] = {}
        self._metrics = TicketMetrics()
        self._lock = threading.Lock()
        self._sweeper: asyncio.Task | None = None

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    # ------------------------------------------------------------------
    # Issue / consume
    # ------------------------------------------------------------------

    def issue(
        self,
        identity: Identity,
        resource: str,
        resource_type: ResourceType,
        ttl_seconds: int | None = None,
    ) -> IssuedTicket:
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        ticket = _new_ticket()
        now = self.now_ms()
        record = TicketRecord(
            user_id=identity.id,
            username=identity.username,
            roles=tuple(dict.fromkeys(identity.roles)),
            resource=resource,
            resource_type=ResourceType(resource_type),
            created_at=now,
            expires_at=now + ttl * 1000,
        )
        with self._lock:
            self._tickets[ticket] = record
            self._metrics.generated += 1
            size = len(self._tickets)

        logger.info(
            "Issued ticket user=%s resource=%s type=%s ttl=%ds store_size=%d",
            identity.username,
            resource,
            record.resource_type.value,
            ttl,
            size,
        )
        return IssuedTicket(ticket, record.expires_at)

    def validate_and_consume(
        self,
        ticket: str,
        resource: str,
        resource_type: ResourceType,
    ) -> TicketRecord | None:
        """Return the record and remove it, or None if the ticket is unusable here."""
        now = self.now_ms()
        with self._lock:
            record = self._tickets.get(ticket)
            if record is None:
                self._metrics.not_found += 1
                outcome = "not_found"
            elif now > record.expires_at:
                del self._tickets[ticket]
                self._metrics.expired += 1
                outcome = "expired"
            elif record.resource_type != resource_type:
                self._metrics.invalid_type += 1
                outcome = "invalid_type"
            elif record.resource != resource:
                self._metrics.invalid_resource += 1
                outcome = "invalid_resource"
            else:
                del self._tickets[ticket]
                self._metrics.validated += 1
                outcome = "validated"
            size = len(self._tickets)

        if outcome == "validated":
            logger.info(
                "Validated ticket user=%s resource=%s type=%s store_size=%d",
                record.username,
                resource,
                record.resource_type.value,
                size,
            )
            return record
        if outcome in ("invalid_type", "invalid_resource"):
            logger.warning(
                "Ticket scope mismatch (%s): expected %s/%s, got %s/%s",
                outcome,
                record.resource_type.value,
                record.resource,
                getattr(resource_type, "value", resource_type),
                resource,
            )
        else:
            logger.debug("Ticket rejected (%s) for resource=%s", outcome, resource)
        return None

    # ------------------------------------------------------------------
    # Expiry sweep
    # ------------------------------------------------------------------

    def sweep(self) -> int:
        """Remove every expired record. Returns the number removed."""
        now = self.now_ms()
        with self._lock:
            expired = [t for t, record in self._tickets.items() if record.expires_at < now]
            for ticket in expired:
                del self._tickets[ticket]
            size = len(self._tickets)
        if expired:
            logger.info("Swept %d expired tickets (store_size=%d)", len(expired), size)
        return len(expired)

    async def _sweep_loop(self, interval_seconds: float) -> None:
        # CancelledError from stop_sweeper() surfaces out of asyncio.sleep.
        while True:
            await asyncio.sleep(interval_seconds)
            self.sweep()

    def start_sweeper(self, interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS) -> asyncio.Task:
        """Schedule sweep() every interval_seconds on the running event loop."""
        if self._sweeper is not None and not self._sweeper.done():
            return self._sweeper
        self._sweeper = asyncio.create_task(self._sweep_loop(interval_seconds), name="ticket-sweeper")
        logger.info(
            "Ticket sweeper started (ttl=%ds, interval=%.0fs)",
            self.default_ttl_seconds,
            interval_seconds,
        )
        return self._sweeper

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None
        logger.info("Ticket sweeper stopped")

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def size(self) -> int:
        with self._lock:
            return len(self._tickets)

    def snapshot(self) -> list[TicketRecord]:
        """All live records. Debugging only -- never serve this from a route."""
        with self._lock:
            return list(self._tickets.values())

    def metrics(self) -> TicketMetrics:
        with self._lock:
            return replace(self._metrics)

    # ------------------------------------------------------------------
    # Test support
    # ------------------------------------------------------------------

    def reset_metrics(self) -> None:
        with self._lock:
            self._metrics = TicketMetrics()

    def clear(self) -> None:
        with self._lock:
            self._tickets.clear()
        logger.warning("Cleared all tickets")
