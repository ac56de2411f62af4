"""
core/progress.py -- Latest-progress board for streaming endpoints.

Transfers and uploads publish their progress here; the server-sent event
routes read it. Only the most recent event per resource is kept.

Usage:
    board = ProgressBoard()
    board.publish("transfer", "job-1", {"status": "running", "loaded": 10, "total": 100})
    board.latest("transfer", "job-1")   # returns a copy of the dict, or None
    board.discard("transfer", "job-1")
"""

import threading
from typing import Optional

TERMINAL_STATUSES = frozenset({"completed", "failed", "cancelled"})


def is_terminal(event: dict) -> bool:
    return event.get("status") in TERMINAL_STATUSES


class ProgressBoard:
    def __init__(self) -> None:
        self._events: dict[tuple[str, str], dict] = {}
        self._versions: dict[tuple[str, str], int] = {}
        self._lock = threading.Lock()

    def publish(self, kind: str, resource: str, event: dict) -> int:
        """Replace the latest event for (kind, resource). Returns its version number."""
        key = (kind, resource)
        with self._lock:
            self._events[key] = dict(event)
            self._versions[key] = self._versions.get(key, 0) + 1
            return self._versions[key]

    def latest(self, kind: str, resource: str) -> Optional[dict]:
        with self._lock:
            event = self._events.get((kind, resource))
            return dict(event) if event is not None else None

    def version(self, kind: str, resource: str) -> int:
        with self._lock:
            return self._versions.get((kind, resource), 0)

    def discard(self, kind: str, resource: str) -> None:
        with self._lock:
            self._events.pop((kind, resource), None)
            self._versions.pop((kind, resource), None)
