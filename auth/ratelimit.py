"""
auth/ratelimit.py -- Per-key rate limiting for login and ticket issuance.

Routes, not the resolver, consume this: login is throttled per client address
to slow password guessing, and ticket issuance is throttled so a client cannot
flood the ticket store.

MemoryRateLimiter is built on `limits`, the engine slowapi runs on, with the
moving-window strategy and in-process storage. Counters reset on restart and
are not shared between workers. Keys whose window has emptied are pruned once
the tracked set reaches a threshold, so one-off client addresses do not pile up.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import math
import threading
import time
from abc import ABC, abstractmethod

from limits import RateLimitItem, RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter


class RateLimiter(ABC):
    @abstractmethod
    def check(self, key: str, max_events: int, window_ms: int) -> bool:
        """Record one event for key. Returns True if the limit is now exceeded."""

    @abstractmethod
    def reset_time(self, key: str) -> int:
        """Seconds until key may act again (0 if it is not limited)."""


class MemoryRateLimiter(RateLimiter):
    def __init__(self, prune_threshold: int = 1024) -> None:
        self._storage = MemoryStorage()
        self._strategy = MovingWindowRateLimiter(self._storage)
        # reset_time() needs the window the key was last checked against.
        self._items: dict[str, RateLimitItem] = {}
        self._lock = threading.Lock()
        self._min_prune_threshold = prune_threshold
        self._prune_threshold = prune_threshold

    def check(self, key: str, max_events: int, window_ms: int) -> bool:
        item = RateLimitItemPerSecond(max_events, max(1, math.ceil(window_ms / 1000)))
        with self._lock:
            crowded = len(self._items) >= self._prune_threshold
        if crowded:
            self.prune()
        limited = not self._strategy.hit(item, key)
        with self._lock:
            self._items[key] = item
        return limited

    def reset_time(self, key: str) -> int:
        with self._lock:
            item = self._items.get(key)
        if item is None:
            return 0
        stats = self._strategy.get_window_stats(item, key)
        if stats.remaining >= item.amount:
            self._forget(key, item)
            return 0
        if stats.remaining > 0:
            return 0
        return max(0, math.ceil(stats.reset_time - time.time()))

    def prune(self) -> int:
        """Drop keys with no events left in their window. Returns how many were dropped."""
        with self._lock:
            tracked = list(self._items.items())
        dropped = 0
        for key, item in tracked:
            if self._strategy.get_window_stats(item, key).remaining >= item.amount:
                dropped += self._forget(key, item)
        with self._lock:
            # Keys still inside their window stay; only prune again once the map doubles.
            self._prune_threshold = max(self._min_prune_threshold, 2 * len(self._items))
        return dropped

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._items)

    def _forget(self, key: str, item: RateLimitItem) -> int:
        with self._lock:
            if self._items.get(key) is item:
                del self._items[key]
                return 1
        return 0

    def reset(self) -> None:
        """Forget every counter. Test support."""
        self._storage.reset()
        with self._lock:
            self._items.clear()
            self._prune_threshold = self._min_prune_threshold
