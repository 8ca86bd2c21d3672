"""
Sliding-window rate limiter.

Each key keeps the monotonic timestamps of its admissions inside the
trailing window.  Old entries are discarded lazily on every
``try_acquire`` and eagerly by ``sweep`` (run periodically by the hub),
so memory stays bounded by the keys that were active within one window.
"""

import time
from collections import deque
from typing import Callable, Hashable


class SlidingWindowRateLimiter:
    def __init__(
        self,
        capacity: int,
        window_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.capacity = capacity
        self.window = window_seconds
        self._clock = clock
        self._history: dict[Hashable, deque[float]] = {}

    def _evict(self, stamps: deque[float], now: float) -> None:
        while stamps and now - stamps[0] >= self.window:
            stamps.popleft()

    def try_acquire(self, key: Hashable) -> bool:
        """Admit and record one event for ``key``, or reject without recording."""
        now = self._clock()
        stamps = self._history.setdefault(key, deque())
        self._evict(stamps, now)
        if len(stamps) >= self.capacity:
            return False
        stamps.append(now)
        return True

    def reset(self, key: Hashable) -> None:
        self._history.pop(key, None)

    def sweep(self) -> int:
        """Forget keys with no admissions left in the window.  Returns how many."""
        now = self._clock()
        stale = []
        for key, stamps in self._history.items():
            self._evict(stamps, now)
            if not stamps:
                stale.append(key)
        for key in stale:
            del self._history[key]
        return len(stale)

    def tracked_keys(self) -> int:
        return len(self._history)
