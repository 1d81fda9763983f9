"""Outbound rate limiting for action collaborators.

The api_call action throttles itself per target host with an in-memory
sliding window, so a workflow fanning out over a big loop cannot hammer
one API. This is independent of the step-level error policy.
"""

import asyncio
import threading
import time
from typing import Tuple


class SlidingWindowCounter:
    """Thread-safe sliding window rate counter.

    Uses a two-bucket sliding window algorithm for accuracy
    without per-request storage overhead.
    """

    def __init__(self, max_keys: int = 10_000):
        self._lock = threading.Lock()
        # key -> (current_count, prev_count, current_window_start)
        self._windows: dict[str, Tuple[int, int, float]] = {}
        self._max_keys = max_keys

    def check_and_increment(
        self, key: str, max_requests: int, window_seconds: float
    ) -> Tuple[bool, float]:
        """Check if a request is allowed and count it if so.

        Returns:
            (allowed, retry_after_seconds)
        """
        now = time.monotonic()

        with self._lock:
            entry = self._windows.get(key)

            if entry is None:
                self._windows[key] = (1, 0, now)
                self._maybe_cleanup()
                return (True, 0.0)

            current_count, prev_count, window_start = entry
            elapsed = now - window_start

            if elapsed >= window_seconds:
                if elapsed >= window_seconds * 2:
                    self._windows[key] = (1, 0, now)
                else:
                    self._windows[key] = (1, current_count, now)
                return (True, 0.0)

            # Weighted count: prev * remaining_fraction + current
            weight = 1 - (elapsed / window_seconds)
            estimated = prev_count * weight + current_count

            if estimated >= max_requests:
                return (False, window_seconds - elapsed)

            self._windows[key] = (current_count + 1, prev_count, window_start)
            return (True, 0.0)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def _maybe_cleanup(self):
        """Evict oldest entries if memory bound exceeded."""
        if len(self._windows) > self._max_keys:
            to_remove = int(self._max_keys * 0.2)
            sorted_keys = sorted(self._windows.keys(), key=lambda k: self._windows[k][2])
            for k in sorted_keys[:to_remove]:
                del self._windows[k]


class AsyncRateLimiter:
    """Waits (without blocking the event loop) until a slot is free."""

    def __init__(self, max_requests: int, window_seconds: float = 60.0):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._counter = SlidingWindowCounter()

    async def acquire(self, key: str) -> None:
        if self.max_requests <= 0:
            return
        while True:
            allowed, retry_after = self._counter.check_and_increment(
                key, self.max_requests, self.window_seconds
            )
            if allowed:
                return
            await asyncio.sleep(min(retry_after, 1.0))
