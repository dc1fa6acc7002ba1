"""In-memory rate limiter guarding access-code guessing."""

from __future__ import annotations

import threading
import time
from collections import defaultdict, deque


class InMemoryRateLimiter:
    """Per-key limiter over a rolling window of recent hit timestamps.

    Each accepted hit is kept until it is older than the window, so the
    budget frees up one hit at a time rather than resetting on a fixed
    boundary. Rejected hits are not recorded. Callers choose the key;
    code entry uses the client address plus the route path.
    """

    def __init__(self):
        self._hits = defaultdict(deque)
        self._lock = threading.Lock()

    def allow(self, key: str, max_requests: int, window_seconds: int) -> tuple[bool, int]:
        """Record a hit for `key`; returns (allowed, retry_after_seconds).

        `retry_after_seconds` is the time until the oldest kept hit
        leaves the window, at least 1, or 0 when the hit was allowed.
        """
        now = time.monotonic()
        with self._lock:
            hits = self._hits[key]
            cutoff = now - window_seconds
            while hits and hits[0] < cutoff:
                hits.popleft()
            if len(hits) >= max_requests:
                return False, max(1, int(window_seconds - (now - hits[0])))
            hits.append(now)
        return True, 0

    def reset(self, key: str = None) -> None:
        """Forget recorded hits for `key`, or for every key."""
        with self._lock:
            if key is None:
                self._hits.clear()
            else:
                self._hits.pop(key, None)
