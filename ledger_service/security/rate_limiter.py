"""In-memory sliding window throttle for failed login attempts."""

from __future__ import annotations

import time
from collections import deque
from threading import Lock
from typing import Deque, DefaultDict


class SlidingWindowLoginThrottle:
    """Thread-safe failure counter; a key is blocked once it hits the limit within the window."""

    def __init__(self, max_failures: int, window_seconds: int) -> None:
        """Initialise limiter parameters and per-key storage."""
        self._max_failures = max_failures
        self._window = window_seconds
        self._failures: DefaultDict[str, Deque[float]] = DefaultDict(deque)
        self._lock = Lock()

    def is_blocked(self, key: str) -> bool:
        """Return ``True`` when ``key`` has exhausted its failed attempts."""
        now = time.time()
        with self._lock:
            queue = self._failures[key]
            self._evict(queue, now)
            return len(queue) >= self._max_failures

    def record_failure(self, key: str) -> None:
        now = time.time()
        with self._lock:
            queue = self._failures[key]
            self._evict(queue, now)
            queue.append(now)

    def reset(self, key: str) -> None:
        with self._lock:
            self._failures.pop(key, None)

    def _evict(self, queue: Deque[float], now: float) -> None:
        while queue and now - queue[0] > self._window:
            queue.popleft()
