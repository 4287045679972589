"""In-memory sliding window rate limiter for credential endpoints."""

from __future__ import annotations

import math
import time
from collections import deque
from threading import Lock
from typing import Callable, Deque, DefaultDict


class SlidingWindowRateLimiter:
    """Thread-safe sliding window rate limiter, keyed per action and client."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: int,
        *,
        time_source: Callable[[], float] = time.time,
    ) -> None:
        """Initialise limiter parameters and per-key storage."""
        self._max_requests = max_requests
        self._window = window_seconds
        self._time = time_source
        self._events: DefaultDict[str, Deque[float]] = DefaultDict(deque)
        self._lock = Lock()
        self._last_sweep = time_source()

    def _prune(self, key: str, queue: Deque[float], now: float) -> None:
        while queue and now - queue[0] >= self._window:
            queue.popleft()
        if not queue:
            # Idle keys are dropped so one-off clients do not accumulate.
            self._events.pop(key, None)

    def _sweep(self, now: float) -> None:
        """Forget every key whose newest hit has left the window; runs at most once per window."""
        if now - self._last_sweep < self._window:
            return
        self._last_sweep = now
        idle = [key for key, queue in self._events.items() if not queue or now - queue[-1] >= self._window]
        for key in idle:
            del self._events[key]

    def allow(self, key: str) -> bool:
        """Return ``True`` and record the hit when ``key`` is within the limit."""
        now = self._time()
        with self._lock:
            self._sweep(now)
            queue = self._events.get(key)
            if queue is not None:
                self._prune(key, queue, now)
                if len(queue) >= self._max_requests:
                    return False
            self._events[key].append(now)
            return True

    def retry_after(self, key: str) -> int:
        """Seconds until ``key`` regains a slot; ``0`` when it already has one."""
        now = self._time()
        with self._lock:
            queue = self._events.get(key)
            if not queue:
                return 0
            self._prune(key, queue, now)
            if len(queue) < self._max_requests:
                return 0
            return max(1, math.ceil(self._window - (now - queue[0])))
