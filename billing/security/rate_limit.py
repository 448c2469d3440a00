"""Sliding-window rate limiter for the gateway callback endpoint."""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from threading import Lock
from typing import Callable


class RateLimitExceeded(Exception):
    """Raised when a caller exceeds the configured request budget."""


@dataclass(frozen=True)
class RateLimitConfig:
    limit: int
    window_seconds: float


class RateLimiter:
    """Sliding-window limiter keyed by caller identifier."""

    def __init__(
        self,
        *,
        limit: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = RateLimitConfig(limit=limit, window_seconds=window_seconds)
        self._events: dict[str, deque[float]] = {}
        self._lock = Lock()
        self._clock = clock

    def allow(self, key: str) -> bool:
        """Return True if a request for ``key`` should proceed."""

        now = self._clock()
        with self._lock:
            queue = self._events.setdefault(key, deque())
            window_start = now - self._config.window_seconds
            while queue and queue[0] <= window_start:
                queue.popleft()
            if len(queue) >= self._config.limit:
                return False
            queue.append(now)
        return True

    def assert_allow(self, key: str) -> None:
        """Raise :class:`RateLimitExceeded` if the request should be rejected."""

        if not self.allow(key):
            raise RateLimitExceeded(f"rate limit exceeded for key={key}")
