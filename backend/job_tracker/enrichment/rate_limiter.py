"""Sliding-window request pacing for the enrichment worker.

Two limits apply to every request start:

- no more than ``requests_per_minute`` starts in any trailing 60 seconds
- at least ``min_interval`` seconds since the previous start

The limiter is not thread-safe on its own; the worker calls it while holding
its queue lock.
"""

from __future__ import annotations

from collections import deque
from typing import Deque

WINDOW_SECONDS = 60.0


class SlidingWindowRateLimiter:
    """Computes how long to wait before the next request may start."""

    def __init__(self, requests_per_minute: int, min_interval: float = 0.0) -> None:
        if requests_per_minute <= 0:
            raise ValueError("requests_per_minute must be positive")
        self.requests_per_minute = requests_per_minute
        self.min_interval = min_interval
        self._starts: Deque[float] = deque()

    def _trim(self, now: float) -> None:
        while self._starts and now - self._starts[0] >= WINDOW_SECONDS:
            self._starts.popleft()

    def delay(self, now: float) -> float:
        """Seconds from *now* until a request may start (0.0 means go)."""
        self._trim(now)
        wait = 0.0
        if self._starts:
            wait = max(wait, self._starts[-1] + self.min_interval - now)
        if len(self._starts) >= self.requests_per_minute:
            oldest = self._starts[len(self._starts) - self.requests_per_minute]
            wait = max(wait, oldest + WINDOW_SECONDS - now)
        return max(0.0, wait)

    def record(self, now: float) -> None:
        """Register a request start at *now*."""
        self._trim(now)
        self._starts.append(now)

    def starts_within(self, now: float, seconds: float = WINDOW_SECONDS) -> int:
        return sum(1 for start in self._starts if now - start < seconds)
