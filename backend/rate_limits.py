"""
Per-route request ceilings over sliding windows, keyed by client address.

Each route class has its own limiter; a request that would exceed a ceiling
is rejected with RateLimited and is not counted. The retry hint is the time
until the oldest counted request in the window expires.
"""

import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict

from scout_errors import RateLimited


@dataclass(frozen=True)
class RateLimit:
    window_seconds: int
    max_requests: int
    message: str


DEFAULT_RATE_LIMITS: Dict[str, RateLimit] = {
    "general": RateLimit(15 * 60, 100, "Too many requests, please try again later"),
    "login": RateLimit(15 * 60, 5, "Too many authentication attempts, please try again later"),
    "register": RateLimit(24 * 60 * 60, 3, "Too many registration attempts, please try again tomorrow"),
    "upload": RateLimit(60 * 60, 10, "Too many file uploads, please try again later"),
}


class SlidingWindowLimiter:
    def __init__(self, limit: RateLimit, clock: Callable[[], float] = time.time):
        self.limit = limit
        self.clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()

    def hit(self, key: str) -> int:
        """Count a request for key. Returns the requests left in the window."""
        now = self.clock()
        cutoff = now - self.limit.window_seconds
        with self._lock:
            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= cutoff:
                hits.popleft()
            if len(hits) >= self.limit.max_requests:
                retry_after = max(1, math.ceil(hits[0] + self.limit.window_seconds - now))
                raise RateLimited(self.limit.message, retry_after=retry_after)
            hits.append(now)
            return self.limit.max_requests - len(hits)

    def prune(self) -> None:
        """Forget keys whose hits have all left the window."""
        cutoff = self.clock() - self.limit.window_seconds
        with self._lock:
            for key in [k for k, v in self._hits.items() if not v or v[-1] <= cutoff]:
                del self._hits[key]

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()


class RateGuard:
    """The set of limiters for one process, one per route class."""

    def __init__(
        self,
        limits: Dict[str, RateLimit] = None,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.enabled = enabled
        self._checks = 0
        self.limiters = {
            name: SlidingWindowLimiter(limit, clock)
            for name, limit in (limits or DEFAULT_RATE_LIMITS).items()
        }

    PRUNE_EVERY = 1000

    def check(self, route_class: str, client: str) -> None:
        if not self.enabled:
            return
        self._checks += 1
        if self._checks % self.PRUNE_EVERY == 0:
            self.prune()
        self.limiters[route_class].hit(client)

    def prune(self) -> None:
        for limiter in self.limiters.values():
            limiter.prune()
