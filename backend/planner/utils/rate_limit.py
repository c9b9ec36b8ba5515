"""In-memory rate limiting for per-user endpoint protection."""

from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass

from ..config import settings
from ..errors import RateLimited

_LOGGER = logging.getLogger("planner.ratelimit")


class InMemoryRateLimiter:
    """Sliding-window limiter per key."""

    def __init__(self):
        self._hits = defaultdict(deque)
        self._lock = threading.Lock()

    def allow(self, key: str, max_requests: int, window_seconds: int) -> tuple[bool, int, int]:
        """Record a hit for `key`; return (allowed, remaining, retry_after)."""
        now = time.monotonic()
        with self._lock:
            q = self._hits[key]
            cutoff = now - window_seconds
            while q and q[0] < cutoff:
                q.popleft()
            if len(q) >= max_requests:
                retry_after = max(1, int(window_seconds - (now - q[0])))
                return False, 0, retry_after
            q.append(now)
            return True, max_requests - len(q), 0

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()


@dataclass(frozen=True)
class RatePolicy:
    name: str
    max_requests: int
    window_seconds: int


HOUR = 3600
DAY = 24 * HOUR

STATS = RatePolicy("stats", 60, HOUR)
GENERAL = RatePolicy("general", 100, HOUR)
STRICT = RatePolicy("strict", 10, HOUR)
DAILY = RatePolicy("daily", 5, DAY)
MODERATE = RatePolicy("moderate", 30, HOUR)
MEDIUM = RatePolicy("medium", 50, HOUR)

_limiter = InMemoryRateLimiter()


def get_limiter() -> InMemoryRateLimiter:
    return _limiter


def enforce(policy: RatePolicy, identifier) -> None:
    """Consume one request from `policy` for `identifier` or raise `RateLimited`.

    Limiting is skipped entirely when `RATE_LIMIT_ENABLED` is false.
    """
    if not settings.RATE_LIMIT_ENABLED:
        return
    allowed, _remaining, retry_after = _limiter.allow(
        f"{policy.name}:{identifier}", policy.max_requests, policy.window_seconds
    )
    if allowed:
        return
    _LOGGER.info("rate limit %s blocked %s", policy.name, identifier)
    wait_minutes = max(1, -(-retry_after // 60))
    plural = "s" if wait_minutes != 1 else ""
    raise RateLimited(
        f"Too many requests. Please try again in {wait_minutes} minute{plural}.",
        headers={
            "X-RateLimit-Limit": str(policy.max_requests),
            "X-RateLimit-Remaining": "0",
            "Retry-After": str(retry_after),
        },
    )
