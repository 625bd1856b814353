"""In-memory token-bucket rate limiter for the anonymous OAuth routes.

Pre-configured tiers:
  - auth:   2 req/s, burst 10  (consent start, provider start, callback)
  - claim:  1 req/s, burst  5  (claim, keyed by caller identity)
"""

from __future__ import annotations

import math
import threading
import time
from collections.abc import Callable

__all__ = [
    "RateLimiter",
    "RateLimitInfo",
    "auth_limiter",
    "claim_limiter",
]


class _Bucket:
    """A single token bucket for one client."""

    __slots__ = ("tokens", "last_refill")

    def __init__(self, capacity: float, now: float):
        self.tokens: float = capacity
        self.last_refill: float = now


class RateLimitInfo:
    """Rate limit state returned by ``check()``."""

    __slots__ = ("allowed", "limit", "remaining", "reset_after")

    def __init__(self, allowed: bool, limit: int, remaining: int, reset_after: float):
        self.allowed = allowed
        self.limit = limit
        self.remaining = remaining
        self.reset_after = reset_after

    def headers(self) -> dict[str, str]:
        """Return rate-limit response headers (RFC 6585 style)."""
        h: dict[str, str] = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.ceil(self.reset_after)),
        }
        if not self.allowed:
            h["Retry-After"] = str(math.ceil(self.reset_after))
        return h


class RateLimiter:
    """Token-bucket rate limiter keyed by client identifier (IP address or user).

    Parameters
    ----------
    rate : float
        Tokens added per second.
    capacity : int
        Maximum burst size (bucket capacity).
    max_idle : float
        Buckets untouched for longer than this are dropped.
    sweep_every : int
        Idle buckets are swept once per this many checks.
    """

    def __init__(
        self,
        rate: float,
        capacity: int,
        *,
        max_idle: float = 3600.0,
        sweep_every: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.rate = rate
        self.capacity = capacity
        self.max_idle = max_idle
        self.sweep_every = sweep_every
        self._clock = clock
        self._buckets: dict[str, _Bucket] = {}
        self._checks = 0
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._buckets)

    def allow(self, key: str) -> bool:
        """Return True if the request is allowed, consuming one token."""
        return self.check(key).allowed

    def check(self, key: str) -> RateLimitInfo:
        """Check rate limit and return detailed info with header values."""
        now = self._clock()

        with self._lock:
            self._checks += 1
            if self._checks >= self.sweep_every:
                self._checks = 0
                self._purge(now, self.max_idle)

            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = self._buckets[key] = _Bucket(self.capacity, now)

            elapsed = now - bucket.last_refill
            bucket.tokens = min(self.capacity, bucket.tokens + elapsed * self.rate)
            bucket.last_refill = now

            if bucket.tokens >= 1.0:
                bucket.tokens -= 1.0
                remaining = int(bucket.tokens)
                reset_after = (self.capacity - bucket.tokens) / self.rate if self.rate > 0 else 0
                return RateLimitInfo(True, self.capacity, remaining, reset_after)

            reset_after = (1.0 - bucket.tokens) / self.rate if self.rate > 0 else 1.0
            return RateLimitInfo(False, self.capacity, 0, reset_after)

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()

    def cleanup(self, max_age: float | None = None) -> int:
        """Remove entries idle longer than *max_age* seconds. Returns count removed."""
        with self._lock:
            return self._purge(self._clock(), self.max_idle if max_age is None else max_age)

    def _purge(self, now: float, max_age: float) -> int:
        # Caller holds self._lock
        stale = [k for k, b in self._buckets.items() if now - b.last_refill > max_age]
        for k in stale:
            del self._buckets[k]
        return len(stale)


auth_limiter = RateLimiter(rate=2.0, capacity=10)
claim_limiter = RateLimiter(rate=1.0, capacity=5)
