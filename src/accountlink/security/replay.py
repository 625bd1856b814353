# Replay guard - single-use claims for sealed state ids.
# Created: 2026-10-19
#
# claim_id() is an atomic insert-if-absent with a TTL. The first caller for an
# id wins; everyone after it loses until the TTL elapses.

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Protocol

from accountlink.errors import StoreError

if TYPE_CHECKING:
    import redis.asyncio

logger = logging.getLogger(__name__)

_MIN_TTL_MS = 1


class ReplayGuard(Protocol):
    async def claim_id(self, id: str, until: float) -> bool:
        """Claim *id* until the Unix timestamp *until*. True on first claim."""
        ...


class MemoryReplayGuard:
    """Process-local replay guard.

    Safe across threads and tasks in one process. Use RedisReplayGuard when
    more than one worker process serves the callback and claim routes.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._claims: dict[str, float] = {}  # id -> expires_at
        self._lock = threading.Lock()

    async def claim_id(self, id: str, until: float) -> bool:
        now = self._clock()
        with self._lock:
            self._purge(now)
            if id in self._claims:
                return False
            self._claims[id] = until
            return True

    def __len__(self) -> int:
        return len(self._claims)

    def _purge(self, now: float) -> None:
        expired = [k for k, exp in self._claims.items() if exp <= now]
        for k in expired:
            del self._claims[k]


class RedisReplayGuard:
    """Replay guard backed by Redis ``SET NX PX``.

    Atomic across every process sharing the Redis instance. Expiry is left to
    Redis's own key TTL.
    """

    def __init__(
        self,
        redis_client: redis.asyncio.Redis,
        key_prefix: str = "accountlink:replay:",
        clock: Callable[[], float] = time.time,
    ):
        self.redis = redis_client
        self.key_prefix = key_prefix
        self._clock = clock

    async def claim_id(self, id: str, until: float) -> bool:
        import redis.exceptions

        ttl_ms = max(_MIN_TTL_MS, int((until - self._clock()) * 1000))
        key = f"{self.key_prefix}{id}"
        try:
            created = await self.redis.set(key, "1", nx=True, px=ttl_ms)
        except redis.exceptions.RedisError as e:
            logger.error("Replay guard unavailable: %s", e)
            raise StoreError("Replay guard unavailable") from e
        return bool(created)

    @classmethod
    def from_url(cls, url: str) -> RedisReplayGuard:
        import redis.asyncio

        return cls(redis.asyncio.Redis.from_url(url))
