# Tests for security/replay.py
# Created: 2026-10-19

import asyncio
from concurrent.futures import ThreadPoolExecutor

import pytest
import redis.exceptions
from conftest import FakeClock, FakeRedis

from accountlink.errors import StoreError
from accountlink.security.replay import MemoryReplayGuard, RedisReplayGuard


class TestMemoryReplayGuard:
    async def test_first_claim_wins(self, replay_guard, clock):
        assert await replay_guard.claim_id("abc", clock.now + 60) is True
        assert await replay_guard.claim_id("abc", clock.now + 60) is False

    async def test_distinct_ids_independent(self, replay_guard, clock):
        assert await replay_guard.claim_id("a", clock.now + 60) is True
        assert await replay_guard.claim_id("b", clock.now + 60) is True

    async def test_concurrent_claims_one_winner(self, replay_guard, clock):
        results = await asyncio.gather(
            *(replay_guard.claim_id("race", clock.now + 60) for _ in range(10))
        )
        assert results.count(True) == 1

    def test_threaded_claims_one_winner(self):
        guard = MemoryReplayGuard()

        def claim():
            return asyncio.run(guard.claim_id("threaded", 4_000_000_000.0))

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: claim(), range(32)))
        assert results.count(True) == 1

    async def test_reusable_after_ttl(self, replay_guard, clock):
        assert await replay_guard.claim_id("abc", clock.now + 60) is True
        clock.advance(60)
        assert await replay_guard.claim_id("abc", clock.now + 60) is True

    async def test_expired_entries_purged(self, clock):
        guard = MemoryReplayGuard(clock=clock)
        for i in range(5):
            await guard.claim_id(f"id-{i}", clock.now + 10)
        assert len(guard) == 5
        clock.advance(11)
        await guard.claim_id("fresh", clock.now + 10)
        assert len(guard) == 1


class TestRedisReplayGuard:
    async def test_set_nx_with_ttl(self):
        fake = FakeRedis()
        clock = FakeClock()
        guard = RedisReplayGuard(fake, clock=clock)

        assert await guard.claim_id("abc", clock.now + 30) is True
        assert await guard.claim_id("abc", clock.now + 30) is False

        call = fake.calls[0]
        assert call["key"] == "accountlink:replay:abc"
        assert call["nx"] is True
        assert call["px"] == 30_000

    async def test_minimum_ttl(self):
        fake = FakeRedis()
        clock = FakeClock()
        guard = RedisReplayGuard(fake, clock=clock)
        await guard.claim_id("late", clock.now - 5)
        assert fake.calls[0]["px"] == 1

    async def test_custom_prefix(self):
        fake = FakeRedis()
        guard = RedisReplayGuard(fake, key_prefix="x:")
        await guard.claim_id("abc", 4_000_000_000.0)
        assert "x:abc" in fake.data

    async def test_concurrent_claims_one_winner(self):
        guard = RedisReplayGuard(FakeRedis())
        results = await asyncio.gather(
            *(guard.claim_id("race", 4_000_000_000.0) for _ in range(10))
        )
        assert results.count(True) == 1

    async def test_redis_failure_raises_store_error(self):
        class BrokenRedis:
            async def set(self, *args, **kwargs):
                raise redis.exceptions.ConnectionError("down")

        guard = RedisReplayGuard(BrokenRedis())
        with pytest.raises(StoreError):
            await guard.claim_id("abc", 4_000_000_000.0)
