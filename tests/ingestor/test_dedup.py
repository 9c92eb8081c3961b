"""Tests for the dedup admission gates."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from mempool_tracker.ingestor.dedup import DedupCache, RedisDedupCache


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestDedupCache:
    """Tests for the in-memory gate."""

    @pytest.mark.asyncio
    async def test_first_admission_wins(self):
        cache = DedupCache()

        assert await cache.try_admit("0xabc") is True
        assert await cache.try_admit("0xabc") is False
        assert await cache.try_admit("0xabc") is False

    @pytest.mark.asyncio
    async def test_hashes_are_case_insensitive(self):
        cache = DedupCache()

        assert await cache.try_admit("0xABC") is True
        assert await cache.try_admit("0xabc") is False
        assert "0xAbC" in cache

    @pytest.mark.asyncio
    async def test_concurrent_admissions_admit_once(self):
        cache = DedupCache()

        results = await asyncio.gather(*(cache.try_admit("0xdead") for _ in range(50)))

        assert results.count(True) == 1
        assert results.count(False) == 49

    @pytest.mark.asyncio
    async def test_entry_expires_after_ttl(self):
        clock = FakeClock()
        cache = DedupCache(ttl_seconds=300, clock=clock)

        assert await cache.try_admit("0x1") is True
        clock.now += 299
        assert await cache.try_admit("0x1") is False
        clock.now += 1
        assert await cache.try_admit("0x1") is True

    @pytest.mark.asyncio
    async def test_expired_entries_are_evicted_lazily(self):
        clock = FakeClock()
        cache = DedupCache(ttl_seconds=10, clock=clock)
        await cache.try_admit("0x1")
        await cache.try_admit("0x2")
        clock.now += 5
        await cache.try_admit("0x3")

        clock.now += 6
        await cache.try_admit("0x4")

        # 0x1 and 0x2 are 11s old, 0x3 is 6s old.
        assert len(cache) == 2
        assert "0x1" not in cache
        assert "0x3" in cache

    def test_rejects_non_positive_ttl(self):
        with pytest.raises(ValueError):
            DedupCache(ttl_seconds=0)


class TestRedisDedupCache:
    """Tests for the Redis-backed gate."""

    @pytest.fixture
    def redis(self):
        redis = MagicMock()
        redis.set = AsyncMock(return_value=True)
        return redis

    @pytest.mark.asyncio
    async def test_uses_set_nx_with_expiry(self, redis):
        cache = RedisDedupCache(redis, ttl_seconds=120)

        assert await cache.try_admit("0xABC") is True

        redis.set.assert_awaited_once_with("mempool:seen:0xabc", "1", nx=True, ex=120)

    @pytest.mark.asyncio
    async def test_existing_key_is_duplicate(self, redis):
        redis.set.return_value = None
        cache = RedisDedupCache(redis)

        assert await cache.try_admit("0xabc") is False

    @pytest.mark.asyncio
    async def test_custom_key_prefix(self, redis):
        cache = RedisDedupCache(redis, key_prefix="node-a:")

        await cache.try_admit("0x1")

        assert redis.set.call_args.args[0] == "node-a:0x1"
