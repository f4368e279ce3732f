"""Tests for the TTL read-through cache."""

import asyncio

from vaultfold.cache import TTLCache


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_entries_expire_after_ttl():
    clock = Clock()
    cache = TTLCache(ttl_sec=300, clock=clock)
    cache.set("k", 1)
    clock.now = 300
    assert cache.get("k") == 1
    clock.now = 301
    assert cache.get("k") is None
    assert len(cache) == 0


def test_wrap_fetches_once_for_concurrent_callers():
    cache = TTLCache()
    calls = []

    async def fetch():
        calls.append(1)
        await asyncio.sleep(0)
        return {"v": 1}

    async def run():
        return await asyncio.gather(*[cache.wrap("k", fetch) for _ in range(5)])

    results = asyncio.run(run())
    assert results == [{"v": 1}] * 5
    assert len(calls) == 1


def test_wrap_does_not_cache_none():
    cache = TTLCache()
    calls = []

    async def fetch():
        calls.append(1)
        return None

    asyncio.run(cache.wrap("k", fetch))
    asyncio.run(cache.wrap("k", fetch))
    assert len(calls) == 2


def test_locks_are_released_after_fill():
    cache = TTLCache()

    async def fetch():
        await asyncio.sleep(0)
        return 1

    async def boom():
        raise RuntimeError("feed down")

    async def run():
        await asyncio.gather(*[cache.wrap(("price", i % 3), fetch) for i in range(9)])
        try:
            await cache.wrap("bad", boom)
        except RuntimeError:
            pass

    asyncio.run(run())
    assert len(cache) == 3
    assert cache._locks == {}
    assert cache._waiters == {}
