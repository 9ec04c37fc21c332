"""
Tests for ResultCache: expiry, eviction policies and per-key locks.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from taskscope.context_collection.services.result_cache import ResultCache

START = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now=START):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


class TestExpiry:

    def test_hit_within_expiry(self, clock):
        cache = ResultCache(expiry_hours=24, clock=clock)
        cache.put("T-1", ["ctx"])

        clock.advance(hours=23)

        assert cache.get("T-1") == ["ctx"]

    def test_expired_entry_evicted(self, clock):
        cache = ResultCache(expiry_hours=24, clock=clock)
        cache.put("T-1", ["ctx"])

        clock.advance(hours=24)

        assert cache.get("T-1") is None
        assert "T-1" not in cache

    def test_age_from_earliest_date_collected(self, clock):
        cache = ResultCache(expiry_hours=24, clock=clock)
        items = [
            SimpleNamespace(date_collected=START - timedelta(hours=10)),
            SimpleNamespace(date_collected=START - timedelta(hours=30)),
        ]
        cache.put("T-1", items)

        assert cache.age("T-1") == timedelta(hours=30)
        assert cache.get("T-1") is None

    def test_naive_dates_treated_as_utc(self, clock):
        cache = ResultCache(expiry_hours=24, clock=clock)
        naive = (START - timedelta(hours=2)).replace(tzinfo=None)
        cache.put("T-1", [SimpleNamespace(date_collected=naive)])

        assert cache.age("T-1") == timedelta(hours=2)

    def test_missing_key(self, clock):
        cache = ResultCache(clock=clock)

        assert cache.get("nope") is None
        assert cache.age("nope") is None


class TestEviction:

    def test_insertion_order(self, clock):
        cache = ResultCache(max_entries=2, clock=clock)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.get("a")

        cache.put("c", 3)

        assert "a" not in cache
        assert "b" in cache and "c" in cache
        assert len(cache) == 2

    def test_lru(self, clock):
        cache = ResultCache(max_entries=2, eviction="lru", clock=clock)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.get("a")

        cache.put("c", 3)

        assert "b" not in cache
        assert "a" in cache and "c" in cache

    def test_invalidate_and_clear(self, clock):
        cache = ResultCache(clock=clock)
        cache.put("a", 1)
        cache.put("b", 2)

        assert cache.invalidate("a") is True
        assert cache.invalidate("a") is False

        cache.clear()
        assert len(cache) == 0

    @pytest.mark.parametrize("kwargs,message", [
        ({"eviction": "fifo"}, "Unknown eviction policy"),
        ({"max_entries": 0}, "max_entries"),
    ])
    def test_invalid_arguments(self, kwargs, message):
        with pytest.raises(ValueError, match=message):
            ResultCache(**kwargs)


class TestLocks:

    def test_same_lock_per_key(self):
        cache = ResultCache()

        assert cache.lock("a") is cache.lock("a")
        assert cache.lock("a") is not cache.lock("b")

    @pytest.mark.asyncio
    async def test_lock_serialises_work(self):
        cache = ResultCache()
        order = []

        async def worker(name):
            async with cache.lock("T-1"):
                order.append(f"{name}-start")
                await asyncio.sleep(0.01)
                order.append(f"{name}-end")

        await asyncio.gather(worker("first"), worker("second"))

        assert order == ["first-start", "first-end", "second-start", "second-end"]

    @pytest.mark.asyncio
    async def test_held_lock_survives_invalidate(self):
        cache = ResultCache()
        cache.put("T-1", 1)
        lock = cache.lock("T-1")

        async with lock:
            cache.invalidate("T-1")
            assert cache.lock("T-1") is lock
