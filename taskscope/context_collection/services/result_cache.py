"""
Result Cache

In-memory TTL cache keyed by task id, with bounded size and per-key
asyncio locks. The engine holds one instance for collected contexts and
another for extracted signals.
"""

import asyncio
import logging
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Generic, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

EVICTION_POLICIES = ("insertion", "lru")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class ResultCache(Generic[T]):
    """
    TTL-bounded, size-bounded cache.

    Age of an entry is taken from the earliest `date_collected` among its
    items when the value is a list of collected contexts, otherwise from
    the time it was stored.

    Usage:
        cache = ResultCache(expiry_hours=24, max_entries=100)
        cache.put("task-1", contexts)
        async with cache.lock("task-1"):
            ...
    """

    def __init__(
        self,
        expiry_hours: float = 24,
        max_entries: int = 100,
        eviction: str = "insertion",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if eviction not in EVICTION_POLICIES:
            raise ValueError(f"Unknown eviction policy: {eviction}")
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")

        self.expiry = timedelta(hours=expiry_hours)
        self.max_entries = max_entries
        self.eviction = eviction
        self._clock = clock or _utcnow
        self._entries: "OrderedDict[str, Tuple[datetime, T]]" = OrderedDict()
        self._locks: Dict[str, asyncio.Lock] = {}

    def _collected_at(self, stored_at: datetime, value: T) -> datetime:
        if isinstance(value, (list, tuple)) and value:
            stamps = [getattr(item, "date_collected", None) for item in value]
            stamps = [_as_aware(s) for s in stamps if isinstance(s, datetime)]
            if stamps:
                return min(stamps)
        return stored_at

    def age(self, key: str) -> Optional[timedelta]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        return self._clock() - self._collected_at(stored_at, value)

    def get(self, key: str) -> Optional[T]:
        """Cached value, or None when missing or expired (expired entries are evicted)."""
        entry = self._entries.get(key)
        if entry is None:
            return None

        age = self.age(key)
        if age is not None and age >= self.expiry:
            logger.debug(f"Cache entry expired: {key}", extra={"key": key, "age_seconds": age.total_seconds()})
            self.invalidate(key)
            return None

        if self.eviction == "lru":
            self._entries.move_to_end(key)
        return entry[1]

    def put(self, key: str, value: T) -> None:
        if self.eviction == "lru" and key in self._entries:
            self._entries.move_to_end(key)
        self._entries[key] = (self._clock(), value)

        while len(self._entries) > self.max_entries:
            oldest, _ = self._entries.popitem(last=False)
            self._drop_lock(oldest)
            logger.debug(f"Cache evicted: {oldest}", extra={"key": oldest})

    def invalidate(self, key: str) -> bool:
        removed = self._entries.pop(key, None) is not None
        self._drop_lock(key)
        return removed

    def clear(self) -> None:
        self._entries.clear()
        self._locks = {k: v for k, v in self._locks.items() if v.locked()}

    def lock(self, key: str) -> asyncio.Lock:
        """Lock serialising work for one key."""
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def _drop_lock(self, key: str) -> None:
        lock = self._locks.get(key)
        if lock is not None and not lock.locked():
            del self._locks[key]

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries
