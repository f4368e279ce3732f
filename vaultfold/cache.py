import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, Tuple

DEFAULT_TTL_SEC = 300


class TTLCache:
    """Read-through cache shared by market-data and metadata lookups."""

    def __init__(self, ttl_sec: int = DEFAULT_TTL_SEC, clock: Callable[[], float] = time.time):
        self.ttl_sec = ttl_sec
        self._clock = clock
        self._items: Dict[Hashable, Tuple[float, Any]] = {}
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._waiters: Dict[Hashable, int] = {}

    def get(self, key: Hashable) -> Optional[Any]:
        item = self._items.get(key)
        if item is None:
            return None
        stored_at, value = item
        if self._clock() - stored_at > self.ttl_sec:
            self._items.pop(key, None)
            return None
        return value

    def set(self, key: Hashable, value: Any) -> None:
        self._items[key] = (self._clock(), value)

    def invalidate(self, key: Hashable) -> None:
        self._items.pop(key, None)

    async def wrap(self, key: Hashable, fetch: Callable[[], Awaitable[Any]]) -> Any:
        cached = self.get(key)
        if cached is not None:
            return cached
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                cached = self.get(key)
                if cached is not None:
                    return cached
                value = await fetch()
                if value is not None:
                    self.set(key, value)
                return value
        finally:
            # locks live only while someone waits on them
            self._waiters[key] -= 1
            if not self._waiters[key]:
                del self._waiters[key]
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._items)
