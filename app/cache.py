import asyncio
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Hashable, Optional


@dataclass
class CacheEntry:
    value: Any
    expires_at: float


class TTLCache:
    """In-memory TTL cache with LRU eviction.

    Keys are any hashable value. Used only by provider decorators; the
    request path itself keeps no state between requests.
    """

    def __init__(self, default_ttl: int = 60, max_size: int = 1000, clock: Callable[[], float] = time.monotonic):
        self.default_ttl = default_ttl
        self.max_size = max_size
        self._entries: "OrderedDict[Hashable, CacheEntry]" = OrderedDict()
        self._clock = clock
        self._lock = asyncio.Lock()

    async def get(self, key: Hashable) -> Optional[Any]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() > entry.expires_at:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return entry.value

    async def set(self, key: Hashable, value: Any, ttl: Optional[int] = None) -> None:
        async with self._lock:
            expires_at = self._clock() + (ttl or self.default_ttl)
            self._entries[key] = CacheEntry(value=value, expires_at=expires_at)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)

    def size(self) -> int:
        return len(self._entries)
