import json
import logging
import time
from collections import OrderedDict
from typing import Any, Callable, Optional, Tuple

from config import Settings
from services.redis_client import RedisCache

logger = logging.getLogger(__name__)


class MemoryCache:
    """
    Bounded in-process cache.

    Every entry carries its own expiry. When the cache is over
    ``max_entries`` expired entries go first, then the least recently used.
    Values are stored as JSON so callers never share mutable objects, the
    same as with RedisCache.
    """

    def __init__(
        self,
        max_entries: int = 1000,
        default_ttl: int = 300,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.default_ttl = default_ttl
        self.clock = clock
        self._store: "OrderedDict[str, Tuple[float, str]]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    async def get(self, key: str) -> Optional[Any]:
        entry = self._store.get(key)
        if entry is None:
            self.misses += 1
            return None

        expires_at, data = entry
        if expires_at <= self.clock():
            del self._store[key]
            self.misses += 1
            return None

        self._store.move_to_end(key)
        self.hits += 1
        return json.loads(data)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None):
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            # Already expired, drop any older copy
            self._store.pop(key, None)
            return
        expires_at = self.clock() + ttl
        self._store[key] = (expires_at, json.dumps(value, default=str))
        self._store.move_to_end(key)
        self._evict()

    async def delete(self, key: str):
        self._store.pop(key, None)

    async def clear(self):
        self._store.clear()

    async def close(self):
        await self.clear()

    def _evict(self):
        if len(self._store) <= self.max_entries:
            return

        now = self.clock()
        for key in [k for k, (expires_at, _) in self._store.items() if expires_at <= now]:
            del self._store[key]

        while len(self._store) > self.max_entries:
            self._store.popitem(last=False)

    def __len__(self):
        return len(self._store)

    def stats(self) -> dict:
        total = self.hits + self.misses
        return {
            "entries": len(self._store),
            "max_entries": self.max_entries,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(self.hits / total * 100, 1) if total else 0.0,
        }


def build_cache(settings: Settings):
    """Redis when REDIS_URL is configured, otherwise in-process memory"""
    if settings.REDIS_URL:
        logger.info("Using Redis cache")
        return RedisCache(settings.REDIS_URL, default_ttl=settings.CACHE_TTL_SECONDS)
    return MemoryCache(
        max_entries=settings.CACHE_MAX_ENTRIES,
        default_ttl=settings.CACHE_TTL_SECONDS,
    )
