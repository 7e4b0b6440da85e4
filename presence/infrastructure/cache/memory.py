# ==============================================================================
# In-Memory Cache Implementation
# ==============================================================================
"""
Process-local Cache with per-key TTL and LRU eviction.

Used for fetched member lists and for report results when no Valkey is
configured. Not shared between processes.
"""

import copy
import fnmatch
import logging
import time
from collections import OrderedDict
from collections.abc import Callable

from presence.base.cache import Cache
from presence.core.models import CacheEntry

logger = logging.getLogger(__name__)


class InMemoryCache(Cache):
    """
    Bounded in-memory cache.

    Args:
        max_size: Entries kept before the least recently used one is evicted
        clock: Monotonic seconds source (overridable in tests)
    """

    def __init__(self, max_size: int = 100, clock: Callable[[], float] = time.monotonic):
        if max_size < 1:
            raise ValueError(f"max_size must be positive, got {max_size}")
        self.max_size = max_size
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> dict | None:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        if entry.expires_at is not None and entry.expires_at <= self._clock():
            del self._entries[key]
            self.misses += 1
            return None
        self._entries.move_to_end(key)
        self.hits += 1
        return copy.deepcopy(entry.value)

    def set(self, key: str, value: dict, ttl_seconds: float | None = None) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds is not None else None
        self._entries[key] = CacheEntry(key=key, value=copy.deepcopy(value), expires_at=expires_at)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            self.evictions += 1
            logger.debug("Evicted least recently used cache key %s", evicted)

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def delete_pattern(self, pattern: str) -> int:
        keys = [key for key in self._entries if fnmatch.fnmatchcase(key, pattern)]
        for key in keys:
            del self._entries[key]
        return len(keys)

    def stats(self) -> dict:
        total = self.hits + self.misses
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "hit_rate": self.hits / total if total else 0.0,
        }
