"""Bounded LRU response cache with per-entry expiry."""

from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Any

from strata.core.logging import get_logger
from strata.core.typing import Clock

logger = get_logger("memory.cache")


class ResponseCache:
    """LRU cache for retrieval results.

    Expiry is checked on read; ``sweep()`` drops expired entries eagerly.
    """

    def __init__(self, max_size: int = 1000, ttl: timedelta = timedelta(minutes=5), clock: Clock | None = None):
        self.max_size = max_size
        self.ttl = ttl
        self._clock: Clock = clock or datetime.now
        self._entries: OrderedDict[str, tuple[Any, datetime]] = OrderedDict()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None

        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            self.misses += 1
            return None

        self._entries.move_to_end(key)
        self.hits += 1
        return value

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = (value, self._clock() + self.ttl)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)
            self.evictions += 1

    def sweep(self) -> int:
        """Remove expired entries. Returns how many were dropped."""
        now = self._clock()
        expired = [key for key, (_, expires_at) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"Swept {len(expired)} expired cache entries")
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def stats(self) -> dict[str, Any]:
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "ttl_seconds": self.ttl.total_seconds(),
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "hit_rate": self.hit_rate,
        }
