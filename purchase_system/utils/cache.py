# purchase_system/utils/cache.py
"""
In-process TTL + LRU cache owned by a single engine instance.
"""
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Hashable, Iterable, Optional


@dataclass(frozen=True)
class CacheEntry:
    """Cached value with its insertion time. Replaced, never mutated."""
    key: Hashable
    value: Any
    insertedAt: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.insertedAt >= self.ttl


class TTLCache:
    """
    Bounded cache with per-entry TTL and least-recently-used eviction.

    Writes swap whole CacheEntry objects under a lock, so readers never see
    a partially written value. Two callers missing the same key may both
    compute and store; the last write wins.

    Usage:
        cache = TTLCache("paths", maxSize=1000, ttl=300)
        cache.set(("u1", "u2"), path)
        cache.get(("u1", "u2"))
    """

    def __init__(
            self,
            name: str,
            maxSize: int,
            ttl: float,
            clock: Callable[[], float] = time.monotonic
    ):
        self.name = name
        self.maxSize = maxSize
        self.ttl = ttl
        self._clock = clock
        self._entries: "OrderedDict[Hashable, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Optional[Any]:
        """Get value with TTL check. Expired entries are dropped."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return entry.value

    def get_entry(self, key: Hashable) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(key)

    def set(self, key: Hashable, value: Any) -> CacheEntry:
        """Store value, evicting the least recently used entry when full."""
        entry = CacheEntry(key=key, value=value, insertedAt=self._clock(), ttl=self.ttl)
        with self._lock:
            self._entries[key] = entry
            self._entries.move_to_end(key)
            while len(self._entries) > self.maxSize:
                self._entries.popitem(last=False)
        return entry

    def invalidate(self, key: Hashable) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def invalidate_where(self, predicate: Callable[[Hashable, Any], bool]) -> int:
        """Drop every entry for which predicate(key, value) is true. Returns count removed."""
        with self._lock:
            doomed = [
                key for key, entry in self._entries.items() if predicate(key, entry.value)
            ]
            for key in doomed:
                del self._entries[key]
        return len(doomed)

    def invalidate_users(self, userIds: Iterable[Any]) -> int:
        """Drop entries whose key tuple mentions any of userIds."""
        ids = set(userIds)

        def _mentions(key, value) -> bool:
            parts = key if isinstance(key, tuple) else (key,)
            return any(part in ids for part in parts)

        return self.invalidate_where(_mentions)

    def clear(self) -> None:
        """Clear all cache."""
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key) is not None
