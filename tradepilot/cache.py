"""
Cache Primitives
================

Timestamped cache entries and a capacity-bounded LRU map used by the
market data gateway and the context cache.

LRU semantics:
- Every get() or put() of a key makes it the most recently used
- Inserting a new key at capacity first evicts the least recently used key
- Updating an existing key never evicts
"""

from collections import OrderedDict
from dataclasses import dataclass
from typing import Generic, Hashable, Iterator, Optional, TypeVar
import threading
import time

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """A cached payload and the time it was stored."""
    key: Hashable
    payload: T
    timestamp: float

    def age(self, now: Optional[float] = None) -> float:
        return (time.time() if now is None else now) - self.timestamp

    def is_fresh(self, ttl: float, now: Optional[float] = None) -> bool:
        return self.age(now) < ttl


class LRUCache(Generic[T]):
    """
    Thread-safe LRU map of CacheEntry objects.

    `capacity=None` makes the cache unbounded (recency is still tracked).
    """

    def __init__(self, capacity: Optional[int] = None, clock=time.time):
        if capacity is not None and capacity < 1:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self.clock = clock
        self._entries: "OrderedDict[Hashable, CacheEntry[T]]" = OrderedDict()
        self._lock = threading.Lock()
        self.evictions = 0

    def get(self, key: Hashable) -> Optional[CacheEntry[T]]:
        """Return the entry (fresh or not) and mark it most recently used."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                self._entries.move_to_end(key)
            return entry

    def peek(self, key: Hashable) -> Optional[CacheEntry[T]]:
        """Return the entry without touching its recency."""
        with self._lock:
            return self._entries.get(key)

    def put(self, key: Hashable, payload: T, timestamp: Optional[float] = None) -> CacheEntry[T]:
        entry = CacheEntry(key=key, payload=payload, timestamp=self.clock() if timestamp is None else timestamp)
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
            elif self.capacity is not None and len(self._entries) >= self.capacity:
                self._entries.popitem(last=False)
                self.evictions += 1
            self._entries[key] = entry
        return entry

    def pop(self, key: Hashable) -> Optional[CacheEntry[T]]:
        with self._lock:
            return self._entries.pop(key, None)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def keys(self) -> Iterator[Hashable]:
        """Keys from least to most recently used."""
        with self._lock:
            return iter(list(self._entries.keys()))

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
