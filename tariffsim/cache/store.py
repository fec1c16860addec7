"""Capacity-bounded keyed store with per-entry TTL and logical partitions."""

import logging
import time
from collections import OrderedDict
from typing import Any, Callable, Iterator, List, Optional, Tuple

from pydantic import BaseModel

from tariffsim.errors import CacheInvariantError

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
StoreKey = Tuple[str, str]  # (partition, key)


class CacheEntry(BaseModel):
    """A single cached value. Timestamps are clock seconds."""

    value: Any
    partition: str
    inserted_at: float
    expires_at: float
    last_accessed_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class KeyedCacheStore:
    """
    Maps ``(partition, key)`` to a value with an independent expiry.

    Recency is kept in an ``OrderedDict``: the first item is always the least
    recently used one, so marking an entry used (``move_to_end``) and evicting
    the oldest (``popitem(last=False)``) are both O(1).

    All methods are synchronous. Under asyncio each call therefore runs to
    completion before any other coroutine can observe the map.
    """

    def __init__(self, capacity: int, clock: Optional[Clock] = None):
        if capacity <= 0:
            raise ValueError(f"Capacity must be positive, got {capacity}")
        self.capacity = capacity
        self.clock = clock or time.time
        self.evictions = 0
        self._entries: "OrderedDict[StoreKey, CacheEntry]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, item: StoreKey) -> bool:
        entry = self._entries.get(item)
        return entry is not None and not entry.is_expired(self.clock())

    def set(self, key: str, value: Any, partition: str, ttl_seconds: float) -> CacheEntry:
        """Insert or overwrite an entry, evicting the LRU entry if full."""
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")

        now = self.clock()
        store_key = (partition, key)

        if store_key in self._entries:
            # Overwrite never evicts
            self._entries.move_to_end(store_key)
        elif len(self._entries) >= self.capacity:
            self._evict_lru()

        entry = CacheEntry(
            value=value,
            partition=partition,
            inserted_at=now,
            expires_at=now + ttl_seconds,
            last_accessed_at=now,
        )
        self._entries[store_key] = entry

        if len(self._entries) > self.capacity:
            raise CacheInvariantError(
                f"Store holds {len(self._entries)} entries, capacity is {self.capacity}"
            )
        return entry

    def get(self, key: str, partition: str) -> Optional[Any]:
        """Return the value, or None if absent or expired."""
        entry = self.get_entry(key, partition)
        return entry.value if entry is not None else None

    def get_entry(self, key: str, partition: str) -> Optional[CacheEntry]:
        store_key = (partition, key)
        entry = self._entries.get(store_key)
        if entry is None:
            return None

        now = self.clock()
        if entry.is_expired(now):
            del self._entries[store_key]
            logger.debug(f"Expired entry removed: {partition}/{key[:16]}")
            return None

        entry.last_accessed_at = now
        self._entries.move_to_end(store_key)
        return entry

    def peek(self, key: str, partition: str) -> Optional[CacheEntry]:
        """Like get_entry, but leaves recency and expired entries untouched."""
        entry = self._entries.get((partition, key))
        if entry is None or entry.is_expired(self.clock()):
            return None
        return entry

    def delete(self, key: str, partition: str) -> bool:
        return self._entries.pop((partition, key), None) is not None

    def clear_partition(self, partition: str) -> int:
        """Remove every entry of one partition. Returns the number removed."""
        doomed = [k for k in self._entries if k[0] == partition]
        for store_key in doomed:
            del self._entries[store_key]
        if doomed:
            logger.info(f"Cleared {len(doomed)} entries from partition '{partition}'")
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()

    def purge_expired(self) -> int:
        """Drop all expired entries. Returns the number removed."""
        now = self.clock()
        doomed = [k for k, e in self._entries.items() if e.is_expired(now)]
        for store_key in doomed:
            del self._entries[store_key]
        return len(doomed)

    def keys(self, partition: Optional[str] = None) -> List[str]:
        """Keys in LRU order (oldest first), optionally for one partition."""
        return [k for p, k in self._entries if partition is None or p == partition]

    def entries(self, partition: Optional[str] = None) -> Iterator[Tuple[str, CacheEntry]]:
        for (p, k), entry in list(self._entries.items()):
            if partition is None or p == partition:
                yield k, entry

    def _evict_lru(self) -> None:
        (partition, key), _ = self._entries.popitem(last=False)
        self.evictions += 1
        logger.debug(f"Evicted least recently used entry: {partition}/{key[:16]}")
