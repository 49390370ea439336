
import logging
import threading
from typing import Any, Callable, Dict, Hashable, List, Optional, Tuple

from notify import NotificationHub, Observer, Subscription
from ranking import RankingIndex

logger = logging.getLogger(__name__)

UpdateFunc = Callable[[Any, Any], Optional[Any]]
RankKeyFunc = Callable[[Any], Any]


class CacheEntry:
    __slots__ = ("key", "value", "prev", "next")

    def __init__(self, key: Hashable, value: Any):
        self.key = key
        self.value = value
        self.prev: Optional["CacheEntry"] = None
        self.next: Optional["CacheEntry"] = None


def replace_value(current: Any, incoming: Any) -> Any:
    """Default merge: the incoming value takes the stored value's place."""
    return incoming


class LRUIndex:
    """
    Primary index: count-bounded LRU.
    - map: key -> entry
    - doubly linked list for LRU ordering (head = MRU, tail = LRU)
    - existing keys are merged via `update(current, incoming)`; it mutates
      `current` in place and returns None, or returns a replacement value
    """
    def __init__(self, capacity: int, update: UpdateFunc):
        if not isinstance(capacity, int) or capacity <= 0:
            raise ValueError(f"capacity must be a positive int, got {capacity!r}")
        self.capacity = capacity
        self.update = update
        self.map: Dict[Hashable, CacheEntry] = {}
        self.head: Optional[CacheEntry] = None  # MRU
        self.tail: Optional[CacheEntry] = None  # LRU

        # stats
        self.hits = 0
        self.misses = 0
        self.sets = 0
        self.evictions = 0

        # lock
        self.lock = threading.RLock()

    def __len__(self) -> int:
        with self.lock:
            return len(self.map)

    def __contains__(self, key: Hashable) -> bool:
        with self.lock:
            return key in self.map

    def get(self, key: Hashable) -> Optional[Any]:
        with self.lock:
            e = self.map.get(key)
            if not e:
                self.misses += 1
                return None
            self._move_to_head(e)
            self.hits += 1
            return e.value

    def peek(self, key: Hashable) -> Optional[Any]:
        with self.lock:
            e = self.map.get(key)
            return e.value if e else None

    def put(self, key: Hashable, value: Any) -> Tuple[Any, Optional[CacheEntry]]:
        """Merge-or-insert `key`; returns (stored value, evicted entry or None)."""
        with self.lock:
            e = self.map.get(key)
            evicted = None
            if e:
                merged = self.update(e.value, value)
                if merged is not None:
                    e.value = merged
                self._move_to_head(e)
            else:
                e = CacheEntry(key, value)
                self.map[key] = e
                self._add_to_head(e)
                evicted = self._evict_if_needed()
            self.sets += 1
            return e.value, evicted

    def keys(self) -> List[Hashable]:
        """Keys from most to least recently used."""
        with self.lock:
            out = []
            e = self.head
            while e:
                out.append(e.key)
                e = e.next
            return out

    # --- internal LRU + eviction helpers ---
    def _evict_if_needed(self) -> Optional[CacheEntry]:
        if len(self.map) <= self.capacity or not self.tail:
            return None
        victim = self.tail
        self._remove_entry(victim)
        self.evictions += 1
        logger.debug("cache.evicted", extra={"key": victim.key})
        return victim

    def _remove_entry(self, e: CacheEntry):
        if e.key in self.map:
            del self.map[e.key]
        # unlink
        if e.prev:
            e.prev.next = e.next
        if e.next:
            e.next.prev = e.prev
        if self.head is e:
            self.head = e.next
        if self.tail is e:
            self.tail = e.prev
        e.prev = e.next = None

    def _add_to_head(self, e: CacheEntry):
        e.prev = None
        e.next = self.head
        if self.head:
            self.head.prev = e
        self.head = e
        if self.tail is None:
            self.tail = e

    def _move_to_head(self, e: CacheEntry):
        if self.head is e:
            return
        # unlink
        if e.prev:
            e.prev.next = e.next
        if e.next:
            e.next.prev = e.prev
        if self.tail is e:
            self.tail = e.prev
        # link front
        e.prev = None
        e.next = self.head
        if self.head:
            self.head.prev = e
        self.head = e


class RankedCache:
    """
    LRU cache that also tracks the top-`top_capacity` values by rank.

    Writes hold the LRU lock while they update the ranking (lock order is
    always LRU -> ranking), so ranks follow the order values were stored.
    Readers of the ranking take only its own lock; `top_values` skips any
    ranked key the LRU index no longer holds.
    """
    def __init__(self, capacity: int, top_capacity: int,
                 update: UpdateFunc = replace_value,
                 rank_key: Optional[RankKeyFunc] = None):
        self.primary = LRUIndex(capacity, update)
        self.ranking = RankingIndex(top_capacity)
        self.hub = NotificationHub()
        self.rank_key = rank_key or (lambda v: v)
        if top_capacity > capacity:
            logger.warning(
                "cache.top_capacity_exceeds_capacity",
                extra={"capacity": capacity, "top_capacity": top_capacity},
            )

    def __len__(self) -> int:
        return len(self.primary)

    def __contains__(self, key: Hashable) -> bool:
        return key in self.primary

    @property
    def capacity(self) -> int:
        return self.primary.capacity

    @property
    def top_capacity(self) -> int:
        return self.ranking.top_capacity

    def get(self, key: Hashable) -> Optional[Any]:
        return self.primary.get(key)

    def put(self, key: Hashable, value: Any) -> Any:
        with self.primary.lock:
            # a failing update raises here, before the ranking is touched
            stored, evicted = self.primary.put(key, value)
            if evicted is not None:
                self.ranking.discard(evicted.key)
            # upsert replaces the slot `key` held under its pre-update rank
            self.ranking.upsert(self.rank_key(stored), key)
        self.hub.notify(stored)
        return stored

    def top_n(self, n: int) -> List[Hashable]:
        return self.ranking.top_n(n)

    def top_values(self, n: int) -> List[Any]:
        out = []
        for key in self.ranking.top_n(n):
            value = self.primary.peek(key)
            if value is not None:
                out.append(value)
        return out

    def hits(self) -> int:
        return self.primary.hits

    def subscribe(self, observer: Observer) -> Subscription:
        return self.hub.subscribe(observer)

    # --- stats ---
    def stats(self):
        with self.primary.lock:
            s = {
                "keys": len(self.primary.map),
                "capacity": self.primary.capacity,
                "hits": self.primary.hits,
                "misses": self.primary.misses,
                "sets": self.primary.sets,
                "evictions": self.primary.evictions,
            }
        s.update({
            "ranked": len(self.ranking),
            "top_capacity": self.ranking.top_capacity,
            "subscribers": len(self.hub),
            "notify_errors": self.hub.errors,
        })
        return s
