
import threading
from typing import Any, Dict, Hashable, List, Optional, Tuple

from sortedcontainers import SortedDict


class RankingIndex:
    """
    Bounded top-K view: rank key -> cache key, read highest first.
    - SortedDict keeps rank keys ascending; index 0 is the minimum
    - owners map: cache key -> the rank key it currently holds
    Rank keys are immutable snapshots, so equal ranks collapse to one slot
    (the latest writer owns it).
    """
    def __init__(self, top_capacity: int):
        if not isinstance(top_capacity, int) or top_capacity <= 0:
            raise ValueError(f"top_capacity must be a positive int, got {top_capacity!r}")
        self.top_capacity = top_capacity
        self._ranks: SortedDict = SortedDict()
        self._owners: Dict[Hashable, Any] = {}
        self.lock = threading.RLock()

    def __len__(self) -> int:
        with self.lock:
            return len(self._ranks)

    def __contains__(self, key: Hashable) -> bool:
        with self.lock:
            return key in self._owners

    def upsert(self, rank: Any, key: Hashable) -> bool:
        """Track `key` under `rank`. Returns False when it ranks too low to keep."""
        with self.lock:
            held = self._owners.get(key)
            if held is not None and held != rank:
                self._drop(held)

            if rank in self._ranks:
                # same rank already tracked: the slot changes hands
                previous = self._ranks[rank]
                if previous != key:
                    self._owners.pop(previous, None)
                self._ranks[rank] = key
                self._owners[key] = rank
                return True

            if len(self._ranks) >= self.top_capacity:
                lowest, _ = self._ranks.peekitem(0)
                if rank < lowest:
                    return False
                self._drop(lowest)

            self._ranks[rank] = key
            self._owners[key] = rank
            return True

    def remove(self, rank: Any) -> Optional[Hashable]:
        with self.lock:
            if rank not in self._ranks:
                return None
            return self._drop(rank)

    def discard(self, key: Hashable) -> Optional[Any]:
        """Drop whatever slot `key` holds; returns its rank or None."""
        with self.lock:
            rank = self._owners.get(key)
            if rank is None:
                return None
            self._drop(rank)
            return rank

    def rank_of(self, key: Hashable) -> Optional[Any]:
        with self.lock:
            return self._owners.get(key)

    def top_n(self, n: int) -> List[Hashable]:
        if n > self.top_capacity:
            raise ValueError(
                f"requested {n} elements but ranking capacity is {self.top_capacity}"
            )
        if n < 0:
            raise ValueError(f"n must not be negative, got {n}")
        with self.lock:
            start = max(len(self._ranks) - n, 0)
            return [self._ranks[r] for r in self._ranks.islice(start, reverse=True)]

    def items(self) -> List[Tuple[Any, Hashable]]:
        with self.lock:
            return [(r, self._ranks[r]) for r in reversed(self._ranks)]

    def _drop(self, rank: Any) -> Hashable:
        key = self._ranks.pop(rank)
        if self._owners.get(key) == rank:
            del self._owners[key]
        return key
