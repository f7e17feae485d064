"""Bounded TTL caches used by the search, research and orchestration layers."""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Generic, Hashable, Optional, TypeVar

logger = logging.getLogger(__name__)

V = TypeVar("V")

Clock = Callable[[], float]


@dataclass
class CacheEntry(Generic[V]):
    value: V
    timestamp: float


class TTLCache(Generic[V]):
    """Size-bounded cache whose entries expire *ttl* seconds after insertion.

    ``policy="lru"`` moves an entry to the back on every hit so the least
    recently used entry is evicted first; ``policy="fifo"`` evicts in
    insertion order regardless of reads.
    """

    def __init__(
        self,
        max_size: int,
        ttl: float,
        policy: str = "lru",
        clock: Optional[Clock] = None,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        if policy not in ("lru", "fifo"):
            raise ValueError(f"Unknown eviction policy: {policy}")
        self.max_size = max_size
        self.ttl = ttl
        self.policy = policy
        self._clock: Clock = clock or time.monotonic
        self._entries: "OrderedDict[Hashable, CacheEntry[V]]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        if self._clock() - entry.timestamp >= self.ttl:
            del self._entries[key]
            self.misses += 1
            return None
        if self.policy == "lru":
            self._entries.move_to_end(key)
        self.hits += 1
        return entry.value

    def put(self, key: Hashable, value: V) -> None:
        self._entries[key] = CacheEntry(value=value, timestamp=self._clock())
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Evicted cache entry %r", evicted)

    def invalidate(self, key: Hashable) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        entry = self._entries.get(key)
        return entry is not None and self._clock() - entry.timestamp < self.ttl
