"""
Purpose: Short-lived lookup cache shared by one service instance.
What it does:
Keeps (key -> value, stored_at) entries and treats anything older than the
TTL as missing. Reads and writes are guarded by a lock so a cache can be
shared between pipeline threads.

Entries are kept in write order, so every write sweeps expired entries off
the front and, once max_entries is reached, evicts the oldest ones. Keys that
are never read again (courier coordinates, one-off donation texts) therefore
cannot pile up.

Rule: cached values are hints for ranking only. Bind decisions always go back
to the store.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Hashable, Optional, Tuple


@dataclass(frozen=True)
class CacheStats:
    size: int
    hits: int
    misses: int
    evictions: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class TTLCache:
    """
    Thread-safe time-to-live cache with a size bound.
    """
    def __init__(
        self,
        ttl_seconds: float = 300,
        max_entries: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[Hashable, Tuple[Any, float]]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def _expired(self, stored_at: float, now: float) -> bool:
        return now - stored_at >= self.ttl_seconds

    def get(self, key: Hashable) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            value, stored_at = entry
            if self._expired(stored_at, self._clock()):
                del self._entries[key]
                self._misses += 1
                return None

            self._hits += 1
            return value

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            now = self._clock()
            self._entries[key] = (value, now)
            self._entries.move_to_end(key)

            # oldest first; stop at the first entry still alive
            while self._entries:
                oldest_key, (_, stored_at) = next(iter(self._entries.items()))
                if not self._expired(stored_at, now):
                    break
                del self._entries[oldest_key]

            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
                self._evictions += 1

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                size=len(self._entries), hits=self._hits, misses=self._misses, evictions=self._evictions,
            )
