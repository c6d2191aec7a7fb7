# src/pgsample/core/query_cache.py
"""First-seen tracking for recent queries.

pg_stat_statements only tells us what ran, not when it first showed up.
The cache remembers, per (database, query text), when this process first
observed it so clients can highlight new queries between polls.
"""

from __future__ import annotations

import dataclasses
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from pgsample.contracts.results import RecentQuery
from pgsample.core.canonical import stable_hash


@dataclass(slots=True)
class CacheEntry:
    first_seen: float
    last_seen: float


class QueryCache:
    """Bounded map of query key -> first/last seen timestamps.

    Least-recently-seen entries are evicted past max_entries. Timestamps are
    epoch milliseconds, matching what clients display.
    """

    def __init__(self, max_entries: int = 10_000, clock: Callable[[], float] = time.time) -> None:
        if max_entries <= 0:
            raise ValueError(f"max_entries must be positive, got {max_entries}")
        self._max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self.created_at = self._now()

    def _now(self) -> float:
        return self._clock() * 1000.0

    @staticmethod
    def key(db: str, query: str) -> str:
        return stable_hash([db, query])

    def __len__(self) -> int:
        return len(self._entries)

    def is_cached(self, key: str) -> bool:
        return key in self._entries

    def is_new(self, key: str) -> bool:
        """True if key was first seen after this cache was created (or never)."""
        entry = self._entries.get(key)
        if entry is None:
            return True
        return entry.first_seen >= self.created_at

    def store(self, db: str, query: str) -> str:
        key = self.key(db, query)
        now = self._now()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._entries[key] = CacheEntry(first_seen=now, last_seen=now)
                while len(self._entries) > self._max_entries:
                    self._entries.popitem(last=False)
            else:
                entry.last_seen = now
                self._entries.move_to_end(key)
        return key

    def first_seen(self, key: str) -> float:
        entry = self._entries.get(key)
        return entry.first_seen if entry is not None else self._now()

    def annotate(self, db: str, queries: Iterable[RecentQuery]) -> list[RecentQuery]:
        """Record every query and return copies carrying first_seen."""
        annotated = []
        for query in queries:
            key = self.store(db, query.query)
            annotated.append(dataclasses.replace(query, first_seen=self.first_seen(key)))
        return annotated


query_cache = QueryCache()
