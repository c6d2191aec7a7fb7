"""Per-client bucket registry for the rate limiter."""

from __future__ import annotations

import threading
from types import TracebackType

from pyrate_limiter import (  # type: ignore[attr-defined]
    AbstractClock,
    BucketFactory,
    InMemoryBucket,
    Rate,
    RateItem,
)


class ClientBucketRegistry(BucketFactory):
    """Bucket factory that keeps one in-memory bucket per client key.

    pyrate-limiter routes every item through get(); creating buckets with
    self.create() registers them with the factory's single leaker thread,
    so the number of clients never translates into a number of threads.
    Buckets idle for longer than idle_seconds are disposed by evict_idle();
    a leaker thread that stopped in the meantime is replaced on the next
    bucket creation.
    """

    def __init__(self, rates: list[Rate], clock: AbstractClock, idle_seconds: float) -> None:
        self.clock = clock
        self.rates = rates
        self._idle_ms = int(idle_seconds * 1000)
        self._buckets: dict[str, InMemoryBucket] = {}
        self._last_used: dict[str, int] = {}
        self._lock = threading.Lock()

    def wrap_item(self, name: str, weight: int = 1) -> RateItem:
        return RateItem(name, self.clock.now(), weight=weight)

    def get(self, item: RateItem) -> InMemoryBucket:
        with self._lock:
            bucket = self._buckets.get(item.name)
            if bucket is None:
                self._replace_finished_leaker()
                bucket = self.create(self.clock, InMemoryBucket, self.rates)
                self._buckets[item.name] = bucket
            self._last_used[item.name] = item.timestamp
            return bucket

    def _replace_finished_leaker(self) -> None:
        """Drop a leaker thread that has already run and stopped.

        The leaker exits once its last bucket is disposed (or dies when a
        bucket is disposed mid-sweep), and a Thread cannot be started twice.
        Surviving buckets move to a fresh leaker.
        """
        leaker = self._leaker
        if leaker is None or leaker.ident is None or leaker.is_alive():
            return
        self._leaker = None
        for bucket in self._buckets.values():
            self.schedule_leak(bucket, self.clock)

    def bucket_for(self, key: str) -> InMemoryBucket | None:
        """Existing bucket for key, without creating one."""
        return self._buckets.get(key)

    def __len__(self) -> int:
        return len(self._buckets)

    def evict_idle(self, now_ms: int) -> int:
        """Dispose buckets unused for longer than the idle threshold.

        Returns:
            Number of buckets disposed.
        """
        with self._lock:
            stale = [key for key, last in self._last_used.items() if now_ms - last > self._idle_ms]
            for key in stale:
                bucket = self._buckets.pop(key)
                del self._last_used[key]
                self.dispose(bucket)
        return len(stale)

    def dispose_all(self) -> None:
        with self._lock:
            for bucket in self._buckets.values():
                self.dispose(bucket)
            self._buckets.clear()
            self._last_used.clear()


class NoOpLimiter:
    """No-op limiter when rate limiting is disabled.

    Provides the same interface as ClientRateLimiter but never limits.
    """

    def check(self, path: str, client: str) -> None:
        """No-op check; callers treat None as 'not limited, no headers'."""
        return None

    def close(self) -> None:
        """No-op close (nothing to clean up)."""

    def __enter__(self) -> NoOpLimiter:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()
