"""Per-client window limiter around pyrate-limiter."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog
from pyrate_limiter import (  # type: ignore[attr-defined]
    AbstractClock,
    Limiter,
    Rate,
    TimeClock,
)

from pgsample.core.rate_limit.registry import ClientBucketRegistry, NoOpLimiter

if TYPE_CHECKING:
    from types import TracebackType

    from pgsample.core.config import RateLimitSettings

logger = structlog.get_logger(__name__)

# Track original thread excepthook
_original_excepthook = threading.excepthook

# Leaker thread idents registered for exception suppression while buckets are disposed.
_suppressed_thread_idents: set[int] = set()
_suppressed_lock = threading.Lock()


def _custom_excepthook(args: threading.ExceptHookArgs) -> None:
    """Suppress the errors pyrate-limiter's Leaker raises when buckets are disposed under it.

    The leaker asserts on an empty registry and raises KeyError for a bucket
    deregistered mid-sweep. Suppression only applies to threads registered
    by ClientRateLimiter before disposing buckets, once per thread.
    """
    thread_ident = args.thread.ident if args.thread else None

    with _suppressed_lock:
        if thread_ident is not None and thread_ident in _suppressed_thread_idents and args.exc_type in (AssertionError, KeyError):
            _suppressed_thread_idents.discard(thread_ident)
            logger.debug(
                "Suppressed expected pyrate-limiter cleanup exception",
                thread_ident=thread_ident,
                thread_name=args.thread.name if args.thread else None,
            )
            return

    _original_excepthook(args)


threading.excepthook = _custom_excepthook


@dataclass(frozen=True, slots=True)
class RateLimitDecision:
    """Outcome of one check, carrying everything the response headers need.

    reset_at is epoch seconds: when the oldest request in the window expires
    and a slot frees up.
    """

    limited: bool
    limit: int
    remaining: int
    reset_at: float
    window_seconds: int


class ClientRateLimiter:
    """Fixed-size sliding window per (path, client) pair.

    Example:
        limiter = ClientRateLimiter(requests_per_window=100, window_seconds=900)
        decision = limiter.check("/postgres/all", "203.0.113.7")
        if decision.limited:
            return 429
    """

    def __init__(
        self,
        requests_per_window: int,
        window_seconds: int,
        idle_eviction_seconds: float = 3600.0,
        clock: AbstractClock | None = None,
    ) -> None:
        """Initialize the limiter.

        Args:
            requests_per_window: Requests allowed per client inside one window.
                Must be greater than 0.
            window_seconds: Window length. Must be greater than 0.
            idle_eviction_seconds: Buckets untouched this long are disposed.
            clock: pyrate-limiter clock; TimeClock by default.

        Raises:
            ValueError: If the limits are not positive.
        """
        if requests_per_window <= 0:
            raise ValueError(f"requests_per_window must be positive, got {requests_per_window}")
        if window_seconds <= 0:
            raise ValueError(f"window_seconds must be positive, got {window_seconds}")

        self._limit = requests_per_window
        self._window_seconds = window_seconds
        self._window_ms = window_seconds * 1000
        self._clock = clock if clock is not None else TimeClock()
        self._lock = threading.Lock()
        self._registry = ClientBucketRegistry(
            [Rate(requests_per_window, self._window_ms)],
            self._clock,
            idle_seconds=idle_eviction_seconds,
        )
        self._limiter = Limiter(self._registry, raise_when_fail=False, max_delay=None)
        self._checks_since_eviction = 0

    @property
    def tracked_clients(self) -> int:
        return len(self._registry)

    @staticmethod
    def _key(path: str, client: str) -> str:
        return f"{path}|{client}"

    def check(self, path: str, client: str) -> RateLimitDecision:
        """Count one request for (path, client) unless the window is full."""
        key = self._key(path, client)
        with self._lock:
            now = self._clock.now()
            self._maybe_evict(now)

            bucket = self._registry.bucket_for(key)
            used = 0
            if bucket is not None:
                bucket.leak(now)
                used = bucket.count()

            limited = used + 1 > self._limit
            if not limited and not self._limiter.try_acquire(key):
                limited = True

            bucket = self._registry.bucket_for(key)
            count = bucket.count() if bucket is not None else 0
            oldest = bucket.peek(count - 1) if bucket is not None and count else None
            reset_ms = (oldest.timestamp if oldest is not None else now) + self._window_ms

        if limited:
            logger.info("Rate limit exceeded", path=path, client=client, limit=self._limit)
        return RateLimitDecision(
            limited=limited,
            limit=self._limit,
            remaining=max(self._limit - count, 0),
            reset_at=reset_ms / 1000.0,
            window_seconds=self._window_seconds,
        )

    def _maybe_evict(self, now: int) -> None:
        self._checks_since_eviction += 1
        if self._checks_since_eviction < 256:
            return
        self._checks_since_eviction = 0
        self._expect_leaker_errors()
        evicted = self._registry.evict_idle(now)
        if evicted:
            logger.debug("Evicted idle rate limit buckets", count=evicted)

    def evict_idle(self) -> int:
        """Dispose idle client buckets now instead of on the next sweep."""
        with self._lock:
            self._expect_leaker_errors()
            return self._registry.evict_idle(self._clock.now())

    def _expect_leaker_errors(self) -> None:
        leaker = self._registry._leaker
        if leaker is not None and leaker.is_alive() and leaker.ident is not None:
            with _suppressed_lock:
                _suppressed_thread_idents.add(leaker.ident)

    def close(self) -> None:
        """Dispose every bucket and stop the leaker thread."""
        leaker = self._registry._leaker
        self._expect_leaker_errors()
        self._registry.dispose_all()

        if leaker is not None and leaker.is_alive():
            leaker.join(timeout=0.05)

    def __enter__(self) -> ClientRateLimiter:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()


def create_rate_limiter(settings: RateLimitSettings) -> ClientRateLimiter | NoOpLimiter:
    """Build the limiter the HTTP surface uses, or a no-op when disabled."""
    if not settings.enabled:
        return NoOpLimiter()
    return ClientRateLimiter(
        requests_per_window=settings.requests_per_window,
        window_seconds=settings.window_seconds,
        idle_eviction_seconds=settings.idle_eviction_seconds,
    )
