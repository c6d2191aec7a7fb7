# src/pgsample/postgres/connections.py
"""Process-wide cache of connection pools, one per target URL.

Pools are created on first use and handed out as leases. A pool without
leases is closed after ttl_seconds without use, and the least recently used
idle pool is closed when more than max_pools targets are open. Leased pools
are never closed under a running sync; close() tears everything down at
shutdown.
"""

from __future__ import annotations

import asyncio
import time
from collections import OrderedDict
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass

import structlog
from psycopg_pool import AsyncConnectionPool

from pgsample.contracts.url import SanitizedDatabaseUrl
from pgsample.core.config import ConnectionSettings

logger = structlog.get_logger(__name__)

type PoolFactory = Callable[[str], AsyncConnectionPool]


@dataclass(slots=True)
class _CachedPool:
    pool: AsyncConnectionPool
    last_used: float
    leases: int = 0
    # Evicted while leased: out of the cache, closed when the last lease ends
    retired: bool = False


class ConnectionCache:
    """Creates, reuses and evicts AsyncConnectionPools keyed by connection URL."""

    def __init__(
        self,
        settings: ConnectionSettings | None = None,
        *,
        pool_factory: PoolFactory | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings if settings is not None else ConnectionSettings()
        self._pool_factory = pool_factory if pool_factory is not None else self._create_pool
        self._clock = clock
        self._pools: OrderedDict[str, _CachedPool] = OrderedDict()
        self._lock = asyncio.Lock()

    def _create_pool(self, url: str) -> AsyncConnectionPool:
        return AsyncConnectionPool(
            conninfo=url,
            min_size=0,
            max_size=self._settings.pool_max_size,
            timeout=self._settings.connect_timeout,
            kwargs={"connect_timeout": max(1, int(self._settings.connect_timeout))},
            open=False,
            name=SanitizedDatabaseUrl.from_raw_url(url).fingerprint,
        )

    def __len__(self) -> int:
        return len(self._pools)

    def __contains__(self, url: object) -> bool:
        return url in self._pools

    @asynccontextmanager
    async def lease(self, url: str) -> AsyncIterator[AsyncConnectionPool]:
        """Pool for url, opening one if needed, kept open until the block exits.

        Usage:
            async with cache.lease(url) as pool:
                async with pool.connection() as conn:
                    ...
        """
        cached = await self._acquire(url)
        try:
            yield cached.pool
        finally:
            await self._release(url, cached)

    async def _acquire(self, url: str) -> _CachedPool:
        async with self._lock:
            now = self._clock()
            await self._evict_expired(now)

            cached = self._pools.get(url)
            if cached is None:
                pool = self._pool_factory(url)
                await pool.open(wait=False)
                cached = _CachedPool(pool=pool, last_used=now)
                self._pools[url] = cached
                logger.info("Opened connection pool", target=SanitizedDatabaseUrl.from_raw_url(url).sanitized_url)
            else:
                self._pools.move_to_end(url)
            cached.last_used = now
            cached.leases += 1

            await self._evict_over_capacity()
            return cached

    async def _release(self, url: str, cached: _CachedPool) -> None:
        async with self._lock:
            cached.leases -= 1
            cached.last_used = self._clock()
            if cached.retired:
                if cached.leases == 0:
                    await self._close_pool(url, cached.pool, reason="explicit")
                return
            # Leases may have held the cache over capacity
            await self._evict_over_capacity()

    async def _evict_over_capacity(self) -> None:
        excess = len(self._pools) - self._settings.max_pools
        if excess <= 0:
            return
        # Least recently used first
        idle = [url for url, cached in self._pools.items() if cached.leases == 0][:excess]
        for url in idle:
            cached = self._pools.pop(url)
            await self._close_pool(url, cached.pool, reason="capacity")
        if len(self._pools) > self._settings.max_pools:
            logger.debug(
                "Connection pools over capacity while leased",
                open_pools=len(self._pools),
                max_pools=self._settings.max_pools,
            )

    async def evict(self, url: str) -> bool:
        """Close and forget the pool for url. Returns False if none was open.

        A leased pool leaves the cache now and is closed when its last lease ends.
        """
        async with self._lock:
            cached = self._pools.pop(url, None)
            if cached is None:
                return False
            if cached.leases:
                cached.retired = True
            else:
                await self._close_pool(url, cached.pool, reason="explicit")
            return True

    async def evict_expired(self) -> int:
        async with self._lock:
            return await self._evict_expired(self._clock())

    async def _evict_expired(self, now: float) -> int:
        expired = [
            url
            for url, cached in self._pools.items()
            if cached.leases == 0 and now - cached.last_used > self._settings.ttl_seconds
        ]
        for url in expired:
            cached = self._pools.pop(url)
            await self._close_pool(url, cached.pool, reason="ttl")
        return len(expired)

    async def close(self) -> None:
        async with self._lock:
            while self._pools:
                url, cached = self._pools.popitem(last=False)
                await self._close_pool(url, cached.pool, reason="shutdown")

    @staticmethod
    async def _close_pool(url: str, pool: AsyncConnectionPool, *, reason: str) -> None:
        await pool.close()
        logger.info(
            "Closed connection pool",
            target=SanitizedDatabaseUrl.from_raw_url(url).sanitized_url,
            reason=reason,
        )
