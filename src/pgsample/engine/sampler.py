# src/pgsample/engine/sampler.py
"""Organic row sampling for one table.

Draws from the connector's seeded candidate stream until the table holds
required_rows distinct rows or the stream runs dry.
"""

from __future__ import annotations

from collections.abc import Iterable
from contextlib import aclosing
from dataclasses import dataclass

import structlog

from pgsample.contracts.connector import DatabaseConnector
from pgsample.contracts.results import ResolutionOptions
from pgsample.contracts.tables import RowIdentity, SampleRow, TableRef
from pgsample.core.shutdown import ShutdownSignal, shutdown_signal

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class SampleBatch:
    """Rows new to the table, and whether the stream ended before the target."""

    rows: list[SampleRow]
    exhausted: bool


class RowSampler:
    """Consumes DatabaseConnector.sample() for one table at a time.

    The sampler never looks at max_rows; capping happens when the resolver
    inserts rows. Connector errors propagate unchanged and are not retried.
    """

    def __init__(self, connector: DatabaseConnector, *, shutdown: ShutdownSignal | None = None) -> None:
        self._connector = connector
        self._shutdown = shutdown if shutdown is not None else shutdown_signal

    async def sample(
        self,
        table: TableRef,
        options: ResolutionOptions,
        existing: Iterable[RowIdentity] = (),
        *,
        target: int | None = None,
    ) -> SampleBatch:
        """Collect rows until target distinct identities are present.

        Args:
            table: Table to sample
            options: Seed and required_rows come from here
            existing: Identities the table already holds; they count toward
                the target and are never returned again
            target: Overrides options.required_rows as the distinct-row goal

        Returns:
            SampleBatch with only the rows that were not already present

        Raises:
            SyncCancelledError: If the shutdown signal fires mid-stream
        """
        goal = options.required_rows if target is None else target
        seen: set[RowIdentity] = set(existing)
        rows: list[SampleRow] = []

        if len(seen) >= goal:
            return SampleBatch(rows=rows, exhausted=False)

        stream = self._connector.sample(table, options.seed, options.required_rows)
        async with aclosing(stream) as candidates:
            async for row in candidates:
                self._shutdown.raise_if_triggered()
                identity = self._connector.identity(row)
                if identity in seen:
                    continue
                seen.add(identity)
                rows.append(row)
                if len(seen) >= goal:
                    return SampleBatch(rows=rows, exhausted=False)

        logger.debug("Sample stream exhausted", table=str(table), collected=len(seen), goal=goal)
        return SampleBatch(rows=rows, exhausted=True)
