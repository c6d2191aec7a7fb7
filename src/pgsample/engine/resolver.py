# src/pgsample/engine/resolver.py
"""Reference resolution: the dependency-closure engine.

Given the FK graph, the resolver samples a few rows per table and then
follows every foreign key of every captured row, fetching referenced rows
until the capture is closed under references. Replaying the closure into
an empty database therefore never trips a foreign-key check.

Lifecycle of one resolve() call:

    pending ──> draining ──> done
                    │
                    └──> aborted (MaxTableIterationsReached)

All state lives in a _Resolution built per call, so nothing carries over
between syncs.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Mapping
from enum import StrEnum
from typing import Any

import structlog

from pgsample.contracts.connector import DatabaseConnector
from pgsample.contracts.errors import MaxTableIterationsReached
from pgsample.contracts.notices import (
    MissingReference,
    RequiredRowsNotReached,
    ResolutionNotice,
    RowDroppedCapReached,
    RowEvicted,
)
from pgsample.contracts.results import CapPolicy, Closure, ResolutionOptions
from pgsample.contracts.tables import ForeignKeyEdge, RowIdentity, SampleRow, TableRef
from pgsample.core.dag import DependencyGraph
from pgsample.core.shutdown import ShutdownSignal, shutdown_signal
from pgsample.engine.sampler import RowSampler

logger = structlog.get_logger(__name__)


class RowOrigin(StrEnum):
    SAMPLED = "sampled"
    FETCHED = "fetched"


class ResolutionState(StrEnum):
    PENDING = "pending"
    DRAINING = "draining"
    DONE = "done"
    ABORTED = "aborted"


def _hashable(value: Any) -> Any:
    """Index key for a column value; arrays and json objects become tuples."""
    if isinstance(value, list | tuple):
        return tuple(_hashable(item) for item in value)
    if isinstance(value, dict):
        return tuple(sorted((str(k), _hashable(v)) for k, v in value.items()))
    return value


class _TableRows:
    """Rows captured for one table, with per-column-set value indexes.

    Indexes are built the first time a column set is looked up and then
    maintained on every insert and eviction.
    """

    __slots__ = ("origin", "pinned", "rows", "_indexes")

    def __init__(self) -> None:
        self.rows: dict[RowIdentity, SampleRow] = {}
        self.origin: dict[RowIdentity, RowOrigin] = {}
        self.pinned: set[RowIdentity] = set()
        self._indexes: dict[tuple[str, ...], dict[tuple[Any, ...], set[RowIdentity]]] = {}

    def __len__(self) -> int:
        return len(self.rows)

    def __contains__(self, identity: object) -> bool:
        return identity in self.rows

    @staticmethod
    def _key(row: SampleRow, columns: tuple[str, ...]) -> tuple[Any, ...]:
        return tuple(_hashable(row.payload.get(column)) for column in columns)

    def add(self, identity: RowIdentity, row: SampleRow, origin: RowOrigin) -> None:
        self.rows[identity] = row
        self.origin[identity] = origin
        for columns, index in self._indexes.items():
            index.setdefault(self._key(row, columns), set()).add(identity)

    def remove(self, identity: RowIdentity) -> None:
        row = self.rows.pop(identity)
        del self.origin[identity]
        self.pinned.discard(identity)
        for columns, index in self._indexes.items():
            key = self._key(row, columns)
            bucket = index[key]
            bucket.discard(identity)
            if not bucket:
                del index[key]

    def matching(self, columns: tuple[str, ...], values: Mapping[str, Any]) -> set[RowIdentity]:
        index = self._indexes.get(columns)
        if index is None:
            index = {}
            for identity, row in self.rows.items():
                index.setdefault(self._key(row, columns), set()).add(identity)
            self._indexes[columns] = index
        key = tuple(_hashable(values[column]) for column in columns)
        return index.get(key, set())

    def eviction_candidate(self) -> RowIdentity | None:
        """Most recently sampled row that nothing references yet."""
        for identity in reversed(self.rows):
            if self.origin[identity] is RowOrigin.SAMPLED and identity not in self.pinned:
                return identity
        return None

    def count(self, origin: RowOrigin) -> int:
        return sum(1 for value in self.origin.values() if value is origin)


class _Resolution:
    """Mutable state of one resolve() call."""

    def __init__(self, graph: DependencyGraph) -> None:
        self.graph = graph
        self.tables: dict[TableRef, _TableRows] = {table: _TableRows() for table in graph.tables()}
        self.worklist: deque[tuple[TableRef, RowIdentity]] = deque()
        self.notices: list[ResolutionNotice] = []
        self.exhausted: set[TableRef] = set()
        self.iterations = 0
        self.state = ResolutionState.PENDING

    def rows_of(self, table: TableRef) -> _TableRows:
        rows = self.tables.get(table)
        if rows is None:
            # Edge targets are always nodes; this covers fetches routed to a
            # table the graph never saw.
            rows = self.tables[table] = _TableRows()
        return rows


class ReferenceResolver:
    """Builds a referentially closed sample from a DependencyGraph.

    Example:
        resolver = ReferenceResolver(connector, ResolutionOptions(seed=0.5))
        closure = await resolver.resolve(DependencyGraph.from_edges(await connector.edges("public")))
    """

    def __init__(
        self,
        connector: DatabaseConnector,
        options: ResolutionOptions,
        *,
        sampler: RowSampler | None = None,
        shutdown: ShutdownSignal | None = None,
    ) -> None:
        self._connector = connector
        self._options = options
        self._shutdown = shutdown if shutdown is not None else shutdown_signal
        self._sampler = sampler if sampler is not None else RowSampler(connector, shutdown=self._shutdown)

    @property
    def options(self) -> ResolutionOptions:
        return self._options

    async def resolve(self, graph: DependencyGraph) -> Closure:
        """Sample every table and close the capture under foreign keys.

        Raises:
            MaxTableIterationsReached: If the worklist does not drain within
                options.max_iterations pops
            SyncCancelledError: If the shutdown signal fires
        """
        resolution = _Resolution(graph)
        if not graph.is_acyclic():
            logger.debug("Schema has reference cycles", cycles=[[str(t) for t in c] for c in graph.cycles()])

        target = min(self._options.required_rows, self._options.max_rows)
        for table in graph.tables():
            if not (graph.is_source_table(table) or self._options.sample_discovered_tables):
                continue
            rows = resolution.rows_of(table)
            if len(rows) >= target:
                continue
            batch = await self._sampler.sample(table, self._options, rows.rows.keys(), target=target)
            if batch.exhausted:
                resolution.exhausted.add(table)
            self._insert_sampled(resolution, table, batch.rows)
            await self._drain(resolution)

        for table in sorted(resolution.exhausted):
            available = len(resolution.rows_of(table))
            if available < self._options.required_rows:
                resolution.notices.append(
                    RequiredRowsNotReached(table=table, required_rows=self._options.required_rows, available=available)
                )

        resolution.state = ResolutionState.DONE
        closure = self._build_closure(resolution)
        logger.info(
            "Resolved dependency closure",
            tables=len(closure.tables),
            rows=closure.total_rows,
            notices=len(closure.notices),
            iterations=closure.iterations,
        )
        return closure

    def _insert_sampled(self, resolution: _Resolution, table: TableRef, rows: Iterable[SampleRow]) -> None:
        table_rows = resolution.rows_of(table)
        for row in rows:
            identity = self._connector.identity(row)
            table_rows.add(identity, row, RowOrigin.SAMPLED)
            resolution.worklist.append((table, identity))

    async def _drain(self, resolution: _Resolution) -> None:
        resolution.state = ResolutionState.DRAINING
        while resolution.worklist:
            if resolution.iterations >= self._options.max_iterations:
                resolution.state = ResolutionState.ABORTED
                logger.error(
                    "Worklist did not converge",
                    iterations=resolution.iterations,
                    pending=len(resolution.worklist),
                )
                raise MaxTableIterationsReached(resolution.iterations, len(resolution.worklist))
            self._shutdown.raise_if_triggered()

            table, identity = resolution.worklist.popleft()
            resolution.iterations += 1
            row = resolution.rows_of(table).rows.get(identity)
            if row is None:
                # Evicted while queued
                continue
            for edge in resolution.graph.outgoing(table):
                await self._follow(resolution, row, edge)
        resolution.state = ResolutionState.PENDING

    async def _follow(self, resolution: _Resolution, row: SampleRow, edge: ForeignKeyEdge) -> None:
        key_values = edge.key_for(row.payload)
        if key_values is None:
            return

        target_rows = resolution.rows_of(edge.referenced)
        present = target_rows.matching(edge.referenced_columns, key_values)
        if present:
            target_rows.pinned.update(present)
            return

        fetched = await self._connector.fetch(edge.referenced, key_values)
        if fetched is None:
            resolution.notices.append(
                MissingReference(
                    source=edge.source,
                    source_identity=row.identity,
                    referenced=edge.referenced,
                    key_values=dict(key_values),
                )
            )
            logger.debug(
                "Missing reference",
                source=str(edge.source),
                referenced=str(edge.referenced),
                columns=list(edge.referenced_columns),
            )
            return

        identity = self._connector.identity(fetched)
        if identity in target_rows:
            target_rows.pinned.add(identity)
            return

        if len(target_rows) >= self._options.max_rows:
            evicted = None
            if self._options.cap_policy is CapPolicy.PREFER_REFERENCES:
                evicted = target_rows.eviction_candidate()
            if evicted is None:
                resolution.notices.append(
                    RowDroppedCapReached(
                        table=edge.referenced,
                        identity=identity,
                        max_rows=self._options.max_rows,
                        requested_by=edge.source,
                        requested_by_identity=row.identity,
                    )
                )
                return
            target_rows.remove(evicted)
            resolution.notices.append(RowEvicted(table=edge.referenced, evicted=evicted, replaced_by=identity))

        target_rows.add(identity, fetched, RowOrigin.FETCHED)
        target_rows.pinned.add(identity)
        resolution.worklist.append((edge.referenced, identity))

    def _build_closure(self, resolution: _Resolution) -> Closure:
        closure = Closure(notices=resolution.notices, iterations=resolution.iterations)
        for table, table_rows in resolution.tables.items():
            closure.tables[table] = list(table_rows.rows.values())
            closure.sampled_counts[table] = table_rows.count(RowOrigin.SAMPLED)
            closure.fetched_counts[table] = table_rows.count(RowOrigin.FETCHED)
        return closure
