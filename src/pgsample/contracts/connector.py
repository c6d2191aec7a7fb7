# src/pgsample/contracts/connector.py
"""The capability set the sampling engine needs from a database.

The engine never issues SQL itself. Everything it knows about the database
comes through these four operations, so tests can drive the resolver with an
in-memory implementation and the Postgres connector stays swappable.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping
from typing import Any, Protocol, runtime_checkable

from pgsample.contracts.tables import EdgeRecord, RowIdentity, SampleRow, TableRef


@runtime_checkable
class DatabaseConnector(Protocol):
    """Protocol for database connectors used by the sampler and resolver.

    Errors raised by an implementation (transport or query failures) are
    propagated unchanged by the engine; they are never retried or masked.
    """

    async def edges(self, schema: str) -> list[EdgeRecord]:
        """Enumerate the foreign keys of every table in schema.

        Tables without foreign keys are reported with edge=None.
        """
        ...

    def sample(self, table: TableRef, seed: float, required_rows: int) -> AsyncIterator[SampleRow]:
        """Stream candidate rows of table in seeded pseudo-random order.

        The stream is finite and deterministic for a fixed seed and an
        unchanged table. required_rows is a sizing hint only.
        """
        ...

    async def fetch(self, table: TableRef, key_values: Mapping[str, Any]) -> SampleRow | None:
        """Exact lookup by column equality; at most one row, None if absent."""
        ...

    def identity(self, row: SampleRow) -> RowIdentity:
        """Stable identifier of row, used purely for deduplication."""
        ...
