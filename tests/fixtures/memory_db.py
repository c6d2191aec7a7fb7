# tests/fixtures/memory_db.py
"""In-memory DatabaseConnector for driving the engine without Postgres.

Rows live in plain lists per table. A row's identity is its position in
that list (the in-memory analogue of a ctid), so the streaming path and the
exact-fetch path agree on identity the same way the Postgres connector does.

Usage:
    db = MemoryDatabase()
    users = db.table("users", [{"id": 0}, {"id": 1}])
    posts = db.table("posts", [{"id": 10, "poster_id": 0}])
    db.foreign_key(posts, ["poster_id"], users, ["id"])
"""

from __future__ import annotations

import random
from collections.abc import AsyncIterator, Mapping
from typing import Any

from pgsample.contracts.tables import EdgeRecord, ForeignKeyEdge, RowIdentity, SampleRow, TableRef


class MemoryDatabase:
    """Implements the four DatabaseConnector operations over dicts.

    Records every call so tests can assert on how the engine used it. With
    shuffle=False rows stream in stored order, which pins down exactly which
    rows get sampled.
    """

    def __init__(self, schema: str = "public", *, shuffle: bool = True) -> None:
        self.schema = schema
        self.shuffle = shuffle
        self.rows: dict[TableRef, list[dict[str, Any]]] = {}
        self.foreign_keys: list[ForeignKeyEdge] = []
        self.sample_calls: list[TableRef] = []
        self.fetch_calls: list[tuple[TableRef, dict[str, Any]]] = []
        self.fail_on_fetch: Exception | None = None
        self.fail_on_sample: Exception | None = None

    def table(self, name: str, rows: list[dict[str, Any]] | None = None, *, schema: str | None = None) -> TableRef:
        ref = TableRef(schema or self.schema, name)
        self.rows[ref] = [dict(row) for row in rows or []]
        return ref

    def foreign_key(
        self,
        source: TableRef,
        source_columns: list[str],
        referenced: TableRef,
        referenced_columns: list[str],
    ) -> ForeignKeyEdge:
        edge = ForeignKeyEdge(
            source=source,
            source_columns=tuple(source_columns),
            referenced=referenced,
            referenced_columns=tuple(referenced_columns),
        )
        self.foreign_keys.append(edge)
        return edge

    def _row(self, table: TableRef, index: int) -> SampleRow:
        payload = dict(self.rows[table][index])
        return SampleRow(table=table, payload=payload, identity=RowIdentity(f"{table}:{index}"))

    # === DatabaseConnector ===

    async def edges(self, schema: str) -> list[EdgeRecord]:
        records: list[EdgeRecord] = []
        for table in sorted(self.rows):
            if table.schema != schema:
                continue
            declared = [edge for edge in self.foreign_keys if edge.source == table]
            if not declared:
                records.append(EdgeRecord(table=table))
            records.extend(EdgeRecord(table=table, edge=edge) for edge in declared)
        return records

    async def sample(self, table: TableRef, seed: float, required_rows: int) -> AsyncIterator[SampleRow]:
        self.sample_calls.append(table)
        if self.fail_on_sample is not None:
            raise self.fail_on_sample
        order = list(range(len(self.rows.get(table, []))))
        if self.shuffle:
            random.Random(f"{seed}:{table}").shuffle(order)
        for index in order:
            yield self._row(table, index)

    async def fetch(self, table: TableRef, key_values: Mapping[str, Any]) -> SampleRow | None:
        self.fetch_calls.append((table, dict(key_values)))
        if self.fail_on_fetch is not None:
            raise self.fail_on_fetch
        for index, row in enumerate(self.rows.get(table, [])):
            if all(row.get(column) == value for column, value in key_values.items()):
                return self._row(table, index)
        return None

    def identity(self, row: SampleRow) -> RowIdentity:
        return row.identity


def users_and_posts() -> tuple[MemoryDatabase, TableRef, TableRef]:
    """users ids 0..2, one post each for users 0 and 1."""
    db = MemoryDatabase()
    users = db.table("users", [{"id": 0, "name": "ada"}, {"id": 1, "name": "bob"}, {"id": 2, "name": "cy"}])
    posts = db.table("posts", [{"id": 100, "poster_id": 0}, {"id": 101, "poster_id": 1}])
    db.foreign_key(posts, ["poster_id"], users, ["id"])
    return db, users, posts


def employees_chain(length: int) -> tuple[MemoryDatabase, TableRef]:
    """Self-referencing employees: employee i reports to i - 1; employee 0 has no manager."""
    db = MemoryDatabase()
    employees = db.table(
        "employees",
        [{"id": i, "manager_id": i - 1 if i > 0 else None} for i in range(length)],
    )
    db.foreign_key(employees, ["manager_id"], employees, ["id"])
    return db, employees
