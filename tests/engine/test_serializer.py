# tests/engine/test_serializer.py
"""Tests for rendering a closure as restorable SQL."""

from datetime import UTC, datetime

import pytest

from pgsample.contracts.results import Closure, ResolutionOptions
from pgsample.contracts.tables import ColumnMetadata, RowIdentity, SampleRow, TableMetadata, TableRef
from pgsample.engine.serializer import DISABLE_TRIGGERS, ENABLE_TRIGGERS, END_MARKER, START_MARKER, Serializer

USERS = TableRef("public", "users")
ORDERS = TableRef("Sales", "order")


def _metadata(table: TableRef, *columns: tuple[str, str]) -> TableMetadata:
    return TableMetadata(
        table=table,
        row_count_estimate=0,
        page_count=0,
        columns=tuple(ColumnMetadata(name, data_type, True) for name, data_type in columns),
    )


def _row(table: TableRef, index: int, **payload: object) -> SampleRow:
    return SampleRow(table=table, payload=payload, identity=RowIdentity(f"{table}:{index}"))


@pytest.fixture
def serializer() -> Serializer:
    return Serializer(clock=lambda: datetime(2024, 5, 1, 12, 0, 0, tzinfo=UTC))


class TestSerializer:
    def test_envelope(self, serializer: Serializer) -> None:
        result = serializer.serialize(Closure(), [], {}, ResolutionOptions(seed=0.5, required_rows=2, max_rows=8))

        lines = result.serialized.splitlines()
        assert lines[0] == START_MARKER
        assert lines[1] == '-- Sampled by pgsample on 2024-05-01T12:00:00.000Z | options = {"seed":0.5,"requiredRows":2,"maxRows":8}'
        assert DISABLE_TRIGGERS in lines
        assert result.serialized.endswith(f"{END_MARKER}\n{ENABLE_TRIGGERS}\n\n")
        assert result.sampled_records == {}

    def test_insert_statement(self, serializer: Serializer) -> None:
        closure = Closure(
            tables={USERS: [_row(USERS, 0, id=1, name="Ada", meta={"k": "v"}), _row(USERS, 1, id=2, name=None, meta=None)]}
        )
        metadata = [_metadata(USERS, ("id", "integer"), ("name", "text"), ("meta", "jsonb"))]

        result = serializer.serialize(closure, metadata, {USERS: 12000}, ResolutionOptions())

        assert (
            "-- users | 2 sampled out of 12,000 (estimate)\n"
            "INSERT INTO public.users (id, name, meta) VALUES\n"
            "  (1, 'Ada', '{\"k\": \"v\"}'),\n"
            "  (2, NULL, NULL);\n\n"
        ) in result.serialized
        assert result.sampled_records == {USERS: 2}

    def test_identifiers_quoted(self, serializer: Serializer) -> None:
        closure = Closure(tables={ORDERS: [_row(ORDERS, 0, **{"id": 1, "Total": 5})]})
        metadata = [_metadata(ORDERS, ("id", "integer"), ("Total", "numeric"))]

        result = serializer.serialize(closure, metadata, {}, ResolutionOptions())

        assert 'INSERT INTO "Sales"."order" (id, "Total") VALUES' in result.serialized
        assert "-- order | 1 sampled out of ? (estimate)" in result.serialized

    def test_keyword_columns_quoted(self, serializer: Serializer) -> None:
        categories = TableRef("public", "left")
        closure = Closure(tables={categories: [_row(categories, 0, id=1, left=1, right=2, position=0)]})
        metadata = [_metadata(categories, ("id", "integer"), ("left", "integer"), ("right", "integer"), ("position", "integer"))]

        result = serializer.serialize(closure, metadata, {}, ResolutionOptions())

        assert 'INSERT INTO public."left" (id, "left", "right", "position") VALUES' in result.serialized
        assert "  (1, 1, 2, 0);" in result.serialized

    def test_column_order_follows_metadata(self, serializer: Serializer) -> None:
        closure = Closure(tables={USERS: [_row(USERS, 0, name="Ada", id=1)]})
        metadata = [_metadata(USERS, ("id", "integer"), ("name", "text"))]

        result = serializer.serialize(closure, metadata, {}, ResolutionOptions())

        assert "(1, 'Ada')" in result.serialized

    def test_table_without_metadata_skipped(self, serializer: Serializer) -> None:
        closure = Closure(tables={USERS: [_row(USERS, 0, id=1)]})

        result = serializer.serialize(closure, [], {}, ResolutionOptions())

        assert "INSERT INTO" not in result.serialized
        assert result.sampled_records == {}

    def test_empty_table_skipped(self, serializer: Serializer) -> None:
        closure = Closure(tables={USERS: []})

        result = serializer.serialize(closure, [_metadata(USERS, ("id", "integer"))], {}, ResolutionOptions())

        assert "INSERT INTO" not in result.serialized
        assert USERS not in result.sampled_records

    def test_schema_passed_through(self, serializer: Serializer) -> None:
        metadata = [_metadata(USERS, ("id", "integer"))]

        result = serializer.serialize(Closure(), metadata, {}, ResolutionOptions())

        assert result.schema == metadata

    def test_deterministic_for_fixed_clock(self, serializer: Serializer) -> None:
        closure = Closure(tables={USERS: [_row(USERS, 0, id=1), _row(USERS, 1, id=2)]})
        metadata = [_metadata(USERS, ("id", "integer"))]

        first = serializer.serialize(closure, metadata, {USERS: 2}, ResolutionOptions())
        second = serializer.serialize(closure, metadata, {USERS: 2}, ResolutionOptions())

        assert first.serialized == second.serialized
