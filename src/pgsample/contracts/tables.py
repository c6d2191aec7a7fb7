# src/pgsample/contracts/tables.py
"""Table, foreign-key and row types shared by every layer.

Leaf module: no intra-package imports, so the engine, the Postgres connector
and the HTTP layer can all depend on it without import cycles.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, NewType

# A stable per-run identifier for a physical row (Postgres: table + ctid).
RowIdentity = NewType("RowIdentity", str)

_PLAIN_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")

# Every keyword outside Postgres' UNRESERVED category: quote_ident() quotes
# these even when they look like plain identifiers.
_RESERVED_KEYWORDS = frozenset(
    """
    all analyse analyze and any array as asc asymmetric both case cast check
    collate column constraint create current_catalog current_date current_role
    current_time current_timestamp current_user default deferrable desc distinct
    do else end except false fetch for foreign from grant group having in
    initially intersect into lateral leading limit localtime localtimestamp not
    null offset on only or order placing primary references returning select
    session_user some symmetric system_user table then to trailing true union
    unique user using variadic when where window with
    """.split()
)
_TYPE_FUNC_NAME_KEYWORDS = frozenset(
    """
    authorization binary collation concurrently cross current_schema freeze full
    ilike inner is isnull join left like natural notnull outer overlaps right
    similar tablesample verbose
    """.split()
)
_COL_NAME_KEYWORDS = frozenset(
    """
    between bigint bit boolean char character coalesce dec decimal exists extract
    float greatest grouping inout int integer interval json json_array
    json_arrayagg json_exists json_object json_objectagg json_query json_scalar
    json_serialize json_table json_value least merge_action national nchar none
    normalize nullif numeric out overlay position precision real row setof
    smallint substring time timestamp treat trim values varchar xmlattributes
    xmlconcat xmlelement xmlexists xmlforest xmlnamespaces xmlparse xmlpi xmlroot
    xmlserialize xmltable
    """.split()
)
_QUOTED_KEYWORDS = _RESERVED_KEYWORDS | _TYPE_FUNC_NAME_KEYWORDS | _COL_NAME_KEYWORDS


def quote_ident(name: str) -> str:
    """Quote an identifier the way Postgres' quote_ident() does.

    Lowercase names that are not reserved, type/function-name or column-name
    keywords are returned unchanged; everything else is wrapped in double
    quotes with embedded quotes doubled.
    """
    if _PLAIN_IDENTIFIER.match(name) and name not in _QUOTED_KEYWORDS:
        return name
    escaped = name.replace('"', '""')
    return f'"{escaped}"'


@dataclass(frozen=True, order=True, slots=True)
class TableRef:
    """Schema-qualified table name.

    Names are stored unquoted (as they appear in the catalogs); str() renders
    the quoted, qualified form suitable for SQL text.
    """

    schema: str
    name: str

    def __str__(self) -> str:
        return f"{quote_ident(self.schema)}.{quote_ident(self.name)}"

    def display_name(self, default_schema: str) -> str:
        """Bare table name inside default_schema, qualified name elsewhere."""
        if self.schema == default_schema:
            return self.name
        return f"{self.schema}.{self.name}"


@dataclass(frozen=True, slots=True)
class ForeignKeyEdge:
    """A foreign key from source_columns of source to referenced_columns of referenced.

    Column tuples are ordered and of equal length; composite keys pair up
    positionally.
    """

    source: TableRef
    source_columns: tuple[str, ...]
    referenced: TableRef
    referenced_columns: tuple[str, ...]

    def __post_init__(self) -> None:
        if len(self.source_columns) != len(self.referenced_columns):
            raise ValueError(
                f"Foreign key {self.source} -> {self.referenced} pairs "
                f"{len(self.source_columns)} source columns with "
                f"{len(self.referenced_columns)} referenced columns"
            )
        if not self.source_columns:
            raise ValueError(f"Foreign key {self.source} -> {self.referenced} has no columns")

    @property
    def is_self_reference(self) -> bool:
        return self.source == self.referenced

    def key_for(self, payload: Mapping[str, Any]) -> dict[str, Any] | None:
        """Referenced-column lookup values taken from a source row.

        Returns None when any source column is null (an unset optional key).
        """
        values: dict[str, Any] = {}
        for source_column, referenced_column in zip(self.source_columns, self.referenced_columns, strict=True):
            value = payload.get(source_column)
            if value is None:
                return None
            values[referenced_column] = value
        return values


@dataclass(frozen=True, slots=True)
class EdgeRecord:
    """One row of the foreign-key catalog query.

    Every table of the schema appears at least once; a table without foreign
    keys is reported with edge=None so it still becomes a graph node.
    """

    table: TableRef
    edge: ForeignKeyEdge | None = None


@dataclass(frozen=True, slots=True)
class SampleRow:
    """A captured row: its table, opaque column payload and identity."""

    table: TableRef
    payload: Mapping[str, Any]
    identity: RowIdentity


@dataclass(frozen=True, slots=True)
class ColumnStats:
    """Planner statistics for one column (pg_stats)."""

    null_fraction: float
    distinct_values: float
    common_elems: list[Any] | None = None
    common_elem_frequencies: list[float] | None = None
    histogram_bounds: list[Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "nullFraction": self.null_fraction,
            "commonElems": self.common_elems,
            "commonElemFrequencies": self.common_elem_frequencies,
            "distinctValues": self.distinct_values,
            "histogramBounds": self.histogram_bounds,
        }


@dataclass(frozen=True, slots=True)
class ColumnMetadata:
    """Column name, declared type and nullability, plus optional stats."""

    column_name: str
    data_type: str
    is_nullable: bool
    stats: ColumnStats | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "columnName": self.column_name,
            "dataType": self.data_type,
            "isNullable": self.is_nullable,
            "stats": self.stats.to_dict() if self.stats is not None else None,
        }


@dataclass(frozen=True, slots=True)
class TableMetadata:
    """Catalog description of one table."""

    table: TableRef
    row_count_estimate: float
    page_count: int
    columns: tuple[ColumnMetadata, ...] = field(default_factory=tuple)

    def column(self, name: str) -> ColumnMetadata | None:
        for column in self.columns:
            if column.column_name == name:
                return column
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tableName": self.table.name,
            "schemaName": self.table.schema,
            "rowCountEstimate": self.row_count_estimate,
            "pageCount": self.page_count,
            "columns": [column.to_dict() for column in self.columns],
        }
