# src/pgsample/engine/serializer.py
"""Closure -> restorable SQL text.

Rows are written per table as one multi-row INSERT each, in closure order
rather than dependency order. Restores run with
session_replication_role = 'replica', which disables foreign-key triggers,
so cyclic schemas restore the same way acyclic ones do.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime

import structlog

from pgsample.contracts.results import Closure, ResolutionOptions, SerializeResult
from pgsample.contracts.tables import TableMetadata, TableRef, quote_ident
from pgsample.engine.literals import to_literal

logger = structlog.get_logger(__name__)

START_MARKER = "-- START:Sampled data"
END_MARKER = "-- END:Sampled data"
DISABLE_TRIGGERS = "SET session_replication_role = 'replica';"
ENABLE_TRIGGERS = "SET session_replication_role = 'origin';"


def _utc_now() -> datetime:
    return datetime.now(UTC)


class Serializer:
    """Renders a Closure as INSERT statements using column metadata.

    Args:
        clock: Source of the timestamp written in the header comment
    """

    def __init__(self, clock: Callable[[], datetime] = _utc_now) -> None:
        self._clock = clock

    def _header(self, options: ResolutionOptions) -> str:
        stamp = self._clock().astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")
        options_json = json.dumps(options.to_dict(), separators=(",", ":"))
        comments = [
            START_MARKER,
            f"-- Sampled by pgsample on {stamp} | options = {options_json}",
            "--",
            "-- Note: Using session_replication_role to prevent foreign key constraints from being checked.",
            "-- If adding new rows manually, you might want to put new insert statements after the sampled data.",
        ]
        return "\n".join(comments) + "\n" + DISABLE_TRIGGERS + "\n\n"

    def serialize(
        self,
        closure: Closure,
        metadata: Iterable[TableMetadata],
        estimates: Mapping[TableRef, int],
        options: ResolutionOptions,
    ) -> SerializeResult:
        """Build the SQL text for every table that has rows and metadata.

        Args:
            closure: Resolved rows
            metadata: Column descriptions, typically from the connector's
                schema query; tables missing here are skipped
            estimates: Live-tuple estimates used in the per-table comment
            options: Written into the header so a dump records how it was made
        """
        schema = list(metadata)
        by_table = {table_metadata.table: table_metadata for table_metadata in schema}
        parts = [self._header(options)]
        sampled_records: dict[TableRef, int] = {}

        for table, rows in closure.tables.items():
            table_metadata = by_table.get(table)
            if table_metadata is None or not table_metadata.columns:
                logger.warning("No column metadata for table, skipping", table=str(table), rows=len(rows))
                continue
            if not rows:
                logger.warning("No rows found for table, skipping", table=str(table))
                continue

            columns = table_metadata.columns
            column_list = ", ".join(quote_ident(column.column_name) for column in columns)
            values = ",\n  ".join(
                "(" + ", ".join(to_literal(row.payload.get(column.column_name), column.data_type) for column in columns) + ")"
                for row in rows
            )
            estimate = estimates.get(table)
            estimate_text = f"{estimate:,}" if estimate is not None else "?"
            parts.append(
                f"-- {table.name} | {len(rows)} sampled out of {estimate_text} (estimate)\n"
                f"INSERT INTO {table} ({column_list}) VALUES\n"
                f"  {values};\n\n"
            )
            sampled_records[table] = len(rows)

        parts.append(f"{END_MARKER}\n{ENABLE_TRIGGERS}\n\n")
        logger.info("Serialized sampled tables", tables=len(sampled_records), rows=sum(sampled_records.values()))
        return SerializeResult(serialized="".join(parts), sampled_records=sampled_records, schema=schema)
