# src/pgsample/postgres/connector.py
"""DatabaseConnector backed by a psycopg 3 async connection pool.

Every statement carries the introspection tag so pg_stat_statements
listings can leave out our own traffic. Identifiers are composed with
psycopg.sql, never interpolated.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping
from typing import Any

import psycopg
import structlog
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from pgsample.contracts.results import DatabaseInfo, Privilege, RecentQueriesResult, RecentQuery
from pgsample.contracts.tables import (
    ColumnMetadata,
    ColumnStats,
    EdgeRecord,
    ForeignKeyEdge,
    RowIdentity,
    SampleRow,
    TableMetadata,
    TableRef,
)

logger = structlog.get_logger(__name__)

INTROSPECTION_TAG = "@pgsample_introspection"

# Column alias the row's physical location is read into; removed from payloads.
_CTID_ALIAS = "__pgsample_ctid"

# Provider-owned roles whose statements are never the user's workload.
_ADMIN_USERS = ("supabase_admin", "supabase_auth_admin", "cloud_admin")

_EDGES_QUERY = f"""
SELECT
    pg_tables.schemaname AS source_schema,
    pg_tables.tablename AS source_table,
    fk.source_columns,
    fk.referenced_schema,
    fk.referenced_table,
    fk.referenced_columns
FROM pg_tables
LEFT JOIN LATERAL (
    SELECT
        ARRAY_AGG(pa.attname::text ORDER BY conkey_unnest.ord) AS source_columns,
        ref_ns.nspname AS referenced_schema,
        ref_cl.relname AS referenced_table,
        ARRAY_AGG(ref_att.attname::text ORDER BY conkey_unnest.ord) AS referenced_columns
    FROM pg_constraint AS pc
    JOIN pg_class AS pgc ON pgc.oid = pc.conrelid
    JOIN pg_namespace AS pgn ON pgn.oid = pgc.relnamespace
    JOIN UNNEST(pc.conkey) WITH ORDINALITY AS conkey_unnest(attnum, ord) ON TRUE
    JOIN UNNEST(pc.confkey) WITH ORDINALITY AS confkey_unnest(attnum, ord)
        ON conkey_unnest.ord = confkey_unnest.ord
    JOIN pg_attribute AS pa ON pa.attrelid = pc.conrelid AND pa.attnum = conkey_unnest.attnum
    JOIN pg_attribute AS ref_att ON ref_att.attrelid = pc.confrelid AND ref_att.attnum = confkey_unnest.attnum
    JOIN pg_class AS ref_cl ON ref_cl.oid = pc.confrelid
    JOIN pg_namespace AS ref_ns ON ref_ns.oid = ref_cl.relnamespace
    WHERE pc.contype = 'f'
        AND pgn.nspname = %(schema)s
        AND pgc.relname = pg_tables.tablename
    GROUP BY pgc.relname, pc.oid, ref_ns.nspname, ref_cl.relname
) AS fk ON TRUE
WHERE pg_tables.schemaname = %(schema)s
ORDER BY pg_tables.tablename, fk.referenced_table, fk.source_columns -- {INTROSPECTION_TAG}
"""

_SCHEMA_QUERY = f"""
SELECT
    c.table_name,
    cl.reltuples AS row_count_estimate,
    cl.relpages AS page_count,
    json_agg(
        json_build_object(
            'column_name', c.column_name,
            'data_type', c.data_type,
            'is_nullable', (c.is_nullable = 'YES')::boolean,
            'stats', (
                SELECT json_build_object(
                    'null_fraction', s.null_frac,
                    'common_elems', s.most_common_elems,
                    'common_elem_frequencies', s.most_common_elem_freqs,
                    'distinct_values', s.n_distinct,
                    'histogram_bounds', s.histogram_bounds
                )
                FROM pg_stats s
                WHERE s.schemaname = %(schema)s
                    AND s.tablename = c.table_name
                    AND s.attname = c.column_name
            )
        )
        ORDER BY c.ordinal_position
    ) AS columns
FROM information_schema.columns c
JOIN pg_namespace n ON n.nspname = c.table_schema
JOIN pg_class cl ON cl.relname = c.table_name AND cl.relnamespace = n.oid
WHERE c.table_schema = %(schema)s
    AND c.table_name NOT IN ('pg_stat_statements', 'pg_stat_statements_info')
GROUP BY c.table_name, cl.reltuples, cl.relpages
ORDER BY c.table_name -- {INTROSPECTION_TAG}
"""

_ESTIMATES_QUERY = f"SELECT schemaname, relname, n_live_tup FROM pg_stat_user_tables -- {INTROSPECTION_TAG}"

_DATABASE_INFO_QUERY = (
    "SELECT version() AS server_version, current_setting('server_version_num') AS server_version_num "
    f"-- {INTROSPECTION_TAG}"
)

# Executed without parameters, so the LIKE wildcards need no escaping.
_RECENT_QUERIES_QUERY = f"""
SELECT
    pg_user.usename AS username,
    query,
    mean_exec_time AS mean_time,
    calls::text AS calls,
    rows::text AS rows,
    toplevel AS top_level
FROM pg_stat_statements
JOIN pg_user ON pg_user.usesysid = pg_stat_statements.userid
WHERE query NOT LIKE '%pg_stat_statements%'
    AND query NOT LIKE '%{INTROSPECTION_TAG}%'
    AND pg_user.usename NOT IN ({", ".join(f"'{user}'" for user in _ADMIN_USERS)})
LIMIT 10 -- {INTROSPECTION_TAG}
"""

_PRIVILEGE_QUERY = (
    f"SELECT usename AS username, usesuper AS is_superuser FROM pg_user WHERE usename = current_user -- {INTROSPECTION_TAG}"
)


def _tag(query: sql.Composable) -> sql.Composed:
    return query + sql.SQL(f" -- {INTROSPECTION_TAG}")


class PostgresConnector:
    """Postgres implementation of DatabaseConnector plus the catalog reads a sync needs.

    Args:
        pool: Open async pool for the target database
        tablesample_threshold: Estimated live tuples from which sampling
            switches from ORDER BY random() to TABLESAMPLE BERNOULLI
    """

    def __init__(self, pool: AsyncConnectionPool, *, tablesample_threshold: int = 10_000) -> None:
        self._pool = pool
        self._tablesample_threshold = tablesample_threshold
        self._estimates: dict[TableRef, int] = {}

    @property
    def estimates(self) -> dict[TableRef, int]:
        """Live-tuple estimates loaded by load_estimates()."""
        return dict(self._estimates)

    async def check_connection(self) -> None:
        async with self._pool.connection() as conn:
            await conn.execute(f"SELECT 1 -- {INTROSPECTION_TAG}")

    async def load_estimates(self) -> dict[TableRef, int]:
        """Read n_live_tup for every user table; used to pick a sampling strategy."""
        async with self._pool.connection() as conn:
            cur = await conn.execute(_ESTIMATES_QUERY)
            rows = await cur.fetchall()
        self._estimates = {TableRef(schema, name): int(count) for schema, name, count in rows}
        return self.estimates

    async def edges(self, schema: str) -> list[EdgeRecord]:
        async with self._pool.connection() as conn:
            cur = conn.cursor(row_factory=dict_row)
            await cur.execute(_EDGES_QUERY, {"schema": schema})
            rows = await cur.fetchall()

        records = []
        for row in rows:
            table = TableRef(row["source_schema"], row["source_table"])
            if row["source_columns"] is None:
                records.append(EdgeRecord(table=table))
                continue
            edge = ForeignKeyEdge(
                source=table,
                source_columns=tuple(row["source_columns"]),
                referenced=TableRef(row["referenced_schema"], row["referenced_table"]),
                referenced_columns=tuple(row["referenced_columns"]),
            )
            records.append(EdgeRecord(table=table, edge=edge))
        logger.debug("Loaded foreign keys", schema=schema, records=len(records))
        return records

    def _to_sample_row(self, table: TableRef, record: dict[str, Any]) -> SampleRow:
        ctid = record.pop(_CTID_ALIAS)
        identity = RowIdentity(f"{table.schema}.{table.name}:{ctid}")
        return SampleRow(table=table, payload=record, identity=identity)

    async def sample(self, table: TableRef, seed: float, required_rows: int) -> AsyncIterator[SampleRow]:
        """Stream rows of table in seeded random order through a server-side cursor.

        setseed() and the ordered query share one connection inside one
        transaction, so the seed cannot influence any other caller of the pool.
        """
        estimate = self._estimates.get(table)
        target = sql.Identifier(table.schema, table.name)
        ctid = sql.Identifier(_CTID_ALIAS)

        if estimate is None or estimate < self._tablesample_threshold:
            if estimate is None:
                logger.warning("No tuple estimate, falling back to ORDER BY random()", table=str(table))
            query = _tag(sql.SQL("SELECT *, ctid::text AS {} FROM {} ORDER BY random()").format(ctid, target))
            params: list[Any] = []
            use_setseed = True
        else:
            # Aim for roughly ten times the rows we need, with a floor for tiny targets.
            percent = min(100.0, 100.0 * max(required_rows * 10, 100) / estimate)
            query = _tag(
                sql.SQL("SELECT *, ctid::text AS {} FROM {} TABLESAMPLE BERNOULLI (%s) REPEATABLE (%s)").format(
                    ctid, target
                )
            )
            params = [percent, seed]
            use_setseed = False

        async with self._pool.connection() as conn, conn.transaction():
            if use_setseed:
                await conn.execute(_tag(sql.SQL("SELECT setseed(%s)")), [seed])
            async with conn.cursor(name="pgsample_sample", row_factory=dict_row) as cur:
                cur.itersize = max(required_rows * 4, 20)
                await cur.execute(query, params or None)
                async for record in cur:
                    yield self._to_sample_row(table, record)

    async def fetch(self, table: TableRef, key_values: Mapping[str, Any]) -> SampleRow | None:
        conditions = sql.SQL(" AND ").join(sql.SQL("{} = %s").format(sql.Identifier(column)) for column in key_values)
        query = _tag(
            sql.SQL("SELECT *, ctid::text AS {} FROM {} WHERE {} LIMIT 1").format(
                sql.Identifier(_CTID_ALIAS), sql.Identifier(table.schema, table.name), conditions
            )
        )
        async with self._pool.connection() as conn:
            cur = conn.cursor(row_factory=dict_row)
            await cur.execute(query, list(key_values.values()))
            record = await cur.fetchone()
        if record is None:
            return None
        return self._to_sample_row(table, record)

    def identity(self, row: SampleRow) -> RowIdentity:
        return row.identity

    async def get_schema(self, schema: str) -> list[TableMetadata]:
        """Column metadata and planner statistics for every table of schema."""
        async with self._pool.connection() as conn:
            cur = conn.cursor(row_factory=dict_row)
            await cur.execute(_SCHEMA_QUERY, {"schema": schema})
            rows = await cur.fetchall()

        tables = []
        for row in rows:
            columns = []
            for column in row["columns"]:
                stats = column.get("stats")
                columns.append(
                    ColumnMetadata(
                        column_name=column["column_name"],
                        data_type=column["data_type"],
                        is_nullable=column["is_nullable"],
                        stats=ColumnStats(**stats) if stats is not None else None,
                    )
                )
            tables.append(
                TableMetadata(
                    table=TableRef(schema, row["table_name"]),
                    row_count_estimate=float(row["row_count_estimate"]),
                    page_count=int(row["page_count"]),
                    columns=tuple(columns),
                )
            )
        return tables

    async def get_database_info(self) -> DatabaseInfo:
        async with self._pool.connection() as conn:
            cur = conn.cursor(row_factory=dict_row)
            await cur.execute(_DATABASE_INFO_QUERY)
            row = await cur.fetchone()
        if row is None:
            raise psycopg.DataError("version() returned no rows")
        return DatabaseInfo(server_version=row["server_version"], server_version_num=row["server_version_num"])

    async def get_recent_queries(self) -> RecentQueriesResult:
        """Ten recent statements from pg_stat_statements, excluding our own and admin traffic.

        A missing extension or a failing query is reported in the result,
        never raised: recent queries are informational.
        """
        try:
            async with self._pool.connection() as conn:
                cur = conn.cursor(row_factory=dict_row)
                await cur.execute(_RECENT_QUERIES_QUERY)
                rows = await cur.fetchall()
        except psycopg.errors.UndefinedTable:
            return RecentQueriesResult(status="extension_not_installed", extension_name="pg_stat_statements")
        except psycopg.Error as e:
            logger.error("Reading pg_stat_statements failed", error=str(e))
            return RecentQueriesResult(status="postgres_error", error=str(e))

        queries = tuple(
            RecentQuery(
                username=row["username"],
                query=row["query"],
                mean_time=float(row["mean_time"]),
                calls=row["calls"],
                rows=row["rows"],
                top_level=row["top_level"],
            )
            for row in rows
        )
        return RecentQueriesResult(status="ok", queries=queries)

    async def check_privilege(self) -> Privilege:
        async with self._pool.connection() as conn:
            cur = conn.cursor(row_factory=dict_row)
            await cur.execute(_PRIVILEGE_QUERY)
            row = await cur.fetchone()
        if row is None:
            return Privilege(username="unknown", is_superuser=False)
        return Privilege(username=row["username"], is_superuser=row["is_superuser"])
