# tests/integration/test_postgres_live.py
"""End-to-end sync against a real Postgres server.

Requires PGSAMPLE_TEST_DATABASE_URL pointing at a database the test may
create schemas in, as a role allowed to set session_replication_role
(superuser on most installs), and pg_dump on PATH (or $PG_DUMP_BINARY).
Skipped otherwise.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import AsyncIterator

import psycopg
import pytest
import pytest_asyncio

from pgsample.contracts.results import ResolutionOptions
from pgsample.contracts.tables import TableRef
from pgsample.contracts.url import Connectable
from pgsample.core.config import PgSampleSettings
from pgsample.core.query_cache import QueryCache
from pgsample.core.shutdown import ShutdownSignal
from pgsample.postgres.schema_dump import find_pg_dump_binary
from pgsample.sync.syncer import PostgresSyncer

DATABASE_URL = os.environ.get("PGSAMPLE_TEST_DATABASE_URL")

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(DATABASE_URL is None, reason="PGSAMPLE_TEST_DATABASE_URL not set"),
    pytest.mark.skipif(find_pg_dump_binary() is None, reason="pg_dump not available"),
]

SCHEMA_DDL = """
CREATE TABLE {schema}.users (id integer PRIMARY KEY, email text NOT NULL, tags text[]);
CREATE TABLE {schema}.posts (
    id integer PRIMARY KEY,
    poster_id integer REFERENCES {schema}.users (id),
    body jsonb
);
CREATE TABLE {schema}.employees (id integer PRIMARY KEY, manager_id integer REFERENCES {schema}.employees (id));
INSERT INTO {schema}.users SELECT i, 'user' || i || '@example.com', ARRAY['a', 'b''c'] FROM generate_series(1, 50) AS i;
INSERT INTO {schema}.posts SELECT i, (i % 50) + 1, jsonb_build_object('n', i) FROM generate_series(1, 200) AS i;
INSERT INTO {schema}.employees SELECT i, NULLIF(i - 1, 0) FROM generate_series(1, 30) AS i;
ANALYZE {schema}.users;
ANALYZE {schema}.posts;
ANALYZE {schema}.employees;
"""


@pytest_asyncio.fixture
async def schema() -> AsyncIterator[str]:
    assert DATABASE_URL is not None
    name = f"pgsample_it_{uuid.uuid4().hex[:8]}"
    async with await psycopg.AsyncConnection.connect(DATABASE_URL, autocommit=True) as conn:
        await conn.execute(f"CREATE SCHEMA {name}")
        await conn.execute(SCHEMA_DDL.format(schema=name))
    try:
        yield name
    finally:
        async with await psycopg.AsyncConnection.connect(DATABASE_URL, autocommit=True) as conn:
            await conn.execute(f"DROP SCHEMA {name} CASCADE")


@pytest_asyncio.fixture
async def syncer() -> AsyncIterator[PostgresSyncer]:
    syncer = PostgresSyncer(PgSampleSettings(), queries=QueryCache(), shutdown=ShutdownSignal())
    try:
        yield syncer
    finally:
        await syncer.close()


class TestLiveSync:
    @pytest.mark.asyncio
    async def test_sample_restores_cleanly(self, schema: str, syncer: PostgresSyncer) -> None:
        assert DATABASE_URL is not None
        target = Connectable.parse(DATABASE_URL, hosted=False)

        result = await syncer.sync(target, schema, ResolutionOptions(seed=0.42, required_rows=3, max_rows=40))

        assert "CREATE TABLE" in result.setup
        assert "CREATE SCHEMA" not in result.setup
        assert result.sampled_records[TableRef(schema, "posts")] == 3

        restore_schema = f"{schema}_restore"
        async with await psycopg.AsyncConnection.connect(DATABASE_URL, autocommit=True) as conn:
            try:
                await conn.execute(f"CREATE SCHEMA {restore_schema}")
                # psql meta-commands (\restrict on recent pg_dump) cannot go through the driver
                statements = "\n".join(line for line in result.setup.splitlines() if not line.startswith("\\"))
                setup = statements.replace(f"{schema}.", f"{restore_schema}.")
                async with conn.transaction():
                    await conn.execute(setup)
                    await conn.execute("SET session_replication_role = 'origin'")
                cur = await conn.execute(
                    f"SELECT count(*) FROM {restore_schema}.posts p "
                    f"LEFT JOIN {restore_schema}.users u ON u.id = p.poster_id "
                    "WHERE p.poster_id IS NOT NULL AND u.id IS NULL"
                )
                assert await cur.fetchone() == (0,)
            finally:
                await conn.execute(f"DROP SCHEMA IF EXISTS {restore_schema} CASCADE")

    @pytest.mark.asyncio
    async def test_self_reference_chain_followed(self, schema: str, syncer: PostgresSyncer) -> None:
        assert DATABASE_URL is not None
        target = Connectable.parse(DATABASE_URL, hosted=False)

        result = await syncer.sync(target, schema, ResolutionOptions(seed=0.1, required_rows=1, max_rows=40))

        # Every chain ends at employee 1
        assert "INSERT INTO " + schema + ".employees" in result.setup
        assert result.sampled_records[TableRef(schema, "employees")] >= 1

    @pytest.mark.asyncio
    async def test_same_seed_same_setup_data(self, schema: str, syncer: PostgresSyncer) -> None:
        assert DATABASE_URL is not None
        target = Connectable.parse(DATABASE_URL, hosted=False)
        options = ResolutionOptions(seed=0.9, required_rows=2, max_rows=10)

        first = await syncer.sync(target, schema, options)
        second = await syncer.sync(target, schema, options)

        def data(setup: str) -> str:
            # Sampled section only, without the timestamped header line
            section = setup[setup.index("-- START:Sampled data") :]
            return "\n".join(line for line in section.splitlines() if not line.startswith("-- Sampled by"))

        assert data(first.setup) == data(second.setup)

    @pytest.mark.asyncio
    async def test_unreachable_database(self, syncer: PostgresSyncer) -> None:
        from pgsample.contracts.errors import PostgresConnectionError

        target = Connectable.parse("postgres://nobody:pw@127.0.0.1:1/nothing", hosted=False)

        with pytest.raises(PostgresConnectionError):
            await syncer.sync(target, "public", ResolutionOptions())
