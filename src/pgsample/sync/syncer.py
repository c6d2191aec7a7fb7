# src/pgsample/sync/syncer.py
"""Sync orchestration: one request in, schema DDL plus a closed sample out.

Order of work for sync():

1. Reach the database (``SELECT 1``); any failure here is a connection error.
2. Read the foreign-key catalog and tuple estimates, build the graph.
3. Concurrently: server version, recent queries, pg_dump, resolution plus
   serialization, and the superuser check.

pg_dump sets search_path to '' on its own session while the catalog and
sampling queries run on pooled sessions. Catalog output that depends on
search_path (regclass rendering) could differ under a shared session; the
connector only reads catalog names as text, which keeps the two apart,
but running them concurrently is a latent hazard if that ever changes.
"""

from __future__ import annotations

import asyncio
import dataclasses
from contextlib import AsyncExitStack
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar, cast

import psycopg
import structlog
from psycopg_pool import AsyncConnectionPool

from pgsample.contracts.errors import PostgresConnectionError, PostgresQueryError, SyncError
from pgsample.contracts.notices import ConnectedAsSuperuser, SyncNotice
from pgsample.contracts.results import (
    Closure,
    DatabaseInfo,
    Privilege,
    RecentQueriesResult,
    ResolutionOptions,
    SerializeResult,
    SyncResult,
)
from pgsample.contracts.url import Connectable, SanitizedDatabaseUrl
from pgsample.core.canonical import closure_fingerprint
from pgsample.core.config import PgSampleSettings
from pgsample.core.dag import DependencyGraph
from pgsample.core.query_cache import QueryCache, query_cache
from pgsample.core.shutdown import ShutdownSignal, shutdown_signal
from pgsample.engine.resolver import ReferenceResolver
from pgsample.engine.serializer import Serializer
from pgsample.engine.spans import SpanFactory, mark_error, mark_ok
from pgsample.postgres.connections import ConnectionCache
from pgsample.postgres.connector import PostgresConnector
from pgsample.postgres.schema_dump import SchemaDumper

logger = structlog.get_logger(__name__)

T = TypeVar("T")

type ConnectorFactory = Callable[[AsyncConnectionPool], PostgresConnector]


def _translate(error: BaseException) -> BaseException:
    """Map driver errors onto the public error kinds; everything else passes through."""
    if isinstance(error, SyncError):
        return error
    if isinstance(error, psycopg.Error):
        return PostgresQueryError(str(error).strip() or type(error).__name__)
    return error


class PostgresSyncer:
    """Runs syncs and live-query reads against target databases.

    Owns the process-wide ConnectionCache; call close() on shutdown.
    """

    def __init__(
        self,
        settings: PgSampleSettings | None = None,
        *,
        connections: ConnectionCache | None = None,
        connector_factory: ConnectorFactory | None = None,
        dumper: SchemaDumper | None = None,
        serializer: Serializer | None = None,
        spans: SpanFactory | None = None,
        queries: QueryCache | None = None,
        shutdown: ShutdownSignal | None = None,
    ) -> None:
        self._settings = settings if settings is not None else PgSampleSettings()
        self._shutdown = shutdown if shutdown is not None else shutdown_signal
        self._connections = connections if connections is not None else ConnectionCache(self._settings.connections)
        self._connector_factory = connector_factory if connector_factory is not None else self._create_connector
        self._dumper = (
            dumper
            if dumper is not None
            else SchemaDumper(
                self._settings.schema_dump.binary,
                timeout_seconds=self._settings.schema_dump.timeout_seconds,
                shutdown=self._shutdown,
            )
        )
        self._serializer = serializer if serializer is not None else Serializer()
        self._spans = spans if spans is not None else SpanFactory()
        self._queries = queries if queries is not None else query_cache

    def _create_connector(self, pool: AsyncConnectionPool) -> PostgresConnector:
        return PostgresConnector(pool, tablesample_threshold=self._settings.sampling.tablesample_threshold)

    async def _connect(self, connectable: Connectable, stack: AsyncExitStack) -> PostgresConnector:
        """Connector for the target after a successful round trip.

        The pool lease is held by stack, so the pool stays open until the
        caller leaves it.

        Raises:
            PostgresConnectionError: The database is unreachable or refused us
        """
        try:
            pool = await stack.enter_async_context(self._connections.lease(connectable.url))
            connector = self._connector_factory(pool)
            await connector.check_connection()
        except (psycopg.Error, OSError) as e:
            logger.warning(
                "Could not connect to target database",
                target=SanitizedDatabaseUrl.from_raw_url(connectable.url).sanitized_url,
                error=str(e),
            )
            raise PostgresConnectionError(str(e).strip() or type(e).__name__) from e
        return connector

    async def sync(self, connectable: Connectable, schema: str, options: ResolutionOptions) -> SyncResult:
        """Dump schema DDL and a referentially closed sample of schema.

        Raises:
            PostgresConnectionError: Could not reach the database
            PostgresQueryError: A catalog, data or pg_dump step failed
            MaxTableIterationsReached: Resolution did not converge
            SyncCancelledError: Shutdown was requested mid-sync
        """
        with self._spans.sync_span(schema, options, db_host=connectable.hostname) as span:
            try:
                result = await self._sync(connectable, schema, options)
            except SyncError as e:
                mark_error(span, e.error_type)
                raise
            mark_ok(span)
            return result

    async def _sync(self, connectable: Connectable, schema: str, options: ResolutionOptions) -> SyncResult:
        self._shutdown.raise_if_triggered()
        async with AsyncExitStack() as stack:
            connector = await self._connect(connectable, stack)
            return await self._sync_connected(connector, connectable, schema, options)

    async def _sync_connected(
        self,
        connector: PostgresConnector,
        connectable: Connectable,
        schema: str,
        options: ResolutionOptions,
    ) -> SyncResult:
        try:
            records = await connector.edges(schema)
            await connector.load_estimates()
        except psycopg.Error as e:
            raise _translate(e) from e
        graph = DependencyGraph.from_edges(records)
        logger.info("Built dependency graph", schema=schema, tables=graph.table_count, edges=graph.edge_count)

        outcomes = await asyncio.gather(
            self._step("getDatabaseInfo", connector.get_database_info),
            self._step("getRecentQueries", lambda: self._recent_queries(connector, connectable)),
            self._step("syncSchema", lambda: self._dumper.dump(connectable.url, schema)),
            self._resolve_and_serialize(connector, graph, schema, options),
            self._step("checkPrivilege", connector.check_privilege),
            return_exceptions=True,
        )
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                translated = _translate(outcome)
                if translated is outcome:
                    raise outcome
                raise translated from outcome

        database_info = cast(DatabaseInfo, outcomes[0])
        recent_queries = cast(RecentQueriesResult, outcomes[1])
        ddl = cast(str, outcomes[2])
        closure, serialized = cast(tuple[Closure, SerializeResult], outcomes[3])
        privilege = cast(Privilege, outcomes[4])

        notices: list[SyncNotice] = list(closure.notices)
        if privilege.is_superuser:
            notices.append(ConnectedAsSuperuser(username=privilege.username))

        return SyncResult(
            schema_name=schema,
            database=database_info,
            setup=ddl + serialized.serialized,
            sampled_records=serialized.sampled_records,
            notices=notices,
            queries=recent_queries,
            metadata=serialized.schema,
        )

    async def _step(self, name: str, operation: Callable[[], Awaitable[T]]) -> T:
        with self._spans.step_span(name) as span:
            try:
                return await operation()
            except SyncError as e:
                mark_error(span, e.error_type)
                raise
            except psycopg.Error:
                mark_error(span, PostgresQueryError.error_type)
                raise

    async def _resolve_and_serialize(
        self,
        connector: PostgresConnector,
        graph: DependencyGraph,
        schema: str,
        options: ResolutionOptions,
    ) -> tuple[Closure, SerializeResult]:
        with self._spans.resolve_span(graph.table_count, graph.edge_count) as span:
            span.set_attribute("schemaName", schema)
            try:
                closure = await ReferenceResolver(connector, options, shutdown=self._shutdown).resolve(graph)
            except SyncError as e:
                mark_error(span, e.error_type)
                raise
            logger.debug("Closure fingerprint", schema=schema, fingerprint=closure_fingerprint(closure))

            with self._spans.serialize_span(len(closure.tables), closure.total_rows) as serialize_span:
                serialize_span.set_attribute("schemaName", schema)
                metadata = await connector.get_schema(schema)
                serialized = self._serializer.serialize(closure, metadata, connector.estimates, options)
            return closure, serialized

    async def _recent_queries(self, connector: PostgresConnector, connectable: Connectable) -> RecentQueriesResult:
        result = await connector.get_recent_queries()
        if not result.ok:
            return result
        annotated = self._queries.annotate(connectable.url, result.queries)
        return dataclasses.replace(result, queries=tuple(annotated))

    async def live_queries(self, connectable: Connectable) -> RecentQueriesResult:
        """Recent queries only, without sampling. Errors come back in the result."""
        async with self._connections.lease(connectable.url) as pool:
            connector = self._connector_factory(pool)
            with self._spans.step_span("getRecentQueries") as span:
                result = await self._recent_queries(connector, connectable)
                if not result.ok:
                    mark_error(span, result.status)
                return result

    async def close(self) -> None:
        await self._connections.close()

    def describe(self) -> dict[str, Any]:
        """Runtime state for the health endpoint."""
        return {"pools": len(self._connections), "trackedQueries": len(self._queries)}
