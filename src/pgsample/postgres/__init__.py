# src/pgsample/postgres/__init__.py
"""Postgres access: psycopg connector, per-URL pool cache, pg_dump wrapper."""

from pgsample.postgres.connections import ConnectionCache
from pgsample.postgres.connector import INTROSPECTION_TAG, PostgresConnector
from pgsample.postgres.schema_dump import SchemaDumper, find_pg_dump_binary, strip_create_schema

__all__ = [
    "INTROSPECTION_TAG",
    "ConnectionCache",
    "PostgresConnector",
    "SchemaDumper",
    "find_pg_dump_binary",
    "strip_create_schema",
]
