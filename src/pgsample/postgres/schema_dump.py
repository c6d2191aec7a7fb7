# src/pgsample/postgres/schema_dump.py
"""Schema DDL through a pg_dump subprocess.

pg_dump runs with --schema-only for a single schema, without owners,
comments or privileges (none of which exist on the restore side). The
CREATE SCHEMA statement is stripped so the DDL restores into an existing
schema.
"""

from __future__ import annotations

import asyncio
import os
import re
import shutil

import structlog

from pgsample.contracts.errors import SchemaDumpError
from pgsample.core.shutdown import ShutdownSignal, shutdown_signal

logger = structlog.get_logger(__name__)

PG_DUMP_BINARY_ENV = "PG_DUMP_BINARY"
_CREATE_SCHEMA = re.compile(r"^CREATE SCHEMA\s+.*\n\n?", re.MULTILINE)

# Exit status reported when no binary could be located or started.
_NOT_FOUND_RETURNCODE = 127


def find_pg_dump_binary(configured: str | None = None) -> str | None:
    """Resolve the pg_dump executable: explicit setting, then $PG_DUMP_BINARY, then PATH."""
    if configured:
        return configured
    from_env = os.environ.get(PG_DUMP_BINARY_ENV)
    if from_env:
        return from_env
    return shutil.which("pg_dump")


def exact_schema_pattern(schema: str) -> str:
    """A pg_dump pattern matching only this schema name, taken literally."""
    return '"' + schema.replace('"', '""') + '"'


def strip_create_schema(ddl: str) -> str:
    """Remove the first CREATE SCHEMA statement and the blank line after it."""
    return _CREATE_SCHEMA.sub("", ddl, count=1)


class SchemaDumper:
    """Runs pg_dump against a target URL.

    Args:
        binary: pg_dump path; resolved with find_pg_dump_binary() when None
        timeout_seconds: The child is killed after this long
        shutdown: Signal that kills the child early
    """

    def __init__(
        self,
        binary: str | None = None,
        *,
        timeout_seconds: float = 120.0,
        shutdown: ShutdownSignal | None = None,
    ) -> None:
        self._binary = find_pg_dump_binary(binary)
        self._timeout = timeout_seconds
        self._shutdown = shutdown if shutdown is not None else shutdown_signal
        if self._binary is not None:
            logger.debug("Using pg_dump binary", binary=self._binary)

    @property
    def binary(self) -> str | None:
        return self._binary

    @staticmethod
    def build_args(url: str, schema: str) -> list[str]:
        return [
            "--no-owner",
            "--no-comments",
            "--no-privileges",
            "--schema",
            exact_schema_pattern(schema),
            "--schema-only",
            url,
        ]

    async def dump(self, url: str, schema: str) -> str:
        """DDL for schema, with the CREATE SCHEMA statement removed.

        Raises:
            SchemaDumpError: pg_dump is missing, timed out, or exited non-zero
                (stderr becomes the message)
            SyncCancelledError: The shutdown signal fired; the child is killed
        """
        if self._binary is None:
            raise SchemaDumpError(
                f"pg_dump binary not found; set ${PG_DUMP_BINARY_ENV} or put pg_dump on PATH",
                returncode=_NOT_FOUND_RETURNCODE,
            )
        self._shutdown.raise_if_triggered()

        try:
            process = await asyncio.create_subprocess_exec(
                self._binary,
                *self.build_args(url, schema),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise SchemaDumpError(f"Could not start pg_dump: {e}", returncode=_NOT_FOUND_RETURNCODE) from e

        communicate = asyncio.ensure_future(process.communicate())
        stop = asyncio.ensure_future(self._shutdown.wait())
        try:
            done, _ = await asyncio.wait({communicate, stop}, timeout=self._timeout, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            process.kill()
            communicate.cancel()
            raise
        finally:
            stop.cancel()

        if communicate not in done:
            process.kill()
            await communicate
            if stop in done:
                logger.info("Killed pg_dump on shutdown", schema=schema)
                self._shutdown.raise_if_triggered()
            raise SchemaDumpError(f"pg_dump timed out after {self._timeout}s", returncode=process.returncode or -9)

        stdout, stderr = communicate.result()
        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            logger.error("pg_dump failed", returncode=process.returncode, stderr=message)
            raise SchemaDumpError(message, returncode=process.returncode or 1)

        logger.info("Dumped schema", schema=schema, bytes=len(stdout))
        return strip_create_schema(stdout.decode("utf-8"))
