# src/pgsample/contracts/errors.py
"""Fatal error kinds for a sync call.

Every exception carries an ``error_type`` that is its wire name in HTTP
error bodies (``{"kind": "error", "type": ..., "error": ...}``).
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for fatal sync failures."""

    error_type: str = "unexpected_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class PostgresConnectionError(SyncError):
    """The database could not be reached or refused authentication.

    Reported separately from query failures so callers can tell
    "can't connect" apart from "connected but something failed".
    """

    error_type = "postgres_connection_error"


class PostgresQueryError(SyncError):
    """A catalog or data query failed after connecting."""

    error_type = "postgres_error"


class SchemaDumpError(PostgresQueryError):
    """pg_dump exited non-zero (stderr is the message)."""

    def __init__(self, message: str, *, returncode: int) -> None:
        super().__init__(message)
        self.returncode = returncode


class MaxTableIterationsReached(SyncError):
    """The resolver worklist did not drain within the iteration bound.

    Signals a pathological or buggy cyclic schema, not a data condition.
    Never retried.
    """

    error_type = "max_table_iterations_reached"

    def __init__(self, iterations: int, pending: int) -> None:
        super().__init__(
            f"Max table iterations reached after {iterations} iterations with {pending} rows still pending"
        )
        self.iterations = iterations
        self.pending = pending


class InvalidRequestError(SyncError):
    """The request was rejected before any database work began."""

    error_type = "invalid_body"


class SyncCancelledError(SyncError):
    """The shared shutdown signal fired while the sync was in flight."""

    error_type = "cancelled"
