# src/pgsample/contracts/results.py
"""Options and outcomes of resolution, serialization and sync.

These types answer: "What did an operation produce?"
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Literal

from pgsample.contracts.notices import ResolutionNotice, SyncNotice
from pgsample.contracts.tables import SampleRow, TableMetadata, TableRef


class CapPolicy(StrEnum):
    """How max_rows treats organically sampled versus dependency-fetched rows.

    SHARED: both count identically; once a table is full, further fetched
        rows are dropped (noticed) and sampled rows are never evicted.
    PREFER_REFERENCES: a fetched row arriving at a full table evicts an
        organically sampled row that nothing references yet; only if no such
        row exists is the fetched row dropped.
    """

    SHARED = "shared"
    PREFER_REFERENCES = "prefer_references"


@dataclass(frozen=True, slots=True)
class ResolutionOptions:
    """Per-call resolution knobs."""

    seed: float = 0.0
    required_rows: int = 2
    max_rows: int = 8
    cap_policy: CapPolicy = CapPolicy.SHARED
    sample_discovered_tables: bool = False
    max_iterations: int = 100_000

    def __post_init__(self) -> None:
        if not 0.0 <= self.seed <= 1.0:
            raise ValueError(f"seed must be within [0, 1], got {self.seed}")
        if self.required_rows <= 0:
            raise ValueError(f"required_rows must be positive, got {self.required_rows}")
        if self.max_rows <= 0:
            raise ValueError(f"max_rows must be positive, got {self.max_rows}")
        if self.max_iterations <= 0:
            raise ValueError(f"max_iterations must be positive, got {self.max_iterations}")

    def to_dict(self) -> dict[str, Any]:
        """Wire form used in the serialized header comment."""
        return {"seed": self.seed, "requiredRows": self.required_rows, "maxRows": self.max_rows}


@dataclass(slots=True)
class Closure:
    """Final per-table row sets after all references were resolved."""

    tables: dict[TableRef, list[SampleRow]] = field(default_factory=dict)
    sampled_counts: dict[TableRef, int] = field(default_factory=dict)
    fetched_counts: dict[TableRef, int] = field(default_factory=dict)
    notices: list[ResolutionNotice] = field(default_factory=list)
    iterations: int = 0

    def rows(self, table: TableRef) -> list[SampleRow]:
        return self.tables.get(table, [])

    @property
    def total_rows(self) -> int:
        return sum(len(rows) for rows in self.tables.values())


@dataclass(frozen=True, slots=True)
class SerializeResult:
    """Restorable SQL text plus what went into it."""

    serialized: str
    sampled_records: dict[TableRef, int]
    schema: list[TableMetadata]


@dataclass(frozen=True, slots=True)
class DatabaseInfo:
    server_version: str
    server_version_num: str


@dataclass(frozen=True, slots=True)
class Privilege:
    username: str
    is_superuser: bool


@dataclass(frozen=True, slots=True)
class RecentQuery:
    """One pg_stat_statements entry, annotated with when we first saw it."""

    username: str
    query: str
    mean_time: float
    calls: str
    rows: str
    top_level: bool
    first_seen: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "username": self.username,
            "query": self.query,
            "meanTime": self.mean_time,
            "calls": self.calls,
            "rows": self.rows,
            "topLevel": self.top_level,
            "firstSeen": self.first_seen,
        }


@dataclass(frozen=True, slots=True)
class RecentQueriesResult:
    """Outcome of reading pg_stat_statements.

    status "ok" carries queries; "extension_not_installed" and
    "postgres_error" carry a description instead. Neither failure is fatal
    for a sync.
    """

    status: Literal["ok", "extension_not_installed", "postgres_error"]
    queries: tuple[RecentQuery, ...] = ()
    error: str | None = None
    extension_name: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    def to_dict(self) -> dict[str, Any]:
        if self.status == "ok":
            return {"kind": "ok", "queries": [query.to_dict() for query in self.queries]}
        if self.status == "extension_not_installed":
            return {"kind": "error", "type": self.status, "extensionName": self.extension_name}
        return {"kind": "error", "type": self.status, "error": self.error}


@dataclass(frozen=True, slots=True)
class SyncResult:
    """Successful sync outcome. Failures are raised as SyncError subclasses."""

    schema_name: str
    database: DatabaseInfo
    setup: str
    sampled_records: dict[TableRef, int]
    notices: list[SyncNotice]
    queries: RecentQueriesResult
    metadata: list[TableMetadata]

    def to_dict(self) -> dict[str, Any]:
        """HTTP response body; sampledRecords keys are bare names inside the synced schema."""
        return {
            "kind": "ok",
            "versionNum": self.database.server_version_num,
            "version": self.database.server_version,
            "setup": self.setup,
            "sampledRecords": {
                table.display_name(self.schema_name): count for table, count in self.sampled_records.items()
            },
            "notices": [notice.to_dict() for notice in self.notices],
            "queries": self.queries.to_dict(),
            "metadata": [table.to_dict() for table in self.metadata],
        }
