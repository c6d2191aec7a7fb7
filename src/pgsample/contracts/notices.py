# src/pgsample/contracts/notices.py
"""Non-fatal findings attached to a successful sync.

A notice never aborts a run. Each type carries a ``kind`` discriminator that
is also its wire name in HTTP responses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from pgsample.contracts.tables import RowIdentity, TableRef


def _table_dict(table: TableRef) -> dict[str, str]:
    return {"schema": table.schema, "table": table.name}


@dataclass(frozen=True, slots=True)
class MissingReference:
    """A foreign key value points at a row that does not exist (dangling reference)."""

    source: TableRef
    source_identity: RowIdentity
    referenced: TableRef
    key_values: dict[str, Any]
    kind: Literal["missing_reference"] = field(default="missing_reference", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "source": _table_dict(self.source),
            "sourceRow": self.source_identity,
            "referenced": _table_dict(self.referenced),
            "values": dict(self.key_values),
        }


@dataclass(frozen=True, slots=True)
class RowDroppedCapReached:
    """A referenced row was fetched but its table was already at max_rows."""

    table: TableRef
    identity: RowIdentity
    max_rows: int
    requested_by: TableRef
    requested_by_identity: RowIdentity
    kind: Literal["row_dropped_cap_reached"] = field(default="row_dropped_cap_reached", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            **_table_dict(self.table),
            "row": self.identity,
            "maxRows": self.max_rows,
            "requestedBy": _table_dict(self.requested_by),
            "requestedByRow": self.requested_by_identity,
        }


@dataclass(frozen=True, slots=True)
class RowEvicted:
    """An organically sampled row made room for a referenced row (prefer_references policy)."""

    table: TableRef
    evicted: RowIdentity
    replaced_by: RowIdentity
    kind: Literal["row_evicted"] = field(default="row_evicted", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            **_table_dict(self.table),
            "evicted": self.evicted,
            "replacedBy": self.replaced_by,
        }


@dataclass(frozen=True, slots=True)
class RequiredRowsNotReached:
    """The table's sample stream ran dry before reaching required_rows."""

    table: TableRef
    required_rows: int
    available: int
    kind: Literal["required_rows_not_reached"] = field(default="required_rows_not_reached", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            **_table_dict(self.table),
            "requiredRows": self.required_rows,
            "available": self.available,
        }


@dataclass(frozen=True, slots=True)
class ConnectedAsSuperuser:
    """The sync connected with a superuser role."""

    username: str
    kind: Literal["connected_as_superuser"] = field(default="connected_as_superuser", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "username": self.username}


type ResolutionNotice = MissingReference | RowDroppedCapReached | RowEvicted | RequiredRowsNotReached
type SyncNotice = ResolutionNotice | ConnectedAsSuperuser
