"""Shared contracts: table and row types, connector protocol, notices, errors, results."""

from pgsample.contracts.connector import DatabaseConnector
from pgsample.contracts.errors import (
    InvalidRequestError,
    MaxTableIterationsReached,
    PostgresConnectionError,
    PostgresQueryError,
    SchemaDumpError,
    SyncCancelledError,
    SyncError,
)
from pgsample.contracts.notices import (
    ConnectedAsSuperuser,
    MissingReference,
    RequiredRowsNotReached,
    ResolutionNotice,
    RowDroppedCapReached,
    RowEvicted,
    SyncNotice,
)
from pgsample.contracts.results import (
    CapPolicy,
    Closure,
    DatabaseInfo,
    Privilege,
    RecentQueriesResult,
    RecentQuery,
    ResolutionOptions,
    SerializeResult,
    SyncResult,
)
from pgsample.contracts.tables import (
    ColumnMetadata,
    ColumnStats,
    EdgeRecord,
    ForeignKeyEdge,
    RowIdentity,
    SampleRow,
    TableMetadata,
    TableRef,
    quote_ident,
)

__all__ = [
    "CapPolicy",
    "Closure",
    "ColumnMetadata",
    "ColumnStats",
    "ConnectedAsSuperuser",
    "DatabaseConnector",
    "DatabaseInfo",
    "EdgeRecord",
    "ForeignKeyEdge",
    "InvalidRequestError",
    "MaxTableIterationsReached",
    "MissingReference",
    "PostgresConnectionError",
    "PostgresQueryError",
    "Privilege",
    "RecentQueriesResult",
    "RecentQuery",
    "RequiredRowsNotReached",
    "ResolutionNotice",
    "ResolutionOptions",
    "RowDroppedCapReached",
    "RowEvicted",
    "RowIdentity",
    "SampleRow",
    "SchemaDumpError",
    "SerializeResult",
    "SyncCancelledError",
    "SyncError",
    "SyncNotice",
    "SyncResult",
    "TableMetadata",
    "TableRef",
    "quote_ident",
]
