"""
Infrastructure package for sqlupsert.

Centralizes database connectivity and schema introspection. Keep this layer
focused on I/O and resource management, decoupled from the engine's
record-level logic.
"""

from sqlupsert.infrastructure.db_factory import build_dsn, connection_scope, get_sync_connection
from sqlupsert.infrastructure.metadata import (
    ColumnMetadataProvider,
    PostgresMetadataProvider,
    SqliteMetadataProvider,
    StaticMetadataProvider,
    load_table_metadata,
)

__all__ = [
    "build_dsn",
    "connection_scope",
    "get_sync_connection",
    "ColumnMetadataProvider",
    "PostgresMetadataProvider",
    "SqliteMetadataProvider",
    "StaticMetadataProvider",
    "load_table_metadata",
]
