"""
Column metadata providers.

The engine asks a provider three questions about the target table: the
declared SQL type of every column (in table order), the primary key, and the
unique key groups. Providers are read once per invocation; the resulting
`TableMetadata` is immutable.

PostgreSQL is introspected through information_schema and pg_index, SQLite
through PRAGMA statements. `StaticMetadataProvider` serves metadata that is
already known, for callers whose database cannot be introspected.
"""

from __future__ import annotations

import re
from collections import OrderedDict
from contextlib import closing
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from sqlupsert.domain.errors import ConfigurationError
from sqlupsert.domain.models import KeyGroup, SqlType, TableMetadata, TableRef
from sqlupsert.utils.logging import get_logger

log = get_logger(__name__)

PRIMARY_KEY_NAME = "PRIMARY"

_TYPE_NAMES: Dict[str, SqlType] = {
    "int": SqlType.INTEGER,
    "integer": SqlType.INTEGER,
    "int2": SqlType.INTEGER,
    "int4": SqlType.INTEGER,
    "smallint": SqlType.INTEGER,
    "tinyint": SqlType.INTEGER,
    "mediumint": SqlType.INTEGER,
    "serial": SqlType.INTEGER,
    "smallserial": SqlType.INTEGER,
    "bigint": SqlType.LONG,
    "int8": SqlType.LONG,
    "bigserial": SqlType.LONG,
    "numeric": SqlType.NUMERIC,
    "decimal": SqlType.NUMERIC,
    "number": SqlType.NUMERIC,
    "money": SqlType.NUMERIC,
    "date": SqlType.DATE,
    "time": SqlType.TIME,
    "timetz": SqlType.TIME,
    "time without time zone": SqlType.TIME,
    "time with time zone": SqlType.TIME,
    "datetime": SqlType.TIMESTAMP,
    "datetime2": SqlType.TIMESTAMP,
    "smalldatetime": SqlType.TIMESTAMP,
    "timestamp": SqlType.TIMESTAMP,
    "timestamptz": SqlType.TIMESTAMP,
    "char": SqlType.STRING,
    "character": SqlType.STRING,
    "bpchar": SqlType.STRING,
    "varchar": SqlType.STRING,
    "varchar2": SqlType.STRING,
    "character varying": SqlType.STRING,
    "text": SqlType.STRING,
    "longtext": SqlType.STRING,
    "mediumtext": SqlType.STRING,
    "clob": SqlType.STRING,
    "uuid": SqlType.STRING,
    "nchar": SqlType.NVARCHAR,
    "nvarchar": SqlType.NVARCHAR,
    "nvarchar2": SqlType.NVARCHAR,
    "ntext": SqlType.NVARCHAR,
    "nclob": SqlType.NVARCHAR,
    "bool": SqlType.BOOLEAN,
    "boolean": SqlType.BOOLEAN,
    "bit": SqlType.BOOLEAN,
    "real": SqlType.FLOAT,
    "float4": SqlType.FLOAT,
    "float": SqlType.DOUBLE,
    "float8": SqlType.DOUBLE,
    "double": SqlType.DOUBLE,
    "double precision": SqlType.DOUBLE,
    "binary_double": SqlType.DOUBLE,
    "binary_float": SqlType.FLOAT,
    "json": SqlType.JSON,
    "jsonb": SqlType.JSON,
    "blob": SqlType.BLOB,
    "longblob": SqlType.BLOB,
    "bytea": SqlType.BLOB,
    "binary": SqlType.BLOB,
    "varbinary": SqlType.BLOB,
    "image": SqlType.BLOB,
    "raw": SqlType.BLOB,
}

_PARAMS = re.compile(r"\(.*?\)")


def sql_type_for(type_name: Optional[str]) -> Optional[SqlType]:
    """
    Map a database type name to the SqlType the value marshaller binds.

    Length and precision arguments, ``unsigned`` and array suffixes are
    ignored. Returns None for types with no binder.
    """
    if not type_name:
        return None
    name = _PARAMS.sub("", type_name.lower()).replace(" unsigned", "").strip()
    if name in _TYPE_NAMES:
        return _TYPE_NAMES[name]
    if name.startswith("timestamp"):
        return SqlType.TIMESTAMP
    if name.startswith("time "):
        return SqlType.TIME
    return None


@runtime_checkable
class ColumnMetadataProvider(Protocol):
    """Interface the engine needs from schema introspection."""

    def get_column_types(self, table: str, schema: Optional[str] = None) -> Dict[str, Optional[SqlType]]:
        ...

    def get_primary_key(self, table: str, schema: Optional[str] = None) -> KeyGroup:
        ...

    def get_unique_key_groups(self, table: str, schema: Optional[str] = None) -> List[KeyGroup]:
        ...


def _group_rows(rows: List[tuple], exclude: tuple) -> List[KeyGroup]:
    grouped: "OrderedDict[str, List[str]]" = OrderedDict()
    for index_name, column in rows:
        grouped.setdefault(index_name, []).append(column)
    groups = []
    for name, columns in grouped.items():
        remaining = tuple(c for c in columns if c not in exclude)
        if remaining:
            groups.append(KeyGroup(name=name, columns=remaining))
    return groups


class PostgresMetadataProvider:
    """Introspects a PostgreSQL table over a psycopg connection."""

    _COLUMNS_SQL = """
        SELECT column_name, data_type
        FROM information_schema.columns
        WHERE table_schema = COALESCE(%s, current_schema()) AND table_name = %s
        ORDER BY ordinal_position
    """

    _PRIMARY_KEY_SQL = """
        SELECT tc.constraint_name, kcu.column_name
        FROM information_schema.table_constraints tc
        JOIN information_schema.key_column_usage kcu
          ON tc.constraint_name = kcu.constraint_name
         AND tc.table_schema = kcu.table_schema
         AND tc.table_name = kcu.table_name
        WHERE tc.constraint_type = 'PRIMARY KEY'
          AND tc.table_schema = COALESCE(%s, current_schema())
          AND tc.table_name = %s
        ORDER BY kcu.ordinal_position
    """

    _UNIQUE_SQL = """
        SELECT i.relname, a.attname
        FROM pg_index ix
        JOIN pg_class t ON t.oid = ix.indrelid
        JOIN pg_class i ON i.oid = ix.indexrelid
        JOIN pg_namespace n ON n.oid = t.relnamespace
        JOIN LATERAL unnest(ix.indkey) WITH ORDINALITY AS k(attnum, ord) ON true
        JOIN pg_attribute a ON a.attrelid = t.oid AND a.attnum = k.attnum
        WHERE ix.indisunique AND NOT ix.indisprimary
          AND n.nspname = COALESCE(%s, current_schema())
          AND t.relname = %s
        ORDER BY i.relname, k.ord
    """

    def __init__(self, connection: Any) -> None:
        self._conn = connection

    def _fetch(self, sql: str, table: str, schema: Optional[str]) -> List[tuple]:
        with closing(self._conn.cursor()) as cur:
            cur.execute(sql, (schema, table))
            return list(cur.fetchall())

    def get_column_types(self, table: str, schema: Optional[str] = None) -> Dict[str, Optional[SqlType]]:
        rows = self._fetch(self._COLUMNS_SQL, table, schema)
        return OrderedDict((name, sql_type_for(data_type)) for name, data_type in rows)

    def get_primary_key(self, table: str, schema: Optional[str] = None) -> KeyGroup:
        rows = self._fetch(self._PRIMARY_KEY_SQL, table, schema)
        if not rows:
            return KeyGroup(name=PRIMARY_KEY_NAME)
        return KeyGroup(name=rows[0][0], columns=tuple(column for _, column in rows))

    def get_unique_key_groups(self, table: str, schema: Optional[str] = None) -> List[KeyGroup]:
        pk = self.get_primary_key(table, schema)
        return _group_rows(self._fetch(self._UNIQUE_SQL, table, schema), pk.columns)


class SqliteMetadataProvider:
    """Introspects a SQLite table with PRAGMA table_info / index_list / index_info."""

    def __init__(self, connection: Any) -> None:
        self._conn = connection

    @staticmethod
    def _quote(identifier: str) -> str:
        return '"' + identifier.replace('"', '""') + '"'

    def _pragma(self, pragma: str, target: str, schema: Optional[str]) -> List[tuple]:
        prefix = f"{self._quote(schema)}." if schema else ""
        with closing(self._conn.cursor()) as cur:
            cur.execute(f"PRAGMA {prefix}{pragma}({self._quote(target)})")
            return list(cur.fetchall())

    def get_column_types(self, table: str, schema: Optional[str] = None) -> Dict[str, Optional[SqlType]]:
        types: Dict[str, Optional[SqlType]] = OrderedDict()
        for _cid, name, declared, _notnull, _default, _pk in self._pragma("table_info", table, schema):
            sql_type = sql_type_for(declared)
            # SQLite REAL is an 8-byte float
            types[name] = SqlType.DOUBLE if sql_type is SqlType.FLOAT else sql_type
        return types

    def get_primary_key(self, table: str, schema: Optional[str] = None) -> KeyGroup:
        rows = [row for row in self._pragma("table_info", table, schema) if row[5]]
        rows.sort(key=lambda row: row[5])
        return KeyGroup(name=PRIMARY_KEY_NAME, columns=tuple(row[1] for row in rows))

    def get_unique_key_groups(self, table: str, schema: Optional[str] = None) -> List[KeyGroup]:
        pk = self.get_primary_key(table, schema)
        rows: List[tuple] = []
        for _seq, index_name, unique, origin, *_ in self._pragma("index_list", table, schema):
            if not unique or origin == "pk":
                continue
            info = sorted(self._pragma("index_info", index_name, schema))
            rows.extend((index_name, column) for _seqno, _cid, column in info)
        return _group_rows(rows, pk.columns)


class StaticMetadataProvider:
    """Serves metadata that was built up front."""

    def __init__(self, metadata: TableMetadata) -> None:
        self._metadata = metadata

    def get_column_types(self, table: str, schema: Optional[str] = None) -> Dict[str, Optional[SqlType]]:
        return OrderedDict(self._metadata.column_types)

    def get_primary_key(self, table: str, schema: Optional[str] = None) -> KeyGroup:
        return self._metadata.primary_key

    def get_unique_key_groups(self, table: str, schema: Optional[str] = None) -> List[KeyGroup]:
        return list(self._metadata.unique_keys)


def load_table_metadata(
    provider: ColumnMetadataProvider,
    table: str,
    schema: Optional[str] = None,
    columns: Optional[tuple] = None,
) -> TableMetadata:
    """
    Read column types and key groups for `table` in one pass.

    Raises
    ------
    ConfigurationError
        If the table has no columns (it does not exist or is not visible).
    """
    column_types = provider.get_column_types(table, schema)
    if not column_types:
        raise ConfigurationError(f"Table {table} has no visible columns", code="404")
    metadata = TableMetadata(
        table=TableRef(name=table, schema_name=schema),
        column_types=column_types,
        primary_key=provider.get_primary_key(table, schema),
        unique_keys=tuple(provider.get_unique_key_groups(table, schema)),
    )
    log.info(
        f"Loaded metadata for {metadata.table}: {len(column_types)} columns, "
        f"primary key {list(metadata.primary_key.columns)}, {len(metadata.unique_keys)} unique groups",
    )
    return metadata.restrict(columns)


__all__ = [
    "PRIMARY_KEY_NAME",
    "sql_type_for",
    "ColumnMetadataProvider",
    "PostgresMetadataProvider",
    "SqliteMetadataProvider",
    "StaticMetadataProvider",
    "load_table_metadata",
]
