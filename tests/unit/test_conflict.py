from __future__ import annotations

import sqlite3
from typing import Any

import pytest

from sqlupsert.domain.errors import ValueMarshallingError
from sqlupsert.domain.models import KeyGroup, SqlType, TableMetadata, TableRef
from sqlupsert.engine.conflict import ConflictResolver
from sqlupsert.engine.dialects import SqliteDialect, SqlServerDialect
from sqlupsert.engine.marshaller import ValueMarshaller


class _CountingConnection:
    """Wraps a sqlite3 connection and counts the cursors handed out."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self.cursors = 0

    def cursor(self) -> Any:
        self.cursors += 1
        return self._conn.cursor()


@pytest.fixture
def seeded_conn(sqlite_conn: sqlite3.Connection) -> sqlite3.Connection:
    sqlite_conn.execute("INSERT INTO customers (id, email, name) VALUES (1, 'a@x', 'Ann')")
    sqlite_conn.commit()
    return sqlite_conn


def _resolver(conn: Any, metadata: TableMetadata, dialect=None) -> ConflictResolver:
    dialect = dialect or SqliteDialect()
    return ConflictResolver(conn, dialect, metadata, ValueMarshaller(dialect))


def test_primary_key_conflict(seeded_conn, customers_metadata):
    result = _resolver(seeded_conn, customers_metadata).resolve_all({"id": 1, "email": "b@x"})

    assert result.primary == customers_metadata.primary_key
    assert result.unique == ()
    assert result.has_conflict


def test_unique_key_conflict(seeded_conn, customers_metadata):
    result = _resolver(seeded_conn, customers_metadata).resolve_all({"id": 2, "email": "a@x"})

    assert result.primary is None
    assert [g.columns for g in result.unique] == [("email",)]
    assert result.key_columns() == ["email"]


def test_no_conflict_for_new_keys(seeded_conn, customers_metadata):
    result = _resolver(seeded_conn, customers_metadata).resolve_all({"id": 2, "email": "b@x"})
    assert not result.has_conflict


def test_conflict_is_not_cached_between_records(seeded_conn, customers_metadata):
    resolver = _resolver(seeded_conn, customers_metadata)
    assert not resolver.resolve_all({"id": 5}).has_conflict

    seeded_conn.execute("INSERT INTO customers (id) VALUES (5)")

    assert resolver.resolve_all({"id": 5}).primary is not None


def test_absent_key_values_are_never_probed(seeded_conn, customers_metadata):
    conn = _CountingConnection(seeded_conn)
    resolver = _resolver(conn, customers_metadata)

    result = resolver.resolve_all({"name": "Nobody", "email": None})

    assert not result.has_conflict
    assert conn.cursors == 0


def test_key_value_is_marshalled_before_probing(seeded_conn, customers_metadata):
    resolver = _resolver(seeded_conn, customers_metadata)
    with pytest.raises(ValueMarshallingError):
        resolver.resolve_all({"id": "not-a-number"})


def test_probe_sql_for_composite_keys():
    metadata = TableMetadata(
        table=TableRef(name="lines"),
        column_types={"order_id": SqlType.INTEGER, "line": SqlType.INTEGER, "qty": SqlType.INTEGER},
        primary_key=KeyGroup(name="pk_lines", columns=("order_id", "line")),
    )
    fields = {"order_id": 7}

    sql, bound = _resolver(None, metadata, SqlServerDialect()).probe_sql(fields, metadata.primary_key)
    assert sql == "SELECT [order_id] FROM [lines] WHERE [order_id] = ? AND [line] IS NULL"
    assert bound == ["order_id"]

    sql, bound = _resolver(None, metadata).probe_sql(fields, metadata.primary_key)
    assert sql == 'SELECT "order_id" FROM "lines" WHERE "order_id" = ?'
    assert bound == ["order_id"]
