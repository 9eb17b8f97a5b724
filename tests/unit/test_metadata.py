from __future__ import annotations

import sqlite3

import pytest

from sqlupsert.domain.errors import ConfigurationError
from sqlupsert.domain.models import KeyGroup, SqlType, TableMetadata, TableRef
from sqlupsert.infrastructure.metadata import (
    ColumnMetadataProvider,
    SqliteMetadataProvider,
    StaticMetadataProvider,
    load_table_metadata,
    sql_type_for,
)


@pytest.mark.parametrize(
    ("type_name", "expected"),
    [
        ("INTEGER", SqlType.INTEGER),
        ("bigint", SqlType.LONG),
        ("NUMERIC(14, 2)", SqlType.NUMERIC),
        ("character varying", SqlType.STRING),
        ("VARCHAR(255)", SqlType.STRING),
        ("nvarchar(50)", SqlType.NVARCHAR),
        ("timestamp without time zone", SqlType.TIMESTAMP),
        ("time without time zone", SqlType.TIME),
        ("date", SqlType.DATE),
        ("boolean", SqlType.BOOLEAN),
        ("real", SqlType.FLOAT),
        ("double precision", SqlType.DOUBLE),
        ("jsonb", SqlType.JSON),
        ("bytea", SqlType.BLOB),
        ("int unsigned", SqlType.INTEGER),
        ("USER-DEFINED", None),
        ("", None),
    ],
)
def test_sql_type_for(type_name, expected):
    assert sql_type_for(type_name) is expected


def test_sqlite_provider_reads_columns_in_table_order(sqlite_conn: sqlite3.Connection):
    provider = SqliteMetadataProvider(sqlite_conn)
    assert isinstance(provider, ColumnMetadataProvider)

    types = provider.get_column_types("customers")

    assert list(types) == ["id", "email", "name", "balance", "is_active", "signup_date"]
    assert types["id"] is SqlType.INTEGER
    assert types["balance"] is SqlType.NUMERIC
    assert types["signup_date"] is SqlType.DATE


def test_sqlite_provider_reads_keys(sqlite_conn: sqlite3.Connection):
    provider = SqliteMetadataProvider(sqlite_conn)

    assert provider.get_primary_key("customers").columns == ("id",)
    groups = provider.get_unique_key_groups("customers")
    assert [g.columns for g in groups] == [("email",)]


def test_sqlite_unique_groups_exclude_primary_key_columns(sqlite_conn: sqlite3.Connection):
    sqlite_conn.execute(
        "CREATE TABLE memberships (org INTEGER, member INTEGER, role TEXT, PRIMARY KEY (org, member))"
    )
    sqlite_conn.execute("CREATE UNIQUE INDEX ux_role ON memberships (org, role)")
    sqlite_conn.execute("CREATE INDEX ix_member ON memberships (member)")
    provider = SqliteMetadataProvider(sqlite_conn)

    assert provider.get_primary_key("memberships").columns == ("org", "member")
    assert provider.get_unique_key_groups("memberships") == [KeyGroup(name="ux_role", columns=("role",))]


def test_load_table_metadata_restricts_columns(sqlite_conn: sqlite3.Connection):
    metadata = load_table_metadata(SqliteMetadataProvider(sqlite_conn), "customers", columns=("name", "id"))

    assert metadata.columns == ["id", "name"]
    assert metadata.primary_key.columns == ("id",)


def test_load_table_metadata_rejects_missing_table(sqlite_conn: sqlite3.Connection):
    with pytest.raises(ConfigurationError):
        load_table_metadata(SqliteMetadataProvider(sqlite_conn), "nope")


def test_static_provider_round_trips_metadata():
    metadata = TableMetadata(
        table=TableRef(name="t"),
        column_types={"id": SqlType.LONG, "v": None},
        primary_key=KeyGroup(name="pk", columns=("id",)),
    )
    loaded = load_table_metadata(StaticMetadataProvider(metadata), "t")
    assert loaded == metadata
