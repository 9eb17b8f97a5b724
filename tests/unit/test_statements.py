from __future__ import annotations

from sqlupsert.domain.models import ConflictResult, KeyGroup, SqlType, TableMetadata, TableRef
from sqlupsert.engine.dialects import MySqlDialect, PostgresDialect, SqliteDialect, SqlServerDialect
from sqlupsert.engine.statements import StatementBuilder, discover_column_set


def _metadata(schema: str | None = None) -> TableMetadata:
    return TableMetadata(
        table=TableRef(name="customers", schema_name=schema),
        column_types={
            "id": SqlType.INTEGER,
            "email": SqlType.STRING,
            "name": SqlType.STRING,
            "balance": SqlType.NUMERIC,
        },
        primary_key=KeyGroup(name="PRIMARY", columns=("id",)),
        unique_keys=(KeyGroup(name="ux_email", columns=("email",)),),
    )


def test_discover_column_set_keeps_table_order():
    metadata = _metadata()
    assert discover_column_set(metadata, {"name": "a", "id": 1, "unknown": 2}) == ("id", "name")
    assert discover_column_set(metadata, {"unknown": 2}) == ()


def test_build_insert():
    builder = StatementBuilder(SqliteDialect(), _metadata())
    statement = builder.build_insert(("id", "email", "name"))

    assert statement.sql == 'INSERT INTO "customers" ("id", "email", "name") VALUES (?, ?, ?)'
    assert statement.bind_columns == ("id", "email", "name")
    assert statement.kind == "insert"


def test_build_without_conflict_inserts():
    builder = StatementBuilder(SqliteDialect(), _metadata())
    statement = builder.build({"id": 1, "name": "a"}, ("id", "name"), ConflictResult())
    assert statement.kind == "insert"


def test_build_update_on_primary_key_conflict():
    metadata = _metadata()
    builder = StatementBuilder(SqliteDialect(), metadata)
    fields = {"id": 1, "email": "a@x", "name": "Ann"}
    conflict = ConflictResult(primary=metadata.primary_key)

    statement = builder.build(fields, ("id", "email", "name"), conflict)

    assert statement.sql == 'UPDATE "customers" SET "email" = ?, "name" = ? WHERE "id" = ?'
    assert statement.bind_columns == ("email", "name", "id")
    assert statement.kind == "update"


def test_build_update_matches_primary_then_unique_columns():
    metadata = _metadata()
    builder = StatementBuilder(PostgresDialect(), metadata)
    fields = {"id": 1, "email": "a@x", "name": "Ann"}
    conflict = ConflictResult(primary=metadata.primary_key, unique=metadata.unique_keys)

    statement = builder.build(fields, ("id", "email", "name"), conflict)

    assert statement.sql == 'UPDATE "customers" SET "name" = %s WHERE "id" = %s AND "email" = %s'
    assert statement.bind_columns == ("name", "id", "email")


def test_update_leaves_out_columns_missing_from_record():
    metadata = _metadata()
    builder = StatementBuilder(SqliteDialect(), metadata)
    fields = {"id": 1, "name": "Ann"}

    statement = builder.build(fields, ("id", "email", "name"), ConflictResult(primary=metadata.primary_key))

    assert statement.sql == 'UPDATE "customers" SET "name" = ? WHERE "id" = ?'


def test_sql_server_update_matches_absent_key_as_null():
    metadata = TableMetadata(
        table=TableRef(name="lines", schema_name="dbo"),
        column_types={"order_id": SqlType.INTEGER, "line": SqlType.INTEGER, "qty": SqlType.INTEGER},
        primary_key=KeyGroup(name="pk_lines", columns=("order_id", "line")),
    )
    builder = StatementBuilder(SqlServerDialect(), metadata)
    fields = {"order_id": 7, "qty": 3}

    statement = builder.build(fields, ("order_id", "qty"), ConflictResult(primary=metadata.primary_key))

    assert statement.sql == "UPDATE [lines] SET [qty] = ? WHERE [order_id] = ? AND [line] IS NULL"
    assert statement.bind_columns == ("qty", "order_id")


def test_update_with_only_key_columns_falls_back_to_insert():
    metadata = _metadata()
    builder = StatementBuilder(SqliteDialect(), metadata)

    statement = builder.build({"id": 1}, ("id",), ConflictResult(primary=metadata.primary_key))

    assert statement.kind == "insert"
    assert statement.sql == 'INSERT INTO "customers" ("id") VALUES (?)'


def test_native_postgres_upsert_binds_update_columns_again():
    builder = StatementBuilder(PostgresDialect(), _metadata(schema="sales"))

    statement = builder.build_native(("id", "name", "balance"))

    assert statement.sql == (
        'INSERT INTO "sales"."customers" ("id", "name", "balance") VALUES (%s, %s, %s)'
        ' ON CONFLICT ("id") DO UPDATE SET "name" = %s, "balance" = %s'
    )
    assert statement.bind_columns == ("id", "name", "balance", "name", "balance")
    assert statement.kind == "upsert"


def test_native_mysql_upsert():
    builder = StatementBuilder(MySqlDialect(), _metadata())

    statement = builder.build_native(("id", "name"))

    assert statement.sql == (
        "INSERT INTO `customers` (`id`, `name`) VALUES (%s, %s) ON DUPLICATE KEY UPDATE `name` = %s"
    )


def test_native_target_falls_back_to_first_unique_group():
    metadata = _metadata().model_copy(update={"primary_key": KeyGroup(name="PRIMARY")})
    builder = StatementBuilder(SqliteDialect(), metadata)

    statement = builder.build_native(("email", "name"))

    assert builder.conflict_target() == ("email",)
    assert statement.sql.endswith(' ON CONFLICT ("email") DO UPDATE SET "name" = ?')


def test_native_without_key_or_update_columns_is_plain_insert():
    keyless = _metadata().model_copy(update={"primary_key": KeyGroup(name="PRIMARY"), "unique_keys": ()})
    assert StatementBuilder(SqliteDialect(), keyless).build_native(("id", "name")).kind == "insert"
    assert StatementBuilder(SqliteDialect(), _metadata()).build_native(("id",)).kind == "insert"
