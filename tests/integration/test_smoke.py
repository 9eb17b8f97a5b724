"""
Integration tests for the upsert engine against PostgreSQL.

These tests run against a real PostgreSQL instance and verify that:
1. Table metadata is introspected from information_schema and pg_index
2. Both strategies insert new rows and update conflicting ones
3. JSONB, BYTEA and wide NUMERIC values are bound natively
4. A failing batch is rolled back and the next batch still commits

Run with: RUN_INTEGRATION_TESTS=1 pytest tests/integration/
"""

from __future__ import annotations

import os
from decimal import Decimal

import psycopg
import pytest

from sqlupsert.domain.models import CommitMode, OperationStatus, SqlType, UpsertOptions
from sqlupsert.engine.dialects import PostgresDialect
from sqlupsert.engine.executor import UpsertEngine
from sqlupsert.engine.strategies import resolve_strategy
from sqlupsert.infrastructure.metadata import PostgresMetadataProvider, load_table_metadata
from sqlupsert.runner import run_upsert

# Test configuration constants
DEFAULT_BATCH_SIZE = 2
DEFAULT_ROWS = 5
WIDE_BALANCE = "1234567890123456789012345.50"
TOO_LONG_NAME = "x" * 200

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(
        os.getenv("RUN_INTEGRATION_TESTS", "0") != "1",
        reason="Integration tests require RUN_INTEGRATION_TESTS=1 and reachable Postgres",
    ),
]


def _engine(conn: psycopg.Connection, table: str, strategy: str, **options) -> UpsertEngine:
    dialect = PostgresDialect()
    metadata = load_table_metadata(PostgresMetadataProvider(conn), table)
    return UpsertEngine(
        conn, dialect, metadata, resolve_strategy(strategy, conn, dialect, metadata), UpsertOptions(**options)
    )


def _customer(i: int, **fields) -> dict:
    return {"id": i, "email": f"user{i}@example.com", "name": f"User {i}", **fields}


def _fetch(conn: psycopg.Connection, sql: str, *params):
    with conn.cursor() as cur:
        cur.execute(sql, params)
        return cur.fetchall()


class TestMetadata:
    """Test PostgreSQL introspection."""

    def test_columns_and_keys(self, db_connection: psycopg.Connection, clean_customers_table: str):
        """Verify column types come back in table order with both key kinds."""
        provider = PostgresMetadataProvider(db_connection)
        metadata = load_table_metadata(provider, clean_customers_table)

        assert metadata.columns[:3] == ["id", "email", "name"]
        assert metadata.column_types["id"] is SqlType.LONG
        assert metadata.column_types["profile"] is SqlType.JSON
        assert metadata.column_types["avatar"] is SqlType.BLOB
        assert metadata.column_types["updated_at"] is SqlType.TIMESTAMP
        assert metadata.primary_key.columns == ("id",)
        assert [g.columns for g in metadata.unique_keys] == [("email",)]


@pytest.mark.parametrize("strategy", ["probe", "native"])
class TestUpsertStrategies:
    """Test insert-then-update behavior of each strategy."""

    def test_profile_commit_inserts_then_updates(
        self, db_connection: psycopg.Connection, clean_customers_table: str, strategy: str
    ):
        """Verify a second record with the same key updates the existing row."""
        engine = _engine(db_connection, clean_customers_table, strategy)

        outcomes, stats = engine.execute([_customer(1), _customer(1, name="Renamed")])

        assert all(o.succeeded for o in outcomes)
        assert stats["strategy"] == strategy
        assert _fetch(db_connection, "SELECT name FROM upsert_customers WHERE id = %s", 1) == [("Renamed",)]

    def test_row_count_commit_batches(
        self, db_connection: psycopg.Connection, clean_customers_table: str, strategy: str
    ):
        """Verify batch ordinals and that every record lands."""
        engine = _engine(
            db_connection,
            clean_customers_table,
            strategy,
            batch_size=DEFAULT_BATCH_SIZE,
            commit_mode=CommitMode.ROW_COUNT,
        )

        outcomes, stats = engine.execute([_customer(i) for i in range(DEFAULT_ROWS)])

        assert [o.payload["batch_number"] for o in outcomes] == [1, 1, 2, 2, 3]
        assert stats["batches"] == 3
        assert _fetch(db_connection, "SELECT count(*) FROM upsert_customers") == [(DEFAULT_ROWS,)]


class TestValueBinding:
    """Test PostgreSQL-native binds."""

    def test_json_bytes_timestamp_and_wide_numeric(
        self, db_connection: psycopg.Connection, clean_customers_table: str
    ):
        """Verify JSONB, BYTEA, TIMESTAMP and NUMERIC beyond 64 bits round-trip."""
        record = (
            '{"id": 1, "email": "a@example.com", "profile": {"tier": "pro", "tags": ["a"]},'
            f' "avatar": "png", "balance": {WIDE_BALANCE}, "updated_at": "2024-01-05T10:15:30"}}'
        )
        outcomes, _ = _engine(db_connection, clean_customers_table, "probe").execute([record])

        assert outcomes[0].succeeded, outcomes[0].message
        rows = _fetch(
            db_connection,
            "SELECT profile->>'tier', avatar, balance, updated_at::text FROM upsert_customers WHERE id = %s",
            1,
        )
        tier, avatar, balance, updated_at = rows[0]
        assert tier == "pro"
        assert bytes(avatar) == b"png"
        assert balance == Decimal(WIDE_BALANCE)
        assert updated_at == "2024-01-05 10:15:30"


class TestFailureHandling:
    """Test batch failure and recovery on a real server."""

    def test_failed_batch_rolls_back_and_next_batch_commits(
        self, db_connection: psycopg.Connection, clean_customers_table: str
    ):
        """Verify a value too long for its column fails the whole batch only."""
        engine = _engine(
            db_connection,
            clean_customers_table,
            "native",
            batch_size=DEFAULT_BATCH_SIZE,
            commit_mode=CommitMode.ROW_COUNT,
        )
        records = [_customer(1), _customer(2, name=TOO_LONG_NAME), _customer(3), _customer(4)]

        outcomes, _ = engine.execute(records)

        assert [o.status_code for o in outcomes] == ["400", "400", "200", "200"]
        assert outcomes[0].status is OperationStatus.APPLICATION_ERROR
        ids = _fetch(db_connection, "SELECT id FROM upsert_customers ORDER BY id")
        assert ids == [(3,), (4,)]

    def test_run_upsert_opens_its_own_connection(self, test_dsn: str, clean_customers_table: str, tmp_path):
        """Verify the runner introspects, upserts and reports through a DSN."""
        report = run_upsert(
            table=clean_customers_table,
            records=[_customer(i) for i in range(DEFAULT_ROWS)],
            options=UpsertOptions(),
            dsn=test_dsn,
            dialect_name="postgresql",
            results_dir=tmp_path,
        )

        assert report["summary"]["succeeded"] == DEFAULT_ROWS
        assert report["summary"]["strategy"] == "native"
        assert (tmp_path / "latest.json").exists()
