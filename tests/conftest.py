"""
Pytest configuration for sqlupsert.

Provides fixtures for:
- In-memory SQLite connections with a sample table (unit tests)
- PostgreSQL connection management and table setup (integration tests)
- Settings override for integration tests
"""

from __future__ import annotations

import os
import sqlite3
from pathlib import Path
from typing import Generator

import psycopg
import pytest

from sqlupsert.config import Settings, get_settings
from sqlupsert.domain.models import TableMetadata
from sqlupsert.infrastructure.db_factory import connect_sqlite
from sqlupsert.infrastructure.metadata import SqliteMetadataProvider, load_table_metadata

SQLITE_CUSTOMERS_DDL = """
CREATE TABLE customers (
    id INTEGER PRIMARY KEY,
    email VARCHAR(255) UNIQUE,
    name VARCHAR(100),
    balance NUMERIC(14, 2),
    is_active BOOLEAN,
    signup_date DATE
)
"""

POSTGRES_CUSTOMERS_DDL = """
CREATE TABLE IF NOT EXISTS public.upsert_customers (
    id BIGINT PRIMARY KEY,
    email VARCHAR(255) UNIQUE,
    name VARCHAR(100),
    balance NUMERIC(30, 2),
    is_active BOOLEAN,
    signup_date DATE,
    profile JSONB,
    avatar BYTEA,
    updated_at TIMESTAMP
)
"""


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def sqlite_conn() -> Generator[sqlite3.Connection, None, None]:
    """
    In-memory SQLite database holding an empty `customers` table.
    """
    conn = connect_sqlite(":memory:")
    conn.execute(SQLITE_CUSTOMERS_DDL)
    conn.commit()
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture
def sqlite_db(tmp_path: Path) -> Path:
    """
    File-backed SQLite database holding an empty `customers` table, for DSN-driven runs.
    """
    path = tmp_path / "upsert.db"
    conn = connect_sqlite(str(path))
    try:
        conn.execute(SQLITE_CUSTOMERS_DDL)
        conn.commit()
    finally:
        conn.close()
    return path


@pytest.fixture
def customers_metadata(sqlite_conn: sqlite3.Connection) -> TableMetadata:
    return load_table_metadata(SqliteMetadataProvider(sqlite_conn), "customers")


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Can be overridden via environment variables in CI or local testing.
    """
    return Settings(
        DB_HOST=os.getenv("DB_HOST", "localhost"),
        DB_PORT=int(os.getenv("DB_PORT", "5432")),
        DB_USER=os.getenv("DB_USER", "postgres"),
        DB_PASSWORD=os.getenv("DB_PASSWORD", "postgres"),
        DB_NAME=os.getenv("DB_NAME", "sqlupsert"),
        LOG_LEVEL="DEBUG",
    )


@pytest.fixture(scope="session")
def test_dsn(test_settings: Settings) -> str:
    """
    Database connection string for tests.
    """
    return (
        f"postgresql://{test_settings.db_user}:{test_settings.db_password}"
        f"@{test_settings.db_host}:{test_settings.db_port}/{test_settings.db_name}"
    )


@pytest.fixture(scope="session")
def db_connection_available(test_dsn: str) -> bool:
    """
    Check if database is reachable.

    Used to conditionally skip integration tests when DB is not available.
    """
    try:
        with psycopg.connect(test_dsn, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True
    except psycopg.Error:
        return False


@pytest.fixture
def db_connection(
    test_dsn: str, db_connection_available: bool
) -> Generator[psycopg.Connection, None, None]:
    """
    Provide a database connection for integration tests.

    Skips tests if database is not available.
    """
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")

    conn = psycopg.connect(test_dsn)
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture
def clean_customers_table(db_connection: psycopg.Connection) -> Generator[str, None, None]:
    """
    Create `upsert_customers` if needed and empty it around each test.
    """
    with db_connection.cursor() as cur:
        cur.execute(POSTGRES_CUSTOMERS_DDL)
        cur.execute("TRUNCATE TABLE public.upsert_customers;")
    db_connection.commit()
    yield "upsert_customers"
    db_connection.rollback()
    with db_connection.cursor() as cur:
        cur.execute("TRUNCATE TABLE public.upsert_customers;")
    db_connection.commit()
