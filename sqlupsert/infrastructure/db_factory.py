"""
Database connection factory utilities for sqlupsert.

Builds DSNs from settings and opens the single connection an upsert invocation
owns. PostgreSQL connections go through psycopg; `sqlite:///path` DSNs open an
embedded SQLite database with adapters registered for the values the value
marshaller binds.

Includes retry logic for transient connection failures using tenacity.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Generator, Optional

import psycopg
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from sqlupsert.config import Settings, get_settings
from sqlupsert.utils.logging import get_logger

log = get_logger(__name__)

SQLITE_PREFIX = "sqlite://"


def build_dsn(settings: Optional[Settings] = None) -> str:
    """Compose a DSN string from settings, honouring an explicit DB_DSN."""
    settings = settings or get_settings()
    if settings.db_dsn:
        return settings.db_dsn
    return (
        f"postgresql://{settings.db_user}:{settings.db_password}"
        f"@{settings.db_host}:{settings.db_port}/{settings.db_name}"
    )


def is_sqlite_dsn(dsn: str) -> bool:
    return dsn.startswith(SQLITE_PREFIX)


SQLITE_INT_MIN = -(2**63)
SQLITE_INT_MAX = 2**63 - 1


def _adapt_decimal(value: Decimal) -> Any:
    # SQLite integers are signed 64-bit; anything else keeps its exact text
    if value == value.to_integral_value() and SQLITE_INT_MIN <= value <= SQLITE_INT_MAX:
        return int(value)
    return str(value)


def _register_sqlite_adapters() -> None:
    sqlite3.register_adapter(Decimal, _adapt_decimal)
    sqlite3.register_adapter(date, lambda value: value.isoformat())
    sqlite3.register_adapter(time, lambda value: value.isoformat())
    sqlite3.register_adapter(datetime, lambda value: value.isoformat(" "))


def connect_sqlite(path: str = ":memory:") -> sqlite3.Connection:
    """
    Open a SQLite connection suitable for the upsert engine.

    Parameters
    ----------
    path : str
        Database file path, or ``:memory:``.

    Returns
    -------
    sqlite3.Connection
        A connection in the default deferred-transaction mode.
    """
    _register_sqlite_adapters()
    return sqlite3.connect(path)


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((psycopg.OperationalError, psycopg.InterfaceError)),
    reraise=True,
)
def get_sync_connection(dsn: Optional[str] = None) -> Any:
    """
    Acquire a dedicated synchronous connection with automatic retry.

    Retries up to 3 times with exponential backoff for transient connection errors.

    Parameters
    ----------
    dsn : str, optional
        Connection string. Defaults to the DSN composed from settings.

    Returns
    -------
    Connection
        A psycopg connection, or a sqlite3 connection for ``sqlite:///`` DSNs.

    Raises
    ------
    psycopg.OperationalError
        If connection fails after all retry attempts.
    """
    dsn = dsn or build_dsn()
    if is_sqlite_dsn(dsn):
        path = dsn[len(SQLITE_PREFIX):].lstrip("/") or ":memory:"
        if dsn.startswith(SQLITE_PREFIX + "//"):
            path = "/" + path
        log.debug(f"Opening SQLite database {path}")
        return connect_sqlite(path)
    return psycopg.connect(dsn)


@contextmanager
def connection_scope(dsn: Optional[str] = None) -> Generator[Any, None, None]:
    """
    Context manager yielding one connection and closing it on exit.

    Example
    -------
        with connection_scope("sqlite:///:memory:") as conn:
            conn.execute("SELECT 1")
    """
    conn = get_sync_connection(dsn)
    try:
        yield conn
    finally:
        conn.close()


__all__ = [
    "SQLITE_PREFIX",
    "build_dsn",
    "is_sqlite_dsn",
    "connect_sqlite",
    "get_sync_connection",
    "connection_scope",
]
