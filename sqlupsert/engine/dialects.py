"""
Dialect-specific leaf behavior for the upsert engine.

A dialect knows how its driver spells placeholders and quoted identifiers,
whether it can write an insert-or-update in one statement, how to forward a
query timeout, and how to recognise driver errors and a lost connection. It
holds no state and never touches record contents.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, ClassVar, Dict, Optional, Sequence

from sqlupsert.domain.errors import BatchExecutionError, ConfigurationError
from sqlupsert.domain.models import TableRef
from sqlupsert.utils.logging import get_logger

log = get_logger(__name__)


def timeout_seconds(timeout_ms: Optional[int]) -> int:
    """Convert a millisecond timeout to whole seconds: 0 stays 0, anything below a second rounds up to 1."""
    if not timeout_ms or timeout_ms <= 0:
        return 0
    if timeout_ms < 1000:
        return 1
    return int((Decimal(timeout_ms) / 1000).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def is_driver_error(exc: BaseException) -> bool:
    """True when `exc` derives from a DB-API ``Error`` class of some driver module."""
    return any(
        cls.__name__ in ("Error", "DatabaseError") and cls.__module__ != "builtins"
        for cls in type(exc).__mro__
    )


def driver_error_code(exc: BaseException) -> str:
    """Best-effort vendor error code: SQLSTATE, errno, or "0" when the driver exposes none."""
    sqlstate = getattr(exc, "sqlstate", None)
    if sqlstate:
        return str(sqlstate)
    errno = getattr(exc, "errno", None)
    if isinstance(errno, int):
        return str(errno)
    sqlite_code = getattr(exc, "sqlite_errorcode", None)
    if isinstance(sqlite_code, int):
        return str(sqlite_code)
    if exc.args:
        first = exc.args[0]
        if isinstance(first, int):
            return str(first)
        code = getattr(first, "code", None)
        if isinstance(code, int):
            return str(code)
    return "0"


class Dialect:
    """
    Base dialect using DB-API ``qmark`` placeholders and ANSI double quotes.

    Subclasses override class attributes for the simple differences and
    methods where the driver API differs.
    """

    name: ClassVar[str] = "generic"
    quote_open: ClassVar[str] = '"'
    quote_close: ClassVar[str] = '"'
    default_schemas: ClassVar[frozenset] = frozenset()
    matches_absent_keys_as_null: ClassVar[bool] = False
    aborts_transaction_on_error: ClassVar[bool] = False
    supports_native_upsert: ClassVar[bool] = False
    timeout_is_transactional: ClassVar[bool] = False

    def placeholder(self, position: int) -> str:
        """Placeholder for the zero-based bind `position`."""
        return "?"

    def quote(self, identifier: str) -> str:
        escaped = identifier.replace(self.quote_close, self.quote_close * 2)
        return f"{self.quote_open}{escaped}{self.quote_close}"

    def qualified_table(self, table: TableRef) -> str:
        if table.schema_name and table.schema_name.lower() not in self.default_schemas:
            return f"{self.quote(table.schema_name)}.{self.quote(table.name)}"
        return self.quote(table.name)

    def native_upsert_clause(self, conflict_columns: Sequence[str], assignments: Sequence[str]) -> str:
        """
        Trailing clause turning an INSERT into an insert-or-update.

        Parameters
        ----------
        conflict_columns : Sequence[str]
            Quoted columns of the key that decides a conflict.
        assignments : Sequence[str]
            Rendered ``column = placeholder`` fragments for the update branch.
        """
        raise ConfigurationError(f"Dialect {self.name} has no native upsert statement")

    def apply_query_timeout(self, connection: Any, timeout_ms: int) -> None:
        if timeout_ms:
            log.debug(f"Dialect {self.name} ignores query timeout of {timeout_ms} ms")

    def execute_batch(self, cursor: Any, sql: str, rows: Sequence[Sequence[Any]]) -> int:
        """Execute one statement for many parameter rows and return the affected-row count."""
        cursor.executemany(sql, rows)
        return self._rowcount(cursor, len(rows))

    def is_connection_lost(self, exc: BaseException, connection: Any) -> bool:
        if any(cls.__name__ == "InterfaceError" for cls in type(exc).__mro__):
            return True
        return bool(getattr(connection, "closed", False) or getattr(connection, "broken", False))

    @staticmethod
    def _rowcount(cursor: Any, fallback: int) -> int:
        count = getattr(cursor, "rowcount", -1)
        return count if isinstance(count, int) and count >= 0 else fallback

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class PostgresDialect(Dialect):
    """psycopg 3: ``%s`` placeholders, ON CONFLICT upserts, aborted transactions on error."""

    name = "postgresql"
    default_schemas = frozenset({"public"})
    aborts_transaction_on_error = True
    timeout_is_transactional = True
    supports_native_upsert = True

    def placeholder(self, position: int) -> str:
        return "%s"

    def quote(self, identifier: str) -> str:
        return super().quote(identifier).replace("%", "%%")

    def native_upsert_clause(self, conflict_columns: Sequence[str], assignments: Sequence[str]) -> str:
        return f" ON CONFLICT ({', '.join(conflict_columns)}) DO UPDATE SET {', '.join(assignments)}"

    def apply_query_timeout(self, connection: Any, timeout_ms: int) -> None:
        if timeout_ms:
            with connection.cursor() as cur:
                cur.execute(f"SET statement_timeout = {int(timeout_ms)}")


class SqliteDialect(Dialect):
    """The standard-library sqlite3 driver; ON CONFLICT needs SQLite 3.24 or later."""

    name = "sqlite"
    default_schemas = frozenset({"main"})
    supports_native_upsert = True

    def native_upsert_clause(self, conflict_columns: Sequence[str], assignments: Sequence[str]) -> str:
        return f" ON CONFLICT ({', '.join(conflict_columns)}) DO UPDATE SET {', '.join(assignments)}"

    def is_connection_lost(self, exc: BaseException, connection: Any) -> bool:
        if type(exc).__name__ == "ProgrammingError" and "closed" in str(exc).lower():
            return True
        return super().is_connection_lost(exc, connection)


class MySqlDialect(Dialect):
    """PyMySQL / mysqlclient: ``%s`` placeholders, backtick quoting, ON DUPLICATE KEY UPDATE."""

    name = "mysql"
    quote_open = "`"
    quote_close = "`"
    supports_native_upsert = True

    def placeholder(self, position: int) -> str:
        return "%s"

    def quote(self, identifier: str) -> str:
        return super().quote(identifier).replace("%", "%%")

    def native_upsert_clause(self, conflict_columns: Sequence[str], assignments: Sequence[str]) -> str:
        return f" ON DUPLICATE KEY UPDATE {', '.join(assignments)}"

    def apply_query_timeout(self, connection: Any, timeout_ms: int) -> None:
        if timeout_ms:
            cur = connection.cursor()
            try:
                cur.execute(f"SET SESSION max_execution_time = {int(timeout_ms)}")
            finally:
                cur.close()


class SqlServerDialect(Dialect):
    """pyodbc against SQL Server: bracket quoting and ``IS NULL`` matching of absent key values."""

    name = "mssql"
    quote_open = "["
    quote_close = "]"
    default_schemas = frozenset({"dbo"})
    matches_absent_keys_as_null = True

    def apply_query_timeout(self, connection: Any, timeout_ms: int) -> None:
        if timeout_ms:
            connection.timeout = timeout_seconds(timeout_ms)


class OracleDialect(Dialect):
    """python-oracledb: numbered ``:n`` placeholders and per-row batch errors."""

    name = "oracle"

    def placeholder(self, position: int) -> str:
        return f":{position + 1}"

    def apply_query_timeout(self, connection: Any, timeout_ms: int) -> None:
        if timeout_ms:
            connection.call_timeout = int(timeout_ms)

    def execute_batch(self, cursor: Any, sql: str, rows: Sequence[Sequence[Any]]) -> int:
        cursor.executemany(sql, rows, batcherrors=True)
        errors = cursor.getbatcherrors()
        affected = self._rowcount(cursor, len(rows) - len(errors))
        if errors:
            row_errors = {err.offset: err.message for err in errors}
            raise BatchExecutionError(
                f"{len(row_errors)} of {len(rows)} rows failed",
                row_errors=row_errors,
                rows_affected=affected,
            )
        return affected


DIALECTS: Dict[str, Dialect] = {
    "postgresql": PostgresDialect(),
    "postgres": PostgresDialect(),
    "sqlite": SqliteDialect(),
    "mysql": MySqlDialect(),
    "mssql": SqlServerDialect(),
    "sqlserver": SqlServerDialect(),
    "oracle": OracleDialect(),
}


def get_dialect(name: str) -> Dialect:
    """
    Look up a dialect by name (case-insensitive).

    Raises
    ------
    ConfigurationError
        If the name is not registered.
    """
    try:
        return DIALECTS[name.lower()]
    except KeyError:
        raise ConfigurationError(
            f"Unknown dialect '{name}'. Available: {', '.join(sorted(DIALECTS))}"
        ) from None


__all__ = [
    "timeout_seconds",
    "is_driver_error",
    "driver_error_code",
    "Dialect",
    "PostgresDialect",
    "SqliteDialect",
    "MySqlDialect",
    "SqlServerDialect",
    "OracleDialect",
    "DIALECTS",
    "get_dialect",
]
