"""
Error taxonomy for the upsert engine.

Every failure the engine can report belongs to exactly one ErrorKind. The
executor recovers input, value and database errors at the record boundary,
configuration errors at the invocation boundary, and lets connector errors
propagate to the caller once the remaining records have been reported.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Closed classification of engine errors."""

    CONFIGURATION = "configuration"
    INPUT = "input"
    VALUE = "value"
    DATABASE = "database"
    CONNECTOR = "connector"


INPUT_ERROR_MESSAGE = "Please check the input data!!"
INVALID_DATE_MESSAGE = "Please enter valid Date format : "


class UpsertError(Exception):
    """Base error for all engine failures."""

    kind: ErrorKind = ErrorKind.DATABASE

    def __init__(
        self,
        message: str,
        kind: Optional[ErrorKind] = None,
        source: Optional[BaseException] = None,
        code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind
        self.source = source
        self.code = code

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, kind={self.kind.value!r})"


class ConfigurationError(UpsertError):
    """Invalid engine configuration; fatal before any record is processed."""

    kind = ErrorKind.CONFIGURATION


class InputError(UpsertError):
    """Record content is absent, unparseable or matches no table column."""

    kind = ErrorKind.INPUT


class ValueMarshallingError(UpsertError, ValueError):
    """A field value cannot be coerced to its declared SQL type."""

    kind = ErrorKind.VALUE


class StatementError(UpsertError):
    """The database rejected a statement (constraint, syntax, permissions)."""

    kind = ErrorKind.DATABASE


class BatchExecutionError(StatementError):
    """
    A batch submission failed.

    ``row_errors`` maps the zero-based offset of each failed row inside the
    submitted batch to its error text. An empty mapping means the failure is
    table or connection level and no row can be singled out.
    """

    def __init__(
        self,
        message: str,
        row_errors: Optional[dict[int, str]] = None,
        rows_affected: int = 0,
        source: Optional[BaseException] = None,
        code: Optional[str] = None,
    ) -> None:
        super().__init__(message, source=source, code=code)
        self.row_errors = dict(row_errors or {})
        self.rows_affected = rows_affected


class ConnectorError(UpsertError):
    """The connection is lost or unusable; not recoverable by the engine."""

    kind = ErrorKind.CONNECTOR


__all__ = [
    "ErrorKind",
    "INPUT_ERROR_MESSAGE",
    "INVALID_DATE_MESSAGE",
    "UpsertError",
    "ConfigurationError",
    "InputError",
    "ValueMarshallingError",
    "StatementError",
    "BatchExecutionError",
    "ConnectorError",
]
