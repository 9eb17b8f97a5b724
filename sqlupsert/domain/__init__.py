"""
Domain package for sqlupsert.

Exports the models and the error taxonomy shared by the engine, the
infrastructure layer and the runner. Keep this package focused on data
definitions and validation concerns.
"""

from sqlupsert.domain.errors import (
    BatchExecutionError,
    ConfigurationError,
    ConnectorError,
    ErrorKind,
    InputError,
    StatementError,
    UpsertError,
    ValueMarshallingError,
)
from sqlupsert.domain.models import (
    BatchResponse,
    CommitMode,
    ConflictResult,
    ErrorDetails,
    KeyGroup,
    OperationStatus,
    Outcome,
    QueryResponse,
    Record,
    SqlType,
    TableMetadata,
    TableRef,
    UpsertOptions,
)

__all__ = [
    "BatchExecutionError",
    "ConfigurationError",
    "ConnectorError",
    "ErrorKind",
    "InputError",
    "StatementError",
    "UpsertError",
    "ValueMarshallingError",
    "BatchResponse",
    "CommitMode",
    "ConflictResult",
    "ErrorDetails",
    "KeyGroup",
    "OperationStatus",
    "Outcome",
    "QueryResponse",
    "Record",
    "SqlType",
    "TableMetadata",
    "TableRef",
    "UpsertOptions",
]
