"""
Domain models for the upsert engine.

Table metadata, key groups, conflict results and per-record outcomes are
immutable pydantic models so they can be logged, compared and serialized into
response payloads. `Record` is a plain class: its content may be a single-read
stream, and every read goes through a freshly opened stream.
"""

from __future__ import annotations

import io
import json
from collections.abc import Callable, Mapping
from decimal import Decimal
from enum import Enum
from typing import IO, Any, Dict, Optional, Tuple, Union

from pydantic import BaseModel, Field

from sqlupsert.domain.errors import INPUT_ERROR_MESSAGE, ErrorKind, InputError

SUCCESS_RESPONSE_CODE = "200"
SUCCESS_RESPONSE_MESSAGE = "Ok"
VALUE_ERROR_CODE = "405"
BATCH_FAILED_CODE = "400"
BATCH_FAILED_MESSAGE = "Bad request"
CONNECTOR_FAILURE_CODE = "500"


class SqlType(str, Enum):
    """Declared SQL types the value marshaller knows how to bind."""

    INTEGER = "integer"
    NUMERIC = "numeric"
    DATE = "date"
    TIME = "time"
    TIMESTAMP = "timestamp"
    STRING = "string"
    NVARCHAR = "nvarchar"
    BOOLEAN = "boolean"
    LONG = "long"
    FLOAT = "float"
    DOUBLE = "double"
    JSON = "json"
    BLOB = "blob"


class CommitMode(str, Enum):
    ROW_COUNT = "row-count"
    PROFILE = "profile"


class OperationStatus(str, Enum):
    SUCCESS = "SUCCESS"
    APPLICATION_ERROR = "APPLICATION_ERROR"
    FAILURE = "FAILURE"


def _json_default(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


def _dumps_scalar(value: Any) -> str:
    if isinstance(value, Decimal):
        # Decimal text is already a valid JSON number when finite.
        return str(value) if value.is_finite() else json.dumps(str(value))
    return json.dumps(value, default=_json_default)


def dumps_json(value: Any) -> str:
    """
    Serialize a parsed record value back to compact JSON text.

    Decimals are written with their exact digits, never through a binary float.
    """
    if isinstance(value, Mapping):
        items = (f"{json.dumps(str(k))}:{dumps_json(v)}" for k, v in value.items())
        return "{" + ",".join(items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(dumps_json(v) for v in value) + "]"
    return _dumps_scalar(value)


class KeyGroup(BaseModel):
    """
    A named, ordered set of columns whose combined value is unique.
    """

    name: str = Field(..., description="Constraint or index name.")
    columns: Tuple[str, ...] = Field(default=(), description="Key columns in index order.")

    model_config = {"frozen": True}

    @property
    def is_empty(self) -> bool:
        return not self.columns


class TableRef(BaseModel):
    """Target table name with an optional schema."""

    name: str
    schema_name: Optional[str] = None

    model_config = {"frozen": True}

    def __str__(self) -> str:
        return f"{self.schema_name}.{self.name}" if self.schema_name else self.name


class TableMetadata(BaseModel):
    """
    Column types and key groups of one table, as reported by a metadata provider.

    `column_types` keeps the table's declared column order. A value of None
    marks a column whose SQL type has no binder; such values are bound as-is.
    """

    table: TableRef
    column_types: Dict[str, Optional[SqlType]]
    primary_key: KeyGroup = Field(default_factory=lambda: KeyGroup(name="PRIMARY"))
    unique_keys: Tuple[KeyGroup, ...] = ()

    model_config = {"frozen": True}

    @property
    def columns(self) -> list[str]:
        return list(self.column_types)

    def restrict(self, columns: Optional[Tuple[str, ...]]) -> TableMetadata:
        """Return a copy limited to `columns` (kept in table order)."""
        if not columns:
            return self
        wanted = set(columns)
        return self.model_copy(
            update={"column_types": {c: t for c, t in self.column_types.items() if c in wanted}}
        )


class ConflictResult(BaseModel):
    """
    Key groups an incoming record collides with.

    Computed fresh for every record. Both fields empty means "insert".
    """

    primary: Optional[KeyGroup] = None
    unique: Tuple[KeyGroup, ...] = ()

    model_config = {"frozen": True}

    @property
    def has_conflict(self) -> bool:
        return self.primary is not None or bool(self.unique)

    def key_columns(self) -> list[str]:
        """Primary-key columns first, then unique columns not already covered."""
        ordered: list[str] = list(self.primary.columns) if self.primary else []
        for group in self.unique:
            for column in group.columns:
                if column not in ordered:
                    ordered.append(column)
        return ordered


class QueryResponse(BaseModel):
    """Payload of a successfully executed single statement."""

    query: str
    rows_affected: int
    message: str = "Executed Successfully"


class BatchResponse(BaseModel):
    """Payload describing the batch a record was executed in."""

    message: str
    batch_number: int
    record_count: int
    rows_affected: Optional[int] = None


class ErrorDetails(BaseModel):
    code: str
    message: str


class Outcome(BaseModel):
    """
    The result reported for exactly one input record.
    """

    index: int = Field(..., description="Zero-based position of the record in the input.")
    status: OperationStatus
    status_code: str
    message: str
    payload: Optional[Dict[str, Any]] = None
    error_kind: Optional[ErrorKind] = None

    model_config = {"frozen": True}

    @property
    def succeeded(self) -> bool:
        return self.status is OperationStatus.SUCCESS

    @classmethod
    def success(cls, index: int, payload: BaseModel) -> Outcome:
        return cls(
            index=index,
            status=OperationStatus.SUCCESS,
            status_code=SUCCESS_RESPONSE_CODE,
            message=SUCCESS_RESPONSE_MESSAGE,
            payload=payload.model_dump(),
        )

    @classmethod
    def application_error(
        cls,
        index: int,
        kind: ErrorKind,
        code: str,
        message: str,
        payload: Optional[BaseModel] = None,
    ) -> Outcome:
        body = payload if payload is not None else ErrorDetails(code=code, message=message)
        return cls(
            index=index,
            status=OperationStatus.APPLICATION_ERROR,
            status_code=code,
            message=message,
            payload=body.model_dump(),
            error_kind=kind,
        )

    @classmethod
    def failure(cls, index: int, message: str, kind: ErrorKind = ErrorKind.CONNECTOR) -> Outcome:
        return cls(
            index=index,
            status=OperationStatus.FAILURE,
            status_code=CONNECTOR_FAILURE_CODE,
            message=message,
            payload=ErrorDetails(code=CONNECTOR_FAILURE_CODE, message=message).model_dump(),
            error_kind=kind,
        )


class UpsertOptions(BaseModel):
    """
    Per-invocation engine options.

    A batch size of zero (or None) selects profile commit regardless of
    `commit_mode`. Negative sizes are rejected by the executor before any
    record is read.
    """

    batch_size: Optional[int] = None
    commit_mode: CommitMode = CommitMode.PROFILE
    schema_name: Optional[str] = None
    join_external_transaction: bool = False
    query_timeout_ms: int = 0
    log_parameters: bool = False
    columns: Optional[Tuple[str, ...]] = None
    strategy: Optional[str] = Field(None, description="'probe' or 'native'; default per dialect.")

    model_config = {"frozen": True}

    @property
    def effective_commit_mode(self) -> CommitMode:
        if not self.batch_size or self.batch_size <= 0:
            return CommitMode.PROFILE
        return self.commit_mode


RecordSource = Union[str, bytes, bytearray, Mapping[str, Any], Callable[[], IO[bytes]], None]


class Record:
    """
    One input document.

    The content is re-acquired on every read: strings and bytes are wrapped in
    a new stream, callables are invoked for a fresh stream. Floats are decoded
    as Decimal so numeric precision survives until binding.
    """

    __slots__ = ("_source",)

    def __init__(self, source: RecordSource) -> None:
        self._source = source

    @classmethod
    def of(cls, item: Union[Record, RecordSource]) -> Record:
        return item if isinstance(item, Record) else cls(item)

    def open(self) -> IO[bytes]:
        source = self._source
        if source is None:
            raise InputError(INPUT_ERROR_MESSAGE)
        if isinstance(source, str):
            return io.BytesIO(source.encode("utf-8"))
        if isinstance(source, (bytes, bytearray)):
            return io.BytesIO(bytes(source))
        if isinstance(source, Mapping):
            return io.BytesIO(dumps_json(dict(source)).encode("utf-8"))
        if callable(source):
            return source()
        raise InputError(f"{INPUT_ERROR_MESSAGE} Unsupported record content: {type(source).__name__}")

    def read_fields(self) -> dict[str, Any]:
        """Parse the record into a field map, raising InputError when it is not a JSON object."""
        if isinstance(self._source, Mapping):
            return dict(self._source)
        stream = self.open()
        try:
            raw = stream.read()
        finally:
            stream.close()
        if not raw or not raw.strip():
            raise InputError(INPUT_ERROR_MESSAGE)
        try:
            data = json.loads(raw, parse_float=Decimal)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise InputError(f"{INPUT_ERROR_MESSAGE} {exc}", source=exc) from exc
        if not isinstance(data, dict):
            raise InputError(INPUT_ERROR_MESSAGE)
        return data


__all__ = [
    "SUCCESS_RESPONSE_CODE",
    "SUCCESS_RESPONSE_MESSAGE",
    "VALUE_ERROR_CODE",
    "BATCH_FAILED_CODE",
    "BATCH_FAILED_MESSAGE",
    "CONNECTOR_FAILURE_CODE",
    "SqlType",
    "CommitMode",
    "OperationStatus",
    "dumps_json",
    "KeyGroup",
    "TableRef",
    "TableMetadata",
    "ConflictResult",
    "QueryResponse",
    "BatchResponse",
    "ErrorDetails",
    "Outcome",
    "UpsertOptions",
    "RecordSource",
    "Record",
]
