"""
Value marshaller: JSON field values to typed SQL parameters.

Dispatch is a lookup table from the column's declared SqlType to a binder
function. Numbers arrive as Decimal (records are parsed with
``parse_float=Decimal``) and INTEGER/NUMERIC values stay Decimal all the way to
the driver, so no value is ever routed through a binary float unless the
column is FLOAT or DOUBLE.

Absent and JSON-null values bind None and keep the declared type of the slot,
whatever that type is.
"""

from __future__ import annotations

import json
import math
import struct
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional, Set

from psycopg.types.json import Json

from sqlupsert.domain.errors import INVALID_DATE_MESSAGE, ValueMarshallingError
from sqlupsert.domain.models import SqlType, dumps_json
from sqlupsert.engine.dialects import Dialect

LONG_MIN = -(2**63)
LONG_MAX = 2**63 - 1


class ParameterSet:
    """
    Positional parameters for one statement execution.

    Each slot carries its bound value and the declared SqlType it was bound
    with; slots bound from BLOB columns on PostgreSQL are flagged as binary.
    """

    def __init__(self, size: int) -> None:
        self.values: List[Any] = [None] * size
        self.sql_types: List[Optional[SqlType]] = [None] * size
        self.binary_slots: Set[int] = set()

    def set(self, slot: int, value: Any, sql_type: Optional[SqlType], binary: bool = False) -> None:
        self.values[slot] = value
        self.sql_types[slot] = sql_type
        if binary:
            self.binary_slots.add(slot)
        else:
            self.binary_slots.discard(slot)

    def as_tuple(self) -> tuple:
        return tuple(self.values)

    def __len__(self) -> int:
        return len(self.values)

    def __repr__(self) -> str:
        return f"ParameterSet(size={len(self.values)})"


def _reject_bool(raw: Any, type_name: str) -> None:
    if isinstance(raw, bool):
        raise ValueMarshallingError(f"Cannot bind boolean {raw} to a {type_name} column")


def _reject_container(raw: Any, type_name: str) -> None:
    if isinstance(raw, (dict, list)):
        raise ValueMarshallingError(f"Cannot bind {type(raw).__name__} to a {type_name} column")


def to_decimal(raw: Any) -> Decimal:
    _reject_bool(raw, "numeric")
    _reject_container(raw, "numeric")
    if isinstance(raw, Decimal):
        value = raw
    elif isinstance(raw, float):
        value = Decimal(repr(raw))
    elif isinstance(raw, int):
        value = Decimal(raw)
    else:
        try:
            value = Decimal(str(raw).strip())
        except InvalidOperation as exc:
            raise ValueMarshallingError(f"Invalid numeric value: {raw}", source=exc) from exc
    if not value.is_finite():
        raise ValueMarshallingError(f"Invalid numeric value: {raw}")
    return value


def to_date(raw: Any) -> date:
    text = str(raw).strip()
    try:
        return datetime.strptime(text, "%Y-%m-%d").date()
    except ValueError as exc:
        raise ValueMarshallingError(f"{INVALID_DATE_MESSAGE}{text}", source=exc) from exc


def to_time(raw: Any) -> time:
    text = str(raw).strip()
    try:
        return time.fromisoformat(text)
    except ValueError as exc:
        raise ValueMarshallingError(f"Invalid time value: {text}", source=exc) from exc


def to_timestamp(raw: Any) -> datetime:
    text = str(raw).strip()
    try:
        return datetime.fromisoformat(text.replace("T", " ", 1))
    except ValueError as exc:
        raise ValueMarshallingError(f"Invalid timestamp value: {text}", source=exc) from exc


def to_text(raw: Any) -> str:
    if isinstance(raw, str):
        return raw
    if isinstance(raw, bool):
        return "true" if raw else "false"
    if isinstance(raw, (dict, list)):
        return dumps_json(raw)
    return str(raw)


def unescape(text: str) -> str:
    """Reverse backslash escapes (``\\n``, ``\\t``, ``\\"``, ``\\uXXXX``) in `text`."""
    if "\\" not in text:
        return text
    try:
        return text.encode("latin-1", "backslashreplace").decode("unicode_escape")
    except UnicodeDecodeError as exc:
        raise ValueMarshallingError(f"Invalid escape sequence in: {text}", source=exc) from exc


def to_boolean(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    return to_text(raw).strip().lower() == "true"


def to_long(raw: Any) -> int:
    _reject_bool(raw, "long")
    _reject_container(raw, "long")
    if isinstance(raw, int):
        value = raw
    elif isinstance(raw, Decimal):
        if raw != raw.to_integral_value():
            raise ValueMarshallingError(f"Invalid long value: {raw}")
        value = int(raw)
    else:
        try:
            value = int(str(raw).strip())
        except ValueError as exc:
            raise ValueMarshallingError(f"Invalid long value: {raw}", source=exc) from exc
    if not LONG_MIN <= value <= LONG_MAX:
        raise ValueMarshallingError(f"Value out of range for long: {raw}")
    return value


def to_double(raw: Any) -> float:
    _reject_bool(raw, "double")
    _reject_container(raw, "double")
    try:
        return float(raw if not isinstance(raw, str) else raw.strip())
    except ValueError as exc:
        raise ValueMarshallingError(f"Invalid floating point value: {raw}", source=exc) from exc


def to_float(raw: Any) -> float:
    value = to_double(raw)
    try:
        result = struct.unpack("f", struct.pack("f", value))[0]
    except OverflowError as exc:
        raise ValueMarshallingError(f"Value out of range for float: {raw}", source=exc) from exc
    if math.isinf(result) and not math.isinf(value):
        raise ValueMarshallingError(f"Value out of range for float: {raw}")
    return result


def to_bytes(raw: Any) -> bytes:
    if isinstance(raw, (bytes, bytearray)):
        return bytes(raw)
    return to_text(raw).encode("utf-8")


class ValueMarshaller:
    """
    Binds field values into a ParameterSet according to declared column types.

    Parameters
    ----------
    dialect : Dialect
        Decides the dialect-dependent conversions (DATE on Oracle, JSON on
        PostgreSQL and Oracle, binary BLOB binds on PostgreSQL).
    """

    def __init__(self, dialect: Dialect) -> None:
        self.dialect = dialect
        self._binders: Dict[SqlType, Callable[[Any], Any]] = {
            SqlType.INTEGER: to_decimal,
            SqlType.NUMERIC: to_decimal,
            SqlType.DATE: self._date,
            SqlType.TIME: to_time,
            SqlType.TIMESTAMP: to_timestamp,
            SqlType.STRING: to_text,
            SqlType.NVARCHAR: lambda raw: unescape(to_text(raw)),
            SqlType.BOOLEAN: to_boolean,
            SqlType.LONG: to_long,
            SqlType.FLOAT: to_float,
            SqlType.DOUBLE: to_double,
            SqlType.JSON: self._json,
            SqlType.BLOB: to_bytes,
        }

    def _date(self, raw: Any) -> Any:
        if self.dialect.name == "oracle":
            return to_text(raw)
        return to_date(raw)

    def _json(self, raw: Any) -> Any:
        if self.dialect.name in ("postgresql", "oracle"):
            if isinstance(raw, str):
                try:
                    raw = json.loads(raw, parse_float=Decimal)
                except json.JSONDecodeError as exc:
                    raise ValueMarshallingError(f"Invalid JSON value: {raw}", source=exc) from exc
            if self.dialect.name == "oracle":
                return raw
            return Json(raw, dumps=dumps_json)
        return to_text(raw)

    def convert(self, declared_type: Optional[SqlType], raw: Any) -> Any:
        """Convert one non-null raw value to the Python value bound for `declared_type`."""
        if declared_type is None:
            return dumps_json(raw) if isinstance(raw, (dict, list)) else raw
        return self._binders[declared_type](raw)

    def bind(self, params: ParameterSet, slot: int, declared_type: Optional[SqlType], raw: Any) -> None:
        """
        Bind `raw` into `params` at zero-based `slot`.

        Raises
        ------
        ValueMarshallingError
            If the value cannot be coerced to the declared type.
        """
        if raw is None:
            params.set(slot, None, declared_type)
            return
        binary = declared_type is SqlType.BLOB and self.dialect.name == "postgresql"
        params.set(slot, self.convert(declared_type, raw), declared_type, binary=binary)


__all__ = [
    "LONG_MIN",
    "LONG_MAX",
    "ParameterSet",
    "to_decimal",
    "to_date",
    "to_time",
    "to_timestamp",
    "to_text",
    "unescape",
    "to_boolean",
    "to_long",
    "to_double",
    "to_float",
    "to_bytes",
    "ValueMarshaller",
]
