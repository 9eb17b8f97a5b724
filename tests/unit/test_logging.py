from __future__ import annotations

import json
import logging

from sqlupsert.utils.logging import _json_formatter, configure_logging, get_logger

EXPECTED_BATCH_NUMBER = 3
EXPECTED_BATCH_SIZE = 1000


def _record(msg: str = "hello") -> logging.LogRecord:
    return logging.LogRecord(
        name="test.logger",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )


def test_json_formatter_promotes_standard_extra_fields() -> None:
    record = _record()
    record.batch_number = EXPECTED_BATCH_NUMBER
    record.sql = 'INSERT INTO "customers" ("id") VALUES (?)'

    payload = json.loads(_json_formatter(record))

    assert payload["level"] == "INFO"
    assert payload["logger"] == "test.logger"
    assert payload["message"] == "hello"
    assert payload["batch_number"] == EXPECTED_BATCH_NUMBER
    assert payload["sql"].startswith("INSERT INTO")
    assert "pathname" not in payload


def test_json_formatter_supports_legacy_nested_extra_field() -> None:
    record = _record()
    record.extra = {"batch_size": EXPECTED_BATCH_SIZE}

    payload = json.loads(_json_formatter(record))

    assert payload["batch_size"] == EXPECTED_BATCH_SIZE
    assert "extra" not in payload


def test_json_formatter_serializes_unknown_values() -> None:
    record = _record()
    record.table = object()

    payload = json.loads(_json_formatter(record))

    assert payload["table"].startswith("<object")


def test_configure_logging_keeps_module_loggers_enabled() -> None:
    log = get_logger("sqlupsert.engine.executor")
    configure_logging(level="DEBUG", json_logs=True)

    assert not log.disabled
    assert logging.getLogger().level == logging.DEBUG
    configure_logging(level="WARNING")
