"""
Runner for upsert invocations: connect, introspect, execute, profile and persist.

Usage (example from CLI):
    from sqlupsert.runner import run_upsert

    report = run_upsert(table="customers", input_path="data/customers.jsonl")
    print(report["summary"])

Outputs are saved to `results/` by default:
- `results/latest.json` (last run)
- `results/run-<timestamp>.json` (timestamped archive)
"""

from __future__ import annotations

import json
from contextlib import ExitStack
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional

from sqlupsert.config import Settings, get_settings
from sqlupsert.domain.errors import ConfigurationError, ConnectorError
from sqlupsert.domain.models import CommitMode, Outcome, Record, UpsertOptions
from sqlupsert.engine.abstract import UpsertResult
from sqlupsert.engine.dialects import Dialect, get_dialect
from sqlupsert.engine.executor import UpsertEngine
from sqlupsert.engine.marshaller import ValueMarshaller
from sqlupsert.engine.strategies import resolve_strategy
from sqlupsert.infrastructure.db_factory import build_dsn, connection_scope, is_sqlite_dsn
from sqlupsert.infrastructure.metadata import (
    ColumnMetadataProvider,
    PostgresMetadataProvider,
    SqliteMetadataProvider,
    load_table_metadata,
)
from sqlupsert.utils.logging import get_logger
from sqlupsert.utils.profiler import ProfileStats, profile_block

log = get_logger(__name__)


def _round_float(value: float, decimals: int = 2) -> float:
    """Round a float to specified decimal places for human-readable output."""
    return round(value, decimals)


def options_from_settings(settings: Optional[Settings] = None, **overrides: Any) -> UpsertOptions:
    """
    Build UpsertOptions from settings, letting non-None keyword overrides win.
    """
    settings = settings or get_settings()
    try:
        commit_mode = CommitMode(settings.upsert_commit_mode)
    except ValueError as exc:
        choices = ", ".join(mode.value for mode in CommitMode)
        raise ConfigurationError(
            f"Unknown UPSERT_COMMIT_MODE {settings.upsert_commit_mode!r}; expected one of: {choices}", source=exc
        ) from exc
    values: Dict[str, Any] = {
        "batch_size": settings.upsert_batch_size,
        "commit_mode": commit_mode,
        "schema_name": settings.upsert_schema_name,
        "join_external_transaction": settings.upsert_join_transaction,
        "query_timeout_ms": settings.upsert_query_timeout_ms,
        "log_parameters": settings.upsert_log_parameters,
    }
    values.update({k: v for k, v in overrides.items() if v is not None})
    return UpsertOptions(**values)


def read_jsonl(path: Path | str) -> Iterator[Record]:
    """Yield one Record per non-blank line of a JSON Lines file, reading lazily."""
    with Path(path).open("rb") as handle:
        for line in handle:
            if line.strip():
                yield Record(line)


def metadata_provider_for(connection: Any, dialect: Dialect) -> ColumnMetadataProvider:
    if dialect.name == "sqlite":
        return SqliteMetadataProvider(connection)
    if dialect.name == "postgresql":
        return PostgresMetadataProvider(connection)
    raise ConfigurationError(
        f"No metadata provider for dialect {dialect.name}; pass a StaticMetadataProvider"
    )


def _persist_results(payload: dict, results_dir: Path) -> None:
    results_dir.mkdir(parents=True, exist_ok=True)
    latest_path = results_dir / "latest.json"
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    archive_path = results_dir / f"run-{timestamp}.json"

    for path in (latest_path, archive_path):
        with path.open("w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, sort_keys=True, default=str)

    log.info("Results persisted", extra={"latest": str(latest_path), "archive": str(archive_path)})


def _merge_result(result: UpsertResult, stats: ProfileStats) -> dict:
    """Merge the engine summary with profiler stats, rounding floats for readability."""
    merged = dict(result)
    merged["duration_seconds"] = _round_float(stats.duration_seconds)
    merged["records_per_sec"] = (
        _round_float(merged.get("records", 0) / stats.duration_seconds) if stats.duration_seconds else 0.0
    )
    merged["peak_rss_bytes"] = stats.peak_rss_bytes
    merged["cpu_percent"] = _round_float(stats.cpu_percent, 1) if stats.cpu_percent else None
    merged["profile"] = {
        "label": stats.label,
        "start_ts": _round_float(stats.start_ts, 3),
        "end_ts": _round_float(stats.end_ts, 3),
        "duration_seconds": _round_float(stats.duration_seconds),
        "peak_rss_bytes": stats.peak_rss_bytes,
        "peak_traced_bytes": stats.peak_traced_bytes,
    }
    return merged


def run_upsert(
    table: str,
    input_path: Optional[Path | str] = None,
    records: Optional[Iterable[Any]] = None,
    options: Optional[UpsertOptions] = None,
    dsn: Optional[str] = None,
    dialect_name: Optional[str] = None,
    connection: Any = None,
    provider: Optional[ColumnMetadataProvider] = None,
    results_dir: Path | str = "results",
    persist: bool = True,
) -> Dict[str, Any]:
    """
    Upsert records into `table` and optionally persist the run report.

    Parameters
    ----------
    table : str
        Target table name.
    input_path : Path | str, optional
        JSON Lines file to read records from. Ignored when `records` is given.
    records : iterable, optional
        Records to upsert (Record instances, JSON text, mappings...).
    options : UpsertOptions, optional
        Engine options. Defaults to options built from settings.
    dsn : str, optional
        Connection string; defaults to settings. Unused when `connection` is given.
    dialect_name : str, optional
        Dialect name; inferred from the DSN or settings when omitted.
    connection : Any, optional
        An open DB-API connection to use instead of opening one. It is not closed.
    provider : ColumnMetadataProvider, optional
        Metadata source; defaults to introspection for PostgreSQL and SQLite.
    results_dir : Path | str
        Directory to store JSON artifacts.
    persist : bool
        Whether to write the report to disk.

    Returns
    -------
    dict
        ``summary`` (engine counters merged with profiler stats) and
        ``outcomes`` (one Outcome per record, in input order).

    Raises
    ------
    ConfigurationError
        On invalid options, an unknown dialect or strategy, or a missing table.
    """
    settings = get_settings()
    options = options or options_from_settings(settings)
    if records is None:
        if input_path is None:
            raise ConfigurationError("Either records or an input path is required")
        records = read_jsonl(input_path)

    with ExitStack() as stack:
        if connection is None:
            dsn = dsn or build_dsn(settings)
            if dialect_name is None:
                dialect_name = "sqlite" if is_sqlite_dsn(dsn) else settings.db_dialect
            connection = stack.enter_context(connection_scope(dsn))
        dialect = get_dialect(dialect_name or settings.db_dialect)

        metadata = load_table_metadata(
            provider or metadata_provider_for(connection, dialect),
            table,
            options.schema_name,
            options.columns,
        )
        strategy = resolve_strategy(options.strategy, connection, dialect, metadata, ValueMarshaller(dialect))
        engine = UpsertEngine(connection, dialect, metadata, strategy, options)

        log.info(
            f"[UPSERT START] {metadata.table}",
            extra={"table": str(metadata.table), "strategy": strategy.name, "commit_mode": engine.commit_mode.value},
        )
        outcomes: List[Outcome] = []
        with profile_block(f"upsert:{table}") as stats:
            try:
                for outcome in engine.iter_outcomes(records):
                    outcomes.append(outcome)
            except ConnectorError as exc:
                log.exception(f"[UPSERT FAILED] {metadata.table}", extra={"table": str(metadata.table)})
                failure: Optional[ConnectorError] = exc
            else:
                failure = None

    summary = _merge_result(engine.stats, stats)
    summary["table"] = str(metadata.table)
    summary["dialect"] = dialect.name
    log.info(
        f"[UPSERT COMPLETE] {metadata.table}",
        extra={"records": summary.get("records"), "failed": summary.get("failed")},
    )

    if persist:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "summary": summary,
            "failures": [o.model_dump(mode="json") for o in outcomes if not o.succeeded],
        }
        _persist_results(payload, Path(results_dir))

    if failure is not None:
        raise failure
    return {"summary": summary, "outcomes": outcomes}


__all__ = [
    "options_from_settings",
    "read_jsonl",
    "metadata_provider_for",
    "run_upsert",
]
