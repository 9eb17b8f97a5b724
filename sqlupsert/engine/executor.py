"""
Batch executor: drives a record stream through the upsert strategy.

States: discovering the column set, then either profile commit (one statement
and one commit per record) or row-count commit (statements accumulated and
flushed every `batch_size` records), then draining.

Exactly one Outcome is emitted per input record, in input order. Input, value
and database errors become APPLICATION_ERROR outcomes and the stream goes on.
A lost connection turns the in-flight record, the unflushed batch and every
remaining record into FAILURE outcomes, after which ConnectorError is raised
to the caller.
"""

from __future__ import annotations

from collections import deque
from contextlib import closing
from dataclasses import dataclass, field
from itertools import groupby
from typing import Any, Deque, Dict, Iterable, Iterator, List, Optional, Tuple

from sqlupsert.domain.errors import (
    INPUT_ERROR_MESSAGE,
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
    BATCH_FAILED_CODE,
    VALUE_ERROR_CODE,
    BatchResponse,
    CommitMode,
    Outcome,
    QueryResponse,
    Record,
    TableMetadata,
    UpsertOptions,
)
from sqlupsert.engine.abstract import UpsertResult, UpsertStrategy
from sqlupsert.engine.dialects import Dialect, driver_error_code, is_driver_error
from sqlupsert.engine.marshaller import ParameterSet
from sqlupsert.engine.statements import Statement, discover_column_set
from sqlupsert.utils.logging import get_logger

log = get_logger(__name__)

BATCH_SUCCESS_MESSAGE = "Batch executed successfully"
REMAINING_BATCH_MESSAGE = "Remaining records added to batch and executed successfully"
BATCH_FAILED_MESSAGE = "Batch Failed to execute"
NEGATIVE_BATCH_MESSAGE = "Batch count cannot be negative"


@dataclass
class PendingEntry:
    """A record waiting in the open batch: a bound statement, or an already decided failure."""

    index: int
    statement: Optional[Statement] = None
    params: Optional[ParameterSet] = None
    outcome: Optional[Outcome] = None


@dataclass
class BatchState:
    """Mutable state of the open batch in row-count commit mode."""

    batch_number: int = 1
    entries: List[PendingEntry] = field(default_factory=list)
    size: int = 0
    should_execute: bool = True
    abort_reason: Optional[str] = None

    def add(self, index: int, statement: Statement, params: ParameterSet) -> None:
        self.entries.append(PendingEntry(index=index, statement=statement, params=params))
        self.size += 1

    def hold(self, outcome: Outcome) -> None:
        self.entries.append(PendingEntry(index=outcome.index, outcome=outcome))

    def abort(self, reason: str) -> None:
        self.should_execute = False
        if self.abort_reason is None:
            self.abort_reason = reason

    def reset(self) -> None:
        if self.size:
            self.batch_number += 1
        self.entries = []
        self.size = 0
        self.should_execute = True
        self.abort_reason = None


def _is_recoverable(exc: BaseException) -> bool:
    if isinstance(exc, (ConfigurationError, ConnectorError)):
        return False
    return isinstance(exc, UpsertError) or is_driver_error(exc)


def _is_database_error(exc: BaseException) -> bool:
    return not isinstance(exc, (InputError, ValueMarshallingError))


class UpsertEngine:
    """
    Conflict-aware batched upsert over one open connection.

    Parameters
    ----------
    connection : Any
        A DB-API 2.0 connection, owned exclusively for the invocation.
    dialect : Dialect
        The connection's dialect.
    metadata : TableMetadata
        Target table metadata.
    strategy : UpsertStrategy
        Turns a parsed record into a bound statement.
    options : UpsertOptions, optional
        Commit policy, batch size and diagnostics switches.

    Raises
    ------
    ConfigurationError
        If the batch size is negative. Nothing is executed in that case.
    """

    def __init__(
        self,
        connection: Any,
        dialect: Dialect,
        metadata: TableMetadata,
        strategy: UpsertStrategy,
        options: Optional[UpsertOptions] = None,
    ) -> None:
        self.options = options or UpsertOptions()
        if self.options.batch_size is not None and self.options.batch_size < 0:
            raise ConfigurationError(NEGATIVE_BATCH_MESSAGE)
        self.connection = connection
        self.dialect = dialect
        self.metadata = metadata
        self.strategy = strategy
        self.column_set: Tuple[str, ...] = ()
        self._source: Iterator[Tuple[int, Any]] = iter(())
        self._buffer: Deque[Tuple[int, Optional[Dict[str, Any]], Optional[UpsertError]]] = deque()
        self._state: Optional[BatchState] = None
        self._in_flight: Optional[int] = None
        self._stats: UpsertResult = UpsertResult()

    @property
    def commit_mode(self) -> CommitMode:
        return self.options.effective_commit_mode

    @property
    def stats(self) -> UpsertResult:
        return UpsertResult(**self._stats)

    # ------------------------------------------------------------------ input

    def _read(self, index: int, item: Any) -> Tuple[int, Optional[Dict[str, Any]], Optional[UpsertError]]:
        try:
            return index, Record.of(item).read_fields(), None
        except InputError as exc:
            return index, None, exc
        except OSError as exc:
            return index, None, InputError(f"{INPUT_ERROR_MESSAGE} {exc}", source=exc)

    def _discover(self) -> Tuple[str, ...]:
        """Parse ahead until a record yields a non-empty column set; parsed records stay buffered."""
        for index, item in self._source:
            entry = self._read(index, item)
            self._buffer.append(entry)
            fields = entry[1]
            if fields is not None:
                column_set = discover_column_set(self.metadata, fields)
                if column_set:
                    log.info(
                        f"Discovered {len(column_set)} columns from record {index}",
                        extra={"columns": list(column_set)},
                    )
                    return column_set
        log.warning("No record matched any column of the target table")
        return ()

    def _items(self) -> Iterator[Tuple[int, Optional[Dict[str, Any]], Optional[UpsertError]]]:
        while self._buffer:
            yield self._buffer.popleft()
        for index, item in self._source:
            yield self._read(index, item)

    # ------------------------------------------------------------ error paths

    def _check_connector(self, exc: BaseException) -> None:
        if isinstance(exc, ConnectorError):
            raise exc
        if is_driver_error(exc) and self.dialect.is_connection_lost(exc, self.connection):
            raise ConnectorError(str(exc), source=exc) from exc

    def _failure_outcome(self, index: int, exc: BaseException) -> Outcome:
        if isinstance(exc, (InputError, ValueMarshallingError)):
            return Outcome.application_error(index, exc.kind, VALUE_ERROR_CODE, exc.message)
        if isinstance(exc, UpsertError):
            return Outcome.application_error(index, exc.kind, exc.code or "0", exc.message)
        return Outcome.application_error(index, ErrorKind.DATABASE, driver_error_code(exc), str(exc))

    def _log_failure(
        self,
        index: int,
        exc: BaseException,
        statement: Optional[Statement] = None,
        params: Optional[ParameterSet] = None,
    ) -> None:
        extra: Dict[str, Any] = {"record_index": index, "error": str(exc)}
        if statement is not None:
            extra["sql"] = statement.sql
        if params is not None and self.options.log_parameters:
            extra["parameters"] = [repr(v) for v in params.values]
            extra["parameter_types"] = [t.value if t is not None else None for t in params.sql_types]
        if _is_database_error(exc):
            log.warning(f"Statement failed for record {index}: {exc}", extra=extra)
        else:
            log.info(f"Record {index} rejected: {exc}", extra=extra)

    def _commit(self) -> None:
        if not self.options.join_external_transaction:
            self.connection.commit()

    def _apply_query_timeout(self) -> None:
        timeout_ms = self.options.query_timeout_ms
        if not timeout_ms:
            return
        try:
            self.dialect.apply_query_timeout(self.connection, timeout_ms)
            # SET in an uncommitted transaction is reverted by the next rollback.
            if self.dialect.timeout_is_transactional:
                self._commit()
        except Exception as exc:
            self._check_connector(exc)
            raise

    def _rollback(self) -> None:
        if self.options.join_external_transaction:
            log.debug("Rollback skipped: joined to an external transaction")
            return
        try:
            self.connection.rollback()
        except Exception as exc:
            self._check_connector(exc)
            raise

    # ------------------------------------------------------------- execution

    def _prepare(
        self, fields: Optional[Dict[str, Any]], error: Optional[UpsertError]
    ) -> Tuple[Statement, ParameterSet]:
        if error is not None:
            raise error
        if not any(column in fields for column in self.column_set):
            raise InputError(f"{INPUT_ERROR_MESSAGE} No field matches a column of {self.metadata.table}")
        return self.strategy.prepare(fields, self.column_set)

    def _execute_one(self, statement: Statement, params: ParameterSet) -> int:
        with closing(self.connection.cursor()) as cur:
            cur.execute(statement.sql, params.as_tuple())
            count = cur.rowcount
        self._stats["statements"] = self._stats.get("statements", 0) + 1
        return count if isinstance(count, int) and count >= 0 else 0

    def _execute_runs(self, entries: List[PendingEntry]) -> Tuple[Dict[int, str], int]:
        """
        Execute the batch as consecutive runs of identical SQL.

        Returns row errors keyed by position in `entries` and the total number
        of affected rows. Failures that cannot be pinned to rows propagate.
        """
        row_errors: Dict[int, str] = {}
        affected = 0
        position = 0
        with closing(self.connection.cursor()) as cur:
            for sql, run in groupby(entries, key=lambda entry: entry.statement.sql):
                run = list(run)
                rows = [entry.params.as_tuple() for entry in run]
                try:
                    affected += self.dialect.execute_batch(cur, sql, rows)
                except BatchExecutionError as exc:
                    if not exc.row_errors:
                        raise
                    affected += exc.rows_affected
                    for offset, message in exc.row_errors.items():
                        row_errors[position + offset] = message
                        log.warning(
                            f"Record {run[offset].index} failed in batch: {message}",
                            extra={"record_index": run[offset].index, "sql": sql},
                        )
                self._stats["statements"] = self._stats.get("statements", 0) + 1
                position += len(run)
        return row_errors, affected

    def _flush(self, state: BatchState, final: bool) -> Iterator[Outcome]:
        statements = [entry for entry in state.entries if entry.outcome is None]
        if not statements:
            outcomes = [entry.outcome for entry in state.entries]
            state.reset()
            yield from outcomes
            return

        number, size = state.batch_number, state.size
        failure: Optional[BaseException] = None
        row_errors: Dict[int, str] = {}
        affected = 0
        if state.should_execute:
            try:
                row_errors, affected = self._execute_runs(statements)
                self._commit()
            except Exception as exc:
                self._check_connector(exc)
                if not _is_recoverable(exc):
                    raise
                failure = exc
        else:
            failure = StatementError(state.abort_reason or BATCH_FAILED_MESSAGE)

        outcomes: List[Outcome] = []
        if failure is not None:
            log.warning(f"Failed Batch number: {number}", extra={"batch_number": number, "error": str(failure)})
            log.warning(f"No of records in Failed batch: {size}", extra={"batch_number": number})
            self._rollback()
            message = str(failure) if not isinstance(failure, UpsertError) else failure.message
            for entry in state.entries:
                if entry.outcome is not None:
                    outcomes.append(entry.outcome)
                    continue
                outcomes.append(
                    Outcome.application_error(
                        entry.index,
                        ErrorKind.DATABASE,
                        BATCH_FAILED_CODE,
                        message,
                        payload=BatchResponse(message=BATCH_FAILED_MESSAGE, batch_number=number, record_count=size),
                    )
                )
        else:
            log.info(f"Batch Number: {number}", extra={"batch_number": number})
            log.info(f"Total Number of records in the batch: {size}", extra={"batch_number": number, "rows_affected": affected})
            response = BatchResponse(
                message=REMAINING_BATCH_MESSAGE if final else BATCH_SUCCESS_MESSAGE,
                batch_number=number,
                record_count=size,
                rows_affected=affected,
            )
            position = 0
            for entry in state.entries:
                if entry.outcome is not None:
                    outcomes.append(entry.outcome)
                    continue
                if position in row_errors:
                    outcomes.append(
                        Outcome.application_error(entry.index, ErrorKind.DATABASE, "0", row_errors[position])
                    )
                else:
                    outcomes.append(Outcome.success(entry.index, response))
                position += 1

        self._stats["batches"] = self._stats.get("batches", 0) + 1
        self._stats["rows_affected"] = self._stats.get("rows_affected", 0) + affected
        state.reset()
        yield from outcomes

    def _profile_commit(self) -> Iterator[Outcome]:
        for index, fields, error in self._items():
            self._in_flight = index
            statement: Optional[Statement] = None
            params: Optional[ParameterSet] = None
            try:
                statement, params = self._prepare(fields, error)
                rows = self._execute_one(statement, params)
                self._commit()
            except Exception as exc:
                self._check_connector(exc)
                if not _is_recoverable(exc):
                    raise
                self._log_failure(index, exc, statement, params)
                if _is_database_error(exc):
                    self._rollback()
                outcome = self._failure_outcome(index, exc)
            else:
                outcome = Outcome.success(index, QueryResponse(query=statement.sql, rows_affected=rows))
            self._in_flight = None
            yield outcome

    def _row_commit(self) -> Iterator[Outcome]:
        state = self._state = BatchState()
        batch_size = self.options.batch_size
        for index, fields, error in self._items():
            self._in_flight = index
            try:
                statement, params = self._prepare(fields, error)
            except Exception as exc:
                self._check_connector(exc)
                if not _is_recoverable(exc):
                    raise
                self._log_failure(index, exc)
                if _is_database_error(exc) and self.dialect.aborts_transaction_on_error:
                    self._rollback()
                    if state.size:
                        state.abort(str(exc))
                state.hold(self._failure_outcome(index, exc))
            else:
                state.add(index, statement, params)
            self._in_flight = None
            if state.size >= batch_size:
                yield from self._flush(state, final=False)
        if state.entries:
            yield from self._flush(state, final=True)

    def _drain(self, exc: ConnectorError) -> Iterator[Outcome]:
        message = exc.message
        if self._state is not None:
            for entry in self._state.entries:
                yield entry.outcome if entry.outcome is not None else Outcome.failure(entry.index, message)
            self._state.entries = []
        if self._in_flight is not None:
            yield Outcome.failure(self._in_flight, message)
            self._in_flight = None
        while self._buffer:
            yield Outcome.failure(self._buffer.popleft()[0], message)
        for index, _item in self._source:
            yield Outcome.failure(index, message)

    def _count(self, outcome: Outcome) -> Outcome:
        self._stats["records"] = self._stats.get("records", 0) + 1
        key = "succeeded" if outcome.succeeded else "failed"
        self._stats[key] = self._stats.get(key, 0) + 1
        payload = outcome.payload or {}
        if outcome.succeeded and "rows_affected" in payload and "batch_number" not in payload:
            self._stats["rows_affected"] = self._stats.get("rows_affected", 0) + (payload["rows_affected"] or 0)
        return outcome

    def iter_outcomes(self, records: Iterable[Any]) -> Iterator[Outcome]:
        """
        Upsert `records` and yield one Outcome per record, in input order.

        Records may be `Record` instances, JSON text or bytes, mappings, or
        callables returning a fresh binary stream.

        Raises
        ------
        ConnectorError
            After the outcomes of all unprocessed records have been yielded.
        """
        self._source = enumerate(records)
        self._buffer.clear()
        self._state = None
        self._in_flight = None
        self._stats = UpsertResult(
            records=0,
            succeeded=0,
            failed=0,
            batches=0,
            statements=0,
            rows_affected=0,
            strategy=self.strategy.name,
            commit_mode=self.commit_mode.value,
        )
        try:
            self._apply_query_timeout()
            self.column_set = self._discover()
            if self.commit_mode is CommitMode.ROW_COUNT:
                outcomes = self._row_commit()
            else:
                outcomes = self._profile_commit()
            for outcome in outcomes:
                yield self._count(outcome)
        except ConnectorError as exc:
            log.error(f"Connection lost, failing remaining records: {exc.message}")
            self._stats["error"] = exc.message
            for outcome in self._drain(exc):
                yield self._count(outcome)
            raise

        log.info(
            f"Upsert finished: {self._stats['succeeded']} succeeded, {self._stats['failed']} failed",
            extra={k: v for k, v in self._stats.items() if k != "extra"},
        )

    def execute(self, records: Iterable[Any]) -> Tuple[List[Outcome], UpsertResult]:
        """Run `records` to completion and return the outcomes with the run summary."""
        outcomes = list(self.iter_outcomes(records))
        return outcomes, self.stats


__all__ = [
    "BATCH_SUCCESS_MESSAGE",
    "REMAINING_BATCH_MESSAGE",
    "BATCH_FAILED_MESSAGE",
    "NEGATIVE_BATCH_MESSAGE",
    "PendingEntry",
    "BatchState",
    "UpsertEngine",
]
