"""
Abstract upsert strategy interfaces and result contracts.

A strategy turns one parsed record into a bound statement: the probe strategy
asks the conflict resolver and builds a fresh INSERT or UPDATE, the native
strategy reuses one insert-or-update statement. Strategies implement the
UpsertStrategy protocol; the executor's run summary is an UpsertResult
TypedDict so the runner and reporter can consume it uniformly.
"""

from __future__ import annotations

import abc
from typing import Any, Dict, Optional, Protocol, Sequence, Tuple, TypedDict, runtime_checkable

from sqlupsert.engine.marshaller import ParameterSet, ValueMarshaller
from sqlupsert.engine.statements import Statement


class UpsertResult(TypedDict, total=False):
    """
    Summary of one engine invocation.

    Fields are optional; the runner enriches the summary with profiler stats.
    """

    records: int
    succeeded: int
    failed: int
    batches: int
    statements: int
    rows_affected: int
    strategy: str
    commit_mode: str
    error: Optional[str]
    extra: Dict[str, Any]


@runtime_checkable
class UpsertStrategy(Protocol):
    """
    Common interface for turning a record into an executable statement.

    Attributes
    ----------
    name : str
        A short machine-friendly identifier.
    description : str
        A human-friendly summary of the approach.
    """

    name: str
    description: str

    def prepare(self, fields: Dict[str, Any], column_set: Sequence[str]) -> Tuple[Statement, ParameterSet]:
        """
        Build and bind the statement for one record.

        Parameters
        ----------
        fields : dict
            The parsed record.
        column_set : Sequence[str]
            The invocation's discovered column set.

        Returns
        -------
        tuple[Statement, ParameterSet]
            The statement and its bound parameters.
        """
        ...


class AbstractUpsertStrategy(abc.ABC):
    """
    ABC helper for class-based strategies.

    Subclasses set `name` and `description` and implement `statement_for`;
    binding is shared.
    """

    name: str
    description: str

    def __init__(self, marshaller: ValueMarshaller, column_types: Dict[str, Any]) -> None:
        self.marshaller = marshaller
        self.column_types = column_types

    @abc.abstractmethod
    def statement_for(self, fields: Dict[str, Any], column_set: Sequence[str]) -> Statement:  # pragma: no cover - interface only
        """Return the statement to execute for this record."""
        raise NotImplementedError

    def bind(self, statement: Statement, fields: Dict[str, Any]) -> ParameterSet:
        params = ParameterSet(len(statement.bind_columns))
        for slot, column in enumerate(statement.bind_columns):
            self.marshaller.bind(params, slot, self.column_types.get(column), fields.get(column))
        return params

    def prepare(self, fields: Dict[str, Any], column_set: Sequence[str]) -> Tuple[Statement, ParameterSet]:
        statement = self.statement_for(fields, column_set)
        return statement, self.bind(statement, fields)


__all__ = [
    "UpsertResult",
    "UpsertStrategy",
    "AbstractUpsertStrategy",
]
