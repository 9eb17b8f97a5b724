"""
Upsert engine package.

Conflict resolution, statement building, value marshalling and batch
execution. The engine works over any DB-API 2.0 connection; dialect
differences are confined to `dialects`.
"""

from sqlupsert.engine.abstract import AbstractUpsertStrategy, UpsertResult, UpsertStrategy
from sqlupsert.engine.conflict import ConflictResolver
from sqlupsert.engine.dialects import Dialect, get_dialect, timeout_seconds
from sqlupsert.engine.executor import BatchState, UpsertEngine
from sqlupsert.engine.marshaller import ParameterSet, ValueMarshaller
from sqlupsert.engine.statements import Statement, StatementBuilder, discover_column_set
from sqlupsert.engine.strategies import (
    NativeUpsertStrategy,
    ProbeUpsertStrategy,
    available_strategies,
    resolve_strategy,
)

__all__ = [
    "AbstractUpsertStrategy",
    "UpsertResult",
    "UpsertStrategy",
    "ConflictResolver",
    "Dialect",
    "get_dialect",
    "timeout_seconds",
    "BatchState",
    "UpsertEngine",
    "ParameterSet",
    "ValueMarshaller",
    "Statement",
    "StatementBuilder",
    "discover_column_set",
    "NativeUpsertStrategy",
    "ProbeUpsertStrategy",
    "available_strategies",
    "resolve_strategy",
]
