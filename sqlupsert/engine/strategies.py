"""
Concrete upsert strategies and their registry.

- ``probe``: resolve conflicts per record with SELECT probes, then build a
  fresh INSERT or UPDATE. Works on every dialect.
- ``native``: one INSERT ... ON CONFLICT / ON DUPLICATE KEY statement built
  from the discovered column set and reused verbatim for every record.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sqlupsert.domain.errors import ConfigurationError
from sqlupsert.domain.models import TableMetadata
from sqlupsert.engine.abstract import AbstractUpsertStrategy, UpsertStrategy
from sqlupsert.engine.conflict import ConflictResolver
from sqlupsert.engine.dialects import Dialect
from sqlupsert.engine.marshaller import ValueMarshaller
from sqlupsert.engine.statements import Statement, StatementBuilder


class ProbeUpsertStrategy(AbstractUpsertStrategy):
    """Probe the primary key and unique groups, then INSERT or UPDATE."""

    name = "probe"
    description = "SELECT probe per key group, then a fresh INSERT or UPDATE per record"

    def __init__(self, resolver: ConflictResolver, builder: StatementBuilder, marshaller: ValueMarshaller) -> None:
        super().__init__(marshaller, builder.metadata.column_types)
        self.resolver = resolver
        self.builder = builder

    def statement_for(self, fields: Dict[str, Any], column_set: Sequence[str]) -> Statement:
        conflict = self.resolver.resolve_all(fields)
        return self.builder.build(fields, column_set, conflict)


class NativeUpsertStrategy(AbstractUpsertStrategy):
    """Single-statement insert-or-update using the dialect's native syntax."""

    name = "native"
    description = "INSERT with ON CONFLICT / ON DUPLICATE KEY UPDATE, built once and reused"

    def __init__(self, builder: StatementBuilder, marshaller: ValueMarshaller) -> None:
        if not builder.dialect.supports_native_upsert:
            raise ConfigurationError(f"Dialect {builder.dialect.name} does not support native upserts")
        super().__init__(marshaller, builder.metadata.column_types)
        self.builder = builder
        self._cached: Optional[Tuple[Tuple[str, ...], Statement]] = None

    def statement_for(self, fields: Dict[str, Any], column_set: Sequence[str]) -> Statement:
        key = tuple(column_set)
        if self._cached is None or self._cached[0] != key:
            self._cached = (key, self.builder.build_native(key))
        return self._cached[1]


StrategyFactory = Callable[[Any, Dialect, TableMetadata, ValueMarshaller], UpsertStrategy]


def _probe(connection: Any, dialect: Dialect, metadata: TableMetadata, marshaller: ValueMarshaller) -> UpsertStrategy:
    resolver = ConflictResolver(connection, dialect, metadata, marshaller)
    return ProbeUpsertStrategy(resolver, StatementBuilder(dialect, metadata), marshaller)


def _native(connection: Any, dialect: Dialect, metadata: TableMetadata, marshaller: ValueMarshaller) -> UpsertStrategy:
    return NativeUpsertStrategy(StatementBuilder(dialect, metadata), marshaller)


def _strategy_factories() -> Dict[str, StrategyFactory]:
    """Registry of available strategies."""
    return {
        "probe": _probe,
        "native": _native,
    }


def available_strategies() -> List[str]:
    """List available strategy names."""
    return sorted(_strategy_factories().keys())


def default_strategy_name(dialect: Dialect) -> str:
    """PostgreSQL and MySQL default to native upserts; everything else probes."""
    return "native" if dialect.name in ("postgresql", "mysql") else "probe"


def resolve_strategy(
    name: Optional[str],
    connection: Any,
    dialect: Dialect,
    metadata: TableMetadata,
    marshaller: Optional[ValueMarshaller] = None,
) -> UpsertStrategy:
    """
    Instantiate the named strategy, or the dialect's default when `name` is None.

    Raises
    ------
    ConfigurationError
        If the name is unknown or the dialect cannot run the strategy.
    """
    factories = _strategy_factories()
    chosen = name or default_strategy_name(dialect)
    if chosen not in factories:
        raise ConfigurationError(f"Unknown strategy '{chosen}'. Available: {', '.join(factories)}")
    return factories[chosen](connection, dialect, metadata, marshaller or ValueMarshaller(dialect))


__all__ = [
    "ProbeUpsertStrategy",
    "NativeUpsertStrategy",
    "available_strategies",
    "default_strategy_name",
    "resolve_strategy",
]
