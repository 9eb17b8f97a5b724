"""
Statement builder and column-set discovery.

Every statement is rendered from table metadata and the discovered column
set, with identifiers quoted and placeholders spelled by the dialect. A
`Statement` carries the SQL text together with the columns to bind, in
placeholder order; a column may appear more than once when a native upsert
binds it in both the insert and the update branch.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlupsert.domain.models import ConflictResult, TableMetadata
from sqlupsert.engine.dialects import Dialect


@dataclass(frozen=True)
class Statement:
    sql: str
    bind_columns: Tuple[str, ...]
    kind: str = "insert"


def discover_column_set(metadata: TableMetadata, fields: Dict[str, Any]) -> Tuple[str, ...]:
    """Metadata columns present in `fields`, in table order. Empty when nothing matches."""
    return tuple(column for column in metadata.column_types if column in fields)


class StatementBuilder:
    """
    Renders INSERT, UPDATE and native insert-or-update statements for one table.
    """

    def __init__(self, dialect: Dialect, metadata: TableMetadata) -> None:
        self.dialect = dialect
        self.metadata = metadata
        self.table = dialect.qualified_table(metadata.table)

    def _placeholders(self, start: int, count: int) -> List[str]:
        return [self.dialect.placeholder(start + i) for i in range(count)]

    def _columns(self, columns: Iterable[str]) -> List[str]:
        return [self.dialect.quote(c) for c in columns]

    def build_insert(self, column_set: Sequence[str]) -> Statement:
        cols = ", ".join(self._columns(column_set))
        values = ", ".join(self._placeholders(0, len(column_set)))
        return Statement(
            sql=f"INSERT INTO {self.table} ({cols}) VALUES ({values})",
            bind_columns=tuple(column_set),
        )

    def build_update(
        self, fields: Dict[str, Any], column_set: Sequence[str], conflict: ConflictResult
    ) -> Statement:
        """
        UPDATE the conflicting row.

        SET covers the non-key columns of the column set present in the
        record. WHERE matches primary-key columns first, then unique columns
        not already covered. A table whose columns are all key columns has
        nothing to update; the record is inserted instead.
        """
        key_columns = conflict.key_columns()
        set_columns = [c for c in column_set if c not in key_columns and c in fields]
        if not set_columns:
            return self.build_insert(column_set)

        position = 0
        assignments = []
        for column in set_columns:
            assignments.append(f"{self.dialect.quote(column)} = {self.dialect.placeholder(position)}")
            position += 1

        conditions = []
        where_columns = []
        for column in key_columns:
            quoted = self.dialect.quote(column)
            if fields.get(column) is None:
                if self.dialect.matches_absent_keys_as_null:
                    conditions.append(f"{quoted} IS NULL")
                continue
            conditions.append(f"{quoted} = {self.dialect.placeholder(position)}")
            where_columns.append(column)
            position += 1

        sql = f"UPDATE {self.table} SET {', '.join(assignments)} WHERE {' AND '.join(conditions)}"
        return Statement(sql=sql, bind_columns=tuple(set_columns + where_columns), kind="update")

    def build(self, fields: Dict[str, Any], column_set: Sequence[str], conflict: ConflictResult) -> Statement:
        if conflict.has_conflict:
            return self.build_update(fields, column_set, conflict)
        return self.build_insert(column_set)

    def conflict_target(self) -> Optional[Tuple[str, ...]]:
        """Columns naming the native upsert's conflict: the primary key, else the first unique group."""
        if not self.metadata.primary_key.is_empty:
            return self.metadata.primary_key.columns
        if self.metadata.unique_keys:
            return self.metadata.unique_keys[0].columns
        return None

    def build_native(self, column_set: Sequence[str]) -> Statement:
        """
        INSERT with the dialect's on-conflict update clause, built once per column set.

        Falls back to a plain INSERT when the table has no key or the column
        set holds only key columns.
        """
        insert = self.build_insert(column_set)
        target = self.conflict_target()
        if target is None:
            return insert
        update_columns = [c for c in column_set if c not in target]
        if not update_columns:
            return insert

        start = len(column_set)
        assignments = [
            f"{self.dialect.quote(column)} = {placeholder}"
            for column, placeholder in zip(update_columns, self._placeholders(start, len(update_columns)))
        ]
        clause = self.dialect.native_upsert_clause(self._columns(target), assignments)
        return Statement(
            sql=insert.sql + clause,
            bind_columns=insert.bind_columns + tuple(update_columns),
            kind="upsert",
        )


__all__ = ["Statement", "discover_column_set", "StatementBuilder"]
