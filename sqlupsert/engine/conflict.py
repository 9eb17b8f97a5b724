"""
Conflict resolver: does a row already exist under a given key group?

One probe query per (record, key group), executed on the invocation's
connection. Results are never cached across records.
"""

from __future__ import annotations

from contextlib import closing
from typing import Any, Dict, List, Optional, Tuple

from sqlupsert.domain.models import ConflictResult, KeyGroup, TableMetadata
from sqlupsert.engine.dialects import Dialect
from sqlupsert.engine.marshaller import ParameterSet, ValueMarshaller
from sqlupsert.utils.logging import get_logger

log = get_logger(__name__)


class ConflictResolver:
    """
    Probes the target table for rows matching a record's key values.

    A key column whose value is absent or null is matched with ``IS NULL`` on
    dialects that support it and left out of the probe elsewhere. A group with
    no present key value at all is never probed and never conflicts, so such a
    record is inserted.
    """

    def __init__(
        self,
        connection: Any,
        dialect: Dialect,
        metadata: TableMetadata,
        marshaller: ValueMarshaller,
    ) -> None:
        self._conn = connection
        self._dialect = dialect
        self._metadata = metadata
        self._marshaller = marshaller
        self._table = dialect.qualified_table(metadata.table)

    def probe_sql(self, fields: Dict[str, Any], key_group: KeyGroup) -> Tuple[str, List[str]]:
        """Return the probe SELECT for `key_group` and the columns it binds, in order."""
        conditions: List[str] = []
        bound: List[str] = []
        for column in key_group.columns:
            quoted = self._dialect.quote(column)
            if fields.get(column) is None:
                if self._dialect.matches_absent_keys_as_null:
                    conditions.append(f"{quoted} IS NULL")
                continue
            conditions.append(f"{quoted} = {self._dialect.placeholder(len(bound))}")
            bound.append(column)
        first = self._dialect.quote(key_group.columns[0])
        return f"SELECT {first} FROM {self._table} WHERE {' AND '.join(conditions)}", bound

    def resolve(self, fields: Dict[str, Any], key_group: KeyGroup) -> Optional[KeyGroup]:
        """
        Return `key_group` if a row with the record's key values exists, else None.

        Raises
        ------
        ValueMarshallingError
            If a key value cannot be bound to its declared type.
        """
        if key_group.is_empty:
            return None
        if all(fields.get(column) is None for column in key_group.columns):
            return None

        sql, bound = self.probe_sql(fields, key_group)
        params = ParameterSet(len(bound))
        for slot, column in enumerate(bound):
            self._marshaller.bind(params, slot, self._metadata.column_types.get(column), fields[column])

        with closing(self._conn.cursor()) as cur:
            cur.execute(sql, params.as_tuple())
            row = cur.fetchone()
        log.debug(f"Probe on {key_group.name}: {'conflict' if row is not None else 'no conflict'}", extra={"sql": sql})
        return key_group if row is not None else None

    def resolve_all(self, fields: Dict[str, Any]) -> ConflictResult:
        """Check the primary key, then every unique group."""
        primary = self.resolve(fields, self._metadata.primary_key)
        unique = tuple(
            group for group in self._metadata.unique_keys if self.resolve(fields, group) is not None
        )
        return ConflictResult(primary=primary, unique=unique)


__all__ = ["ConflictResolver"]
