"""
Transaction handle contracts and the psycopg implementation.

The engine decides what SQL and parameters to send; a handle owned by the
caller decides how they are executed. Synthesized SQL uses `?` placeholders;
`PsycopgHandle` rewrites them to psycopg's `%s` style before executing.
"""

from __future__ import annotations

from typing import Any, Callable, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

import psycopg

from recordsql.domain.types import ValueType
from recordsql.utils.logging import get_logger

log = get_logger(__name__)

RowProcessor = Callable[[List[Any]], Optional[bool]]


@runtime_checkable
class ReadonlyHandle(Protocol):
    """
    Read access on a caller-managed transaction.

    Implementations must not retain anything between calls.
    """

    def read(
        self,
        sql: str,
        param_values: Sequence[Any],
        param_types: Sequence[ValueType],
        output_types: Sequence[ValueType],
    ) -> Optional[List[Any]]:
        """Return the first result row, or None when nothing matches."""
        ...

    def read_many(
        self,
        sql: str,
        param_values: Sequence[Any],
        param_types: Sequence[ValueType],
        output_types: Sequence[ValueType],
        row_processor: RowProcessor,
    ) -> int:
        """
        Call `row_processor` for each result row and return the number of rows
        processed. A processor returning False stops the iteration.
        """
        ...


@runtime_checkable
class ReadWriteHandle(ReadonlyHandle, Protocol):
    """Read and write access on a caller-managed transaction."""

    def write(self, sql: str, param_values: Sequence[Any], param_types: Sequence[ValueType]) -> int:
        """Execute a statement and return the number of affected rows."""
        ...

    def insert_with_key_generation(
        self,
        sql: str,
        param_values: Sequence[Any],
        param_types: Sequence[ValueType],
        generated_column: str,
    ) -> Tuple[int, Any]:
        """Execute an insert and return (affected rows, generated key)."""
        ...

    def write_many(
        self,
        sql: str,
        rows_of_values: Sequence[Sequence[Any]],
        param_types: Sequence[ValueType],
    ) -> int:
        """Execute one statement once per parameter row; return the total affected rows."""
        ...

    def insert_many_with_key_generation(
        self,
        sql: str,
        rows_of_values: Sequence[Sequence[Any]],
        param_types: Sequence[ValueType],
        generated_column: str,
    ) -> Tuple[int, List[Any]]:
        """
        Execute an insert once per parameter row. Returns the number of rows
        inserted and the generated keys in row order, None for a row that
        returned no key.
        """
        ...



def to_pyformat(sql: str) -> str:
    """
    Rewrite `?` placeholders as `%s`, escaping literal `%` signs.

    Text inside single-quoted literals is copied as is, apart from the `%`
    escaping that psycopg needs everywhere in the query text.
    """
    out: List[str] = []
    in_literal = False
    for ch in sql:
        if ch == "'":
            in_literal = not in_literal
            out.append(ch)
        elif ch == "%":
            out.append("%%")
        elif ch == "?" and not in_literal:
            out.append("%s")
        else:
            out.append(ch)
    return "".join(out)


def _convert_row(values: Sequence[Any], output_types: Sequence[ValueType]) -> List[Any]:
    return [vt.from_db(v) for v, vt in zip(values, output_types)]


class PsycopgHandle:
    """
    Read/write handle over an open psycopg connection.

    Transaction boundaries belong to whoever opened the connection; see
    `recordsql.infrastructure.db_factory.transaction`.
    """

    def __init__(self, conn: psycopg.Connection, readonly: bool = False) -> None:
        self._conn = conn
        self.readonly = readonly

    def read(
        self,
        sql: str,
        param_values: Sequence[Any],
        param_types: Sequence[ValueType],
        output_types: Sequence[ValueType],
    ) -> Optional[List[Any]]:
        log.debug(f"read: {sql}", extra={"params": list(param_values)})
        with self._conn.cursor() as cur:
            cur.execute(to_pyformat(sql), list(param_values))
            result = cur.fetchone()
        if result is None:
            return None
        return _convert_row(result, output_types)

    def read_many(
        self,
        sql: str,
        param_values: Sequence[Any],
        param_types: Sequence[ValueType],
        output_types: Sequence[ValueType],
        row_processor: RowProcessor,
    ) -> int:
        log.debug(f"read_many: {sql}", extra={"params": list(param_values)})
        count = 0
        with self._conn.cursor() as cur:
            cur.execute(to_pyformat(sql), list(param_values))
            for result in cur:
                count += 1
                if row_processor(_convert_row(result, output_types)) is False:
                    break
        return count

    def write(self, sql: str, param_values: Sequence[Any], param_types: Sequence[ValueType]) -> int:
        self._check_writable()
        log.debug(f"write: {sql}", extra={"params": list(param_values)})
        with self._conn.cursor() as cur:
            cur.execute(to_pyformat(sql), list(param_values))
            return cur.rowcount

    def insert_with_key_generation(
        self,
        sql: str,
        param_values: Sequence[Any],
        param_types: Sequence[ValueType],
        generated_column: str,
    ) -> Tuple[int, Any]:
        self._check_writable()
        text = f"{sql} RETURNING {generated_column}"
        log.debug(f"insert: {text}", extra={"params": list(param_values)})
        with self._conn.cursor() as cur:
            cur.execute(to_pyformat(text), list(param_values))
            result = cur.fetchone()
            affected = cur.rowcount
        if result is None:
            return 0, None
        return affected, result[0]

    def write_many(
        self,
        sql: str,
        rows_of_values: Sequence[Sequence[Any]],
        param_types: Sequence[ValueType],
    ) -> int:
        self._check_writable()
        log.debug(f"write_many: {sql}", extra={"rows": len(rows_of_values)})
        with self._conn.cursor() as cur:
            cur.executemany(to_pyformat(sql), [list(v) for v in rows_of_values])
            return cur.rowcount

    def insert_many_with_key_generation(
        self,
        sql: str,
        rows_of_values: Sequence[Sequence[Any]],
        param_types: Sequence[ValueType],
        generated_column: str,
    ) -> Tuple[int, List[Any]]:
        self._check_writable()
        text = f"{sql} RETURNING {generated_column}"
        log.debug(f"insert_many: {text}", extra={"rows": len(rows_of_values)})
        keys: List[Any] = []
        with self._conn.cursor() as cur:
            cur.executemany(to_pyformat(text), [list(v) for v in rows_of_values], returning=True)
            # one result set per parameter row
            while True:
                result = cur.fetchone()
                keys.append(None if result is None else result[0])
                if not cur.nextset():
                    break
        return sum(1 for k in keys if k is not None), keys


    def _check_writable(self) -> None:
        if self.readonly:
            raise psycopg.ProgrammingError("write attempted on a read-only handle")


__all__ = [
    "PsycopgHandle",
    "ReadWriteHandle",
    "ReadonlyHandle",
    "RowProcessor",
    "to_pyformat",
]
