"""
Exception types raised by recordsql.

Only structural problems and the explicit "or fail" variants raise. Request
validation problems are reported as messages, and "no matching row" is a plain
``False`` return.
"""

from __future__ import annotations


class RecordSqlError(Exception):
    """Base class for all recordsql errors."""


class SchemaDefinitionError(RecordSqlError):
    """A record schema is invalid and cannot be used to synthesize SQL."""

    def __init__(self, record_name: str, problems: tuple[str, ...] | list[str]) -> None:
        self.record_name = record_name
        self.problems = tuple(problems)
        detail = "; ".join(self.problems) if self.problems else "no details"
        super().__init__(f"Record '{record_name}' has an invalid definition: {detail}")


class LinkageDefinitionError(RecordSqlError):
    """A parent/child link refers to fields that do not exist."""


class NoRowsAffectedError(RecordSqlError):
    """An ``*_or_fail`` operation found or changed zero rows."""

    def __init__(self, operation: str, record_name: str, keys: str) -> None:
        self.operation = operation
        self.record_name = record_name
        self.keys = keys
        super().__init__(f"{operation} failed silently for {record_name}: {keys}")


__all__ = [
    "RecordSqlError",
    "SchemaDefinitionError",
    "LinkageDefinitionError",
    "NoRowsAffectedError",
]
