"""
Pytest configuration for recordsql.

Provides:
- Record and link declarations shared by the unit tests
- A call-recording transaction handle
- A small in-memory database that understands the SQL the synthesizer emits
- Settings fixture for the integration tests
"""

from __future__ import annotations

import os
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

from recordsql.config import Settings
from recordsql.domain.messages import MessageSink, RequestContext
from recordsql.domain.schema import RecordDeclaration, build_schema
from recordsql.registry import Declarations, SchemaRegistry
from recordsql.sql.synthesizer import SqlSynthesizer

INVOICE = {
    "name": "invoice",
    "nameInDb": "invoices",
    "operations": ["get", "create", "filter"],
    "fields": [
        {"name": "id", "columnName": "id", "valueType": "integer", "role": "generatedPrimaryKey"},
        {"name": "customerId", "columnName": "customer_id", "valueType": "text", "role": "requiredData"},
        {"name": "amount", "columnName": "amount", "valueType": "decimal", "role": "requiredData"},
        {"name": "tenantId", "columnName": "tenant_id", "valueType": "text", "role": "tenantKey"},
    ],
}

ORDER = {
    "name": "order",
    "nameInDb": "orders",
    "useTimestampCheck": True,
    "fields": [
        {"name": "orderId", "columnName": "order_id", "role": "primaryKey", "maxLength": 10},
        {"name": "tenantId", "columnName": "tenant_id", "role": "tenantKey"},
        {"name": "customer", "columnName": "customer", "role": "requiredData"},
        {"name": "notes", "columnName": "notes", "role": "optionalData"},
        {"name": "createdAt", "columnName": "created_at", "valueType": "timestamp", "role": "createdAt"},
        {"name": "createdBy", "columnName": "created_by", "role": "createdBy"},
        {"name": "modifiedAt", "columnName": "modified_at", "valueType": "timestamp", "role": "modifiedAt"},
        {"name": "modifiedBy", "columnName": "modified_by", "role": "modifiedBy"},
        {"name": "total", "valueType": "decimal"},
    ],
}

ORDER_LINE = {
    "name": "orderLine",
    "nameInDb": "order_lines",
    "fields": [
        {"name": "orderId", "columnName": "order_id", "role": "primaryKey"},
        {"name": "lineNo", "columnName": "line_no", "valueType": "integer", "role": "primaryKey"},
        {"name": "tenantId", "columnName": "tenant_id", "role": "tenantKey"},
        {"name": "product", "columnName": "product", "role": "requiredData"},
        {"name": "qty", "columnName": "qty", "valueType": "integer", "role": "optionalData"},
    ],
}

LINE_NOTE = {
    "name": "lineNote",
    "nameInDb": "line_notes",
    "fields": [
        {"name": "orderId", "columnName": "order_id", "role": "primaryKey"},
        {"name": "lineNo", "columnName": "line_no", "valueType": "integer", "role": "primaryKey"},
        {"name": "noteNo", "columnName": "note_no", "valueType": "integer", "role": "primaryKey"},
        {"name": "tenantId", "columnName": "tenant_id", "role": "tenantKey"},
        {"name": "text", "columnName": "note_text", "role": "requiredData"},
    ],
}

LINES_LINK = {
    "name": "lines",
    "parent": "order",
    "child": "orderLine",
    "parentFields": ["orderId"],
    "childFields": ["orderId"],
    "isMultiRow": True,
    "minRows": 1,
    "maxRows": 3,
}

NOTES_LINK = {
    "name": "notes",
    "parent": "orderLine",
    "child": "lineNote",
    "parentFields": ["orderId", "lineNo"],
    "childFields": ["orderId", "lineNo"],
    "isMultiRow": True,
}

DECLARATIONS = {
    "records": [INVOICE, ORDER, ORDER_LINE, LINE_NOTE],
    "links": [LINES_LINK],
}


class RecordingHandle:
    """
    Transaction handle that records every call and returns canned results.

    `write_results` is consumed one entry per write or keyed insert, and one
    per parameter row of a batched write; once it runs out every write reports
    `default_affected` rows.
    """

    def __init__(
        self,
        write_results: Sequence[int] = (),
        read_result: Optional[Sequence[Any]] = None,
        rows: Sequence[Sequence[Any]] = (),
        generated_key: Any = 1,
        default_affected: int = 1,
    ) -> None:
        self.calls: List[Tuple[str, str, List[Any], List[Any]]] = []
        self._write_results = list(write_results)
        self.read_result = read_result
        self.rows = [list(r) for r in rows]
        self.generated_key = generated_key
        self.default_affected = default_affected

    def _affected(self) -> int:
        return self._write_results.pop(0) if self._write_results else self.default_affected

    def read(self, sql, param_values, param_types, output_types):
        self.calls.append(("read", sql, list(param_values), list(param_types)))
        return None if self.read_result is None else list(self.read_result)

    def read_many(self, sql, param_values, param_types, output_types, row_processor):
        self.calls.append(("read_many", sql, list(param_values), list(param_types)))
        n = 0
        for row in self.rows:
            n += 1
            if row_processor(list(row)) is False:
                break
        return n

    def write(self, sql, param_values, param_types):
        self.calls.append(("write", sql, list(param_values), list(param_types)))
        return self._affected()

    def insert_with_key_generation(self, sql, param_values, param_types, generated_column):
        self.calls.append(("insert_key", sql, list(param_values), list(param_types)))
        n = self._affected()
        return n, (self.generated_key if n else None)

    def write_many(self, sql, rows_of_values, param_types):
        self.calls.append(("write_many", sql, [list(v) for v in rows_of_values], list(param_types)))
        return sum(self._affected() for _ in rows_of_values)

    def insert_many_with_key_generation(self, sql, rows_of_values, param_types, generated_column):
        self.calls.append(("insert_many_key", sql, [list(v) for v in rows_of_values], list(param_types)))
        counts = [self._affected() for _ in rows_of_values]
        return sum(counts), [self.generated_key if n else None for n in counts]

    def count(self, method: str) -> int:
        return sum(1 for c in self.calls if c[0] == method)

    @property
    def statements(self) -> List[str]:
        return [c[1] for c in self.calls]


class DuplicateKeyError(Exception):
    """Raised by the in-memory database on a primary key collision."""


_TABLE = re.compile(r"(?:FROM|INTO|UPDATE)\s+(\w+)")


class InMemoryDatabase:
    """
    Tables held as lists of full rows, one table per synthesizer.

    Understands exactly the statements a SqlSynthesizer or ChildLinkage
    produces: the synthesized insert/update texts, and selects/deletes whose
    WHERE clause is a conjunction of `column=?`.
    """

    def __init__(self, synthesizers: Sequence[SqlSynthesizer]) -> None:
        self.synthesizers: Dict[str, SqlSynthesizer] = {s.name_in_db: s for s in synthesizers}
        self.tables: Dict[str, List[List[Any]]] = {name: [] for name in self.synthesizers}
        self.statements: List[str] = []
        self._next_key = 100
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def _now(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    def _target(self, sql: str) -> Tuple[str, SqlSynthesizer]:
        table = _TABLE.search(sql).group(1)  # type: ignore[union-attr]
        return table, self.synthesizers[table]

    def _conditions(self, synth: SqlSynthesizer, sql: str, values: Sequence[Any]) -> List[Tuple[int, Any]]:
        if " WHERE " not in sql:
            return []
        clause = sql.split(" WHERE ", 1)[1]
        by_column = {f.column_name: f.index for f in synth.schema.column_fields}
        conditions = []
        for part, value in zip(clause.split(" AND "), values):
            column = part.strip().split("=")[0]
            conditions.append((by_column[column], value))
        return conditions

    @staticmethod
    def _matches(row: List[Any], conditions: Sequence[Tuple[int, Any]]) -> bool:
        return all(row[i] == v for i, v in conditions)

    def _select(self, sql, values) -> List[List[Any]]:
        table, synth = self._target(sql)
        conditions = self._conditions(synth, sql, values)
        return [
            [row[i] for i in synth.select_idx] for row in self.tables[table] if self._matches(row, conditions)
        ]

    # handle protocol

    def read(self, sql, param_values, param_types, output_types):
        self.statements.append(sql)
        rows = self._select(sql, param_values)
        return rows[0] if rows else None

    def read_many(self, sql, param_values, param_types, output_types, row_processor):
        self.statements.append(sql)
        n = 0
        for row in self._select(sql, param_values):
            n += 1
            if row_processor(row) is False:
                break
        return n

    def write(self, sql, param_values, param_types):
        self.statements.append(sql)
        table, synth = self._target(sql)
        rows = self.tables[table]

        if sql == synth.insert_text:
            self._insert(synth, rows, param_values)
            return 1

        if sql == synth.update_text:
            n_data = len(synth.update_idx) - len(synth.where_idx) - (1 if synth.schema.timestamp_field else 0)
            data = list(zip(synth.update_idx[:n_data], param_values[:n_data]))
            conditions = list(zip(synth.update_idx[n_data:], param_values[n_data:]))
            stamped = [f.index for f in synth.schema.column_fields if f.role.timestamp_on_update]
            n = 0
            for row in rows:
                if self._matches(row, conditions):
                    for i, v in data:
                        row[i] = v
                    for i in stamped:
                        row[i] = self._now()
                    n += 1
            return n

        if sql.startswith("DELETE"):
            conditions = self._conditions(synth, sql, param_values)
            keep = [row for row in rows if not self._matches(row, conditions)]
            n = len(rows) - len(keep)
            rows[:] = keep
            return n

        raise AssertionError(f"unexpected statement: {sql}")

    def insert_with_key_generation(self, sql, param_values, param_types, generated_column):
        self.statements.append(sql)
        table, synth = self._target(sql)
        self._next_key += 1
        row = self._insert(synth, self.tables[table], param_values, key=self._next_key)
        return 1, row[synth.generated_key_index]

    def write_many(self, sql, rows_of_values, param_types):
        return sum(self.write(sql, values, param_types) for values in rows_of_values)

    def insert_many_with_key_generation(self, sql, rows_of_values, param_types, generated_column):
        results = [self.insert_with_key_generation(sql, v, param_types, generated_column) for v in rows_of_values]
        return sum(n for n, _ in results), [key for _, key in results]

    def _insert(self, synth, rows, values, key=None) -> List[Any]:
        row: List[Any] = [None] * len(synth.schema)
        for i, v in zip(synth.insert_idx, values):
            row[i] = v
        if key is not None:
            row[synth.generated_key_index] = key
        for f in synth.schema.column_fields:
            if f.role.timestamp_on_insert:
                row[f.index] = self._now()
        keys = [f.index for f in synth.schema.key_fields]
        if synth.schema.tenant_field is not None:
            keys.append(synth.schema.tenant_field.index)
        for existing in rows:
            if all(existing[i] == row[i] for i in keys):
                raise DuplicateKeyError(f"duplicate key in {synth.name_in_db}")
        rows.append(row)
        return row


@pytest.fixture
def declarations() -> Declarations:
    return Declarations.model_validate(DECLARATIONS)


@pytest.fixture
def registry(declarations: Declarations) -> SchemaRegistry:
    return SchemaRegistry.from_declarations(
        declarations, treat_null_as_zero=True, timestamp_function="CURRENT_TIMESTAMP"
    )


@pytest.fixture
def invoice(registry: SchemaRegistry) -> SqlSynthesizer:
    return registry.synthesizer("invoice")


@pytest.fixture
def order(registry: SchemaRegistry) -> SqlSynthesizer:
    return registry.synthesizer("order")


@pytest.fixture
def order_line(registry: SchemaRegistry) -> SqlSynthesizer:
    return registry.synthesizer("orderLine")


@pytest.fixture
def db(registry: SchemaRegistry) -> InMemoryDatabase:
    return InMemoryDatabase([registry.synthesizer(name) for name in registry.names()])


@pytest.fixture
def ctx() -> RequestContext:
    return RequestContext(tenant_id="T1", user_id="u1", messages=MessageSink())


@pytest.fixture
def make_schema():
    """Build a schema from a plain dict declaration."""

    def _make(declaration: Dict[str, Any]):
        return build_schema(RecordDeclaration.model_validate(declaration))

    return _make


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Can be overridden via environment variables in CI or local testing.
    """
    return Settings(
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5432")),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres"),
        db_name=os.getenv("DB_NAME", "recordsql"),
        log_level="DEBUG",
    )
