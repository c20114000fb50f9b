from __future__ import annotations

import logging
from decimal import Decimal

import pytest

from recordsql.domain.schema import RecordDeclaration, build_schema
from recordsql.domain.types import FieldRole, Operation, ValueType
from recordsql.errors import NoRowsAffectedError, SchemaDefinitionError
from recordsql.sql.synthesizer import SqlSynthesizer

from conftest import DECLARATIONS, InMemoryDatabase, RecordingHandle

INVOICE_SELECT = "SELECT id, customer_id, amount, tenant_id FROM invoices"
INVOICE_WHERE = "WHERE id=? AND tenant_id=?"
INVOICE_INSERT = "INSERT INTO invoices (customer_id, amount, tenant_id) VALUES (?, ?, ?)"
INVOICE_UPDATE = "UPDATE invoices SET customer_id=?, amount=? WHERE id=? AND tenant_id=?"
ORDER_INSERT = (
    "INSERT INTO orders (order_id, tenant_id, customer, notes, created_at, created_by, modified_at, modified_by) "
    "VALUES (?, ?, ?, ?, CURRENT_TIMESTAMP, ?, CURRENT_TIMESTAMP, ?)"
)
ORDER_UPDATE = (
    "UPDATE orders SET customer=?, notes=?, modified_at=CURRENT_TIMESTAMP, modified_by=? "
    "WHERE order_id=? AND tenant_id=? AND modified_at=?"
)


def _synth(declaration, **kwargs) -> SqlSynthesizer:
    kwargs.setdefault("treat_null_as_zero", True)
    kwargs.setdefault("timestamp_function", "CURRENT_TIMESTAMP")
    return SqlSynthesizer(build_schema(RecordDeclaration.model_validate(declaration)), **kwargs)


class TestSynthesizedText:
    def test_invoice_statements(self, invoice: SqlSynthesizer) -> None:
        assert invoice.select_text == INVOICE_SELECT
        assert invoice.where_text == INVOICE_WHERE
        assert invoice.insert_text == INVOICE_INSERT
        assert invoice.update_text == INVOICE_UPDATE
        assert invoice.delete_text == "DELETE FROM invoices " + INVOICE_WHERE
        assert invoice.select_idx == (0, 1, 2, 3)
        assert invoice.where_idx == (0, 3)
        assert invoice.insert_idx == (1, 2, 3)
        assert invoice.update_idx == (1, 2, 0, 3)

    def test_audit_columns_use_timestamp_function(self, order: SqlSynthesizer) -> None:
        assert order.insert_text == ORDER_INSERT
        assert order.insert_idx == (0, 1, 2, 3, 5, 7)
        assert order.update_text == ORDER_UPDATE
        # data columns, then keys and tenant, then the concurrency stamp
        assert order.update_idx == (2, 3, 7, 0, 1, 6)

    def test_in_memory_field_is_never_selected(self, order: SqlSynthesizer) -> None:
        total = order.schema.field("total").index
        assert total not in order.select_idx

    def test_custom_timestamp_function(self) -> None:
        synth = _synth(DECLARATIONS["records"][1], timestamp_function="now()")
        assert "modified_at=now()" in synth.update_text

    @pytest.mark.parametrize("declaration", DECLARATIONS["records"], ids=lambda d: d["name"])
    def test_index_arrays_stay_within_the_row(self, declaration) -> None:
        synth = _synth(declaration)
        n = len(synth.schema)
        for indexes in (synth.select_idx, synth.insert_idx, synth.update_idx, synth.where_idx):
            assert len(indexes) <= n + 1
            assert all(0 <= i < n for i in indexes)
        assert len(synth.select_idx) <= n
        assert len(synth.insert_idx) <= n

    @pytest.mark.parametrize("declaration", DECLARATIONS["records"], ids=lambda d: d["name"])
    def test_generated_key_never_inserted(self, declaration) -> None:
        synth = _synth(declaration)
        generated = synth.schema.generated_key_field
        if generated is not None:
            assert generated.index not in synth.insert_idx

    def test_server_stamped_columns_never_bound(self, order: SqlSynthesizer) -> None:
        stamped = {f.index for f in order.schema.fields if f.role in (FieldRole.CREATED_AT, FieldRole.MODIFIED_AT)}
        assert not stamped & set(order.insert_idx)
        # only the where-clause copy of modifiedAt is a parameter on update
        assert order.update_idx.count(order.schema.timestamp_field.index) == 1

    def test_invalid_schema_is_refused(self) -> None:
        bad = {
            "name": "bad",
            "nameInDb": "bad",
            "fields": [
                {"name": "t1", "columnName": "t1", "role": "tenantKey"},
                {"name": "t2", "columnName": "t2", "role": "tenantKey"},
            ],
        }
        with pytest.raises(SchemaDefinitionError):
            _synth(bad)

    def test_record_without_table_is_refused(self) -> None:
        with pytest.raises(SchemaDefinitionError):
            _synth({"name": "memo", "fields": [{"name": "text"}]})

    def test_operation_allowed(self, invoice: SqlSynthesizer) -> None:
        assert invoice.operation_allowed(Operation.CREATE)
        assert not invoice.operation_allowed(Operation.DELETE)


class TestKeyBasedOperations:
    def test_read_binds_keys_and_copies_result(self, invoice: SqlSynthesizer) -> None:
        handle = RecordingHandle(read_result=[7, "C1", 100.5, "T1"])
        row = invoice.schema.row_from({"id": 7, "tenantId": "T1"})

        assert invoice.read(handle, row)

        method, sql, values, types = handle.calls[0]
        assert sql == f"{INVOICE_SELECT} {INVOICE_WHERE}"
        assert values == [7, "T1"]
        assert types == [ValueType.INTEGER, ValueType.TEXT]
        assert row == [7, "C1", Decimal("100.5"), "T1"]

    def test_read_not_found(self, invoice: SqlSynthesizer) -> None:
        row = invoice.schema.row_from({"id": 7, "tenantId": "T1"})
        assert invoice.read(RecordingHandle(read_result=None), row) is False

    def test_insert_writes_back_generated_key(self, invoice: SqlSynthesizer) -> None:
        handle = RecordingHandle(generated_key=42)
        row = invoice.schema.row_from({"customerId": "C1", "amount": Decimal("100.50"), "tenantId": "T1"})

        assert invoice.insert(handle, row)

        assert handle.calls[0][0] == "insert_key"
        assert handle.calls[0][2] == ["C1", Decimal("100.50"), "T1"]
        assert row[0] == 42

    def test_insert_reports_zero_rows(self, invoice: SqlSynthesizer) -> None:
        row = invoice.schema.row_from({"customerId": "C1", "amount": Decimal(1), "tenantId": "T1"})
        assert invoice.insert(RecordingHandle(write_results=[0]), row) is False
        assert row[0] is None

    def test_insert_without_generated_key_uses_write(self, order: SqlSynthesizer) -> None:
        handle = RecordingHandle()
        row = order.schema.row_from({"orderId": "A1", "tenantId": "T1", "customer": "acme"})

        assert order.insert(handle, row)
        assert handle.count("write") == 1
        assert handle.calls[0][2] == ["A1", "T1", "acme", None, None, None]

    def test_update_and_delete_report_zero_rows(self, invoice: SqlSynthesizer) -> None:
        row = invoice.schema.row_from({"id": 1, "customerId": "C1", "amount": Decimal(1), "tenantId": "T1"})
        handle = RecordingHandle(write_results=[0, 0])

        assert invoice.update(handle, row) is False
        assert invoice.delete(handle, row) is False
        assert handle.calls[0][2] == ["C1", Decimal(1), 1, "T1"]
        assert handle.calls[1][2] == [1, "T1"]

    def test_save_falls_back_to_insert(self, invoice: SqlSynthesizer) -> None:
        handle = RecordingHandle(write_results=[0, 1])
        row = invoice.schema.row_from({"id": 5, "customerId": "C1", "amount": Decimal(1), "tenantId": "T1"})

        assert invoice.save(handle, row)
        assert [c[0] for c in handle.calls] == ["write", "insert_key"]
        assert handle.calls[0][1] == INVOICE_UPDATE
        assert handle.calls[1][1] == INVOICE_INSERT

    def test_save_stops_after_successful_update(self, invoice: SqlSynthesizer) -> None:
        handle = RecordingHandle(write_results=[1])
        row = invoice.schema.row_from({"id": 5, "customerId": "C1", "amount": Decimal(1), "tenantId": "T1"})

        assert invoice.save(handle, row)
        assert handle.count("write") == 1
        assert handle.count("insert_key") == 0

    def test_wrong_row_length_is_a_programming_error(self, invoice: SqlSynthesizer) -> None:
        with pytest.raises(ValueError):
            invoice.delete(RecordingHandle(), [1, "T1"])

    def test_insert_all_is_one_batched_statement(self, order: SqlSynthesizer) -> None:
        rows = [order.schema.row_from({"orderId": f"A{i}", "tenantId": "T1", "customer": "c"}) for i in range(3)]
        handle = RecordingHandle(write_results=[1, 0, 1])

        assert order.insert_all(handle, rows) is False
        assert handle.count("write_many") == 1
        assert handle.count("write") == 0
        kind, sql, params, _ = handle.calls[0]
        assert (kind, sql) == ("write_many", ORDER_INSERT)
        assert [p[0] for p in params] == ["A0", "A1", "A2"]

    def test_insert_all_copies_generated_keys_back(self, invoice: SqlSynthesizer, db: InMemoryDatabase) -> None:
        rows = [invoice.schema.row_from({"customerId": c, "amount": Decimal("1"), "tenantId": "T1"}) for c in ("C1", "C2")]

        assert invoice.insert_all(db, rows)
        assert [r[0] for r in rows] == [101, 102]
        assert [r[1] for r in db.tables["invoices"]] == ["C1", "C2"]

    def test_update_all_binds_update_parameters(self, invoice: SqlSynthesizer) -> None:
        rows = [[7, "C1", Decimal("2"), "T1"], [8, "C2", Decimal("3"), "T1"]]
        handle = RecordingHandle()

        assert invoice.update_all(handle, rows)
        assert handle.calls == [
            ("write_many", INVOICE_UPDATE, [["C1", Decimal("2"), 7, "T1"], ["C2", Decimal("3"), 8, "T1"]], handle.calls[0][3])
        ]

    def test_update_all_fails_when_a_row_is_missing(self, invoice: SqlSynthesizer) -> None:
        handle = RecordingHandle(write_results=[1, 0])
        assert invoice.update_all(handle, [[7, "C1", Decimal("2"), "T1"], [8, "C2", Decimal("3"), "T1"]]) is False

    def test_bulk_operations_on_no_rows(self, invoice: SqlSynthesizer) -> None:
        handle = RecordingHandle()
        assert invoice.insert_all(handle, [])
        assert invoice.update_all(handle, [])
        assert handle.calls == []

    def test_save_all_goes_row_by_row(self, invoice: SqlSynthesizer) -> None:
        handle = RecordingHandle(write_results=[1, 0, 1])
        rows = [[7, "C1", Decimal("2"), "T1"], [8, "C2", Decimal("3"), "T1"]]

        assert invoice.save_all(handle, rows)
        assert [c[0] for c in handle.calls] == ["write", "write", "insert_key"]


class TestInvoiceScenario:
    def test_insert_then_read_within_tenant(self, invoice: SqlSynthesizer, db: InMemoryDatabase) -> None:
        row = invoice.schema.row_from({"customerId": "C1", "amount": Decimal("100.50"), "tenantId": "T1"})

        assert invoice.insert(db, row)
        assert row[0] > 0

        mine = invoice.schema.row_from({"id": row[0], "tenantId": "T1"})
        assert invoice.read(db, mine)
        assert mine[1] == "C1"
        assert mine[2] == Decimal("100.50")

    def test_read_with_another_tenant_finds_nothing(self, invoice: SqlSynthesizer, db: InMemoryDatabase) -> None:
        row = invoice.schema.row_from({"customerId": "C1", "amount": Decimal("100.50"), "tenantId": "T1"})
        invoice.insert(db, row)

        theirs = invoice.schema.row_from({"id": row[0], "tenantId": "T2"})
        assert invoice.read(db, theirs) is False
        assert theirs[2] is None


class TestUnsupportedOperations:
    KEYLESS = {
        "name": "event",
        "nameInDb": "events",
        "fields": [
            {"name": "kind", "columnName": "kind", "role": "requiredData"},
            {"name": "at", "columnName": "at", "valueType": "timestamp", "role": "optionalData"},
        ],
    }

    def test_keyless_record_only_filters(self, caplog) -> None:
        caplog.set_level(logging.ERROR)
        synth = _synth(self.KEYLESS)
        handle = RecordingHandle()
        row = synth.schema.new_row()

        assert synth.where_text is None
        assert synth.insert(handle, row) is False
        assert synth.update(handle, row) is False
        assert synth.delete(handle, row) is False
        assert synth.read(handle, row) is False
        assert synth.save(handle, row) is False
        assert handle.calls == []
        assert "not designed for 'insert'" in caplog.text

    def test_record_with_nothing_to_update(self) -> None:
        synth = _synth(
            {
                "name": "tag",
                "nameInDb": "tags",
                "fields": [{"name": "tag", "columnName": "tag", "role": "primaryKey"}],
            }
        )
        handle = RecordingHandle()
        row = synth.schema.row_from({"tag": "x"})

        assert synth.update_text is None
        assert synth.update(handle, row) is False
        # save goes straight to insert
        assert synth.save(handle, row)
        assert [c[0] for c in handle.calls] == ["write"]


class TestNullAsZero:
    def test_numeric_nulls_become_zero_both_ways(self, invoice: SqlSynthesizer) -> None:
        handle = RecordingHandle(read_result=[3, None, None, "T1"])
        row = invoice.schema.row_from({"id": 3, "tenantId": "T1"})

        invoice.read(handle, row)
        assert row[2] == Decimal(0)
        assert row[1] is None

        row[2] = None
        invoice.update(handle, row)
        assert handle.calls[-1][2][1] == Decimal(0)

    def test_nulls_kept_when_disabled(self) -> None:
        synth = _synth(DECLARATIONS["records"][0], treat_null_as_zero=False)
        handle = RecordingHandle(read_result=[3, "C", None, "T1"])
        row = synth.schema.row_from({"id": 3, "tenantId": "T1"})

        synth.read(handle, row)
        assert row[2] is None
        synth.update(handle, row)
        assert handle.calls[-1][2][1] is None


class TestOrFail:
    def test_raises_on_zero_rows(self, invoice: SqlSynthesizer) -> None:
        row = invoice.schema.row_from({"id": 9, "customerId": "C", "amount": Decimal(1), "tenantId": "T1"})

        with pytest.raises(NoRowsAffectedError, match="id = 9"):
            invoice.update_or_fail(RecordingHandle(write_results=[0]), row)
        with pytest.raises(NoRowsAffectedError):
            invoice.read_or_fail(RecordingHandle(), row)

    def test_silent_on_success(self, invoice: SqlSynthesizer) -> None:
        row = invoice.schema.row_from({"id": 9, "customerId": "C", "amount": Decimal(1), "tenantId": "T1"})
        invoice.delete_or_fail(RecordingHandle(), row)
        invoice.save_or_fail(RecordingHandle(), row)


class TestFilter:
    def test_filter_collects_rows(self, invoice: SqlSynthesizer) -> None:
        handle = RecordingHandle(rows=[[1, "A", 10, "T1"], [2, "B", None, "T1"]])

        rows = invoice.filter(handle, "WHERE customer_id=?", ["A"])

        assert handle.calls[0][1] == f"{INVOICE_SELECT} WHERE customer_id=?"
        assert handle.calls[0][3] == [ValueType.TEXT]
        assert rows == [[1, "A", Decimal(10), "T1"], [2, "B", Decimal(0), "T1"]]

    def test_filter_without_clause_selects_all(self, invoice: SqlSynthesizer) -> None:
        handle = RecordingHandle()
        assert invoice.filter(handle, None) == []
        assert handle.calls[0][1] == INVOICE_SELECT

    def test_filter_first(self, invoice: SqlSynthesizer) -> None:
        assert invoice.filter_first(RecordingHandle(), "WHERE id=?", [1]) is None
        row = invoice.filter_first(RecordingHandle(read_result=[1, "A", 2, "T1"]), "WHERE id=?", [1])
        assert row == [1, "A", Decimal(2), "T1"]

    def test_for_each_stops_when_processor_returns_false(self, invoice: SqlSynthesizer) -> None:
        handle = RecordingHandle(rows=[[i, "A", i, "T1"] for i in range(5)])
        seen = []

        def processor(row):
            seen.append(row[0])
            return len(seen) < 2

        assert invoice.for_each(handle, None, [], processor) == 2
        assert seen == [0, 1]
