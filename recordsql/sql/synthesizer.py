"""
SQL synthesis and row marshalling for one record schema.

All SQL text and parameter-index arrays are computed once, when the
synthesizer is built. Every index array maps "position in the SQL parameter
list" to "position in the row". At call time rows are translated into
parameter lists (and result columns back into rows) using those arrays.

Operations return False for "no matching row" and for operations the schema
was not built to support (logged). Driver errors propagate unchanged.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, List, Optional, Sequence, Tuple

from recordsql.config import get_settings
from recordsql.domain.fields import FieldDescriptor
from recordsql.domain.schema import RecordSchema, Row
from recordsql.domain.types import FieldRole, Operation, ValueType
from recordsql.errors import NoRowsAffectedError, SchemaDefinitionError
from recordsql.infrastructure.handles import ReadonlyHandle, ReadWriteHandle
from recordsql.utils.logging import get_logger

if TYPE_CHECKING:
    from recordsql.sql.filters import CompiledFilter

log = get_logger(__name__)

C = ", "


def _types_of(schema: RecordSchema, indexes: Sequence[int]) -> Tuple[ValueType, ...]:
    return tuple(schema.fields[i].value_type for i in indexes)


class SqlSynthesizer:
    """
    Precomputed select/insert/update/delete SQL for a record, plus the
    operations that run them on a caller-supplied handle.

    Parameters
    ----------
    schema : RecordSchema
        A valid schema mapped to a table (`name_in_db`).
    treat_null_as_zero : bool, optional
        Surface NULL integer/decimal columns as zero, and bind None numeric
        parameters as zero. Defaults to the `TREAT_NULL_AS_ZERO` setting.
    timestamp_function : str, optional
        SQL expression used for createdAt/modifiedAt columns. Defaults to the
        `TIMESTAMP_FUNCTION` setting.

    Raises
    ------
    SchemaDefinitionError
        If the schema is invalid or not mapped to a table.
    """

    def __init__(
        self,
        schema: RecordSchema,
        treat_null_as_zero: Optional[bool] = None,
        timestamp_function: Optional[str] = None,
    ) -> None:
        if not schema.is_valid:
            raise SchemaDefinitionError(schema.name, schema.errors)
        if not schema.is_db_record:
            raise SchemaDefinitionError(schema.name, ["record is not mapped to a table/view"])

        settings = get_settings() if treat_null_as_zero is None or timestamp_function is None else None
        self.schema = schema
        self.treat_null_as_zero = (
            settings.treat_null_as_zero if treat_null_as_zero is None else treat_null_as_zero
        )
        self.timestamp_function = timestamp_function or settings.timestamp_function
        self.name_in_db: str = schema.name_in_db  # type: ignore[assignment]

        generated = schema.generated_key_field
        self.generated_key_index = generated.index if generated is not None else -1
        self.generated_column = generated.column_name if generated is not None else None

        self.select_text, self.select_idx = self._make_select()
        self.select_types = _types_of(schema, self.select_idx)

        self.where_text: Optional[str] = None
        self.where_idx: Tuple[int, ...] = ()
        self.insert_text: Optional[str] = None
        self.insert_idx: Tuple[int, ...] = ()
        self.update_text: Optional[str] = None
        self.update_idx: Tuple[int, ...] = ()
        self.delete_text: Optional[str] = None

        if not schema.key_fields:
            log.debug(
                f"No keys defined for {schema.name}. Only filter operations are possible.",
                extra={"record": schema.name},
            )
        else:
            self.where_text, self.where_idx = self._make_where()
            self.insert_text, self.insert_idx = self._make_insert()
            self.update_text, self.update_idx = self._make_update()
            self.delete_text = f"DELETE FROM {self.name_in_db} {self.where_text}"

        self.where_types = _types_of(schema, self.where_idx)
        self.insert_types = _types_of(schema, self.insert_idx)
        self.update_types = _types_of(schema, self.update_idx)

    # ------------------------------------------------------------------
    # build-time synthesis
    # ------------------------------------------------------------------

    def _make_select(self) -> Tuple[str, Tuple[int, ...]]:
        columns = self.schema.column_fields
        names = C.join(f.column_name for f in columns)  # type: ignore[misc]
        return f"SELECT {names} FROM {self.name_in_db}", tuple(f.index for f in columns)

    def _make_where(self) -> Tuple[str, Tuple[int, ...]]:
        fields: List[FieldDescriptor] = list(self.schema.key_fields)
        if self.schema.tenant_field is not None:
            fields.append(self.schema.tenant_field)
        clause = " AND ".join(f"{f.column_name}=?" for f in fields)
        return f"WHERE {clause}", tuple(f.index for f in fields)

    def _make_insert(self) -> Tuple[str, Tuple[int, ...]]:
        columns: List[str] = []
        values: List[str] = []
        indexes: List[int] = []
        for f in self.schema.column_fields:
            role: FieldRole = f.role  # type: ignore[assignment]
            if not role.is_inserted:
                continue
            columns.append(f.column_name)  # type: ignore[arg-type]
            if role.timestamp_on_insert:
                values.append(self.timestamp_function)
            else:
                values.append("?")
                indexes.append(f.index)
        text = f"INSERT INTO {self.name_in_db} ({C.join(columns)}) VALUES ({C.join(values)})"
        return text, tuple(indexes)

    def _make_update(self) -> Tuple[Optional[str], Tuple[int, ...]]:
        sets: List[str] = []
        indexes: List[int] = []
        for f in self.schema.column_fields:
            role: FieldRole = f.role  # type: ignore[assignment]
            if not role.is_updated:
                continue
            if role.timestamp_on_update:
                sets.append(f"{f.column_name}={self.timestamp_function}")
            else:
                sets.append(f"{f.column_name}=?")
                indexes.append(f.index)

        if not sets:
            log.debug(f"{self.schema.name} has no updatable columns", extra={"record": self.schema.name})
            return None, ()

        # parameters for the where clause follow the data columns
        text = f"UPDATE {self.name_in_db} SET {C.join(sets)} {self.where_text}"
        indexes.extend(self.where_idx)
        ts = self.schema.timestamp_field
        if ts is not None:
            text += f" AND {ts.column_name}=?"
            indexes.append(ts.index)
        return text, tuple(indexes)

    # ------------------------------------------------------------------
    # marshalling
    # ------------------------------------------------------------------

    def _check_row(self, row: Sequence[Any]) -> None:
        if len(row) != len(self.schema.fields):
            raise ValueError(
                f"Row for {self.schema.name} has {len(row)} values, expected {len(self.schema.fields)}"
            )

    def _bind(self, value: Any, vt: ValueType) -> Any:
        if value is None and self.treat_null_as_zero and vt.is_numeric:
            return vt.zero()
        return value

    def params_from_row(self, row: Sequence[Any], indexes: Sequence[int]) -> List[Any]:
        """Values of `row` at `indexes`, in parameter order."""
        self._check_row(row)
        fields = self.schema.fields
        return [self._bind(row[i], fields[i].value_type) for i in indexes]

    def _extract(self, value: Any, vt: ValueType) -> Any:
        value = vt.from_db(value)
        if value is None and self.treat_null_as_zero and vt.is_numeric:
            return vt.zero()
        return value

    def copy_to_row(
        self,
        result: Sequence[Any],
        row: Row,
        indexes: Optional[Sequence[int]] = None,
    ) -> None:
        """Copy select-result columns into `row` at the select indexes."""
        indexes = self.select_idx if indexes is None else indexes
        fields = self.schema.fields
        for value, idx in zip(result, indexes):
            row[idx] = self._extract(value, fields[idx].value_type)

    def _new_row_from(self, result: Sequence[Any], indexes: Optional[Sequence[int]] = None) -> Row:
        row: Row = [None] * len(self.schema.fields)
        self.copy_to_row(result, row, indexes)
        return row

    def _not_allowed(self, operation: str) -> bool:
        log.error(
            f"{self.schema.name} is not designed for '{operation}' operation",
            extra={"record": self.schema.name, "operation": operation},
        )
        return False

    def operation_allowed(self, operation: Operation) -> bool:
        """Whether the record declaration exposes this operation to clients."""
        return operation in self.schema.allowed_operations

    # ------------------------------------------------------------------
    # key based operations
    # ------------------------------------------------------------------

    def read(self, handle: ReadonlyHandle, row: Row) -> bool:
        """
        Read the row identified by the key (and tenant) values in `row` and
        copy its columns into `row`.

        Returns False if no row matches.
        """
        if self.where_text is None:
            return self._not_allowed("read")

        params = self.params_from_row(row, self.where_idx)
        result = handle.read(f"{self.select_text} {self.where_text}", params, self.where_types, self.select_types)
        if result is None:
            return False
        self.copy_to_row(result, row)
        return True

    def insert(self, handle: ReadWriteHandle, row: Row) -> bool:
        """
        Insert `row`. With a generated key, the key is excluded from the
        parameters and the value returned by the handle is written back into
        `row`.

        Returns False only if the handle reports zero rows affected.
        """
        if self.insert_text is None:
            return self._not_allowed("insert")

        params = self.params_from_row(row, self.insert_idx)
        if self.generated_column is None:
            return handle.write(self.insert_text, params, self.insert_types) > 0

        n, key = handle.insert_with_key_generation(
            self.insert_text, params, self.insert_types, self.generated_column
        )
        if n == 0:
            return False

        if key is None or key == 0:
            log.error("DB handle did not return generated key", extra={"record": self.schema.name})
        else:
            vt = self.schema.fields[self.generated_key_index].value_type
            row[self.generated_key_index] = vt.from_db(key)
            log.info(f"Generated key {key} assigned back to {self.schema.name}", extra={"record": self.schema.name})
        return True

    def update(self, handle: ReadWriteHandle, row: Row) -> bool:
        """
        Update the data columns of the row identified by its keys.

        Returns False if zero rows were affected: either no such row, or (with
        the timestamp check enabled) the row was modified by someone else.
        """
        if self.update_text is None:
            return self._not_allowed("update")

        params = self.params_from_row(row, self.update_idx)
        return handle.write(self.update_text, params, self.update_types) > 0

    def delete(self, handle: ReadWriteHandle, row: Row) -> bool:
        """Delete the row identified by its keys. False if nothing was deleted."""
        if self.delete_text is None:
            return self._not_allowed("delete")

        params = self.params_from_row(row, self.where_idx)
        return handle.write(self.delete_text, params, self.where_types) > 0

    def save(self, handle: ReadWriteHandle, row: Row) -> bool:
        """
        Update the row, or insert it if the update affected nothing.

        Not atomic: two concurrent saves of a new key may both try to insert,
        and one of them fails with the driver's uniqueness error.
        """
        if self.insert_text is None:
            return self._not_allowed("save")

        if self.update_text is not None and self.update(handle, row):
            return True
        return self.insert(handle, row)

    def insert_all(self, handle: ReadWriteHandle, rows: Sequence[Row]) -> bool:
        """
        Insert every row with one batched statement. Generated keys are copied
        back into their rows. True only if all were inserted; the caller
        decides on rollback.
        """
        if self.insert_text is None:
            return self._not_allowed("insert")
        if not rows:
            return True

        params = [self.params_from_row(row, self.insert_idx) for row in rows]
        if self.generated_column is None:
            n = handle.write_many(self.insert_text, params, self.insert_types)
        else:
            n, keys = handle.insert_many_with_key_generation(
                self.insert_text, params, self.insert_types, self.generated_column
            )
            vt = self.schema.fields[self.generated_key_index].value_type
            for row, key in zip(rows, keys):
                if key is not None:
                    row[self.generated_key_index] = vt.from_db(key)
        if n != len(rows):
            log.error(
                f"{n} of {len(rows)} rows inserted into {self.name_in_db}",
                extra={"record": self.schema.name},
            )
            return False
        return True

    def update_all(self, handle: ReadWriteHandle, rows: Sequence[Row]) -> bool:
        if self.update_text is None:
            return self._not_allowed("update")
        if not rows:
            return True

        params = [self.params_from_row(row, self.update_idx) for row in rows]
        n = handle.write_many(self.update_text, params, self.update_types)
        if n != len(rows):
            log.info(
                f"{n} of {len(rows)} rows updated in {self.name_in_db}",
                extra={"record": self.schema.name},
            )
            return False
        return True

    def save_all(self, handle: ReadWriteHandle, rows: Sequence[Row]) -> bool:
        if self.insert_text is None:
            return self._not_allowed("save")
        return all([self.save(handle, row) for row in rows])

    # ------------------------------------------------------------------
    # "must succeed" variants
    # ------------------------------------------------------------------

    def _fail(self, operation: str, row: Row) -> NoRowsAffectedError:
        return NoRowsAffectedError(operation, self.schema.name, self.schema.emit_keys(row))

    def read_or_fail(self, handle: ReadonlyHandle, row: Row) -> None:
        if not self.read(handle, row):
            raise self._fail("Read", row)

    def insert_or_fail(self, handle: ReadWriteHandle, row: Row) -> None:
        if not self.insert(handle, row):
            raise self._fail("Insert", row)

    def update_or_fail(self, handle: ReadWriteHandle, row: Row) -> None:
        if not self.update(handle, row):
            raise self._fail("Update", row)

    def delete_or_fail(self, handle: ReadWriteHandle, row: Row) -> None:
        if not self.delete(handle, row):
            raise self._fail("Delete", row)

    def save_or_fail(self, handle: ReadWriteHandle, row: Row) -> None:
        if not self.save(handle, row):
            raise self._fail("Save", row)

    # ------------------------------------------------------------------
    # filters
    # ------------------------------------------------------------------

    def _filter_sql(self, where_clause: Optional[str], select_text: Optional[str] = None) -> str:
        sql = select_text or self.select_text
        if where_clause:
            sql = f"{sql} {where_clause.strip()}"
        return sql

    @staticmethod
    def _param_types(values: Sequence[Any], types: Optional[Sequence[ValueType]]) -> List[ValueType]:
        if types is not None:
            return list(types)
        return [ValueType.of(v) for v in values]

    def filter(
        self,
        handle: ReadonlyHandle,
        where_clause: Optional[str],
        values: Sequence[Any] = (),
        types: Optional[Sequence[ValueType]] = None,
    ) -> List[Row]:
        """
        Select every row matching a caller-supplied clause.

        Parameters
        ----------
        where_clause : str | None
            e.g. "WHERE a=? AND b=?". None selects all rows. Use parameters,
            never inline values.
        values : sequence
            Values for the `?` placeholders, in order.
        types : sequence of ValueType, optional
            Types of `values`; inferred from the values when omitted.
        """
        rows: List[Row] = []

        def collect(result: List[Any]) -> bool:
            rows.append(self._new_row_from(result))
            return True

        handle.read_many(
            self._filter_sql(where_clause),
            list(values),
            self._param_types(values, types),
            self.select_types,
            collect,
        )
        return rows

    def filter_first(
        self,
        handle: ReadonlyHandle,
        where_clause: Optional[str],
        values: Sequence[Any] = (),
        types: Optional[Sequence[ValueType]] = None,
    ) -> Optional[Row]:
        result = handle.read(
            self._filter_sql(where_clause),
            list(values),
            self._param_types(values, types),
            self.select_types,
        )
        if result is None:
            return None
        return self._new_row_from(result)

    def for_each(
        self,
        handle: ReadonlyHandle,
        where_clause: Optional[str],
        values: Sequence[Any],
        processor: Callable[[Row], Optional[bool]],
        types: Optional[Sequence[ValueType]] = None,
    ) -> int:
        """Call `processor` with each matching row; it may return False to stop."""
        return handle.read_many(
            self._filter_sql(where_clause),
            list(values),
            self._param_types(values, types),
            self.select_types,
            lambda result: processor(self._new_row_from(result)),
        )

    def filter_compiled(self, handle: ReadonlyHandle, compiled: "CompiledFilter") -> List[Row]:
        """
        Run a compiled filter. When it names an output field subset, only those
        columns are selected and the other row positions stay None.
        """
        if not compiled.output_fields:
            return self.filter(handle, compiled.where_clause, compiled.param_values, compiled.param_types)

        columns = [f for f in compiled.output_fields if f.is_column]
        indexes = tuple(f.index for f in columns)
        select_text = f"SELECT {C.join(f.column_name for f in columns)} FROM {self.name_in_db}"  # type: ignore[misc]
        rows: List[Row] = []

        def collect(result: List[Any]) -> bool:
            rows.append(self._new_row_from(result, indexes))
            return True

        handle.read_many(
            self._filter_sql(compiled.where_clause, select_text),
            list(compiled.param_values),
            list(compiled.param_types),
            _types_of(self.schema, indexes),
            collect,
        )
        return rows

    def describe(self) -> List[Tuple[str, Optional[str], Tuple[int, ...]]]:
        """(operation, sql text, parameter indexes) for display."""
        return [
            ("select", self.select_text, self.select_idx),
            ("where", self.where_text, self.where_idx),
            ("insert", self.insert_text, self.insert_idx),
            ("update", self.update_text, self.update_idx),
            ("delete", self.delete_text, self.where_idx if self.delete_text else ()),
        ]

    def __repr__(self) -> str:
        return f"SqlSynthesizer(record={self.schema.name!r}, table={self.name_in_db!r})"


__all__ = ["SqlSynthesizer"]
