"""
Record schemas: the ordered field metadata of one table-like entity.

A schema is built once from a `RecordDeclaration` (static, trusted
configuration) by `build_schema`. Structural problems are logged and collected
on the schema instead of being raised; `SqlSynthesizer` and `SchemaRegistry`
refuse a schema whose `is_valid` is False.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Collection, Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from recordsql.domain.fields import FieldDescriptor, ValueList, ValueSchema
from recordsql.domain.messages import (
    INTERNAL_ERROR,
    INVALID_DATA,
    VALUE_REQUIRED,
    Message,
    RequestContext,
)
from recordsql.domain.types import FieldRole, Operation, ValueType
from recordsql.utils.logging import get_logger

log = get_logger(__name__)

Row = List[Any]


class FieldDeclaration(BaseModel):
    """Static declaration of one field, as found in a record definition file."""

    name: str = Field(..., min_length=1)
    column_name: Optional[str] = Field(None, alias="columnName")
    value_type: ValueType = Field(ValueType.TEXT, alias="valueType")
    role: Optional[FieldRole] = Field(None)
    required: Optional[bool] = Field(None, description="Overrides the requirement implied by the role.")
    default_value: Optional[str] = Field(None, alias="defaultValue")
    schema_name: Optional[str] = Field(None, alias="valueSchema")
    min_length: Optional[int] = Field(None, alias="minLength", ge=0)
    max_length: Optional[int] = Field(None, alias="maxLength", ge=0)
    pattern: Optional[str] = Field(None)
    min_value: Optional[Decimal] = Field(None, alias="minValue")
    max_value: Optional[Decimal] = Field(None, alias="maxValue")
    value_list: Optional[ValueList] = Field(None, alias="valueList")
    list_key: Optional[str] = Field(
        None, alias="listKey", description="Field whose value selects the list of a keyed value list."
    )

    model_config = {"frozen": True, "populate_by_name": True}

    def value_schema(self) -> ValueSchema:
        return ValueSchema(
            name=self.schema_name or self.value_type.value,
            value_type=self.value_type,
            min_length=self.min_length,
            max_length=self.max_length,
            pattern=self.pattern,
            min_value=self.min_value,
            max_value=self.max_value,
        )


class RecordDeclaration(BaseModel):
    """Static declaration of a record: its table, its fields and allowed operations."""

    name: str = Field(..., min_length=1)
    name_in_db: Optional[str] = Field(None, alias="nameInDb")
    use_timestamp_check: bool = Field(False, alias="useTimestampCheck")
    operations: List[str] = Field(default_factory=list)
    fields: List[FieldDeclaration] = Field(default_factory=list)

    model_config = {"frozen": True, "populate_by_name": True}


class RecordSchema:
    """
    Ordered fields of a record plus the derived role indices.

    Immutable once built and safe to share between concurrent requests.
    """

    def __init__(
        self,
        name: str,
        name_in_db: Optional[str],
        fields: Sequence[FieldDescriptor],
        key_fields: Sequence[FieldDescriptor],
        generated_key_field: Optional[FieldDescriptor],
        tenant_field: Optional[FieldDescriptor],
        audit_fields: Mapping[FieldRole, FieldDescriptor],
        use_timestamp_check: bool,
        allowed_operations: FrozenSet[Operation],
        errors: Sequence[str] = (),
    ) -> None:
        self.name = name
        self.name_in_db = name_in_db
        self.fields: Tuple[FieldDescriptor, ...] = tuple(fields)
        self.key_fields: Tuple[FieldDescriptor, ...] = tuple(key_fields)
        self.generated_key_field = generated_key_field
        self.tenant_field = tenant_field
        self.audit_fields: Dict[FieldRole, FieldDescriptor] = dict(audit_fields)
        self.use_timestamp_check = use_timestamp_check
        self.allowed_operations = allowed_operations
        self.errors: Tuple[str, ...] = tuple(errors)
        self._by_name: Dict[str, FieldDescriptor] = {f.name: f for f in self.fields}
        self.fields_with_dependent_list: Tuple[FieldDescriptor, ...] = tuple(
            f for f in self.fields if f.list_key_index is not None
        )

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def is_db_record(self) -> bool:
        return bool(self.name_in_db)

    @property
    def timestamp_field(self) -> Optional[FieldDescriptor]:
        """The modifiedAt field when optimistic concurrency is enabled."""
        if not self.use_timestamp_check:
            return None
        return self.audit_fields.get(FieldRole.MODIFIED_AT)

    @property
    def column_fields(self) -> Tuple[FieldDescriptor, ...]:
        return tuple(f for f in self.fields if f.is_column)

    def __len__(self) -> int:
        return len(self.fields)

    def field(self, name: str) -> Optional[FieldDescriptor]:
        return self._by_name.get(name)

    def field_names(self) -> List[str]:
        return [f.name for f in self.fields]

    def new_row(self) -> Row:
        return [f.default_value for f in self.fields]

    def row_from(self, values: Mapping[str, Any]) -> Row:
        """Build a row from native values keyed by field name. Unknown names are ignored."""
        row = self.new_row()
        for name, value in values.items():
            f = self._by_name.get(name)
            if f is not None:
                row[f.index] = value
        return row

    def to_dict(self, row: Sequence[Any]) -> Dict[str, Any]:
        return {f.name: row[f.index] for f in self.fields}

    def emit_keys(self, row: Sequence[Any]) -> str:
        """Key values of a row, for log lines and error texts."""
        if not self.key_fields:
            return "No keys"
        parts = [f"{f.name} = {row[f.index]}" for f in self.key_fields]
        if self.tenant_field is not None:
            parts.append(f"{self.tenant_field.name} = {row[self.tenant_field.index]}")
        return "  ".join(parts)

    def parse_row(
        self,
        data: Mapping[str, Any],
        for_insert: bool,
        ctx: RequestContext,
        object_name: Optional[str] = None,
        row_number: Optional[int] = None,
        skip: Collection[int] = (),
        optional_generated_key: bool = False,
    ) -> Optional[Row]:
        """
        Parse client input into a row.

        Every field is checked and each problem is reported to `ctx`, so the
        caller sees all of them at once. Tenant and user columns are taken from
        the context, never from the input. Fields at the `skip` indexes are left
        for the caller to fill. With `optional_generated_key` a generated key is
        parsed when present and left empty otherwise, for rows that may be
        either updated or inserted. Keyed value lists are checked once the whole
        row is parsed. Returns None if any field failed.
        """
        row = self.new_row()
        ok = True
        for f in self.fields:
            if f.index in skip:
                continue
            role = f.role
            if role is FieldRole.TENANT_KEY:
                row[f.index] = ctx.tenant_id
                continue
            if role is not None and role.is_user_id:
                row[f.index] = ctx.user_id
                continue
            if role is FieldRole.GENERATED_PRIMARY_KEY and for_insert:
                continue

            raw = data.get(f.name)
            if raw is None or (isinstance(raw, str) and not raw.strip()):
                needed = f.is_required or (
                    role is FieldRole.GENERATED_PRIMARY_KEY and not for_insert and not optional_generated_key
                )
                if needed:
                    log.error(f"Field {f.name} is required but no data is received", extra={"record": self.name})
                    ctx.add_message(
                        Message.field_error(
                            f.name,
                            f"{f.name} requires a value",
                            VALUE_REQUIRED,
                            object_name,
                            row_number,
                        )
                    )
                    ok = False
                continue

            value = f.parse(raw)
            if value is None:
                log.error(
                    f"{raw!r} is not valid for field {f.name} as per value schema {f.value_schema.name}",
                    extra={"record": self.name},
                )
                ctx.add_message(
                    Message.field_error(
                        f.name,
                        f"'{raw}' is not a valid value for {f.name}",
                        INVALID_DATA,
                        object_name,
                        row_number,
                    )
                )
                ok = False
                continue
            row[f.index] = value

        for f in self.fields_with_dependent_list:
            value = row[f.index]
            if f.index in skip or value is None:
                continue
            key_field = self.fields[f.list_key_index]  # type: ignore[index]
            key = row[key_field.index]
            if not f.value_list.is_valid(value, f.value_type, key):  # type: ignore[union-attr]
                log.error(
                    f"{value!r} is not valid for field {f.name} when {key_field.name} is {key!r}",
                    extra={"record": self.name},
                )
                ctx.add_message(
                    Message.field_error(
                        f.name,
                        f"'{value}' is not a valid value for {f.name} with {key_field.name} '{key}'",
                        INVALID_DATA,
                        object_name,
                        row_number,
                    )
                )
                ok = False

        return row if ok else None

    def parse_keys(self, data: Mapping[str, Any], ctx: RequestContext) -> Optional[Row]:
        """Parse only the key fields (plus the tenant from the context) into a new row."""
        if not self.key_fields:
            log.error(f"No keys defined for record {self.name}", extra={"record": self.name})
            ctx.add_message(Message.error(f"{self.name} has no key fields", INTERNAL_ERROR))
            return None

        row = self.new_row()
        if self.tenant_field is not None:
            row[self.tenant_field.index] = ctx.tenant_id

        ok = True
        for f in self.key_fields:
            raw = data.get(f.name)
            if raw is None or (isinstance(raw, str) and not raw.strip()):
                ctx.add_message(Message.field_error(f.name, f"{f.name} requires a value", VALUE_REQUIRED))
                ok = False
                continue
            value = f.parse(raw)
            if value is None:
                ctx.add_message(Message.field_error(f.name, f"'{raw}' is not a valid value for {f.name}"))
                ok = False
                continue
            row[f.index] = value
        return row if ok else None

    def __repr__(self) -> str:
        return f"RecordSchema(name={self.name!r}, fields={len(self.fields)}, valid={self.is_valid})"


_AUDIT_ROLES = (
    FieldRole.CREATED_AT,
    FieldRole.CREATED_BY,
    FieldRole.MODIFIED_AT,
    FieldRole.MODIFIED_BY,
)


def build_schema(declaration: RecordDeclaration) -> RecordSchema:
    """
    Assign dense indices, classify fields by role and derive the role indices.

    Problems are logged and recorded in `RecordSchema.errors`; nothing is
    raised. A requested timestamp check without a modifiedAt field is
    disabled with a warning rather than treated as an error.
    """
    name = declaration.name
    errors: List[str] = []

    def problem(text: str) -> None:
        log.error(f"[SCHEMA] {name}: {text}", extra={"record": name})
        errors.append(text)

    fields: List[FieldDescriptor] = []
    seen: Dict[str, FieldDescriptor] = {}
    key_fields: List[FieldDescriptor] = []
    generated: Optional[FieldDescriptor] = None
    tenant: Optional[FieldDescriptor] = None
    audit: Dict[FieldRole, FieldDescriptor] = {}
    positions = {decl.name: idx for idx, decl in enumerate(declaration.fields)}

    for idx, decl in enumerate(declaration.fields):
        role = decl.role
        if role is None and decl.column_name:
            log.warning(
                f"{decl.name} is linked to db column {decl.column_name} but declares no role. "
                "It is treated as optional data.",
                extra={"record": name},
            )
            role = FieldRole.OPTIONAL_DATA
        if role is not None and not decl.column_name:
            problem(f"field {decl.name} has role {role.value} but no column name")

        schema = decl.value_schema()
        default = schema.parse(decl.default_value) if decl.default_value is not None else None
        required = decl.required if decl.required is not None else bool(role and role.is_required)

        list_key_index = None
        if decl.list_key is not None:
            list_key_index = positions.get(decl.list_key)
            if list_key_index is None:
                problem(f"field {decl.name} specifies {decl.list_key} as listKey, but that field is not defined")
            elif decl.value_list is None or not decl.value_list.is_keyed:
                problem(f"field {decl.name} specifies {decl.list_key} as listKey, but has no keyed value list")
                list_key_index = None
        elif decl.value_list is not None and decl.value_list.is_keyed:
            problem(f"field {decl.name} has a keyed value list but no listKey")

        fld = FieldDescriptor(
            index=idx,
            name=decl.name,
            value_schema=schema,
            column_name=decl.column_name,
            role=role,
            is_required=required,
            default_value=default,
            value_list=decl.value_list,
            list_key_index=list_key_index,
        )
        fields.append(fld)

        if decl.name in seen:
            problem(f"field {decl.name} is declared more than once")
        seen[decl.name] = fld

        if role is None:
            continue

        if role is FieldRole.PRIMARY_KEY:
            if generated is not None:
                problem(f"{generated.name} is a generated primary key, but {fld.name} is also a primary key")
            key_fields.append(fld)
        elif role is FieldRole.GENERATED_PRIMARY_KEY:
            if generated is not None:
                problem(f"only one generated key please; found {generated.name} as well as {fld.name}")
            elif key_fields:
                problem(f"{fld.name} is a generated primary key, but {key_fields[0].name} is also a primary key")
            else:
                generated = fld
                key_fields.append(fld)
        elif role is FieldRole.TENANT_KEY:
            if tenant is not None:
                problem(f"both {tenant.name} and {fld.name} are tenant keys; tenant key has to be unique")
            else:
                tenant = fld
        elif role in _AUDIT_ROLES:
            existing = audit.get(role)
            if existing is not None:
                problem(f"only one field can be {role.value}, but {existing.name} and {fld.name} are marked")
            else:
                audit[role] = fld

    use_timestamp_check = declaration.use_timestamp_check
    if use_timestamp_check and FieldRole.MODIFIED_AT not in audit:
        log.warning(
            f"Record {name} is designed to use time-stamp for concurrency, "
            "but has no modifiedAt field. Check disabled.",
            extra={"record": name},
        )
        use_timestamp_check = False

    operations = set()
    for text in declaration.operations:
        op = Operation.parse(text)
        if op is None:
            log.warning(f"Record {name}: {text} is not a valid operation. Ignored.", extra={"record": name})
            continue
        operations.add(op)

    schema = RecordSchema(
        name=name,
        name_in_db=declaration.name_in_db,
        fields=fields,
        key_fields=key_fields,
        generated_key_field=generated,
        tenant_field=tenant,
        audit_fields=audit,
        use_timestamp_check=use_timestamp_check,
        allowed_operations=frozenset(operations),
        errors=errors,
    )
    if errors:
        log.error(
            f"Record {name} has {len(errors)} definition error(s) and must not be used",
            extra={"record": name, "errors": errors},
        )
    else:
        log.debug(f"Record {name} built with {len(fields)} fields", extra={"record": name})
    return schema


__all__ = [
    "FieldDeclaration",
    "RecordDeclaration",
    "RecordSchema",
    "Row",
    "build_schema",
]
