"""
Compilation of client-supplied filter/sort requests into parameterized SQL.

The request is data, not SQL: every column in the output is resolved from the
record schema, and every client literal travels as a bound parameter. The only
way to put a column on the right-hand side of a comparison is the `${field}`
indirection, which is resolved against the same schema.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, Field

from recordsql.config import get_settings
from recordsql.domain.fields import FieldDescriptor
from recordsql.domain.messages import INVALID_DATA, Message, MessageSink
from recordsql.domain.schema import RecordSchema
from recordsql.domain.types import ValueType
from recordsql.utils.logging import get_logger

log = get_logger(__name__)

WILD_CARD = "%"
WILD_CHAR = "_"
ESCAPE_CHAR = "\\"
LIKE_ESCAPE = f" ESCAPE '{ESCAPE_CHAR}'"


class FilterOperator(str, Enum):
    """Comparators a filter condition may use."""

    EQ = "="
    NE = "!="
    LT = "<"
    LE = "<="
    GT = ">"
    GE = ">="
    CONTAINS = "contains"
    STARTS_WITH = "startsWith"
    IN = "in"
    BETWEEN = "between"

    @classmethod
    def parse(cls, text: Optional[str]) -> Optional["FilterOperator"]:
        """Accepts the symbol or the name of an operator, names in any case."""
        if not text:
            return None
        key = text.strip()
        if key == "<>":
            return cls.NE
        for op in cls:
            if op.value == key or op.value.lower() == key.lower():
                return op
        return None

    @property
    def sql(self) -> str:
        # ANSI spelling of "not equal"
        return "<>" if self is FilterOperator.NE else self.value


class FilterCondition(BaseModel):
    field: str = Field(..., description="Name of the record field to compare.")
    comparator: Optional[str] = Field(None)
    value: Optional[str] = Field(None, description="Text of the value, or ${fieldName}.")
    to_value: Optional[str] = Field(None, alias="toValue", description="Upper bound for between.")

    model_config = {"populate_by_name": True, "coerce_numbers_to_str": True}


class SortBy(BaseModel):
    field: str
    descending: bool = False


class FilterRequest(BaseModel):
    """
    A client's filter request.

    JSON shape: {"filters": [{"field", "comparator", "value", "toValue"}],
    "sorts": [{"field", "descending"}], "maxRows": n, "fields": [names]}
    """

    filters: List[FilterCondition] = Field(default_factory=list)
    sorts: List[SortBy] = Field(default_factory=list)
    max_rows: Optional[int] = Field(None, alias="maxRows")
    output_fields: Optional[List[str]] = Field(None, alias="fields", description="Subset of fields to select.")

    model_config = {"populate_by_name": True}


@dataclass(frozen=True)
class CompiledFilter:
    """
    Outcome of a successful compilation.

    `where_clause` holds the WHERE, ORDER BY and FETCH FIRST parts, ready to be
    appended to the record's select text.
    """

    where_clause: str
    param_values: Tuple[Any, ...]
    param_types: Tuple[ValueType, ...]
    output_fields: Tuple[FieldDescriptor, ...] = ()
    sort_spec: Tuple[Tuple[FieldDescriptor, bool], ...] = ()
    max_rows: int = 0


class _ConditionError(Exception):
    """A condition that cannot be compiled; the text goes back to the caller."""


def escape_like(text: str) -> str:
    """Escape LIKE wildcards so the text matches only itself."""
    return (
        text.replace(ESCAPE_CHAR, ESCAPE_CHAR + ESCAPE_CHAR)
        .replace(WILD_CARD, ESCAPE_CHAR + WILD_CARD)
        .replace(WILD_CHAR, ESCAPE_CHAR + WILD_CHAR)
    )


def _is_blank(text: Optional[str]) -> bool:
    return text is None or not text.strip()


def _upper(sql: str) -> str:
    return f"UPPER({sql})"


def _column_reference(schema: RecordSchema, text: str, vt: ValueType) -> Optional[str]:
    """
    Column name for a `${fieldName}` operand, None for an ordinary literal.

    Raises _ConditionError if the referenced field is unusable.
    """
    if not (text.startswith("${") and text.endswith("}")):
        return None

    name = text[2:-1]
    other = schema.field(name)
    if other is None:
        problem = "This field does not exist"
    elif other.value_type is not vt:
        problem = f"This field is of value type {other.value_type.value} but a value of type {vt.value} is expected"
    elif not other.is_column:
        problem = "This field is not a column in the table/view"
    else:
        return other.column_name
    raise _ConditionError(
        f"Filter condition uses '{text}' indicating that the field '{name}' is to be used for comparison. {problem}"
    )


def _parse_value(text: str, vt: ValueType, field_name: str) -> Any:
    value = vt.parse(text)
    if value is None:
        raise _ConditionError(f"{text} is not a valid value for value type {vt.value} for field {field_name}")
    return value


def _compile_condition(
    field: FieldDescriptor,
    cond: FilterCondition,
    schema: RecordSchema,
    index: int,
) -> Tuple[str, List[Any], List[ValueType]]:
    """SQL fragment with its parameters for one condition of a resolved field."""
    if not field.is_column:
        raise _ConditionError(f"Filter field {field.name} is not a column in the table/view")

    op = FilterOperator.parse(cond.comparator)
    if op is None:
        if not cond.comparator:
            raise _ConditionError(f"filter operator is missing at index {index}")
        raise _ConditionError(f"{cond.comparator} is not a valid filter condition")
    if _is_blank(cond.value):
        raise _ConditionError(f"value is missing for a filter condition at index {index}")
    if op is FilterOperator.BETWEEN and _is_blank(cond.to_value):
        raise _ConditionError(f"toValue is missing for a filter condition at index {index}")

    vt = field.value_type
    is_text = vt is ValueType.TEXT
    wrap = _upper if is_text else (lambda sql: sql)
    column = wrap(field.column_name)
    ref1 = _column_reference(schema, cond.value, vt)
    values: List[Any] = []

    if op in (FilterOperator.CONTAINS, FilterOperator.STARTS_WITH):
        if not is_text:
            raise _ConditionError(
                f"Condition {op.value} is not valid for field {field.name} which is of value type {vt.value}"
            )
        if ref1 is not None:
            raise _ConditionError(f"Operator {op.value} can not be used with a field as the second operand")
        pattern = escape_like(cond.value) + WILD_CARD
        if op is FilterOperator.CONTAINS:
            pattern = WILD_CARD + pattern
        return f"{column} LIKE {wrap('?')}{LIKE_ESCAPE}", [pattern], [vt]

    if op is FilterOperator.IN:
        if ref1 is not None:
            raise _ConditionError(f"Operator {op.value} can not be used with a field as the second operand")
        for part in cond.value.split(","):
            values.append(_parse_value(part.strip(), vt, field.name))
        marks = ", ".join(wrap("?") for _ in values)
        return f"{column} IN ({marks})", values, [vt] * len(values)

    def operand(text: str, ref: Optional[str]) -> str:
        if ref is not None:
            return wrap(ref)
        values.append(_parse_value(text, vt, field.name))
        return wrap("?")

    left = operand(cond.value, ref1)
    if op is FilterOperator.BETWEEN:
        ref2 = _column_reference(schema, cond.to_value, vt)  # type: ignore[arg-type]
        right = operand(cond.to_value, ref2)  # type: ignore[arg-type]
        return f"{column} BETWEEN {left} AND {right}", values, [vt] * len(values)

    return f"{column} {op.sql} {left}", values, [vt] * len(values)


def compile_filter(
    schema: RecordSchema,
    request: FilterRequest,
    tenant_id: Any,
    messages: MessageSink,
    max_rows: Optional[int] = None,
) -> Optional[CompiledFilter]:
    """
    Compile a filter request against a record schema.

    Parameters
    ----------
    schema : RecordSchema
        Record the request is for.
    request : FilterRequest
        Conditions, sort order, row limit and output subset.
    tenant_id : Any
        Caller's tenant. Always applied when the record has a tenant field.
    messages : MessageSink
        Receives one message per problem found.
    max_rows : int, optional
        Upper bound for the row limit. Defaults to the MAX_ROWS_TO_FILTER setting.

    Returns
    -------
    CompiledFilter | None
        None when any problem was reported; nothing should be executed then.
    """
    configured_max = max_rows if max_rows is not None else get_settings().max_rows_to_filter
    ok = True

    def report(text: str, field_name: Optional[str] = None) -> None:
        nonlocal ok
        ok = False
        log.error(text, extra={"record": schema.name})
        if field_name is None:
            messages.add(Message.error(text, INVALID_DATA))
        else:
            messages.add(Message.field_error(field_name, text, INVALID_DATA))

    clauses: List[str] = []
    values: List[Any] = []
    types: List[ValueType] = []

    tenant = schema.tenant_field
    if tenant is not None:
        if tenant_id is None:
            report(f"Record {schema.name} is scoped by tenant, but no tenant id is available")
            return None
        clauses.append(f"{tenant.column_name}=?")
        values.append(tenant_id)
        types.append(tenant.value_type)

    if not request.filters:
        log.warning("payload for filter has no conditions. All rows will be filtered", extra={"record": schema.name})

    for i, cond in enumerate(request.filters):
        field = schema.field(cond.field)
        if field is None:
            # nothing after an unresolved field can be trusted
            report(f"Filter field {cond.field} does not exist in the record {schema.name}", cond.field)
            return None
        try:
            sql, cond_values, cond_types = _compile_condition(field, cond, schema, i)
        except _ConditionError as e:
            report(str(e), field.name)
            continue
        clauses.append(sql)
        values.extend(cond_values)
        types.extend(cond_types)

    if not ok:
        return None

    output_fields: List[FieldDescriptor] = []
    for name in request.output_fields or ():
        f = schema.field(name)
        if f is None or not f.is_column:
            log.warning(
                f"{name} is not a valid field in this record. Field dropped from selection list.",
                extra={"record": schema.name},
            )
            continue
        output_fields.append(f)

    sort_spec: List[Tuple[FieldDescriptor, bool]] = []
    for sort in request.sorts:
        f = schema.field(sort.field)
        if f is None or not f.is_column:
            log.warning(f"{sort.field} is not a field in the record. Sort order ignored", extra={"record": schema.name})
            continue
        sort_spec.append((f, sort.descending))

    requested = request.max_rows
    limit = requested if requested is not None and 0 < requested <= configured_max else configured_max

    parts: List[str] = []
    if clauses:
        parts.append("WHERE " + " AND ".join(clauses))
    if sort_spec:
        parts.append("ORDER BY " + ", ".join(f"{f.column_name} DESC" if desc else f.column_name for f, desc in sort_spec))  # type: ignore[misc]
    parts.append(f"FETCH FIRST {limit} ROWS ONLY")
    where_clause = " ".join(parts)

    log.info(f"filter clause is: {where_clause}", extra={"record": schema.name, "params": values})
    return CompiledFilter(
        where_clause=where_clause,
        param_values=tuple(values),
        param_types=tuple(types),
        output_fields=tuple(output_fields),
        sort_spec=tuple(sort_spec),
        max_rows=limit,
    )


__all__ = [
    "CompiledFilter",
    "FilterCondition",
    "FilterOperator",
    "FilterRequest",
    "SortBy",
    "compile_filter",
    "escape_like",
]
