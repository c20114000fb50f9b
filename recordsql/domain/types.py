"""
Closed enumerations describing fields and the operations a record supports.

`ValueType` is the primitive kind of a field value, `FieldRole` is the
structural purpose of a field in its table. Every decision the SQL synthesizer
makes about a role is read from `_ROLE_TRAITS`, which must cover every member.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any, Callable, Dict, NamedTuple, Optional


class ValueType(str, Enum):
    """Primitive kind of a field value."""

    TEXT = "text"
    INTEGER = "integer"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    DATE = "date"
    TIMESTAMP = "timestamp"

    @property
    def is_numeric(self) -> bool:
        return self in (ValueType.INTEGER, ValueType.DECIMAL)

    @classmethod
    def of(cls, value: Any) -> "ValueType":
        """Best-fit value type for a native value; None and unknown types map to text."""
        if isinstance(value, bool):
            return cls.BOOLEAN
        if isinstance(value, int):
            return cls.INTEGER
        if isinstance(value, (Decimal, float)):
            return cls.DECIMAL
        if isinstance(value, datetime):
            return cls.TIMESTAMP
        if isinstance(value, date):
            return cls.DATE
        return cls.TEXT

    def zero(self) -> Any:
        """Value used for a NULL numeric column when nulls are treated as zero."""
        if self is ValueType.INTEGER:
            return 0
        if self is ValueType.DECIMAL:
            return Decimal(0)
        return None

    def parse(self, text: Any) -> Any:
        """
        Parse client-supplied text into the native value for this type.

        Returns None when the text is not a valid value of this type.
        """
        if text is None:
            return None
        value = str(text).strip()
        return _PARSERS[self](value)

    def is_right_type(self, value: Any) -> bool:
        if value is None:
            return True
        return _TYPE_CHECKS[self](value)

    def from_db(self, value: Any) -> Any:
        """Coerce a value returned by the driver into the native type."""
        if value is None:
            return None
        if self is ValueType.TEXT:
            return value if isinstance(value, str) else str(value)
        if isinstance(value, str):
            return self.parse(value)
        if self is ValueType.INTEGER:
            return int(value)
        if self is ValueType.DECIMAL:
            return value if isinstance(value, Decimal) else Decimal(str(value))
        if self is ValueType.BOOLEAN:
            return bool(value)
        if self is ValueType.DATE:
            return value.date() if isinstance(value, datetime) else value
        return value


def _parse_text(value: str) -> Optional[str]:
    return value


def _parse_integer(value: str) -> Optional[int]:
    try:
        return int(value)
    except ValueError:
        pass
    # decimal text is accepted and rounded, but only when it looks like a number
    if "." not in value or value.index(".") > 19:
        return None
    try:
        number = Decimal(value)
    except InvalidOperation:
        return None
    if not number.is_finite():
        return None
    return int(number.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def _parse_decimal(value: str) -> Optional[Decimal]:
    try:
        number = Decimal(value)
    except InvalidOperation:
        return None
    if not number.is_finite():
        return None
    return number


def _parse_boolean(value: str) -> Optional[bool]:
    lowered = value.lower()
    if lowered in ("1", "true"):
        return True
    if lowered in ("0", "false"):
        return False
    return None


def _parse_date(value: str) -> Optional[date]:
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def _parse_timestamp(value: str) -> Optional[datetime]:
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


_PARSERS: Dict[ValueType, Callable[[str], Any]] = {
    ValueType.TEXT: _parse_text,
    ValueType.INTEGER: _parse_integer,
    ValueType.DECIMAL: _parse_decimal,
    ValueType.BOOLEAN: _parse_boolean,
    ValueType.DATE: _parse_date,
    ValueType.TIMESTAMP: _parse_timestamp,
}

_TYPE_CHECKS: Dict[ValueType, Callable[[Any], bool]] = {
    ValueType.TEXT: lambda v: isinstance(v, str),
    ValueType.INTEGER: lambda v: isinstance(v, int) and not isinstance(v, bool),
    ValueType.DECIMAL: lambda v: isinstance(v, (Decimal, int, float)) and not isinstance(v, bool),
    ValueType.BOOLEAN: lambda v: isinstance(v, bool),
    ValueType.DATE: lambda v: isinstance(v, date) and not isinstance(v, datetime),
    ValueType.TIMESTAMP: lambda v: isinstance(v, datetime),
}


class _RoleTraits(NamedTuple):
    inserted: bool
    updated: bool
    required: bool
    # column is set by a server-side timestamp function, never by a parameter
    timestamp_on_insert: bool
    timestamp_on_update: bool


class FieldRole(str, Enum):
    """Structural purpose of a field in its table."""

    PRIMARY_KEY = "primaryKey"
    GENERATED_PRIMARY_KEY = "generatedPrimaryKey"
    TENANT_KEY = "tenantKey"
    CREATED_AT = "createdAt"
    CREATED_BY = "createdBy"
    MODIFIED_AT = "modifiedAt"
    MODIFIED_BY = "modifiedBy"
    REQUIRED_DATA = "requiredData"
    OPTIONAL_DATA = "optionalData"

    @property
    def is_inserted(self) -> bool:
        return _ROLE_TRAITS[self].inserted

    @property
    def is_updated(self) -> bool:
        return _ROLE_TRAITS[self].updated

    @property
    def is_required(self) -> bool:
        return _ROLE_TRAITS[self].required

    @property
    def timestamp_on_insert(self) -> bool:
        return _ROLE_TRAITS[self].timestamp_on_insert

    @property
    def timestamp_on_update(self) -> bool:
        return _ROLE_TRAITS[self].timestamp_on_update

    @property
    def is_key(self) -> bool:
        return self in (FieldRole.PRIMARY_KEY, FieldRole.GENERATED_PRIMARY_KEY)

    @property
    def is_user_id(self) -> bool:
        return self in (FieldRole.CREATED_BY, FieldRole.MODIFIED_BY)


_ROLE_TRAITS: Dict[FieldRole, _RoleTraits] = {
    FieldRole.PRIMARY_KEY: _RoleTraits(True, False, True, False, False),
    FieldRole.GENERATED_PRIMARY_KEY: _RoleTraits(False, False, False, False, False),
    FieldRole.TENANT_KEY: _RoleTraits(True, False, True, False, False),
    FieldRole.CREATED_AT: _RoleTraits(True, False, False, True, False),
    FieldRole.CREATED_BY: _RoleTraits(True, False, False, False, False),
    FieldRole.MODIFIED_AT: _RoleTraits(True, True, False, True, True),
    FieldRole.MODIFIED_BY: _RoleTraits(True, True, False, False, False),
    FieldRole.REQUIRED_DATA: _RoleTraits(True, True, True, False, False),
    FieldRole.OPTIONAL_DATA: _RoleTraits(True, True, False, False, False),
}


class Operation(str, Enum):
    """I/O operations a record may be exposed for."""

    GET = "get"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    FILTER = "filter"

    @classmethod
    def parse(cls, text: str) -> Optional["Operation"]:
        try:
            return cls(text.strip().lower())
        except ValueError:
            return None


__all__ = ["ValueType", "FieldRole", "Operation"]
