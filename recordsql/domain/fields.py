"""
Field metadata: value-schema validation rules and the per-column descriptor.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from recordsql.domain.types import FieldRole, ValueType
from recordsql.utils.logging import get_logger

log = get_logger(__name__)


class ValueSchema(BaseModel):
    """
    Validation rules for the values of a field.

    Length rules apply to text, range rules to numbers. A value that parses
    as its value type but breaks a rule is invalid just the same.
    """

    name: str = Field("", description="Name of the schema, used in diagnostics.")
    value_type: ValueType = Field(ValueType.TEXT)
    min_length: Optional[int] = Field(None, ge=0)
    max_length: Optional[int] = Field(None, ge=0)
    pattern: Optional[str] = Field(None, description="Regular expression the whole text must match.")
    min_value: Optional[Decimal] = Field(None)
    max_value: Optional[Decimal] = Field(None)

    model_config = {"frozen": True}

    def parse(self, text: Any) -> Any:
        """Parse raw text into a valid value, or None if it is not acceptable."""
        value = self.value_type.parse(text)
        if value is None or not self.is_valid(value):
            return None
        return value

    def is_valid(self, value: Any) -> bool:
        if value is None:
            return True
        if not self.value_type.is_right_type(value):
            return False
        if self.value_type is ValueType.TEXT:
            if self.min_length is not None and len(value) < self.min_length:
                return False
            if self.max_length is not None and len(value) > self.max_length:
                return False
            if self.pattern is not None and re.fullmatch(self.pattern, value) is None:
                return False
        elif self.value_type.is_numeric:
            if self.min_value is not None and value < self.min_value:
                return False
            if self.max_value is not None and value > self.max_value:
                return False
        return True


class ValueList(BaseModel):
    """
    The values a field may take.

    A plain list applies to every row. A keyed list holds one list per value
    of another field in the same row (the field's `listKey`): a district is
    valid only among the districts of the row's state. Entries are declared as
    text and compared after parsing them as the field's value type.
    """

    name: str = Field("")
    values: List[str] = Field(default_factory=list)
    keyed_values: Dict[str, List[str]] = Field(default_factory=dict, alias="keyedValues")

    model_config = {"frozen": True, "populate_by_name": True, "coerce_numbers_to_str": True}

    @property
    def is_keyed(self) -> bool:
        return bool(self.keyed_values)

    def is_valid(self, value: Any, value_type: ValueType, key: Any = None) -> bool:
        """
        Parameters
        ----------
        value : Any
            Parsed value to check. None is always valid.
        value_type : ValueType
            Type the list entries are parsed as.
        key : Any, optional
            Value of the key field, for a keyed list.

        Returns
        -------
        bool
            False for a value outside the list, and for a keyed list when the
            key has no list of its own.
        """
        if value is None:
            return True
        if not self.is_keyed:
            return value in [value_type.parse(e) for e in self.values]

        entries = self.keyed_values.get("" if key is None else str(key))
        if entries is None:
            log.error(f"{key!r} is not a valid key for value list {self.name}", extra={"value_list": self.name})
            return False
        return value in [value_type.parse(e) for e in entries]


@dataclass(frozen=True)
class FieldDescriptor:
    """
    Metadata for one field of a record.

    `index` is the position of the field's value in a row. A field without a
    `column_name` exists only in memory and takes no part in any SQL.
    """

    index: int
    name: str
    value_schema: ValueSchema
    column_name: Optional[str] = None
    role: Optional[FieldRole] = None
    is_required: bool = False
    default_value: Any = None
    value_list: Optional[ValueList] = field(default=None, compare=False)
    list_key_index: Optional[int] = None

    @property
    def value_type(self) -> ValueType:
        return self.value_schema.value_type

    @property
    def is_column(self) -> bool:
        return self.column_name is not None and self.role is not None

    def parse(self, raw: Any) -> Any:
        """
        Parse a raw input value. Native values of the right type are accepted
        as they are, after the value-schema rules. A plain value list is checked
        here; a keyed one needs the rest of the row, see `RecordSchema.parse_row`.
        """
        if raw is not None and not isinstance(raw, str) and self.value_type.is_right_type(raw):
            value = self.value_type.from_db(raw)
            if not self.value_schema.is_valid(value):
                return None
        else:
            value = self.value_schema.parse(raw)
        if value is not None and self.value_list is not None and not self.value_list.is_keyed:
            if not self.value_list.is_valid(value, self.value_type):
                return None
        return value


__all__ = ["ValueList", "ValueSchema", "FieldDescriptor"]
