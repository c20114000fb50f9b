"""
Domain package for recordsql.

Exports the field and record metadata the SQL layer is driven by, and the
message types used to report request problems. Keep this package focused on
data definitions and validation concerns.
"""

from recordsql.domain.fields import FieldDescriptor, ValueList, ValueSchema
from recordsql.domain.messages import Message, MessageKind, MessageSink, RequestContext
from recordsql.domain.schema import (
    FieldDeclaration,
    RecordDeclaration,
    RecordSchema,
    Row,
    build_schema,
)
from recordsql.domain.types import FieldRole, Operation, ValueType

__all__ = [
    "FieldDeclaration",
    "FieldDescriptor",
    "FieldRole",
    "Message",
    "MessageKind",
    "MessageSink",
    "Operation",
    "RecordDeclaration",
    "RecordSchema",
    "RequestContext",
    "Row",
    "ValueList",
    "ValueSchema",
    "ValueType",
    "build_schema",
]
