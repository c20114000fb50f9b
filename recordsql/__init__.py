"""
recordsql - metadata-driven SQL for relational records.

Given a declaration of a record's fields (value type, column, structural role),
this package:

- synthesizes parameterized select/insert/update/delete SQL once per record
- marshals rows to SQL parameters and result columns back to rows
- compiles client filter/sort requests into injection-safe WHERE clauses
- cascades CRUD from a parent record to its linked child records

Statements are executed through a transaction handle owned by the caller.
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from recordsql.config import Settings, get_settings
from recordsql.domain import (
    FieldDescriptor,
    FieldRole,
    Message,
    MessageSink,
    Operation,
    RecordDeclaration,
    RecordSchema,
    RequestContext,
    ValueType,
    build_schema,
)
from recordsql.errors import (
    LinkageDefinitionError,
    NoRowsAffectedError,
    RecordSqlError,
    SchemaDefinitionError,
)
from recordsql.registry import SchemaRegistry, load_declarations
from recordsql.sql import (
    ChildLinkage,
    CompiledFilter,
    FilterRequest,
    LinkedRecord,
    SqlSynthesizer,
    compile_filter,
)
from recordsql.utils.logging import configure_logging, get_logger

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Schema
    "FieldDescriptor",
    "FieldRole",
    "Operation",
    "RecordDeclaration",
    "RecordSchema",
    "ValueType",
    "build_schema",
    "SchemaRegistry",
    "load_declarations",
    # Diagnostics
    "Message",
    "MessageSink",
    "RequestContext",
    "LinkageDefinitionError",
    "NoRowsAffectedError",
    "RecordSqlError",
    "SchemaDefinitionError",
    # SQL
    "ChildLinkage",
    "CompiledFilter",
    "FilterRequest",
    "LinkedRecord",
    "SqlSynthesizer",
    "compile_filter",
    # Logging
    "configure_logging",
    "get_logger",
]
