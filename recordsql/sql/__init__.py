"""
SQL layer: per-record statement synthesis, filter compilation and
parent/child linkage.
"""

from recordsql.sql.filters import (
    CompiledFilter,
    FilterCondition,
    FilterOperator,
    FilterRequest,
    SortBy,
    compile_filter,
)
from recordsql.sql.linkage import ChildLinkage, LinkDeclaration, LinkedRecord, RowTree
from recordsql.sql.synthesizer import SqlSynthesizer

__all__ = [
    "ChildLinkage",
    "CompiledFilter",
    "FilterCondition",
    "FilterOperator",
    "FilterRequest",
    "LinkDeclaration",
    "LinkedRecord",
    "RowTree",
    "SortBy",
    "SqlSynthesizer",
    "compile_filter",
]
