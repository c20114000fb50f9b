"""
Explicit registry of record schemas, their synthesizers and links.

There is no process-wide registry: an application builds one at startup and
passes it to whatever needs it, and each test can build its own.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Set, Tuple, Union

from pydantic import BaseModel, Field

from recordsql.domain.schema import RecordDeclaration, RecordSchema, build_schema
from recordsql.errors import LinkageDefinitionError, SchemaDefinitionError
from recordsql.sql.linkage import ChildLinkage, LinkDeclaration, LinkedRecord
from recordsql.sql.synthesizer import SqlSynthesizer
from recordsql.utils.logging import get_logger

log = get_logger(__name__)


class Declarations(BaseModel):
    """Contents of a declarations file: records and the links between them."""

    records: List[RecordDeclaration] = Field(default_factory=list)
    links: List[LinkDeclaration] = Field(default_factory=list)


def load_declarations(path: Union[str, Path]) -> Declarations:
    """Read record and link declarations from a JSON file."""
    text = Path(path).read_text(encoding="utf-8")
    return Declarations.model_validate(json.loads(text))


class SchemaRegistry:
    """
    Schemas, synthesizers and links by record name.

    Parameters
    ----------
    treat_null_as_zero, timestamp_function : optional
        Passed to every synthesizer the registry builds.
    """

    def __init__(
        self,
        treat_null_as_zero: Optional[bool] = None,
        timestamp_function: Optional[str] = None,
    ) -> None:
        self._treat_null_as_zero = treat_null_as_zero
        self._timestamp_function = timestamp_function
        self._schemas: Dict[str, RecordSchema] = {}
        self._synthesizers: Dict[str, SqlSynthesizer] = {}
        self._links: Dict[str, List[LinkDeclaration]] = {}
        self._linked: Dict[str, LinkedRecord] = {}

    @classmethod
    def from_declarations(cls, declarations: Declarations, **kwargs) -> "SchemaRegistry":
        registry = cls(**kwargs)
        for record in declarations.records:
            registry.register(record)
        for link in declarations.links:
            registry.link(link)
        return registry

    def register(self, declaration: Union[RecordDeclaration, RecordSchema]) -> RecordSchema:
        """
        Build (if needed) and register a schema.

        Raises
        ------
        SchemaDefinitionError
            If the schema is invalid.
        """
        schema = declaration if isinstance(declaration, RecordSchema) else build_schema(declaration)
        if not schema.is_valid:
            raise SchemaDefinitionError(schema.name, schema.errors)
        if schema.name in self._schemas:
            log.warning(f"Record {schema.name} registered again. Earlier definition replaced.")
            self._synthesizers.pop(schema.name, None)
        self._schemas[schema.name] = schema
        self._linked.clear()
        return schema

    def link(self, declaration: LinkDeclaration) -> None:
        """Record a parent/child link. Field names are checked when the link is first used."""
        for name in (declaration.parent, declaration.child):
            self.schema(name)
        self._links.setdefault(declaration.parent, []).append(declaration)
        self._linked.clear()

    def schema(self, name: str) -> RecordSchema:
        try:
            return self._schemas[name]
        except KeyError:
            raise KeyError(f"No record named {name!r} is registered") from None

    def synthesizer(self, name: str) -> SqlSynthesizer:
        """
        Synthesizer for a registered record, built on first use.

        Raises SchemaDefinitionError for a record that is not mapped to a table.
        """
        synthesizer = self._synthesizers.get(name)
        if synthesizer is None:
            synthesizer = SqlSynthesizer(
                self.schema(name),
                treat_null_as_zero=self._treat_null_as_zero,
                timestamp_function=self._timestamp_function,
            )
            self._synthesizers[name] = synthesizer
        return synthesizer

    def _child_links(self, parent: str, visiting: Set[str]) -> Tuple[ChildLinkage, ...]:
        if parent in visiting:
            raise LinkageDefinitionError(f"Record {parent} is linked as a child of itself")
        visiting = visiting | {parent}
        links: List[ChildLinkage] = []
        for decl in self._links.get(parent, ()):
            links.append(
                ChildLinkage(
                    name=decl.name,
                    parent=self.synthesizer(decl.parent),
                    child=self.synthesizer(decl.child),
                    parent_fields=decl.parent_fields,
                    child_fields=decl.child_fields,
                    is_multi_row=decl.is_multi_row,
                    min_rows=decl.min_rows,
                    max_rows=decl.max_rows,
                    error_message_id=decl.error_message_id,
                    children=self._child_links(decl.child, visiting),
                )
            )
        return tuple(links)

    def linked_record(self, name: str) -> LinkedRecord:
        """
        The record with all its links resolved, built on first use.

        Raises
        ------
        LinkageDefinitionError
            If a link names a field its record does not have.
        """
        linked = self._linked.get(name)
        if linked is None:
            linked = LinkedRecord(self.synthesizer(name), self._child_links(name, set()))
            self._linked[name] = linked
        return linked

    def names(self) -> List[str]:
        return list(self._schemas)

    def __contains__(self, name: object) -> bool:
        return name in self._schemas

    def __iter__(self) -> Iterator[RecordSchema]:
        return iter(self._schemas.values())

    def __len__(self) -> int:
        return len(self._schemas)


__all__ = ["Declarations", "SchemaRegistry", "load_declarations"]
