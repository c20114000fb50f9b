"""
Parent/child record linkage and hierarchical CRUD.

A `ChildLinkage` pairs fields of a parent record with fields of a child
record. Names are resolved to row indexes once, when the linkage is built;
afterwards the linkage only ever moves values between rows by index.

Cascading writes go one level deep: a child that has children of its own can
be read through its parent but is never written or deleted automatically.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from recordsql.domain.messages import INVALID_ROW_COUNT, VALUE_REQUIRED, Message, MessageSink, RequestContext
from recordsql.domain.schema import Row
from recordsql.domain.types import ValueType
from recordsql.errors import LinkageDefinitionError
from recordsql.infrastructure.handles import ReadonlyHandle, ReadWriteHandle
from recordsql.sql.filters import CompiledFilter
from recordsql.sql.synthesizer import SqlSynthesizer
from recordsql.utils.logging import get_logger

log = get_logger(__name__)


class LinkDeclaration(BaseModel):
    """Static declaration of a child record linked to a parent record."""

    name: str = Field(..., min_length=1, description="Name of the child collection within the parent.")
    parent: str = Field(..., min_length=1)
    child: str = Field(..., min_length=1)
    parent_fields: List[str] = Field(default_factory=list, alias="parentFields")
    child_fields: List[str] = Field(default_factory=list, alias="childFields")
    is_multi_row: bool = Field(False, alias="isMultiRow")
    min_rows: int = Field(0, alias="minRows", ge=0)
    max_rows: int = Field(0, alias="maxRows", ge=0)
    error_message_id: Optional[str] = Field(None, alias="errorMessageId")

    model_config = {"frozen": True, "populate_by_name": True}


@dataclass
class RowTree:
    """A row with the rows of its linked children, keyed by linkage name."""

    row: Row
    children: Dict[str, List["RowTree"]] = field(default_factory=dict)

    def rows_of(self, name: str) -> Optional[List[Row]]:
        trees = self.children.get(name)
        if trees is None:
            return None
        return [t.row for t in trees]


def _resolve(synthesizer: SqlSynthesizer, names: Sequence[str], side: str, must_be_column: bool) -> Tuple[int, ...]:
    schema = synthesizer.schema
    indexes: List[int] = []
    for name in names:
        f = schema.field(name)
        if f is None:
            raise LinkageDefinitionError(
                f"Field {name} is defined as {side} link field, but is not a field of record {schema.name}"
            )
        if must_be_column and not f.is_column:
            raise LinkageDefinitionError(f"Link field {name} of record {schema.name} is not a column")
        indexes.append(f.index)
    return tuple(indexes)


class ChildLinkage:
    """
    Link between a parent record and a child record.

    Parameters
    ----------
    name : str
        Name of the child collection, used in messages and row trees.
    parent, child : SqlSynthesizer
        Synthesizers of the two records.
    parent_fields, child_fields : sequence of str
        Position-paired field names. Both empty means the link is for manual
        use only and every automatic operation is refused.
    is_multi_row : bool
        Whether the parent has any number of child rows or at most one.
    min_rows, max_rows : int
        Row-count bounds checked before saving; `max_rows` 0 is unbounded.
    children : sequence of ChildLinkage
        Links of the child record to its own children. Followed on read only.

    Raises
    ------
    LinkageDefinitionError
        If a name is not a field of its record, or the lists differ in length.
    """

    def __init__(
        self,
        name: str,
        parent: SqlSynthesizer,
        child: SqlSynthesizer,
        parent_fields: Sequence[str] = (),
        child_fields: Sequence[str] = (),
        is_multi_row: bool = False,
        min_rows: int = 0,
        max_rows: int = 0,
        error_message_id: Optional[str] = None,
        children: Sequence["ChildLinkage"] = (),
    ) -> None:
        self.name = name
        self.parent = parent
        self.child = child
        self.is_multi_row = is_multi_row
        self.min_rows = min_rows
        self.max_rows = max_rows
        self.error_message_id = error_message_id
        self.children: Tuple[ChildLinkage, ...] = tuple(children)

        self.parent_idx: Tuple[int, ...] = ()
        self.child_idx: Tuple[int, ...] = ()
        self.where_text: Optional[str] = None
        self.where_types: Tuple[ValueType, ...] = ()
        self.delete_text: Optional[str] = None

        if len(parent_fields) != len(child_fields):
            raise LinkageDefinitionError(
                f"Link {name}: {len(parent_fields)} parent fields but {len(child_fields)} child fields"
            )
        if not parent_fields:
            log.info(
                f"Link {name} has no design-time link fields. No auto operations possible.",
                extra={"link": name},
            )
            return

        parent_idx = list(_resolve(parent, parent_fields, "parent", False))
        child_idx = list(_resolve(child, child_fields, "child", True))

        # rows of a tenant-scoped child always belong to the parent's tenant
        p_tenant = parent.schema.tenant_field
        c_tenant = child.schema.tenant_field
        if p_tenant is not None and c_tenant is not None and c_tenant.index not in child_idx:
            parent_idx.append(p_tenant.index)
            child_idx.append(c_tenant.index)

        self.parent_idx = tuple(parent_idx)
        self.child_idx = tuple(child_idx)
        child_fields_ = child.schema.fields
        self.where_text = "WHERE " + " AND ".join(f"{child_fields_[i].column_name}=?" for i in self.child_idx)
        self.where_types = tuple(child_fields_[i].value_type for i in self.child_idx)
        self.delete_text = f"DELETE FROM {child.name_in_db} {self.where_text}"

    @property
    def is_linked(self) -> bool:
        return bool(self.parent_idx)

    @property
    def is_writable(self) -> bool:
        """Linked, and the child has no children of its own."""
        return self.is_linked and not self.children

    def _not_linked(self) -> bool:
        log.error(
            f"Link {self.name} is not designed for db operation on record {self.child.schema.name}. "
            "Database operation not done",
            extra={"link": self.name},
        )
        return False

    def _nested(self, operation: str) -> bool:
        log.error(
            f"Auto {operation} operation is not allowed on link {self.name}: "
            f"record {self.child.schema.name} has child records of its own",
            extra={"link": self.name},
        )
        return False

    def where_values(self, parent_row: Sequence[Any]) -> List[Any]:
        return [parent_row[i] for i in self.parent_idx]

    def copy_parent_values(self, parent_row: Sequence[Any], child_row: Row) -> None:
        for p, c in zip(self.parent_idx, self.child_idx):
            child_row[c] = parent_row[p]

    # ------------------------------------------------------------------
    # read
    # ------------------------------------------------------------------

    def read(self, handle: ReadonlyHandle, parent_row: Sequence[Any]) -> Optional[List[RowTree]]:
        """
        Child rows of a parent row, each with its own children read as well.

        A single-row link yields at most one tree. Returns None if the link
        is not designed for db operations.
        """
        if not self.is_linked:
            self._not_linked()
            return None

        values = self.where_values(parent_row)
        if self.is_multi_row:
            rows = self.child.filter(handle, self.where_text, values, self.where_types)
        else:
            row = self.child.filter_first(handle, self.where_text, values, self.where_types)
            rows = [] if row is None else [row]

        trees: List[RowTree] = []
        for row in rows:
            tree = RowTree(row)
            for link in self.children:
                tree.children[link.name] = link.read(handle, row) or []
            trees.append(tree)
        return trees

    # ------------------------------------------------------------------
    # write
    # ------------------------------------------------------------------

    def _report(self, messages: MessageSink, text: str, message_id: str) -> bool:
        log.error(f"Link {self.name}: {text}", extra={"link": self.name})
        messages.add(
            Message.field_error(self.name, text, self.error_message_id or message_id, object_name=self.name)
        )
        return False

    def validate(self, rows: Optional[Sequence[Row]], messages: MessageSink) -> bool:
        """Check the number of child rows against the declared bounds."""
        n = len(rows) if rows else 0
        if not self.is_multi_row:
            if n == 0 and self.min_rows > 0:
                return self._report(messages, f"{self.name} requires a value", VALUE_REQUIRED)
            if n > 1:
                return self._report(messages, f"{self.name} accepts only one row, but {n} received", INVALID_ROW_COUNT)
            return True

        if n < self.min_rows or (self.max_rows > 0 and n > self.max_rows):
            upper = self.max_rows if self.max_rows > 0 else "any number of"
            return self._report(
                messages,
                f"a min of {self.min_rows} and a max of {upper} rows expected, but {n} received",
                INVALID_ROW_COUNT,
            )
        return True

    def save(
        self,
        handle: ReadWriteHandle,
        parent_row: Sequence[Any],
        rows: Optional[Sequence[Row]],
        messages: MessageSink,
    ) -> bool:
        """
        Save child rows for a parent row after checking their number.

        The parent's link values are copied into each child row before it is
        saved. A failed row stops the remaining ones; whatever was written
        stays in the caller's transaction.
        """
        if not self.is_linked:
            return self._not_linked()
        if self.children:
            return self._nested("save")
        if not self.validate(rows, messages):
            return False
        if not rows:
            log.info(
                f"Input not received for {self.name}, but it is optional. No data saved for linked record.",
                extra={"link": self.name},
            )
            return True

        for i, row in enumerate(rows):
            self.copy_parent_values(parent_row, row)
            if not self.child.save(handle, row):
                log.error(
                    f"Row {i} of {self.name} could not be saved: {self.child.schema.emit_keys(row)}",
                    extra={"link": self.name},
                )
                return False
        return True

    def delete(self, handle: ReadWriteHandle, parent_row: Sequence[Any]) -> bool:
        """
        Delete every child row of a parent row with a single statement.

        Finding no child rows is not a failure.
        """
        if not self.is_linked:
            return self._not_linked()
        if self.children:
            return self._nested("delete")

        n = handle.write(self.delete_text, self.where_values(parent_row), self.where_types)  # type: ignore[arg-type]
        log.debug(f"{n} rows deleted from {self.child.name_in_db} for link {self.name}", extra={"link": self.name})
        return True

    def __repr__(self) -> str:
        return (
            f"ChildLinkage(name={self.name!r}, parent={self.parent.schema.name!r}, "
            f"child={self.child.schema.name!r}, linked={self.is_linked})"
        )


class LinkedRecord:
    """
    A parent record with its child links, offering one-level cascading CRUD.

    Writes go parent first, then children, so that a generated parent key is
    available to the children. Deletes go children first.
    """

    def __init__(self, synthesizer: SqlSynthesizer, links: Sequence[ChildLinkage] = ()) -> None:
        self.synthesizer = synthesizer
        self.links: Tuple[ChildLinkage, ...] = tuple(links)

    @property
    def name(self) -> str:
        return self.synthesizer.schema.name

    def parse(self, data: Mapping[str, Any], for_insert: bool, ctx: RequestContext) -> Optional[RowTree]:
        """
        Parse a nested payload: the parent's fields plus, under each link
        name, a list of child payloads (or one payload for a single-row link).
        All problems are reported to `ctx`.
        """
        row = self.synthesizer.schema.parse_row(data, for_insert, ctx)
        tree = RowTree(row if row is not None else [])
        ok = row is not None

        for link in self.links:
            raw = data.get(link.name)
            if raw is None:
                continue
            items = raw if isinstance(raw, list) else [raw]
            trees: List[RowTree] = []
            for i, item in enumerate(items):
                # link values are copied from the parent when saving; on an update a
                # child without its generated key is a new row, inserted by save
                child_row = link.child.schema.parse_row(
                    item,
                    for_insert,
                    ctx,
                    link.name,
                    i,
                    skip=link.child_idx,
                    optional_generated_key=True,
                )
                if child_row is None:
                    ok = False
                    continue
                trees.append(RowTree(child_row))
            tree.children[link.name] = trees

        return tree if ok else None

    def _check_writable(self, operation: str) -> bool:
        for link in self.links:
            if not link.is_linked:
                return link._not_linked()
            if link.children:
                return link._nested(operation)
        return True

    def _validate(self, tree: RowTree, messages: MessageSink) -> bool:
        ok = True
        for link in self.links:
            if not link.validate(tree.rows_of(link.name), messages):
                ok = False
        return ok

    def _save_children(self, handle: ReadWriteHandle, tree: RowTree, messages: MessageSink) -> bool:
        for link in self.links:
            if not link.save(handle, tree.row, tree.rows_of(link.name), messages):
                return False
        return True

    def read(self, handle: ReadonlyHandle, row: Row) -> Optional[RowTree]:
        """Read the parent row by its keys, then all its children. None if not found."""
        if not self.synthesizer.read(handle, row):
            return None
        tree = RowTree(row)
        for link in self.links:
            tree.children[link.name] = link.read(handle, row) or []
        return tree

    def _write(self, handle: ReadWriteHandle, tree: RowTree, messages: MessageSink, operation: str) -> bool:
        if not self._check_writable(operation):
            return False
        if not self._validate(tree, messages):
            return False

        write = getattr(self.synthesizer, operation)
        if not write(handle, tree.row):
            log.info(
                f"{operation} of {self.name} affected no rows: {self.synthesizer.schema.emit_keys(tree.row)}",
                extra={"record": self.name},
            )
            return False
        return self._save_children(handle, tree, messages)

    def filter(self, handle: ReadonlyHandle, compiled: CompiledFilter) -> List[RowTree]:
        """
        Run a compiled filter on the parent record and read the children of
        every row found. An output field subset must include the link fields.
        """
        trees: List[RowTree] = []
        for row in self.synthesizer.filter_compiled(handle, compiled):
            tree = RowTree(row)
            for link in self.links:
                tree.children[link.name] = link.read(handle, row) or []
            trees.append(tree)
        return trees

    def insert(self, handle: ReadWriteHandle, tree: RowTree, messages: MessageSink) -> bool:
        return self._write(handle, tree, messages, "insert")

    def update(self, handle: ReadWriteHandle, tree: RowTree, messages: MessageSink) -> bool:
        return self._write(handle, tree, messages, "update")

    def save(self, handle: ReadWriteHandle, tree: RowTree, messages: MessageSink) -> bool:
        return self._write(handle, tree, messages, "save")

    def delete(self, handle: ReadWriteHandle, row: Row) -> bool:
        """Delete all child rows, then the parent row. False if the parent was not there."""
        if not self._check_writable("delete"):
            return False
        for link in self.links:
            link.delete(handle, row)
        return self.synthesizer.delete(handle, row)

    def __repr__(self) -> str:
        return f"LinkedRecord(record={self.name!r}, links={[link.name for link in self.links]})"


__all__ = ["ChildLinkage", "LinkDeclaration", "LinkedRecord", "RowTree"]
