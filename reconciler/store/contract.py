"""
Document store contract consumed by the reconciliation jobs.

Documents are plain dicts that always carry `id` and a store-managed
`version` which increases on every successful write. Timestamps are
timezone-aware datetimes.
"""
from __future__ import annotations

import operator
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence

Document = Dict[str, Any]

ID_FIELD = "id"
VERSION_FIELD = "version"

_OPS: Dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "in": lambda left, right: left in right,
}


class WriteOutcome(str, Enum):
    APPLIED = "applied"
    PRECONDITION_FAILED = "precondition_failed"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class FieldFilter:
    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in _OPS:
            raise ValueError(f"Unsupported filter operator: {self.op}")

    def matches(self, doc: Mapping[str, Any]) -> bool:
        # Documents lacking the field never match, whatever the operator
        if doc.get(self.field) is None:
            return False
        try:
            return _OPS[self.op](doc[self.field], self.value)
        except TypeError:
            return False


@dataclass(frozen=True)
class Cursor:
    """Keyset position: the order value and id of the last document seen."""
    after_value: Any
    after_id: str


@dataclass
class Page:
    documents: List[Document] = field(default_factory=list)
    next_cursor: Optional[Cursor] = None


def cursor_after(doc: Mapping[str, Any], order_by: str) -> Cursor:
    return Cursor(after_value=doc.get(order_by), after_id=str(doc[ID_FIELD]))


def subcollection_path(parent_collection: str, parent_id: str, name: str) -> str:
    return f"{parent_collection}/{parent_id}/{name}"


def preconditions_hold(
    doc: Mapping[str, Any],
    expected: Optional[Mapping[str, Any]],
    expected_version: Optional[int],
) -> bool:
    if expected_version is not None and doc.get(VERSION_FIELD) != expected_version:
        return False
    for key, value in (expected or {}).items():
        if doc.get(key) != value:
            return False
    return True


class DocumentStore(Protocol):
    """Query/read/conditional-write capability over named collections.

    Transient failures raise TransientStoreError; unrecoverable ones raise
    PermissionOrConfigError.
    """

    async def query(
        self,
        collection: str,
        *,
        filters: Sequence[FieldFilter] = (),
        order_by: str = ID_FIELD,
        cursor: Optional[Cursor] = None,
        page_size: int = 100,
    ) -> Page:
        ...

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        ...

    async def get_subcollection(
        self,
        parent_collection: str,
        parent_id: str,
        name: str,
        *,
        order_by: str,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Document]:
        ...

    async def conditional_update(
        self,
        collection: str,
        doc_id: str,
        *,
        fields: Mapping[str, Any],
        expected: Optional[Mapping[str, Any]] = None,
        expected_version: Optional[int] = None,
    ) -> WriteOutcome:
        ...

    async def conditional_delete(
        self,
        collection: str,
        doc_id: str,
        *,
        expected: Optional[Mapping[str, Any]] = None,
        expected_version: Optional[int] = None,
    ) -> WriteOutcome:
        ...

    async def put(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> Document:
        ...

    async def ping(self) -> bool:
        ...


def has_order_value(doc: Mapping[str, Any], order_by: str) -> bool:
    """Ordering by a field excludes documents that lack it."""
    return order_by == ID_FIELD or doc.get(order_by) is not None


def sort_key(doc: Mapping[str, Any], order_by: str):
    """Order documents by (order value, id)."""
    value = doc.get(order_by) if order_by != ID_FIELD else str(doc[ID_FIELD])
    if isinstance(value, datetime):
        value = value.timestamp()
    return (value, str(doc[ID_FIELD]))


def after_cursor(doc: Mapping[str, Any], order_by: str, cursor: Cursor) -> bool:
    probe = {ID_FIELD: cursor.after_id, order_by: cursor.after_value}
    return sort_key(doc, order_by) > sort_key(probe, order_by)
