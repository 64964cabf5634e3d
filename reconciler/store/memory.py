"""In-process document store for local runs and tests.

Check-and-set happens without an await between the check and the write,
so it is atomic with respect to other coroutines on the same loop.
"""
from __future__ import annotations

import asyncio
import copy
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

from reconciler.core.clock import ensure_aware
from reconciler.store.contract import (
    ID_FIELD,
    VERSION_FIELD,
    Cursor,
    Document,
    FieldFilter,
    Page,
    WriteOutcome,
    after_cursor,
    cursor_after,
    has_order_value,
    preconditions_hold,
    sort_key,
    subcollection_path,
)


def _normalise(value: Any) -> Any:
    """Deep copy with naive datetimes read as UTC, matching the SQL adapter."""
    if isinstance(value, datetime):
        return ensure_aware(value)
    if isinstance(value, dict):
        return {k: _normalise(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalise(v) for v in value]
    return copy.deepcopy(value)


class InMemoryDocumentStore:
    def __init__(self, *, latency: float = 0.0):
        self._collections: Dict[str, Dict[str, Document]] = {}
        self._latency = latency
        self.writes: List[tuple] = []

    async def _io(self) -> None:
        # Yield to the loop so concurrent workers interleave like real I/O
        await asyncio.sleep(self._latency)

    def _collection(self, name: str) -> Dict[str, Document]:
        return self._collections.setdefault(name, {})

    async def query(
        self,
        collection: str,
        *,
        filters: Sequence[FieldFilter] = (),
        order_by: str = ID_FIELD,
        cursor: Optional[Cursor] = None,
        page_size: int = 100,
    ) -> Page:
        await self._io()
        docs = [
            doc for doc in self._collection(collection).values()
            if has_order_value(doc, order_by) and all(f.matches(doc) for f in filters)
        ]
        if cursor is not None:
            docs = [doc for doc in docs if after_cursor(doc, order_by, cursor)]
        docs.sort(key=lambda doc: sort_key(doc, order_by))
        batch = docs[:page_size]
        next_cursor = None
        if len(docs) > page_size:
            next_cursor = cursor_after(batch[-1], order_by)
        return Page(documents=copy.deepcopy(batch), next_cursor=next_cursor)

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        await self._io()
        doc = self._collection(collection).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

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
        await self._io()
        path = subcollection_path(parent_collection, parent_id, name)
        docs = sorted(
            (doc for doc in self._collection(path).values() if has_order_value(doc, order_by)),
            key=lambda doc: sort_key(doc, order_by),
            reverse=descending,
        )
        if limit is not None:
            docs = docs[:limit]
        return copy.deepcopy(docs)

    async def conditional_update(
        self,
        collection: str,
        doc_id: str,
        *,
        fields: Mapping[str, Any],
        expected: Optional[Mapping[str, Any]] = None,
        expected_version: Optional[int] = None,
    ) -> WriteOutcome:
        await self._io()
        doc = self._collection(collection).get(doc_id)
        if doc is None:
            return WriteOutcome.NOT_FOUND
        if not preconditions_hold(doc, expected, expected_version):
            return WriteOutcome.PRECONDITION_FAILED
        doc.update(_normalise(dict(fields)))
        doc[VERSION_FIELD] = int(doc.get(VERSION_FIELD) or 0) + 1
        self.writes.append(("update", collection, doc_id, dict(fields)))
        return WriteOutcome.APPLIED

    async def conditional_delete(
        self,
        collection: str,
        doc_id: str,
        *,
        expected: Optional[Mapping[str, Any]] = None,
        expected_version: Optional[int] = None,
    ) -> WriteOutcome:
        await self._io()
        docs = self._collection(collection)
        doc = docs.get(doc_id)
        if doc is None:
            return WriteOutcome.NOT_FOUND
        if not preconditions_hold(doc, expected, expected_version):
            return WriteOutcome.PRECONDITION_FAILED
        del docs[doc_id]
        self.writes.append(("delete", collection, doc_id, None))
        return WriteOutcome.APPLIED

    async def put(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> Document:
        """Create or replace a document (seeding and collaborator writes)."""
        docs = self._collection(collection)
        previous = docs.get(doc_id)
        doc = _normalise(dict(data))
        doc[ID_FIELD] = doc_id
        doc[VERSION_FIELD] = int(previous.get(VERSION_FIELD) or 0) + 1 if previous else 1
        docs[doc_id] = doc
        return copy.deepcopy(doc)

    async def ping(self) -> bool:
        return True

    def snapshot(self, collection: str) -> Dict[str, Document]:
        """Synchronous copy of a collection, keyed by id."""
        return copy.deepcopy(self._collection(collection))
