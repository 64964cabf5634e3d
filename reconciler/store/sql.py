"""
SQL-backed document store.

Each document is one row in the `documents` table with a JSON payload and
an integer version. Timestamps are stored as fixed-width UTC ISO strings so
that string comparison in SQL matches time order. Compare-and-set is a
version-checked UPDATE: a row changed between our read and our write
updates zero rows and reports PRECONDITION_FAILED.

The SQLAlchemy session is synchronous; every call runs on a worker thread.
"""
from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy import and_, delete, insert, or_, select, update
from sqlalchemy import exc as sa_exc

from reconciler.core.clock import ensure_aware
from reconciler.core.database import documents, get_db_session, get_engine, init_engine
from reconciler.core.errors import PermissionOrConfigError, TransientStoreError
from reconciler.store.contract import (
    ID_FIELD,
    VERSION_FIELD,
    Cursor,
    Document,
    FieldFilter,
    Page,
    WriteOutcome,
    cursor_after,
    preconditions_hold,
    subcollection_path,
)

logger = logging.getLogger("reconciler.store.sql")

_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"
_TS_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{6}Z$")

# OperationalError messages that will not fix themselves on retry
_FATAL_MARKERS = ("no such table", "unable to open database", "authentication failed", "permission denied")


def encode_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return ensure_aware(value).astimezone(timezone.utc).strftime(_TS_FORMAT)
    if isinstance(value, dict):
        return {k: encode_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_value(v) for v in value]
    return value


def decode_value(value: Any) -> Any:
    if isinstance(value, str) and _TS_RE.match(value):
        return datetime.strptime(value, _TS_FORMAT).replace(tzinfo=timezone.utc)
    if isinstance(value, dict):
        return {k: decode_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [decode_value(v) for v in value]
    return value


def _typed(expr, sample: Any):
    """Cast a JSON path expression to match the Python type of `sample`."""
    if isinstance(sample, bool):
        return expr.as_boolean()
    if isinstance(sample, (int, float)):
        return expr.as_float()
    return expr.as_string()


def _field_expr(field: str, sample: Any = None):
    if field == ID_FIELD:
        return documents.c.id
    # Ordering assumes string or timestamp fields unless a typed sample is given
    return _typed(documents.c.data[field], sample)


def _filter_clause(f: FieldFilter):
    if f.op == "in":
        values = [encode_value(v) for v in f.value]
        sample = values[0] if values else ""
        return _field_expr(f.field, sample).in_(values)
    value = encode_value(f.value)
    expr = _field_expr(f.field, value)
    clause = {
        "==": lambda: expr == value,
        "!=": lambda: expr != value,
        "<": lambda: expr < value,
        "<=": lambda: expr <= value,
        ">": lambda: expr > value,
        ">=": lambda: expr >= value,
    }[f.op]()
    if f.field != ID_FIELD:
        clause = and_(expr.isnot(None), clause)
    return clause


def _cursor_clause(order_by: str, cursor: Cursor):
    if order_by == ID_FIELD:
        return documents.c.id > cursor.after_id
    value = encode_value(cursor.after_value)
    expr = _field_expr(order_by, value)
    return or_(expr > value, and_(expr == value, documents.c.id > cursor.after_id))


def _row_to_document(row) -> Document:
    doc = decode_value(dict(row.data or {}))
    doc[ID_FIELD] = row.id
    doc[VERSION_FIELD] = row.version
    return doc


def _classify(exc: Exception) -> Exception:
    if isinstance(exc, sa_exc.OperationalError):
        message = str(exc).lower()
        if any(marker in message for marker in _FATAL_MARKERS):
            return PermissionOrConfigError(f"store misconfigured: {exc.orig}")
        return TransientStoreError(f"store unavailable: {exc.orig}")
    if isinstance(exc, sa_exc.TimeoutError):
        return TransientStoreError("store connection pool timed out")
    if isinstance(exc, sa_exc.DBAPIError):
        # DataError, IntegrityError, InterfaceError, InternalError, ...
        if exc.connection_invalidated:
            return TransientStoreError(f"store connection lost: {exc.orig}")
        return PermissionOrConfigError(f"store rejected request: {exc.orig}")
    return PermissionOrConfigError(f"store misconfigured: {exc}")


class SqlDocumentStore:
    def __init__(self, database_url: Optional[str] = None):
        if database_url:
            init_engine(database_url)

    async def _run(self, fn, *args):
        try:
            get_engine()
        except ValueError as exc:
            raise PermissionOrConfigError(str(exc)) from exc
        try:
            return await asyncio.to_thread(fn, *args)
        except (
            sa_exc.DBAPIError,
            sa_exc.TimeoutError,
            sa_exc.ArgumentError,
            sa_exc.NoSuchTableError,
        ) as exc:
            raise _classify(exc) from exc

    # Queries ----------------------------------------------------------
    def _query_sync(self, collection, filters, order_by, cursor, page_size) -> Page:
        order_expr = _field_expr(order_by)
        stmt = select(documents.c.id, documents.c.data, documents.c.version).where(
            documents.c.collection == collection
        )
        if order_by != ID_FIELD:
            stmt = stmt.where(order_expr.isnot(None))
        for f in filters:
            stmt = stmt.where(_filter_clause(f))
        if cursor is not None:
            stmt = stmt.where(_cursor_clause(order_by, cursor))
        stmt = stmt.order_by(order_expr.asc(), documents.c.id.asc()).limit(page_size + 1)

        with get_db_session() as session:
            rows = session.execute(stmt).fetchall()

        docs = [_row_to_document(r) for r in rows[:page_size]]
        next_cursor = cursor_after(docs[-1], order_by) if len(rows) > page_size else None
        return Page(documents=docs, next_cursor=next_cursor)

    async def query(
        self,
        collection: str,
        *,
        filters: Sequence[FieldFilter] = (),
        order_by: str = ID_FIELD,
        cursor: Optional[Cursor] = None,
        page_size: int = 100,
    ) -> Page:
        return await self._run(self._query_sync, collection, tuple(filters), order_by, cursor, page_size)

    def _get_sync(self, collection: str, doc_id: str) -> Optional[Document]:
        with get_db_session() as session:
            row = session.execute(
                select(documents.c.id, documents.c.data, documents.c.version).where(
                    documents.c.collection == collection,
                    documents.c.id == doc_id,
                )
            ).first()
        return _row_to_document(row) if row is not None else None

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        return await self._run(self._get_sync, collection, doc_id)

    def _subcollection_sync(self, path, order_by, descending, limit) -> List[Document]:
        order_expr = _field_expr(order_by)
        stmt = select(documents.c.id, documents.c.data, documents.c.version).where(
            documents.c.collection == path
        )
        if order_by != ID_FIELD:
            stmt = stmt.where(order_expr.isnot(None))
        if descending:
            stmt = stmt.order_by(order_expr.desc(), documents.c.id.desc())
        else:
            stmt = stmt.order_by(order_expr.asc(), documents.c.id.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        with get_db_session() as session:
            rows = session.execute(stmt).fetchall()
        return [_row_to_document(r) for r in rows]

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
        path = subcollection_path(parent_collection, parent_id, name)
        return await self._run(self._subcollection_sync, path, order_by, descending, limit)

    # Writes -----------------------------------------------------------
    def _conditional_update_sync(self, collection, doc_id, fields, expected, expected_version) -> WriteOutcome:
        with get_db_session() as session:
            row = session.execute(
                select(documents.c.id, documents.c.data, documents.c.version).where(
                    documents.c.collection == collection,
                    documents.c.id == doc_id,
                )
            ).first()
            if row is None:
                return WriteOutcome.NOT_FOUND
            if not preconditions_hold(_row_to_document(row), expected, expected_version):
                return WriteOutcome.PRECONDITION_FAILED

            data: Dict[str, Any] = dict(row.data or {})
            data.update(encode_value(dict(fields)))
            result = session.execute(
                update(documents)
                .where(
                    documents.c.collection == collection,
                    documents.c.id == doc_id,
                    documents.c.version == row.version,
                )
                .values(data=data, version=row.version + 1)
            )
            if result.rowcount == 0:
                return WriteOutcome.PRECONDITION_FAILED
        return WriteOutcome.APPLIED

    async def conditional_update(
        self,
        collection: str,
        doc_id: str,
        *,
        fields: Mapping[str, Any],
        expected: Optional[Mapping[str, Any]] = None,
        expected_version: Optional[int] = None,
    ) -> WriteOutcome:
        return await self._run(
            self._conditional_update_sync, collection, doc_id, dict(fields), expected, expected_version
        )

    def _conditional_delete_sync(self, collection, doc_id, expected, expected_version) -> WriteOutcome:
        with get_db_session() as session:
            row = session.execute(
                select(documents.c.id, documents.c.data, documents.c.version).where(
                    documents.c.collection == collection,
                    documents.c.id == doc_id,
                )
            ).first()
            if row is None:
                return WriteOutcome.NOT_FOUND
            if not preconditions_hold(_row_to_document(row), expected, expected_version):
                return WriteOutcome.PRECONDITION_FAILED
            result = session.execute(
                delete(documents).where(
                    documents.c.collection == collection,
                    documents.c.id == doc_id,
                    documents.c.version == row.version,
                )
            )
            if result.rowcount == 0:
                return WriteOutcome.PRECONDITION_FAILED
        return WriteOutcome.APPLIED

    async def conditional_delete(
        self,
        collection: str,
        doc_id: str,
        *,
        expected: Optional[Mapping[str, Any]] = None,
        expected_version: Optional[int] = None,
    ) -> WriteOutcome:
        return await self._run(self._conditional_delete_sync, collection, doc_id, expected, expected_version)

    def _put_sync(self, collection: str, doc_id: str, data: Dict[str, Any]) -> Document:
        payload = encode_value({k: v for k, v in data.items() if k not in (ID_FIELD, VERSION_FIELD)})
        with get_db_session() as session:
            current = session.execute(
                select(documents.c.version).where(
                    documents.c.collection == collection,
                    documents.c.id == doc_id,
                )
            ).scalar()
            if current is None:
                version = 1
                session.execute(
                    insert(documents).values(collection=collection, id=doc_id, data=payload, version=version)
                )
            else:
                version = current + 1
                session.execute(
                    update(documents)
                    .where(documents.c.collection == collection, documents.c.id == doc_id)
                    .values(data=payload, version=version)
                )
        doc = decode_value(payload)
        doc[ID_FIELD] = doc_id
        doc[VERSION_FIELD] = version
        return doc

    async def put(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> Document:
        """Create or replace a document (seeding and collaborator writes)."""
        return await self._run(self._put_sync, collection, doc_id, dict(data))

    async def ping(self) -> bool:
        try:
            await self._run(self._ping_sync)
        except (TransientStoreError, PermissionOrConfigError) as exc:
            logger.warning("[store] ping failed: %s", exc.message)
            return False
        return True

    def _ping_sync(self) -> None:
        with get_db_session() as session:
            session.execute(select(documents.c.id).limit(1)).fetchall()
