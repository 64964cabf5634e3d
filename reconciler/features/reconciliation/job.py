from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from reconciler.store.contract import ID_FIELD, Document, DocumentStore, FieldFilter, WriteOutcome


class ReconciliationJob(ABC):
    """
    What the driver needs from a job: which collection to page through and in
    what order, a per-entity predicate, and a per-entity corrective write.

    Both hooks must be safe to call repeatedly and concurrently: the write is
    always a conditional one, so a stale read can never clobber a newer value.
    """

    name: str = "job"
    collection: str = ""
    order_by: str = ID_FIELD
    # Stop dispatching after this many entities; the next run continues
    scan_limit: Optional[int] = None

    def filters(self, now: datetime) -> List[FieldFilter]:
        """Query-side narrowing. Only an optimisation: should_act re-checks."""
        return []

    @abstractmethod
    async def should_act(self, store: DocumentStore, doc: Document, now: datetime) -> bool:
        ...

    @abstractmethod
    async def act(self, store: DocumentStore, doc: Document, now: datetime) -> WriteOutcome:
        ...
