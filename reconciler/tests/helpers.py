"""Seeding helpers and a store wrapper that injects failures and races."""
from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from reconciler.models.user import COMPLETED_ACTIVITIES, USERS_COLLECTION
from reconciler.store.contract import subcollection_path


def at(year, month, day, hour=0, minute=0, tz=timezone.utc) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=tz)


async def seed_user(store, user_id: str, streak: Optional[int], completions: List[datetime] = ()) -> None:
    data = {} if streak is None else {"streakCount": streak}
    await store.put(USERS_COLLECTION, user_id, data)
    path = subcollection_path(USERS_COLLECTION, user_id, COMPLETED_ACTIVITIES)
    for i, completed_at in enumerate(completions):
        await store.put(path, f"{user_id}-c{i}", {"completedAt": completed_at, "questId": f"q{i}"})


async def seed_quest(store, quest_id: str, end_date: datetime, status: str = "active") -> None:
    await store.put("quests", quest_id, {"endDate": end_date, "status": status, "title": quest_id})


class FlakyStore:
    """
    Wraps a store. `fail(method, exc, doc_id=..., times=n)` makes the next n
    matching calls raise; `before_write(doc_id, hook)` runs a coroutine right
    before a conditional write to that document, simulating a collaborator
    that races the job.
    """

    def __init__(self, inner):
        self.inner = inner
        self.calls: Dict[str, int] = defaultdict(int)
        self._failures: Dict[Tuple[str, Optional[str]], List[Exception]] = defaultdict(list)
        self._hooks: Dict[str, Callable[[], Awaitable[None]]] = {}

    def fail(self, method: str, exc: Exception, *, doc_id: Optional[str] = None, times: int = 1) -> None:
        self._failures[(method, doc_id)].extend([exc] * times)

    def before_write(self, doc_id: str, hook: Callable[[], Awaitable[None]]) -> None:
        self._hooks[doc_id] = hook

    def _maybe_fail(self, method: str, doc_id: Optional[str]) -> None:
        self.calls[method] += 1
        for key in ((method, doc_id), (method, None)):
            queue = self._failures.get(key)
            if queue:
                raise queue.pop(0)

    async def query(self, collection, **kwargs):
        self._maybe_fail("query", None)
        return await self.inner.query(collection, **kwargs)

    async def get(self, collection, doc_id):
        self._maybe_fail("get", doc_id)
        return await self.inner.get(collection, doc_id)

    async def get_subcollection(self, parent_collection, parent_id, name, **kwargs):
        self._maybe_fail("get_subcollection", parent_id)
        return await self.inner.get_subcollection(parent_collection, parent_id, name, **kwargs)

    async def conditional_update(self, collection, doc_id, **kwargs):
        self._maybe_fail("conditional_update", doc_id)
        hook = self._hooks.pop(doc_id, None)
        if hook is not None:
            await hook()
        return await self.inner.conditional_update(collection, doc_id, **kwargs)

    async def conditional_delete(self, collection, doc_id, **kwargs):
        self._maybe_fail("conditional_delete", doc_id)
        hook = self._hooks.pop(doc_id, None)
        if hook is not None:
            await hook()
        return await self.inner.conditional_delete(collection, doc_id, **kwargs)

    async def put(self, collection, doc_id, data):
        return await self.inner.put(collection, doc_id, data)

    async def ping(self):
        return await self.inner.ping()
