"""
Streak reset job.

A streak survives while the user's latest completed quest falls on the
current canonical day, or on the previous day while today's grace window is
still open (the first STREAK_GRACE_HOURS hours of the day). Anything older
resets streakCount to 0. This job only ever lowers a counter to zero;
increments belong to the activity-completion path.
"""
from __future__ import annotations

from datetime import date, datetime, timedelta, tzinfo
from typing import List, Optional
from zoneinfo import ZoneInfo

from reconciler.core.config import Settings, settings
from reconciler.features.reconciliation.job import ReconciliationJob
from reconciler.models.user import COMPLETED_ACTIVITIES, USERS_COLLECTION, CompletedActivity, User
from reconciler.store.contract import ID_FIELD, Document, DocumentStore, FieldFilter, WriteOutcome


def canonical_day(instant: datetime, zone: tzinfo) -> date:
    return instant.astimezone(zone).date()


def is_streak_protected(
    last_completed_at: Optional[datetime],
    now: datetime,
    *,
    zone: tzinfo,
    grace_hours: int,
) -> bool:
    if last_completed_at is None:
        return False
    today = canonical_day(now, zone)
    last_day = canonical_day(last_completed_at, zone)
    if last_day >= today:
        return True
    if last_day == today - timedelta(days=1):
        local_now = now.astimezone(zone)
        start_of_day = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
        return local_now - start_of_day < timedelta(hours=grace_hours)
    return False


class StreakReconciler(ReconciliationJob):
    name = "reset_streaks"
    collection = USERS_COLLECTION
    order_by = ID_FIELD

    def __init__(self, *, timezone: str = "UTC", grace_hours: int = 12):
        self.zone = ZoneInfo(timezone)
        self.grace_hours = grace_hours

    @classmethod
    def from_settings(cls, cfg: Optional[Settings] = None) -> "StreakReconciler":
        cfg = cfg or settings
        return cls(timezone=cfg.STREAK_TIMEZONE, grace_hours=int(cfg.STREAK_GRACE_HOURS))

    def filters(self, now: datetime) -> List[FieldFilter]:
        # Users already at zero have nothing to reset
        return [FieldFilter("streakCount", ">", 0)]

    async def last_completion(self, store: DocumentStore, user_id: str) -> Optional[datetime]:
        latest = await store.get_subcollection(
            USERS_COLLECTION,
            user_id,
            COMPLETED_ACTIVITIES,
            order_by="completedAt",
            descending=True,
            limit=1,
        )
        if not latest:
            return None
        return CompletedActivity.from_document(latest[0]).completed_at

    async def should_act(self, store: DocumentStore, doc: Document, now: datetime) -> bool:
        user = User.from_document(doc)
        if user.streak_count <= 0:
            return False
        last = await self.last_completion(store, user.id)
        return not is_streak_protected(last, now, zone=self.zone, grace_hours=self.grace_hours)

    async def act(self, store: DocumentStore, doc: Document, now: datetime) -> WriteOutcome:
        # Compare-and-set on the value we judged; a concurrent increment wins
        return await store.conditional_update(
            USERS_COLLECTION,
            str(doc[ID_FIELD]),
            expected={"streakCount": doc.get("streakCount")},
            fields={"streakCount": 0},
        )
