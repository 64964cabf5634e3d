"""
Notification retention job.

Deletes notifications older than the retention window, at most
`scan_limit` per run. Whatever is left is picked up by the next run.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import List, Optional

from reconciler.core.config import Settings, settings
from reconciler.features.reconciliation.job import ReconciliationJob
from reconciler.models.notification import NOTIFICATIONS_COLLECTION, Notification
from reconciler.store.contract import Document, DocumentStore, FieldFilter, WriteOutcome


class NotificationPruner(ReconciliationJob):
    name = "prune_notifications"
    collection = NOTIFICATIONS_COLLECTION
    order_by = "createdAt"

    def __init__(self, *, retention_days: int = 30, limit: Optional[int] = 500):
        self.retention = timedelta(days=retention_days)
        self.scan_limit = limit

    @classmethod
    def from_settings(cls, cfg: Optional[Settings] = None) -> "NotificationPruner":
        cfg = cfg or settings
        return cls(
            retention_days=int(cfg.NOTIFICATION_RETENTION_DAYS),
            limit=int(cfg.NOTIFICATION_PRUNE_LIMIT),
        )

    def cutoff(self, now: datetime) -> datetime:
        return now - self.retention

    def filters(self, now: datetime) -> List[FieldFilter]:
        return [FieldFilter("createdAt", "<", self.cutoff(now))]

    async def should_act(self, store: DocumentStore, doc: Document, now: datetime) -> bool:
        created_at = Notification.from_document(doc).created_at
        return created_at is not None and created_at < self.cutoff(now)

    async def act(self, store: DocumentStore, doc: Document, now: datetime) -> WriteOutcome:
        notification = Notification.from_document(doc)
        return await store.conditional_delete(
            NOTIFICATIONS_COLLECTION,
            notification.id,
            expected_version=notification.version,
        )
