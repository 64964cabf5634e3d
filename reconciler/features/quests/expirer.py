"""Quest expiry job: active quests past their endDate become expired."""
from __future__ import annotations

from datetime import datetime
from typing import List

from reconciler.features.reconciliation.job import ReconciliationJob
from reconciler.models.quest import ACTIVE, EXPIRED, QUESTS_COLLECTION, Quest
from reconciler.store.contract import Document, DocumentStore, FieldFilter, WriteOutcome


class QuestExpirer(ReconciliationJob):
    name = "expire_quests"
    collection = QUESTS_COLLECTION
    order_by = "endDate"

    def filters(self, now: datetime) -> List[FieldFilter]:
        return [FieldFilter("status", "==", ACTIVE), FieldFilter("endDate", "<", now)]

    async def should_act(self, store: DocumentStore, doc: Document, now: datetime) -> bool:
        quest = Quest.from_document(doc)
        return quest.is_active and quest.has_ended(now)

    async def act(self, store: DocumentStore, doc: Document, now: datetime) -> WriteOutcome:
        # Guarded on status so a quest another actor already completed stays completed
        return await store.conditional_update(
            QUESTS_COLLECTION,
            Quest.from_document(doc).id,
            expected={"status": ACTIVE},
            fields={"status": EXPIRED},
        )
