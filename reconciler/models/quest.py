from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal, Mapping, Optional

from reconciler.core.clock import ensure_aware

QUESTS_COLLECTION = "quests"

QuestStatus = Literal["active", "expired", "completed"]
ACTIVE: QuestStatus = "active"
EXPIRED: QuestStatus = "expired"


@dataclass
class Quest:
    """
    Time-bounded quest. `active -> expired` is the only transition driven
    here; `expired` and every other non-active status are sinks.
    """

    id: str
    status: str
    end_date: Optional[datetime] = None
    version: Optional[int] = None

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "Quest":
        end_date = doc.get("endDate")
        return cls(
            id=str(doc["id"]),
            status=str(doc.get("status") or ""),
            end_date=ensure_aware(end_date) if isinstance(end_date, datetime) else None,
            version=doc.get("version"),
        )

    @property
    def is_active(self) -> bool:
        return self.status == ACTIVE

    def has_ended(self, now: datetime) -> bool:
        return self.end_date is not None and self.end_date < now
