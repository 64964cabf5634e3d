from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Optional

from reconciler.core.clock import ensure_aware

NOTIFICATIONS_COLLECTION = "notifications"


@dataclass
class Notification:
    id: str
    created_at: Optional[datetime] = None
    version: Optional[int] = None

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "Notification":
        created_at = doc.get("createdAt")
        return cls(
            id=str(doc["id"]),
            created_at=ensure_aware(created_at) if isinstance(created_at, datetime) else None,
            version=doc.get("version"),
        )
