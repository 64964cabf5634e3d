from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Optional

from reconciler.core.clock import ensure_aware

USERS_COLLECTION = "users"
COMPLETED_ACTIVITIES = "completedQuests"


@dataclass
class User:
    """A user document as seen by the streak job. Missing streakCount reads as 0."""

    id: str
    streak_count: int = 0
    version: Optional[int] = None

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "User":
        return cls(
            id=str(doc["id"]),
            streak_count=int(doc.get("streakCount") or 0),
            version=doc.get("version"),
        )


@dataclass
class CompletedActivity:
    id: str
    completed_at: datetime

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "CompletedActivity":
        return cls(id=str(doc["id"]), completed_at=ensure_aware(doc["completedAt"]))
