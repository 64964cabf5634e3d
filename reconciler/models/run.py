from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from uuid import uuid4

RunStatus = Literal["running", "success", "partial", "timed_out", "aborted"]
EntityOutcome = Literal["mutated", "skipped", "conflict", "missing", "failed"]


@dataclass
class EntityFailure:
    entity_id: str
    error_code: str
    message: str
    attempts: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "error_code": self.error_code,
            "message": self.message,
            "attempts": self.attempts,
        }


@dataclass
class ReconciliationRun:
    """
    In-memory record of one job execution. Never persisted: it is logged,
    counted in metrics and handed back to whoever triggered the run.
    """

    job: str
    now: datetime
    started_at: datetime
    run_id: str = field(default_factory=lambda: uuid4().hex[:12])
    finished_at: Optional[datetime] = None
    scanned: int = 0
    mutated: int = 0
    skipped: int = 0
    conflicts: int = 0
    missing: int = 0
    failures: List[EntityFailure] = field(default_factory=list)
    timed_out: bool = False
    limit_reached: bool = False
    aborted: bool = False
    abort_reason: Optional[str] = None

    def record(self, outcome: EntityOutcome) -> None:
        if outcome == "mutated":
            self.mutated += 1
        elif outcome == "skipped":
            self.skipped += 1
        elif outcome == "conflict":
            self.conflicts += 1
        elif outcome == "missing":
            self.missing += 1

    @property
    def status(self) -> RunStatus:
        if self.aborted:
            return "aborted"
        if self.finished_at is None:
            return "running"
        if self.timed_out:
            return "timed_out"
        if self.failures:
            return "partial"
        return "success"

    @property
    def succeeded(self) -> bool:
        """Whether the scheduler should treat the run as done (no retry)."""
        return self.status in ("success", "timed_out")

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "job": self.job,
            "status": self.status,
            "now": self.now.isoformat(),
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "scanned": self.scanned,
            "mutated": self.mutated,
            "skipped": self.skipped,
            "conflicts": self.conflicts,
            "missing": self.missing,
            "failed": len(self.failures),
            "failures": [f.to_dict() for f in self.failures],
            "timed_out": self.timed_out,
            "limit_reached": self.limit_reached,
            "abort_reason": self.abort_reason,
        }
