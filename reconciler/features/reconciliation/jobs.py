"""Job registry shared by the CLI workers and the HTTP trigger."""
from __future__ import annotations

from datetime import datetime
from typing import Callable, Dict, Optional

from reconciler.core.clock import Clock
from reconciler.core.config import Settings, settings
from reconciler.core.errors import UnknownJobError
from reconciler.features.notifications.pruner import NotificationPruner
from reconciler.features.quests.expirer import QuestExpirer
from reconciler.features.reconciliation.driver import ReconciliationDriver
from reconciler.features.reconciliation.job import ReconciliationJob
from reconciler.features.streaks.reconciler import StreakReconciler
from reconciler.models.run import ReconciliationRun
from reconciler.store.contract import DocumentStore
from reconciler.store.sql import SqlDocumentStore

JOBS: Dict[str, Callable[[Settings], ReconciliationJob]] = {
    StreakReconciler.name: StreakReconciler.from_settings,
    QuestExpirer.name: lambda cfg: QuestExpirer(),
    NotificationPruner.name: NotificationPruner.from_settings,
}


def build_job(name: str, cfg: Optional[Settings] = None) -> ReconciliationJob:
    factory = JOBS.get(name)
    if factory is None:
        raise UnknownJobError(f"Unknown job: {name}")
    return factory(cfg or settings)


def default_store() -> DocumentStore:
    return SqlDocumentStore()


async def run_job(
    name: str,
    *,
    store: Optional[DocumentStore] = None,
    clock: Optional[Clock] = None,
    now: Optional[datetime] = None,
    cfg: Optional[Settings] = None,
    **driver_overrides,
) -> ReconciliationRun:
    """Build the named job and driver from settings and run it once."""
    cfg = cfg or settings
    job = build_job(name, cfg)
    driver = ReconciliationDriver.from_settings(store or default_store(), clock=clock, cfg=cfg, **driver_overrides)
    return await driver.run(job, now=now)
