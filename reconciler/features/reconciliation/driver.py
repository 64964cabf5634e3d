"""
Reconciliation driver: one paginated, bounded-concurrency pass of a job.

- Keyset pagination on (order_by, id); never offsets, so documents that
  leave the filtered set mid-run do not shift later pages.
- Every dispatched entity is awaited and its outcome recorded; one entity
  failing never stops its siblings.
- A time budget stops new dispatch; in-flight work is allowed to finish and
  the partial summary is returned. The next scheduled run picks up the rest.
- PermissionOrConfigError, a page query that keeps failing, or any other
  error while paging aborts the run: in-flight work is cancelled and
  RunAbortedError carries the summary.
"""
from __future__ import annotations

import asyncio
import time
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Set

from reconciler.core.clock import Clock, SystemClock, ensure_aware
from reconciler.core.config import Settings, settings
from reconciler.core.errors import PermissionOrConfigError, RunAbortedError, TransientStoreError
from reconciler.core.logging import log_event, run_id_ctx_var
from reconciler.core.metrics import (
    reconcile_entities_total,
    reconcile_last_run_duration_seconds,
    reconcile_runs_total,
)
from reconciler.features.reconciliation.job import ReconciliationJob
from reconciler.features.reconciliation.retry import RetryPolicy, call_with_retries
from reconciler.models.run import EntityFailure, EntityOutcome, ReconciliationRun
from reconciler.store.contract import Document, DocumentStore, WriteOutcome

_WRITE_OUTCOMES = {
    WriteOutcome.APPLIED: "mutated",
    WriteOutcome.PRECONDITION_FAILED: "conflict",
    WriteOutcome.NOT_FOUND: "missing",
}


class ReconciliationDriver:
    def __init__(
        self,
        store: DocumentStore,
        *,
        clock: Optional[Clock] = None,
        concurrency: int = 20,
        page_size: int = 200,
        max_duration: Optional[float] = None,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        self.store = store
        self.clock = clock or SystemClock()
        self.concurrency = concurrency
        self.page_size = page_size
        self.max_duration = max_duration
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep
        self._monotonic = monotonic

    @classmethod
    def from_settings(cls, store: DocumentStore, *, clock: Optional[Clock] = None, cfg: Optional[Settings] = None, **overrides) -> "ReconciliationDriver":
        cfg = cfg or settings
        options = {
            "concurrency": int(cfg.RECONCILE_CONCURRENCY),
            "page_size": int(cfg.RECONCILE_PAGE_SIZE),
            "max_duration": float(cfg.RECONCILE_MAX_DURATION_SECONDS) or None,
            "retry_policy": RetryPolicy.from_settings(cfg),
        }
        options.update({k: v for k, v in overrides.items() if v is not None})
        return cls(store, clock=clock, **options)

    async def run(self, job: ReconciliationJob, now: Optional[datetime] = None) -> ReconciliationRun:
        now = ensure_aware(now) if now is not None else self.clock.now()
        run = ReconciliationRun(job=job.name, now=now, started_at=self.clock.now())
        token = run_id_ctx_var.set(run.run_id)
        try:
            return await self._run(job, now, run)
        finally:
            run_id_ctx_var.reset(token)

    async def _run(self, job: ReconciliationJob, now: datetime, run: ReconciliationRun) -> ReconciliationRun:
        deadline = self._monotonic() + self.max_duration if self.max_duration else None
        semaphore = asyncio.Semaphore(self.concurrency)
        in_flight: Set[asyncio.Task] = set()
        fatal: List[BaseException] = []

        def _release(task: asyncio.Task) -> None:
            in_flight.discard(task)
            semaphore.release()

        log_event(
            "info",
            "reconcile.run.start",
            job=job.name,
            event_type="run_start",
            extra={"now": now.isoformat(), "concurrency": self.concurrency, "page_size": self.page_size},
        )

        try:
            cursor = None
            while not fatal:
                if self._expired(deadline):
                    run.timed_out = True
                    break
                page = await call_with_retries(
                    lambda: self.store.query(
                        job.collection,
                        filters=job.filters(now),
                        order_by=job.order_by,
                        cursor=cursor,
                        page_size=self.page_size,
                    ),
                    self.retry_policy,
                    sleep=self._sleep,
                    label=f"{job.name} page query",
                )
                for doc in page.documents:
                    if job.scan_limit is not None and run.scanned >= job.scan_limit:
                        run.limit_reached = True
                        break
                    await semaphore.acquire()
                    if fatal:
                        semaphore.release()
                        break
                    if self._expired(deadline):
                        semaphore.release()
                        run.timed_out = True
                        break
                    run.scanned += 1
                    task = asyncio.create_task(self._process(job, doc, now, run, fatal))
                    in_flight.add(task)
                    task.add_done_callback(_release)
                if run.timed_out or run.limit_reached or page.next_cursor is None:
                    break
                cursor = page.next_cursor
        except Exception as exc:
            # Retries are exhausted or the error is outside the store taxonomy
            fatal.append(exc)
        except BaseException:
            # Cancelled from outside: take the dispatched work down with us
            for task in list(in_flight):
                task.cancel()
            raise

        await self._drain(in_flight, fatal)
        run.finished_at = self.clock.now()

        if fatal:
            cause = fatal[0]
            run.aborted = True
            run.abort_reason = f"{getattr(cause, 'code', type(cause).__name__)}: {cause}"
            self._report(run, "error", "reconcile.run.aborted")
            raise RunAbortedError(f"{job.name} run aborted: {cause}", summary=run, cause=cause) from cause

        if run.timed_out:
            self._report(run, "warning", "reconcile.run.timeout")
        else:
            self._report(run, "info", "reconcile.run.complete")
        return run

    async def _drain(self, in_flight: Set[asyncio.Task], fatal: List[BaseException]) -> None:
        """Wait for every dispatched task; cancel the rest once a fatal error shows up."""
        try:
            while True:
                pending = {task for task in in_flight if not task.done()}
                if not pending:
                    return
                if fatal:
                    for task in pending:
                        task.cancel()
                    await asyncio.gather(*pending, return_exceptions=True)
                    return
                await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            for task in list(in_flight):
                task.cancel()
            raise

    async def _process(
        self,
        job: ReconciliationJob,
        doc: Document,
        now: datetime,
        run: ReconciliationRun,
        fatal: List[BaseException],
    ) -> None:
        entity_id = str(doc.get("id"))
        outcome: EntityOutcome
        try:
            should = await call_with_retries(
                lambda: job.should_act(self.store, doc, now),
                self.retry_policy,
                sleep=self._sleep,
                label=f"{job.name} predicate {entity_id}",
            )
            if not should:
                outcome = "skipped"
            else:
                result = await call_with_retries(
                    lambda: job.act(self.store, doc, now),
                    self.retry_policy,
                    sleep=self._sleep,
                    label=f"{job.name} write {entity_id}",
                )
                outcome = _WRITE_OUTCOMES[result]
        except PermissionOrConfigError as exc:
            fatal.append(exc)
            return
        except TransientStoreError as exc:
            self._fail(job, run, entity_id, exc.code, exc.message, getattr(exc, "attempts", 1))
            return
        except Exception as exc:
            self._fail(job, run, entity_id, "unexpected_error", f"{type(exc).__name__}: {exc}", 1)
            return

        run.record(outcome)
        reconcile_entities_total.inc(labels={"job": job.name, "outcome": outcome})

    def _fail(self, job: ReconciliationJob, run: ReconciliationRun, entity_id: str, code: str, message: str, attempts: int) -> None:
        run.failures.append(EntityFailure(entity_id=entity_id, error_code=code, message=message, attempts=attempts))
        reconcile_entities_total.inc(labels={"job": job.name, "outcome": "failed"})
        log_event(
            "warning",
            "reconcile.entity.failed",
            job=job.name,
            entity_id=entity_id,
            error_code=code,
            extra={"attempts": attempts, "error": message},
        )

    def _expired(self, deadline: Optional[float]) -> bool:
        return deadline is not None and self._monotonic() >= deadline

    def _report(self, run: ReconciliationRun, level: str, message: str) -> None:
        reconcile_runs_total.inc(labels={"job": run.job, "status": run.status})
        duration = run.duration_seconds
        if duration is not None:
            reconcile_last_run_duration_seconds.set(duration, labels={"job": run.job})
        summary = run.to_dict()
        summary.pop("failures")
        log_event(level, message, job=run.job, event_type="run_end", extra=summary)
