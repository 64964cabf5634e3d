"""
Shared CLI plumbing for the scheduled reconciliation workers.

Exit codes follow what the external scheduler's retry policy understands:
0 when the run finished or ran out of time budget cleanly, 1 when entities
failed or the run aborted.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
from datetime import datetime
from typing import List, Optional

from reconciler.core.clock import ensure_aware
from reconciler.core.config import settings, validate_config
from reconciler.core.errors import RunAbortedError
from reconciler.core.logging import configure_logging
from reconciler.features.reconciliation.jobs import run_job
from reconciler.models.run import ReconciliationRun
from reconciler.store.contract import DocumentStore

logger = logging.getLogger("reconciler.workers")


def exit_code(run: ReconciliationRun) -> int:
    return 0 if run.succeeded else 1


def _parse_now(value: str) -> datetime:
    try:
        return ensure_aware(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"not an ISO-8601 instant: {value}") from exc


def build_parser(job_name: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=f"Run the {job_name} reconciliation job once.")
    parser.add_argument("--now", type=_parse_now, default=None, help="Evaluate as of this ISO-8601 instant (default: current time).")
    parser.add_argument("--concurrency", type=int, default=None, help="Max in-flight entities.")
    parser.add_argument("--page-size", dest="page_size", type=int, default=None, help="Documents per page query.")
    parser.add_argument("--max-duration", dest="max_duration", type=float, default=None, help="Time budget in seconds.")
    return parser


async def execute(job_name: str, *, store: Optional[DocumentStore] = None, now: Optional[datetime] = None, **overrides) -> int:
    try:
        run = await run_job(job_name, store=store, now=now, **overrides)
    except RunAbortedError as exc:
        print(json.dumps(exc.summary.to_dict(), default=str))
        return 1
    print(json.dumps(run.to_dict(), default=str))
    return exit_code(run)


def run_cli(job_name: str, argv: Optional[List[str]] = None, *, store: Optional[DocumentStore] = None) -> int:
    configure_logging(settings.ENV)
    validate_config()
    args = build_parser(job_name).parse_args(argv)
    return asyncio.run(
        execute(
            job_name,
            store=store,
            now=args.now,
            concurrency=args.concurrency,
            page_size=args.page_size,
            max_duration=args.max_duration,
        )
    )
