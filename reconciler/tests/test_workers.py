"""CLI workers: argument parsing, printed summary and exit codes."""
import asyncio
import json
from datetime import timedelta

import pytest

from reconciler.core.clock import utc_now
from reconciler.core.database import dispose_engine, init_engine, reset_database
from reconciler.core.errors import PermissionOrConfigError
from reconciler.models.run import EntityFailure, ReconciliationRun
from reconciler.store.sql import SqlDocumentStore
from reconciler.tests.helpers import FlakyStore, at, seed_quest, seed_user
from reconciler.workers.common import build_parser, execute, exit_code, run_cli
from reconciler.workers.expire_quests import expire_quests
from reconciler.workers.prune_notifications import prune_notifications
from reconciler.workers.reset_streaks import reset_streaks

NOW = at(2026, 2, 3, 4)


def _finished_run(**fields):
    run = ReconciliationRun(job="expire_quests", now=NOW, started_at=NOW)
    run.finished_at = NOW
    for key, value in fields.items():
        setattr(run, key, value)
    return run


def _last_json_line(out):
    return json.loads(out.strip().splitlines()[-1])


def test_exit_codes_follow_run_status():
    assert exit_code(_finished_run()) == 0
    assert exit_code(_finished_run(timed_out=True)) == 0
    assert exit_code(_finished_run(failures=[EntityFailure("q1", "transient_store_error", "timeout", 3)])) == 1
    assert exit_code(_finished_run(aborted=True)) == 1


def test_parser_reads_now_and_overrides():
    args = build_parser("expire_quests").parse_args(
        ["--now", "2026-02-03T04:00:00Z", "--concurrency", "4", "--page-size", "50", "--max-duration", "30"]
    )

    assert args.now == NOW
    assert args.concurrency == 4
    assert args.page_size == 50
    assert args.max_duration == 30.0


def test_parser_rejects_bad_now():
    with pytest.raises(SystemExit):
        build_parser("expire_quests").parse_args(["--now", "soon"])


@pytest.mark.asyncio
async def test_execute_prints_summary(memory_store, capsys):
    await seed_quest(memory_store, "q1", NOW - timedelta(hours=1))

    code = await execute("expire_quests", store=memory_store, now=NOW)

    summary = _last_json_line(capsys.readouterr().out)
    assert code == 0
    assert summary["job"] == "expire_quests"
    assert summary["mutated"] == 1


@pytest.mark.asyncio
async def test_execute_aborted_run_exits_nonzero(memory_store, capsys):
    store = FlakyStore(memory_store)
    store.fail("query", PermissionOrConfigError("no such table: documents"))

    code = await execute("reset_streaks", store=store, now=NOW)

    summary = _last_json_line(capsys.readouterr().out)
    assert code == 1
    assert summary["status"] == "aborted"
    assert summary["abort_reason"].startswith("store_fatal")


def test_run_cli_end_to_end(memory_store, capsys):
    asyncio.run(seed_quest(memory_store, "q1", NOW - timedelta(minutes=1)))
    asyncio.run(seed_quest(memory_store, "q2", NOW + timedelta(minutes=1)))

    code = run_cli("expire_quests", ["--now", "2026-02-03T04:00:00+00:00", "--page-size", "1"], store=memory_store)

    assert code == 0
    assert _last_json_line(capsys.readouterr().out)["mutated"] == 1
    assert memory_store.snapshot("quests")["q2"]["status"] == "active"


@pytest.fixture
def configured_database(sqlite_url, monkeypatch):
    """A seeded SQLite database that the entry points find through the environment."""
    monkeypatch.setenv("TEST_DATABASE_URL", sqlite_url)
    dispose_engine()
    init_engine(sqlite_url)
    reset_database()
    yield SqlDocumentStore()
    dispose_engine()


def _seed_and_forget_engine(coro):
    asyncio.run(coro)
    # Entry points must build their own engine from configuration
    dispose_engine()


def test_expire_quests_entry_point(configured_database, capsys):
    store = configured_database
    now = utc_now()

    async def seed():
        await seed_quest(store, "ended", now - timedelta(days=1))
        await seed_quest(store, "running", now + timedelta(days=1))
        await seed_quest(store, "won", now - timedelta(days=1), status="completed")

    _seed_and_forget_engine(seed())

    assert expire_quests() == 0

    assert _last_json_line(capsys.readouterr().out)["mutated"] == 1
    assert asyncio.run(store.get("quests", "ended"))["status"] == "expired"
    assert asyncio.run(store.get("quests", "running"))["status"] == "active"
    assert asyncio.run(store.get("quests", "won"))["status"] == "completed"


def test_reset_streaks_entry_point(configured_database, capsys):
    store = configured_database
    now = utc_now()

    async def seed():
        await seed_user(store, "lapsed", 4, [now - timedelta(days=5)])
        # Completion stamped ahead of now stays on or after the current day
        await seed_user(store, "keeping-up", 9, [now + timedelta(hours=1)])

    _seed_and_forget_engine(seed())

    assert reset_streaks() == 0

    assert _last_json_line(capsys.readouterr().out)["job"] == "reset_streaks"
    assert asyncio.run(store.get("users", "lapsed"))["streakCount"] == 0
    assert asyncio.run(store.get("users", "keeping-up"))["streakCount"] == 9


def test_prune_notifications_entry_point(configured_database, capsys):
    store = configured_database
    now = utc_now()

    async def seed():
        await store.put("notifications", "stale", {"createdAt": now - timedelta(days=90)})
        await store.put("notifications", "recent", {"createdAt": now - timedelta(days=1)})

    _seed_and_forget_engine(seed())

    assert prune_notifications() == 0

    assert _last_json_line(capsys.readouterr().out)["mutated"] == 1
    assert asyncio.run(store.get("notifications", "stale")) is None
    assert asyncio.run(store.get("notifications", "recent")) is not None


def test_entry_point_exits_nonzero_without_a_database(monkeypatch, tmp_path, capsys):
    # A database file without the documents table cannot be reconciled
    monkeypatch.setenv("TEST_DATABASE_URL", f"sqlite:///{tmp_path / 'empty.db'}")
    dispose_engine()
    try:
        assert expire_quests() == 1
    finally:
        dispose_engine()

    assert _last_json_line(capsys.readouterr().out)["status"] == "aborted"
