"""HTTP trigger surface: health, readiness, metrics and job runs."""
import asyncio
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from reconciler.core.clock import FixedClock
from reconciler.core.config import settings
from reconciler.core.errors import PermissionOrConfigError
from reconciler.main import app
from reconciler.tests.helpers import FlakyStore, at, seed_quest

NOW = at(2026, 6, 1, 12)


@pytest.fixture
def store(memory_store):
    return memory_store


@pytest.fixture
def client(store):
    app.state.store = store
    app.state.clock = FixedClock(NOW)
    with TestClient(app) as test_client:
        yield test_client
    del app.state.store
    del app.state.clock


def _seed_quests(store):
    async def seed():
        await seed_quest(store, "q1", NOW - timedelta(hours=2))
        await seed_quest(store, "q2", NOW + timedelta(hours=2))

    asyncio.run(seed())


def test_healthz(client):
    res = client.get("/healthz")

    assert res.status_code == 200
    assert res.json() == {"status": "ok"}
    assert res.headers["x-request-id"]


def test_readyz_reports_store_state(client, store):
    assert client.get("/readyz").status_code == 200

    async def unreachable():
        return False

    store.ping = unreachable
    res = client.get("/readyz")

    assert res.status_code == 503
    assert res.json()["status"] == "error"


def test_list_jobs(client):
    assert client.get("/v1/jobs").json() == {"jobs": ["expire_quests", "prune_notifications", "reset_streaks"]}


def test_trigger_runs_job_and_returns_summary(client, store):
    _seed_quests(store)

    res = client.post("/v1/jobs/expire_quests/run")

    assert res.status_code == 200
    body = res.json()
    assert body["job"] == "expire_quests"
    assert body["status"] == "success"
    assert body["mutated"] == 1
    assert body["now"] == NOW.isoformat()
    assert store.snapshot("quests")["q1"]["status"] == "expired"
    assert store.snapshot("quests")["q2"]["status"] == "active"


def test_trigger_accepts_explicit_now(client, store):
    _seed_quests(store)

    res = client.post("/v1/jobs/expire_quests/run", params={"now": "2026-06-01T15:00:00Z"})

    assert res.status_code == 200
    assert res.json()["mutated"] == 2


def test_trigger_rejects_malformed_now(client):
    res = client.post("/v1/jobs/expire_quests/run", params={"now": "yesterday"})

    assert res.status_code == 400
    assert res.json()["error"]["code"] == "validation_error"


def test_unknown_job_is_404(client):
    res = client.post("/v1/jobs/launch_rockets/run")

    assert res.status_code == 404
    assert res.json()["error"]["code"] == "not_found"


def test_scheduler_token_is_enforced_when_configured(client, monkeypatch):
    monkeypatch.setattr(settings, "SCHEDULER_TOKEN", "s3cret")

    denied = client.post("/v1/jobs/expire_quests/run", headers={"X-Scheduler-Token": "guess"})
    allowed = client.post("/v1/jobs/expire_quests/run", headers={"X-Scheduler-Token": "s3cret"})

    assert denied.status_code == 403
    assert denied.json()["error"]["code"] == "forbidden"
    assert allowed.status_code == 200


@pytest.fixture
def broken_store(memory_store):
    flaky = FlakyStore(memory_store)
    flaky.fail("query", PermissionOrConfigError("permission denied for table documents"))
    return flaky


def test_aborted_run_is_503_with_partial_summary(broken_store):
    app.state.store = broken_store
    app.state.clock = FixedClock(NOW)
    try:
        with TestClient(app) as client:
            res = client.post("/v1/jobs/reset_streaks/run")
    finally:
        del app.state.store
        del app.state.clock

    assert res.status_code == 503
    body = res.json()
    assert body["error"]["code"] == "run_aborted"
    assert body["summary"]["status"] == "aborted"
    assert body["summary"]["scanned"] == 0


def test_partial_run_is_500_with_summary(memory_store):
    flaky = FlakyStore(memory_store)
    _seed_quests(memory_store)
    asyncio.run(seed_quest(memory_store, "q3", NOW - timedelta(hours=1)))
    flaky.fail("conditional_update", RuntimeError("boom"), doc_id="q1")
    app.state.store = flaky
    app.state.clock = FixedClock(NOW)
    try:
        with TestClient(app) as client:
            res = client.post("/v1/jobs/expire_quests/run")
    finally:
        del app.state.store
        del app.state.clock

    assert res.status_code == 500
    body = res.json()
    assert body["status"] == "partial"
    assert body["failed"] == 1
    assert body["failures"][0]["entity_id"] == "q1"
    assert body["mutated"] == 1
    assert memory_store.snapshot("quests")["q1"]["status"] == "active"


def test_metrics_exposes_run_counters(client, store):
    _seed_quests(store)
    client.post("/v1/jobs/expire_quests/run")

    text = client.get("/metrics").text

    assert 'reconcile_runs_total{job="expire_quests",status="success"} 1.0' in text
    assert 'reconcile_entities_total{job="expire_quests",outcome="mutated"} 1.0' in text
    assert 'http_requests_total{method="POST",path="/v1/jobs/expire_quests/run",status="200"} 1.0' in text
