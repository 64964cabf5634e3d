import json
import logging

from reconciler.core.logging import (
    ContextFilter,
    JsonFormatter,
    PrettyFormatter,
    latency_bucket_ms,
    log_event,
    run_id_ctx_var,
)


def _record(**extra):
    record = logging.makeLogRecord({"name": "reconciler", "levelname": "INFO", "levelno": logging.INFO, "msg": "reconcile.run.complete"})
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_run_fields():
    record = _record(run_id="abc123", job="expire_quests", entity_id="q1", error_code="transient_store_error")

    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "reconcile.run.complete"
    assert payload["run_id"] == "abc123"
    assert payload["job"] == "expire_quests"
    assert payload["entity_id"] == "q1"
    assert payload["error_code"] == "transient_store_error"
    assert "path" not in payload


def test_context_filter_fills_run_id_from_context():
    record = _record()
    token = run_id_ctx_var.set("run-42")
    try:
        ContextFilter().filter(record)
    finally:
        run_id_ctx_var.reset(token)

    assert record.run_id == "run-42"
    assert "[run=run-42]" in PrettyFormatter().format(record)


def test_log_event_truncates_and_tags(caplog):
    with caplog.at_level(logging.INFO, logger="reconciler"):
        log_event("warning", "reconcile.entity.failed", job="reset_streaks", entity_id="u1", extra={"error": "x" * 900})

    record = caplog.records[-1]
    assert record.levelno == logging.WARNING
    assert record.job == "reset_streaks"
    assert record.error.endswith("...<truncated>")
    assert len(record.error) < 600


def test_latency_buckets():
    assert latency_bucket_ms(None) == "unknown"
    assert latency_bucket_ms(3) == "<10ms"
    assert latency_bucket_ms(250) == "100-500ms"
    assert latency_bucket_ms(5000) == ">=1000ms"
