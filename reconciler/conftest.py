# reconciler/conftest.py
import pytest

from reconciler.core.database import dispose_engine, init_engine, reset_database
from reconciler.core.metrics import METRICS
from reconciler.features.reconciliation.driver import ReconciliationDriver
from reconciler.features.reconciliation.retry import RetryPolicy
from reconciler.store.memory import InMemoryDocumentStore
from reconciler.store.sql import SqlDocumentStore


@pytest.fixture(autouse=True)
def reset_metrics():
    """Metrics are process-global; start every test from zero."""
    METRICS.reset()
    yield
    METRICS.reset()


@pytest.fixture
def memory_store():
    return InMemoryDocumentStore()


@pytest.fixture
def no_wait_retries():
    return RetryPolicy(max_attempts=3, base_seconds=0.0, max_seconds=0.0)


@pytest.fixture
def make_driver(no_wait_retries):
    """Driver factory with instant retries and no time budget unless asked."""

    def _make(store, **kwargs):
        kwargs.setdefault("retry_policy", no_wait_retries)
        kwargs.setdefault("concurrency", 5)
        kwargs.setdefault("page_size", 3)
        return ReconciliationDriver(store, **kwargs)

    return _make


@pytest.fixture
def sqlite_url(tmp_path):
    return f"sqlite:///{tmp_path / 'documents.db'}"


@pytest.fixture
def sql_store(sqlite_url):
    """SQL document store on a throwaway SQLite file."""
    init_engine(sqlite_url)
    reset_database()
    yield SqlDocumentStore()
    dispose_engine()
