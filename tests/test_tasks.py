"""
Tests for the scheduled Celery tasks.
"""

from unittest.mock import MagicMock, patch

import pytest

from rental_rag import tasks
from rental_rag.config import settings
from rental_rag.errors import ConfigurationError
from rental_rag.services import build_services


class FakeLock:
    """Non-blocking lock over a shared set of held names, like redis-py's Lock."""

    def __init__(self, held, name):
        self.held = held
        self.name = name

    def acquire(self, blocking=True):
        if self.name in self.held:
            return False
        self.held.add(self.name)
        return True

    def release(self):
        self.held.discard(self.name)


class FakeRedis:
    def __init__(self):
        self.held = set()

    def lock(self, name, timeout=None):
        return FakeLock(self.held, name)


@pytest.fixture(autouse=True)
def shared_index(monkeypatch):
    monkeypatch.setattr(settings, "index_backend", "pinecone")


@pytest.fixture
def services(seeded, database, embedder, store, make_chat_provider):
    return build_services(database=database, embedder=embedder, store=store, chat_provider=make_chat_provider())


@pytest.fixture
def redis_lock():
    lock = MagicMock()
    lock.acquire.return_value = True
    client = MagicMock()
    client.lock.return_value = lock
    with patch.object(tasks, "get_redis", return_value=client):
        yield client, lock


def test_beat_schedule():
    schedule = tasks.celery_app.conf.beat_schedule
    assert schedule["drain-sync-queue"]["task"] == "rental_rag.tasks.drain_sync_queue"
    assert schedule["reindex-all-nightly"]["task"] == "rental_rag.tasks.reindex_all"


def test_drain_runs_under_lock(services, enqueue, redis_lock):
    client, lock = redis_lock
    enqueue("t1", "customers", "c1", "INSERT")

    with patch.object(tasks, "get_services", return_value=services):
        result = tasks.drain_sync_queue(tenant_id="t1")

    assert result["status"] == "success"
    assert result["processed"] == 1
    assert client.lock.call_args.args[0] == tasks.DRAIN_LOCK_NAME
    lock.release.assert_called_once()


def test_drain_skipped_when_lock_held(services, enqueue, redis_lock):
    _, lock = redis_lock
    lock.acquire.return_value = False
    enqueue("t1", "customers", "c1", "INSERT")

    with patch.object(tasks, "get_services", return_value=services) as get:
        result = tasks.drain_sync_queue()

    assert result["status"] == "skipped"
    get.assert_not_called()
    lock.release.assert_not_called()


@pytest.mark.parametrize("outer_scope, inner_scope", [(None, "t1"), ("t1", None), ("t1", "t2")])
def test_overlapping_drains_exclude_each_other(services, enqueue, outer_scope, inner_scope):
    client = FakeRedis()
    enqueue("t1", "customers", "c1", "INSERT")
    inner_results = []

    def services_for_run():
        # a second drain starts while the first one holds the lock
        if not inner_results:
            inner_results.append(tasks.drain_sync_queue(tenant_id=inner_scope))
        return services

    with patch.object(tasks, "get_redis", return_value=client), \
            patch.object(tasks, "get_services", side_effect=services_for_run):
        outer = tasks.drain_sync_queue(tenant_id=outer_scope)

    assert outer["status"] == "success"
    assert inner_results[0]["status"] == "skipped"
    assert client.held == set()


def test_lock_released_when_drain_fails(redis_lock):
    _, lock = redis_lock
    broken = MagicMock()
    broken.sync.drain.side_effect = RuntimeError("database unreachable")

    with patch.object(tasks, "get_services", return_value=broken):
        with pytest.raises(RuntimeError):
            tasks.drain_sync_queue()

    lock.release.assert_called_once()


def test_memory_index_refused_before_queue_is_touched(monkeypatch, services, enqueue, redis_lock):
    client, _ = redis_lock
    monkeypatch.setattr(settings, "index_backend", "memory")
    enqueue("t1", "customers", "c1", "INSERT")

    with patch.object(tasks, "get_services", return_value=services) as get:
        with pytest.raises(ConfigurationError):
            tasks.drain_sync_queue()
        with pytest.raises(ConfigurationError):
            tasks.reindex_all()

    get.assert_not_called()
    client.lock.assert_not_called()


def test_services_share_engine_and_store_across_runs(monkeypatch, database, store):
    monkeypatch.setattr(tasks, "_database", None)
    monkeypatch.setattr(tasks, "_store", None)

    with patch.object(tasks, "SourceDatabase", return_value=database) as make_database, \
            patch.object(tasks, "create_index_store", return_value=store) as make_store:
        first = tasks.get_services()
        second = tasks.get_services()

    assert first.database is second.database is database
    assert first.store is second.store is store
    assert first.embedder is not second.embedder
    make_database.assert_called_once()
    make_store.assert_called_once()


def test_worker_shutdown_disposes_engine(monkeypatch):
    database = MagicMock()
    monkeypatch.setattr(tasks, "_database", database)
    monkeypatch.setattr(tasks, "_store", MagicMock())

    tasks.reset_services()

    database.engine.dispose.assert_called_once()
    assert tasks._database is None
    assert tasks._store is None


def test_reindex_all(services):
    with patch.object(tasks, "get_services", return_value=services):
        result = tasks.reindex_all()

    assert result["status"] == "success"
    assert result["totals"]["total_indexed"] == 6
    assert result["results"]["t1"]["customers"]["indexed"] == 3
