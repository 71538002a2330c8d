"""
Celery tasks for the scheduled drain of the change queue and the nightly reindex.
"""

import asyncio
from datetime import timedelta
from typing import List, Optional

import redis
from celery import Celery
from celery.schedules import crontab
from celery.signals import worker_process_shutdown, worker_shutdown

from rental_rag.config import settings
from rental_rag.database import SourceDatabase
from rental_rag.errors import ConfigurationError
from rental_rag.logging_config import configure_logging, get_structured_logger
from rental_rag.services import RAGServices, build_services
from rental_rag.store import BaseIndexStore, create_index_store

configure_logging()
logger = get_structured_logger(__name__)

# Initialize Celery
celery_app = Celery(
    "rental_rag",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,  # Acknowledge only after completion
    task_reject_on_worker_lost=True,  # Requeue if worker dies
    task_track_started=True,
)

celery_app.conf.task_routes = {
    '*': {'queue': 'default'},
}

# Scheduled tasks
celery_app.conf.beat_schedule = {
    "drain-sync-queue": {
        "task": "rental_rag.tasks.drain_sync_queue",
        "schedule": timedelta(seconds=settings.sync_interval_seconds),
    },
    "reindex-all-nightly": {
        "task": "rental_rag.tasks.reindex_all",
        "schedule": crontab(hour=2, minute=0),  # Daily at 2 AM UTC
    },
}

_redis_client: Optional[redis.Redis] = None
_database: Optional[SourceDatabase] = None
_store: Optional[BaseIndexStore] = None

# One lock for every drain scope: a tenant drain and an unscoped drain both touch
# that tenant's queue, so they must never overlap.
DRAIN_LOCK_NAME = "rental_rag:drain"


def get_redis() -> redis.Redis:
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.Redis.from_url(settings.redis_url)
    return _redis_client


def require_shared_index() -> None:
    """
    Refuse to run a job against the in-process index.

    A worker's memory index is invisible to the API, so draining into it would
    mark queue items processed without their changes reaching any reader.
    """
    if settings.index_backend == "memory":
        raise ConfigurationError(
            "Scheduled jobs need a shared index backend; set INDEX_BACKEND=pinecone"
        )


def get_services() -> RAGServices:
    """
    Services for one task run.

    The database engine and index store live for the worker process; the async
    clients are rebuilt per run since each run gets a fresh event loop.
    """
    global _database, _store
    if _database is None:
        _database = SourceDatabase()
    if _store is None:
        _store = create_index_store()
    return build_services(database=_database, store=_store)


def reset_services() -> None:
    """Dispose the worker's database engine and forget the index store."""
    global _database, _store
    if _database is not None:
        _database.engine.dispose()
        logger.info("worker_database_disposed")
    _database = None
    _store = None


@worker_process_shutdown.connect
@worker_shutdown.connect
def _close_worker_resources(**_kwargs):
    reset_services()


@celery_app.task(name="rental_rag.tasks.drain_sync_queue")
def drain_sync_queue(tenant_id: Optional[str] = None, limit: Optional[int] = None):
    """
    Drain pending change-queue items.

    Holds the drain lock so no two drains overlap, whatever their tenant scope;
    a run that finds the lock held is skipped.
    """
    require_shared_index()
    lock = get_redis().lock(DRAIN_LOCK_NAME, timeout=settings.sync_lock_timeout_seconds)
    if not lock.acquire(blocking=False):
        logger.info("drain_skipped_lock_held", tenant_id=tenant_id)
        return {"status": "skipped", "reason": "drain already running"}

    try:
        services = get_services()
        summary = asyncio.run(services.sync.drain(tenant_id=tenant_id, limit=limit))
        return {"status": "success", **summary.model_dump(mode="json")}
    finally:
        lock.release()


@celery_app.task(
    name="rental_rag.tasks.reindex_all",
    bind=True,
    autoretry_for=(ConnectionError,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
    max_retries=3
)
def reindex_all(self, tenant_ids: Optional[List[str]] = None):
    """Scheduled full reindex of the named tenants, or of every active tenant."""
    require_shared_index()
    logger.info("reindex_task_started", attempt=self.request.retries + 1, tenant_ids=tenant_ids)
    services = get_services()
    summary = asyncio.run(services.reindexer.reindex(tenant_ids))
    return {"status": "success", **summary.model_dump(mode="json")}
