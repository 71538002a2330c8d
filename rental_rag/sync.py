"""
Incremental sync: drain the rag_sync_queue change queue into the index.

Items are handled one at a time in created_at order. Each item is marked
processed whatever the outcome, so a failed item is never retried automatically.
"""

from typing import Dict, Optional

import structlog

from rental_rag.config import settings
from rental_rag.database import SourceDatabase
from rental_rag.documents import SOURCE_KINDS, SourceKind
from rental_rag.embed import EmbeddingClient
from rental_rag.errors import NotFoundError, StoreError, UnknownSourceKindError, classify_error
from rental_rag.models import ChangeAction, ChangeQueueItem, ItemError, SyncSummary
from rental_rag.store.base import BaseIndexStore

logger = structlog.get_logger(__name__)


class IncrementalSyncConsumer:
    """Apply pending change-queue items to the index."""

    def __init__(
        self,
        database: SourceDatabase,
        embedder: EmbeddingClient,
        store: BaseIndexStore,
        source_kinds: Optional[Dict[str, SourceKind]] = None
    ):
        self.database = database
        self.embedder = embedder
        self.store = store
        self.source_kinds = source_kinds if source_kinds is not None else SOURCE_KINDS

    async def drain(self, tenant_id: Optional[str] = None, limit: Optional[int] = None) -> SyncSummary:
        """
        Process up to `limit` pending items, oldest first.

        Args:
            tenant_id: Restrict the drain to one tenant
            limit: Maximum number of items to take (defaults to settings.sync_batch_limit)

        Returns:
            SyncSummary with per-action counts and classified failures
        """
        limit = settings.sync_batch_limit if limit is None else limit
        items = await self.database.fetch_pending_changes(tenant_id=tenant_id, limit=limit)
        summary = SyncSummary()

        logger.info("sync_drain_started", tenant_id=tenant_id, pending=len(items))

        for item in items:
            summary.processed += 1
            try:
                outcome = await self.apply(item)
            except Exception as e:
                self._record_failure(summary, item, e)
                await self._mark_processed(item, error_message=str(e) or type(e).__name__)
                continue

            error = await self._mark_processed(item)
            if error is None:
                setattr(summary, outcome, getattr(summary, outcome) + 1)
            else:
                # applied but still pending; the next drain repeats the idempotent write
                self._record_failure(summary, item, error)

        logger.info(
            "sync_drain_complete",
            tenant_id=tenant_id,
            processed=summary.processed,
            inserted=summary.inserted,
            updated=summary.updated,
            deleted=summary.deleted,
            errors=summary.errors,
        )
        return summary

    async def _mark_processed(
        self,
        item: ChangeQueueItem,
        error_message: Optional[str] = None
    ) -> Optional[StoreError]:
        """Record the item's outcome; a bookkeeping failure is logged and returned, not raised."""
        try:
            await self.database.mark_processed(item.id, error_message=error_message)
        except StoreError as e:
            logger.error(
                "sync_mark_processed_failed",
                item_id=item.id,
                tenant_id=item.tenant_id,
                source_kind=item.source_kind,
                source_id=item.source_id,
                error=str(e),
            )
            return e
        return None

    @staticmethod
    def _record_failure(summary: SyncSummary, item: ChangeQueueItem, exc: Exception) -> None:
        error_type = classify_error(exc)
        summary.errors += 1
        summary.failures.append(
            ItemError(
                tenant_id=item.tenant_id,
                source_kind=item.source_kind,
                source_id=item.source_id,
                error_type=error_type,
                message=str(exc),
            )
        )
        logger.warning(
            "sync_item_failed",
            item_id=item.id,
            tenant_id=item.tenant_id,
            source_kind=item.source_kind,
            source_id=item.source_id,
            action=item.action.value,
            error_type=error_type.value,
            error=str(exc),
        )

    async def apply(self, item: ChangeQueueItem) -> str:
        """
        Apply one queue item to the index.

        Returns:
            The SyncSummary counter to increment: "inserted", "updated" or "deleted"
        """
        kind = self.source_kinds.get(item.source_kind)
        if kind is None:
            raise UnknownSourceKindError(item.source_kind)

        if item.action == ChangeAction.DELETE:
            await self.store.delete(item.tenant_id, item.source_kind, item.source_id)
            return "deleted"

        try:
            record = await self.database.fetch_record(item.tenant_id, kind.selection, item.source_id)
        except NotFoundError:
            # the row is gone; its index entry must go too
            await self.store.delete(item.tenant_id, item.source_kind, item.source_id)
            logger.info(
                "sync_source_missing",
                tenant_id=item.tenant_id,
                source_kind=item.source_kind,
                source_id=item.source_id,
            )
            return "deleted"

        document = kind.to_document(record)
        embedding = await self.embedder.embed(document.page_content)
        await self.store.upsert(
            tenant_id=item.tenant_id,
            source_kind=item.source_kind,
            source_id=item.source_id,
            content=document.page_content,
            embedding=embedding,
            metadata=document.metadata,
        )
        return "inserted" if item.action == ChangeAction.INSERT else "updated"

    async def retry_failed(self, tenant_id: Optional[str] = None) -> int:
        """Re-queue FAILED items. Operator action; never called by drain."""
        requeued = await self.database.retry_failed(tenant_id)
        logger.info("sync_failed_requeued", tenant_id=tenant_id, requeued=requeued)
        return requeued
