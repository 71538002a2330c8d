"""
Full reindex: rebuild the index from the source tables for a set of tenants.

Not transactional. Entries already written stay written when a later record,
batch, or table fails; every failure is classified, logged and counted.
"""

import asyncio
from typing import Dict, List, Optional, Tuple

import structlog
from langchain_core.documents import Document

from rental_rag.config import settings
from rental_rag.database import SourceDatabase
from rental_rag.documents import SOURCE_KINDS, SourceKind
from rental_rag.embed import EmbeddingClient
from rental_rag.errors import classify_error
from rental_rag.models import ItemError, ReindexSummary, TableSummary, Tenant
from rental_rag.store.base import BaseIndexStore

logger = structlog.get_logger(__name__)


class FullReindexer:
    """Re-embed and upsert every current record of every known source kind."""

    def __init__(
        self,
        database: SourceDatabase,
        embedder: EmbeddingClient,
        store: BaseIndexStore,
        batch_size: Optional[int] = None,
        max_concurrent_tenants: Optional[int] = None,
        source_kinds: Optional[Dict[str, SourceKind]] = None
    ):
        """
        Args:
            database: Source of tenants and records
            embedder: Embedding client used for batch embeddings
            store: Index store receiving the upserts
            batch_size: Documents per embed_batch call
            max_concurrent_tenants: Tenants processed at the same time
            source_kinds: Registry of kinds to index (defaults to all known kinds)
        """
        self.database = database
        self.embedder = embedder
        self.store = store
        self.batch_size = batch_size or settings.reindex_batch_size
        self.max_concurrent_tenants = max_concurrent_tenants or settings.reindex_max_concurrent_tenants
        self.source_kinds = source_kinds if source_kinds is not None else SOURCE_KINDS

    async def reindex(self, tenant_ids: Optional[List[str]] = None) -> ReindexSummary:
        """
        Rebuild the index for the named tenants, or for all active tenants.

        Raises:
            NotFoundError: An explicitly named tenant does not exist
        """
        if tenant_ids:
            tenants = [await self.database.get_tenant(tenant_id) for tenant_id in tenant_ids]
        else:
            tenants = await self.database.list_active_tenants()

        logger.info("reindex_started", tenants=len(tenants), kinds=list(self.source_kinds))

        semaphore = asyncio.Semaphore(self.max_concurrent_tenants)

        async def run(tenant: Tenant) -> Tuple[str, Dict[str, TableSummary]]:
            async with semaphore:
                return tenant.id, await self.reindex_tenant(tenant.id)

        summary = ReindexSummary()
        for tenant_id, tables in await asyncio.gather(*(run(t) for t in tenants)):
            summary.results[tenant_id] = tables

        totals = summary.compute_totals(tables=len(tenants) * len(self.source_kinds))
        logger.info(
            "reindex_complete",
            tenants=totals.tenants,
            tables=totals.tables,
            total_indexed=totals.total_indexed,
            total_errors=totals.total_errors,
        )
        return summary

    async def reindex_tenant(self, tenant_id: str) -> Dict[str, TableSummary]:
        results: Dict[str, TableSummary] = {}
        for name, kind in self.source_kinds.items():
            try:
                results[name] = await self.reindex_kind(tenant_id, kind)
            except Exception as e:
                # fetching the table failed; nothing from it was indexed
                table = TableSummary()
                self._fail(table, tenant_id, name, None, e)
                results[name] = table
        return results

    async def reindex_kind(self, tenant_id: str, kind: SourceKind) -> TableSummary:
        table = TableSummary()
        records = await self.database.fetch_records(tenant_id, kind.selection)

        documents: List[Tuple[str, Document]] = []
        for record in records:
            source_id = str(record.get("id")) if record.get("id") is not None else None
            try:
                documents.append((source_id, kind.to_document(record)))
            except Exception as e:
                self._fail(table, tenant_id, kind.name, source_id, e)

        for start in range(0, len(documents), self.batch_size):
            batch = documents[start:start + self.batch_size]
            try:
                embeddings = await self.embedder.embed_batch([doc.page_content for _, doc in batch])
            except Exception as e:
                logger.warning(
                    "reindex_batch_embed_failed",
                    tenant_id=tenant_id,
                    source_kind=kind.name,
                    batch_size=len(batch),
                    error=str(e),
                )
                embedded = await self._embed_one_by_one(table, tenant_id, kind.name, batch)
            else:
                embedded = [(source_id, doc, embedding) for (source_id, doc), embedding in zip(batch, embeddings)]

            for source_id, doc, embedding in embedded:
                try:
                    await self.store.upsert(
                        tenant_id=tenant_id,
                        source_kind=kind.name,
                        source_id=source_id,
                        content=doc.page_content,
                        embedding=embedding,
                        metadata=doc.metadata,
                    )
                    table.indexed += 1
                except Exception as e:
                    self._fail(table, tenant_id, kind.name, source_id, e)

        logger.info(
            "reindex_table_complete",
            tenant_id=tenant_id,
            source_kind=kind.name,
            indexed=table.indexed,
            errors=table.errors,
        )
        return table

    async def _embed_one_by_one(
        self,
        table: TableSummary,
        tenant_id: str,
        source_kind: str,
        batch: List[Tuple[str, Document]]
    ) -> List[Tuple[str, Document, List[float]]]:
        """Embed a failed batch record by record so only the offending records are counted."""
        embedded = []
        for source_id, doc in batch:
            try:
                embedded.append((source_id, doc, await self.embedder.embed(doc.page_content)))
            except Exception as e:
                self._fail(table, tenant_id, source_kind, source_id, e)
        return embedded

    @staticmethod
    def _fail(
        table: TableSummary,
        tenant_id: str,
        source_kind: str,
        source_id: Optional[str],
        exc: Exception
    ) -> None:
        failure = ItemError(
            tenant_id=tenant_id,
            source_kind=source_kind,
            source_id=source_id,
            error_type=classify_error(exc),
            message=str(exc),
        )
        table.record_failure(failure)
        logger.warning(
            "reindex_item_failed",
            tenant_id=tenant_id,
            source_kind=source_kind,
            source_id=source_id,
            error_type=failure.error_type.value,
            error=failure.message,
        )
