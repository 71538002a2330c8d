"""
Tenant-scoped semantic retrieval over the index.
"""

from typing import List, Optional

import structlog

from rental_rag.config import settings
from rental_rag.embed import EmbeddingClient
from rental_rag.errors import ValidationError
from rental_rag.models import RetrievedDocument
from rental_rag.store.base import BaseIndexStore

logger = structlog.get_logger(__name__)


class RetrievalService:
    """Embed a query and return the tenant's closest index entries."""

    def __init__(self, embedder: EmbeddingClient, store: BaseIndexStore):
        self.embedder = embedder
        self.store = store

    async def search(
        self,
        tenant_id: str,
        query_text: str,
        similarity_floor: Optional[float] = None,
        top_k: Optional[int] = None,
        source_kinds: Optional[List[str]] = None
    ) -> List[RetrievedDocument]:
        """
        Search the tenant's documents.

        Args:
            tenant_id: Tenant whose documents are searched; required
            query_text: Natural-language query
            similarity_floor: Minimum cosine similarity (default 0.7)
            top_k: Maximum number of results (default 8)
            source_kinds: Optional restriction to some source tables

        Returns:
            Documents with similarity >= floor, best first; empty when nothing qualifies
        """
        if not tenant_id:
            raise ValidationError("tenant_id is required for retrieval")

        floor = settings.retrieval_similarity_floor if similarity_floor is None else similarity_floor
        k = settings.retrieval_top_k if top_k is None else top_k

        query_embedding = await self.embedder.embed(query_text)
        results = await self.store.search(
            tenant_id=tenant_id,
            query_embedding=query_embedding,
            similarity_floor=floor,
            top_k=k,
            source_kinds=source_kinds,
        )

        logger.debug("retrieval_complete", tenant_id=tenant_id, results=len(results), top_k=k, floor=floor)
        return results
