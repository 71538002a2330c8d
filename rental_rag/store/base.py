"""
Abstract base class for index stores.
Defines the interface every vector index backend must implement.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from rental_rag.models import IndexedDocument, RetrievedDocument


class BaseIndexStore(ABC):
    """
    The only writer of IndexedDocument entries.

    Entries are keyed by (tenant_id, source_kind, source_id); a key has at most
    one entry, and every read is scoped to a single tenant.
    """

    @abstractmethod
    async def upsert(
        self,
        tenant_id: str,
        source_kind: str,
        source_id: str,
        content: str,
        embedding: List[float],
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Insert or overwrite the entry for a key. Idempotent; advances updated_at.

        Args:
            tenant_id: Owning tenant
            source_kind: Source table name
            source_id: Source record id
            content: Normalized document text
            embedding: Embedding vector for content
            metadata: Denormalized fields for filtering and display
        """
        pass

    @abstractmethod
    async def delete(self, tenant_id: str, source_kind: str, source_id: str) -> None:
        """Remove the entry for a key. Deleting a missing key is not an error."""
        pass

    @abstractmethod
    async def get(self, tenant_id: str, source_kind: str, source_id: str) -> Optional[IndexedDocument]:
        """Return the entry for a key, or None."""
        pass

    @abstractmethod
    async def search(
        self,
        tenant_id: str,
        query_embedding: List[float],
        similarity_floor: float,
        top_k: int,
        source_kinds: Optional[List[str]] = None
    ) -> List[RetrievedDocument]:
        """
        Rank the tenant's entries by cosine similarity to the query.

        Returns:
            At most top_k documents with similarity >= similarity_floor, best first
        """
        pass

    async def health_check(self) -> bool:
        """Check if the store is reachable."""
        return True
