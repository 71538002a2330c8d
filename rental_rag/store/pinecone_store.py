"""
Pinecone-backed index store.

Each tenant gets its own namespace and vector ids are "<source_kind>:<source_id>",
so Pinecone's upsert-by-id enforces one entry per (tenant, kind, id).
"""

import asyncio
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, TypeVar

import structlog
from pinecone import Pinecone, ServerlessSpec
from pinecone.exceptions import NotFoundException
from tenacity import retry, retry_if_not_exception_type, stop_after_attempt, wait_exponential

from rental_rag.config import settings
from rental_rag.errors import StoreError
from rental_rag.models import IndexedDocument, RetrievedDocument, utcnow
from rental_rag.store.base import BaseIndexStore

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Identity and payload fields kept alongside the caller's metadata
RESERVED_KEYS = ("content", "tenant_id", "source_kind", "source_id", "updated_at")

_write_retry = retry(
    retry=retry_if_not_exception_type(NotFoundException),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
    reraise=True,
)


def clean_metadata(md: Dict[str, Any]) -> Dict[str, Any]:
    """
    Pinecone metadata values must be string, number, boolean or list[str].
    Nulls are not allowed, so keys with None are dropped.
    """
    cleaned: Dict[str, Any] = {}
    for k, v in md.items():
        if v is None:
            continue
        if isinstance(v, (str, int, float, bool)):
            cleaned[k] = v
        elif isinstance(v, list) and all(isinstance(x, str) for x in v):
            cleaned[k] = v
    return cleaned


class PineconeIndexStore(BaseIndexStore):
    """Index store on a Pinecone serverless index with one namespace per tenant."""

    def __init__(self, index: Any = None, namespace_prefix: Optional[str] = None, timeout: Optional[float] = None):
        """
        Args:
            index: Existing Pinecone Index handle; created from settings when omitted
            namespace_prefix: Prefix for per-tenant namespaces
            timeout: Seconds allowed per store call, retries included
        """
        self.namespace_prefix = namespace_prefix if namespace_prefix is not None else settings.pinecone_namespace_prefix
        self.timeout = timeout or settings.store_timeout_seconds
        self.index = index if index is not None else self._initialize_index()

    @staticmethod
    def _initialize_index():
        """Create the Pinecone index if it doesn't exist and return a handle to it."""
        pc = Pinecone(api_key=settings.pinecone_api_key)
        existing = [idx.name for idx in pc.list_indexes()]
        if settings.pinecone_index_name not in existing:
            logger.info("pinecone_index_create", index=settings.pinecone_index_name)
            pc.create_index(
                name=settings.pinecone_index_name,
                dimension=settings.embedding_dimension,
                metric="cosine",
                spec=ServerlessSpec(cloud=settings.pinecone_cloud, region=settings.pinecone_region),
            )
        return pc.Index(settings.pinecone_index_name)

    def namespace_for(self, tenant_id: str) -> str:
        if not tenant_id:
            raise ValueError("tenant_id is required")
        return f"{self.namespace_prefix}{tenant_id}"

    @staticmethod
    def vector_id(source_kind: str, source_id: str) -> str:
        return f"{source_kind}:{source_id}"

    async def _run(self, fn: Callable[..., T], *args) -> T:
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise StoreError(f"Pinecone call {fn.__name__} timed out after {self.timeout}s") from e
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(f"Pinecone call {fn.__name__} failed: {e}") from e

    async def upsert(
        self,
        tenant_id: str,
        source_kind: str,
        source_id: str,
        content: str,
        embedding: List[float],
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        record_metadata = clean_metadata(metadata or {})
        record_metadata.update(
            content=content,
            tenant_id=tenant_id,
            source_kind=source_kind,
            source_id=source_id,
            updated_at=utcnow().isoformat(),
        )
        vector = {
            "id": self.vector_id(source_kind, source_id),
            "values": list(embedding),
            "metadata": record_metadata,
        }
        await self._run(self._upsert_sync, self.namespace_for(tenant_id), vector)

    @_write_retry
    def _upsert_sync(self, namespace: str, vector: Dict[str, Any]) -> None:
        self.index.upsert(vectors=[vector], namespace=namespace)

    async def delete(self, tenant_id: str, source_kind: str, source_id: str) -> None:
        await self._run(self._delete_sync, self.namespace_for(tenant_id), self.vector_id(source_kind, source_id))

    @_write_retry
    def _delete_sync(self, namespace: str, vector_id: str) -> None:
        try:
            self.index.delete(ids=[vector_id], namespace=namespace)
        except NotFoundException:
            # namespace not created yet: nothing to delete
            logger.debug("pinecone_delete_missing_namespace", namespace=namespace, vector_id=vector_id)

    async def get(self, tenant_id: str, source_kind: str, source_id: str) -> Optional[IndexedDocument]:
        vector_id = self.vector_id(source_kind, source_id)
        response = await self._run(self._fetch_sync, self.namespace_for(tenant_id), vector_id)
        vector = (response.vectors or {}).get(vector_id)
        if vector is None:
            return None

        md = dict(vector.metadata or {})
        if md.get("tenant_id") != tenant_id:
            return None
        updated_at = md.get("updated_at")
        return IndexedDocument(
            tenant_id=tenant_id,
            source_kind=source_kind,
            source_id=source_id,
            content=md.get("content", ""),
            embedding=list(vector.values or []),
            metadata={k: v for k, v in md.items() if k not in RESERVED_KEYS},
            updated_at=datetime.fromisoformat(updated_at) if updated_at else utcnow(),
        )

    def _fetch_sync(self, namespace: str, vector_id: str):
        return self.index.fetch(ids=[vector_id], namespace=namespace)

    async def search(
        self,
        tenant_id: str,
        query_embedding: List[float],
        similarity_floor: float,
        top_k: int,
        source_kinds: Optional[List[str]] = None
    ) -> List[RetrievedDocument]:
        metadata_filter: Dict[str, Any] = {"tenant_id": {"$eq": tenant_id}}
        if source_kinds:
            metadata_filter["source_kind"] = {"$in": list(source_kinds)}

        response = await self._run(
            self._query_sync,
            self.namespace_for(tenant_id),
            list(query_embedding),
            top_k,
            metadata_filter,
        )

        results: List[RetrievedDocument] = []
        for match in response.matches:
            md = dict(match.metadata or {})
            if match.score < similarity_floor or md.get("tenant_id") != tenant_id:
                continue
            results.append(
                RetrievedDocument(
                    content=md.get("content", ""),
                    source_kind=md.get("source_kind", ""),
                    source_id=md.get("source_id", ""),
                    similarity=float(match.score),
                    metadata={k: v for k, v in md.items() if k not in RESERVED_KEYS},
                )
            )
        results.sort(key=lambda r: r.similarity, reverse=True)
        return results[:top_k]

    def _query_sync(self, namespace: str, vector: List[float], top_k: int, metadata_filter: Dict[str, Any]):
        return self.index.query(
            vector=vector,
            top_k=top_k,
            namespace=namespace,
            filter=metadata_filter,
            include_metadata=True,
        )

    async def health_check(self) -> bool:
        try:
            await self._run(self.index.describe_index_stats)
            return True
        except StoreError:
            return False
