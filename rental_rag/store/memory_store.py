"""
In-process index store for development and tests.
Brute-force cosine similarity over numpy vectors.
"""

from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from rental_rag.models import IndexedDocument, RetrievedDocument, utcnow
from rental_rag.store.base import BaseIndexStore

Key = Tuple[str, str, str]

_TICK = timedelta(microseconds=1)


class InMemoryIndexStore(BaseIndexStore):
    """Dictionary-backed store keyed by (tenant_id, source_kind, source_id)."""

    def __init__(self):
        self.documents: Dict[Key, IndexedDocument] = {}

    async def upsert(
        self,
        tenant_id: str,
        source_kind: str,
        source_id: str,
        content: str,
        embedding: List[float],
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        key = (tenant_id, source_kind, source_id)
        updated_at = utcnow()
        previous = self.documents.get(key)
        if previous is not None and updated_at <= previous.updated_at:
            # clock granularity; updated_at must still move forward
            updated_at = previous.updated_at + _TICK
        self.documents[key] = IndexedDocument(
            tenant_id=tenant_id,
            source_kind=source_kind,
            source_id=source_id,
            content=content,
            embedding=list(embedding),
            metadata=dict(metadata or {}),
            updated_at=updated_at,
        )

    async def delete(self, tenant_id: str, source_kind: str, source_id: str) -> None:
        self.documents.pop((tenant_id, source_kind, source_id), None)

    async def get(self, tenant_id: str, source_kind: str, source_id: str) -> Optional[IndexedDocument]:
        return self.documents.get((tenant_id, source_kind, source_id))

    async def search(
        self,
        tenant_id: str,
        query_embedding: List[float],
        similarity_floor: float,
        top_k: int,
        source_kinds: Optional[List[str]] = None
    ) -> List[RetrievedDocument]:
        candidates = [
            doc for (tenant, kind, _), doc in self.documents.items()
            if tenant == tenant_id and (not source_kinds or kind in source_kinds)
        ]
        if not candidates or top_k <= 0:
            return []

        query = np.asarray(query_embedding, dtype=np.float32)
        matrix = np.asarray([doc.embedding for doc in candidates], dtype=np.float32)
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        norms[norms == 0] = np.inf
        scores = (matrix @ query) / norms

        order = np.argsort(-scores, kind="stable")
        results: List[RetrievedDocument] = []
        for idx in order:
            score = float(scores[idx])
            if score < similarity_floor:
                break
            doc = candidates[idx]
            results.append(
                RetrievedDocument(
                    content=doc.content,
                    source_kind=doc.source_kind,
                    source_id=doc.source_id,
                    similarity=score,
                    metadata=doc.metadata,
                )
            )
            if len(results) >= top_k:
                break
        return results

    def count(self, tenant_id: Optional[str] = None) -> int:
        if tenant_id is None:
            return len(self.documents)
        return sum(1 for (tenant, _, _) in self.documents if tenant == tenant_id)
