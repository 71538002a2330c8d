"""
Vector index stores.
Provides backends for the index using the adapter pattern.
"""

from rental_rag.config import settings
from rental_rag.store.base import BaseIndexStore
from rental_rag.store.memory_store import InMemoryIndexStore


def create_index_store(backend: str = None) -> BaseIndexStore:
    """Build the configured index store backend."""
    backend = backend or settings.index_backend
    if backend == "pinecone":
        from rental_rag.store.pinecone_store import PineconeIndexStore
        return PineconeIndexStore()
    return InMemoryIndexStore()


__all__ = [
    "BaseIndexStore",
    "InMemoryIndexStore",
    "create_index_store",
]
