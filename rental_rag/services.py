"""
Component wiring shared by the API and the Celery workers.
"""

from dataclasses import dataclass
from typing import Optional

from rental_rag.database import SourceDatabase
from rental_rag.embed import EmbeddingClient
from rental_rag.generate import AnthropicChatProvider
from rental_rag.orchestrator import ConversationOrchestrator
from rental_rag.reindex import FullReindexer
from rental_rag.retrieve import RetrievalService
from rental_rag.store import BaseIndexStore, create_index_store
from rental_rag.sync import IncrementalSyncConsumer


@dataclass
class RAGServices:
    database: SourceDatabase
    embedder: EmbeddingClient
    store: BaseIndexStore
    retrieval: RetrievalService
    chat_provider: AnthropicChatProvider
    orchestrator: ConversationOrchestrator
    reindexer: FullReindexer
    sync: IncrementalSyncConsumer


def build_services(
    database: Optional[SourceDatabase] = None,
    embedder: Optional[EmbeddingClient] = None,
    store: Optional[BaseIndexStore] = None,
    chat_provider: Optional[AnthropicChatProvider] = None
) -> RAGServices:
    """Build the component graph from settings; any piece can be supplied instead."""
    database = database or SourceDatabase()
    embedder = embedder or EmbeddingClient()
    store = store or create_index_store()
    chat_provider = chat_provider or AnthropicChatProvider()
    retrieval = RetrievalService(embedder, store)

    return RAGServices(
        database=database,
        embedder=embedder,
        store=store,
        retrieval=retrieval,
        chat_provider=chat_provider,
        orchestrator=ConversationOrchestrator(retrieval, database, chat_provider),
        reindexer=FullReindexer(database, embedder, store),
        sync=IncrementalSyncConsumer(database, embedder, store),
    )
