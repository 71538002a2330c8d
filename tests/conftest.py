"""
Pytest configuration and fixtures for testing.
"""

import zlib
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from rental_rag.circuit_breaker import chat_breaker, embedding_breaker
from rental_rag.database import SourceDatabase, create_db_engine, metadata
from rental_rag.errors import ProviderError, ValidationError
from rental_rag.models import ChatCompletion, ChatMessage
from rental_rag.store import InMemoryIndexStore

EMBEDDING_DIMENSION = 256

BASE_TIME = datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)


def bag_of_words(text: str) -> List[float]:
    """Deterministic toy embedding: hashed token counts."""
    vector = [0.0] * EMBEDDING_DIMENSION
    for token in text.lower().replace(".", " ").replace(":", " ").split():
        vector[zlib.crc32(token.encode()) % EMBEDDING_DIMENSION] += 1.0
    return vector


class FakeEmbedder:
    """Stand-in for EmbeddingClient; fails for texts containing `fail_on`."""

    def __init__(self, fail_on: Optional[str] = None):
        self.fail_on = fail_on
        self.calls: List[Any] = []

    def _check(self, text: str) -> None:
        if not text or not text.strip():
            raise ValidationError("Cannot embed empty text")
        if self.fail_on and self.fail_on in text:
            raise ProviderError("embedding unavailable", status=503, provider="embeddings")

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        self._check(text)
        return bag_of_words(text)

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        for text in texts:
            self._check(text)
        return [bag_of_words(t) for t in texts]


class FakeChatProvider:
    """Stand-in for AnthropicChatProvider that records every prompt."""

    def __init__(self, reply: str = "Here is what I found.", error: Optional[Exception] = None):
        self.reply = reply
        self.error = error
        self.prompts: List[List[ChatMessage]] = []

    async def complete(self, messages, temperature=None, max_tokens=None) -> ChatCompletion:
        self.prompts.append(list(messages))
        if self.error is not None:
            raise self.error
        return ChatCompletion(content=self.reply, model="fake-model", usage={"input_tokens": 10, "output_tokens": 5})


@pytest.fixture(autouse=True)
def reset_circuit_breakers():
    """Circuit breakers are module globals; isolate them per test."""
    embedding_breaker.reset()
    chat_breaker.reset()
    yield
    embedding_breaker.reset()
    chat_breaker.reset()


@pytest.fixture
def engine():
    engine = create_db_engine("sqlite://")
    metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def database(engine) -> SourceDatabase:
    return SourceDatabase(engine=engine, timeout=5)


@pytest.fixture
def store() -> InMemoryIndexStore:
    return InMemoryIndexStore()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def insert_rows(engine):
    """Insert rows into a table: insert_rows("customers", {...}, {...})."""

    def insert(table: str, *rows: Dict[str, Any]) -> None:
        with engine.begin() as conn:
            for row in rows:
                conn.execute(metadata.tables[table].insert().values(**row))

    return insert


@pytest.fixture
def enqueue(insert_rows):
    """Write change-queue items the way the source system's triggers do."""
    counter = {"n": 0}

    def add(tenant_id: str, source_kind: str, source_id: str, action: str, created_at: Optional[datetime] = None):
        counter["n"] += 1
        insert_rows(
            "rag_sync_queue",
            {
                "tenant_id": tenant_id,
                "source_table": source_kind,
                "source_id": source_id,
                "action": action,
                "created_at": created_at or BASE_TIME + timedelta(seconds=counter["n"]),
            },
        )

    return add


@pytest.fixture
def tenants(insert_rows):
    insert_rows(
        "tenants",
        {"id": "t1", "company_name": "Acme Rentals", "status": "active"},
        {"id": "t2", "company_name": "Borough Cars", "status": "active"},
        {"id": "t3", "company_name": "Closed Ltd", "status": "suspended"},
    )


@pytest.fixture
def sample_customers() -> List[Dict[str, Any]]:
    return [
        {"id": "c1", "tenant_id": "t1", "name": "Alice Smith", "email": "alice@example.com", "status": "active"},
        {"id": "c2", "tenant_id": "t1", "name": "Bob Jones", "phone": "07700 900123", "status": "active"},
        {"id": "c3", "tenant_id": "t1", "name": "Carol White", "status": "inactive", "is_blocked": True},
    ]


@pytest.fixture
def sample_vehicles() -> List[Dict[str, Any]]:
    return [
        {
            "id": "v1",
            "tenant_id": "t1",
            "reg": "AB12 CDE",
            "make": "Toyota",
            "model": "Corolla",
            "year": 2022,
            "colour": "Silver",
            "status": "available",
            "daily_rent": 45.0,
            "weekly_rent": 250.0,
            "mot_due_date": date(2026, 3, 15),
        },
        {
            "id": "v2",
            "tenant_id": "t1",
            "reg": "XY34 ZZZ",
            "make": "Ford",
            "model": "Focus",
            "status": "rented",
            "monthly_rent": 899.5,
        },
    ]


@pytest.fixture
def seeded(tenants, insert_rows, sample_customers, sample_vehicles):
    """Tenant t1 with 3 customers and 2 vehicles; tenant t2 with one customer."""
    insert_rows("customers", *sample_customers)
    insert_rows("vehicles", *sample_vehicles)
    insert_rows("customers", {"id": "c9", "tenant_id": "t2", "name": "Dan Other", "status": "active"})


@pytest.fixture
def make_embedder():
    """Build a FakeEmbedder with custom failure behaviour."""
    return FakeEmbedder


@pytest.fixture
def make_chat_provider():
    """Build a FakeChatProvider with a canned reply or error."""
    return FakeChatProvider
