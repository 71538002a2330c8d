"""
Pydantic models for API requests, responses, and internal data structures.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field, field_validator

from rental_rag.errors import ErrorKind


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Index Models
# ============================================================================

class SourceRef(BaseModel):
    """Reference to the source record behind an indexed document."""

    source_kind: str = Field(..., description="Source table, e.g. 'rentals'")
    source_id: str = Field(..., description="Primary key of the source record")


class IndexedDocument(BaseModel):
    """One index entry per (tenant_id, source_kind, source_id)."""

    tenant_id: str
    source_kind: str
    source_id: str
    content: str
    embedding: List[float] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    updated_at: datetime = Field(default_factory=utcnow)


class RetrievedDocument(BaseModel):
    """A ranked search hit."""

    content: str
    source_kind: str
    source_id: str
    similarity: float = Field(..., description="Cosine similarity to the query")
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def as_source(self) -> SourceRef:
        return SourceRef(source_kind=self.source_kind, source_id=self.source_id)


# ============================================================================
# Change Queue Models
# ============================================================================

class ChangeAction(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class QueueItemState(str, Enum):
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"


class ChangeQueueItem(BaseModel):
    """A pending index mutation written by the source system."""

    id: int
    tenant_id: str
    source_kind: str
    source_id: str
    action: ChangeAction
    created_at: datetime
    processed_at: Optional[datetime] = None
    error_message: Optional[str] = None

    @property
    def state(self) -> QueueItemState:
        if self.processed_at is None:
            return QueueItemState.PENDING
        if self.error_message:
            return QueueItemState.FAILED
        return QueueItemState.DONE


class Tenant(BaseModel):
    id: str
    company_name: Optional[str] = None
    status: Optional[str] = None


# ============================================================================
# Run Summaries
# ============================================================================

class ItemError(BaseModel):
    """Classified failure for one record or queue item."""

    tenant_id: Optional[str] = None
    source_kind: Optional[str] = None
    source_id: Optional[str] = None
    error_type: ErrorKind
    message: str


class TableSummary(BaseModel):
    """Reindex counts for one tenant and source kind."""

    indexed: int = 0
    errors: int = 0
    failures: List[ItemError] = Field(default_factory=list)

    def record_failure(self, failure: ItemError) -> None:
        self.errors += 1
        self.failures.append(failure)


class ReindexTotals(BaseModel):
    tenants: int = 0
    tables: int = 0
    total_indexed: int = 0
    total_errors: int = 0


class ReindexSummary(BaseModel):
    """Full reindex result keyed tenant -> source kind."""

    results: Dict[str, Dict[str, TableSummary]] = Field(default_factory=dict)
    totals: ReindexTotals = Field(default_factory=ReindexTotals)

    def compute_totals(self, tables: int) -> ReindexTotals:
        self.totals = ReindexTotals(
            tenants=len(self.results),
            tables=tables,
            total_indexed=sum(t.indexed for kinds in self.results.values() for t in kinds.values()),
            total_errors=sum(t.errors for kinds in self.results.values() for t in kinds.values()),
        )
        return self.totals


class SyncSummary(BaseModel):
    """Result of one drain of the change queue."""

    processed: int = 0
    inserted: int = 0
    updated: int = 0
    deleted: int = 0
    errors: int = 0
    failures: List[ItemError] = Field(default_factory=list)


# ============================================================================
# Conversation Models
# ============================================================================

class ChartPoint(BaseModel):
    name: str
    value: float


class ChartSpec(BaseModel):
    """Structured visualisation request parsed out of a model reply."""

    type: Literal["bar", "pie", "line"]
    title: str
    data: List[ChartPoint]


class ConversationTurn(BaseModel):
    """One persisted chat message."""

    tenant_id: str
    user_id: str
    conversation_id: str
    role: Literal["user", "assistant"]
    content: str
    sources: List[SourceRef] = Field(default_factory=list)
    chart: Optional[ChartSpec] = None
    created_at: datetime = Field(default_factory=utcnow)


class ChatMessage(BaseModel):
    """Prompt message sent to the chat-completion provider."""

    role: Literal["system", "user", "assistant"]
    content: str


class ChatCompletion(BaseModel):
    content: str
    model: str
    usage: Dict[str, int] = Field(default_factory=dict)


class ChatReply(BaseModel):
    """What the orchestrator returns for a user message."""

    reply_text: str
    conversation_id: str
    sources: List[SourceRef] = Field(default_factory=list)
    chart: Optional[ChartSpec] = None


# ============================================================================
# API Models
# ============================================================================

class ChatRequest(BaseModel):
    tenant_id: str = Field(..., min_length=1, description="Tenant the conversation belongs to")
    user_id: str = Field(..., min_length=1, description="Authenticated user id")
    message: str = Field(..., min_length=1, max_length=4000, description="User message")
    conversation_id: Optional[str] = Field(None, description="Existing conversation to continue")
    display_name: Optional[str] = Field(None, description="Name used to personalise replies")

    @field_validator("message")
    @classmethod
    def strip_message(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Message is required")
        return v.strip()


class SearchRequest(BaseModel):
    tenant_id: str = Field(..., min_length=1)
    query: str = Field(..., min_length=1, max_length=1000)
    similarity_floor: Optional[float] = Field(None, ge=0.0, le=1.0)
    top_k: Optional[int] = Field(None, ge=1, le=50)
    source_kinds: Optional[List[str]] = None


class SearchResponse(BaseModel):
    results: List[RetrievedDocument] = Field(default_factory=list)


class SyncRequest(BaseModel):
    tenant_id: Optional[str] = None
    limit: Optional[int] = Field(None, ge=1, le=1000)


class RetryRequest(BaseModel):
    tenant_id: Optional[str] = None


class RetryResponse(BaseModel):
    requeued: int


class ReindexRequest(BaseModel):
    tenant_ids: Optional[List[str]] = None


# ============================================================================
# Health & Error Models
# ============================================================================

class HealthCheck(BaseModel):
    """Health check response model."""

    status: Literal["healthy", "degraded", "unhealthy"] = Field(..., description="Service status")
    timestamp: datetime = Field(default_factory=utcnow, description="Check timestamp")
    version: str = Field(..., description="Application version")
    services: Dict[str, bool] = Field(default_factory=dict, description="Service availability")


class ErrorResponse(BaseModel):
    """Standard error response model."""

    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    timestamp: datetime = Field(default_factory=utcnow, description="Error timestamp")
