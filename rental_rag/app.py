"""
FastAPI application for the Rental RAG system.
Provides REST API endpoints for chat, search, change-queue sync and reindexing.
"""

from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from rental_rag import __version__
from rental_rag.circuit_breaker import CircuitState, chat_breaker, embedding_breaker
from rental_rag.config import settings
from rental_rag.errors import NotFoundError, ProviderError, StoreError, ValidationError
from rental_rag.logging_config import configure_logging, get_structured_logger
from rental_rag.models import (
    ChatReply,
    ChatRequest,
    ErrorResponse,
    HealthCheck,
    ReindexRequest,
    ReindexSummary,
    RetryRequest,
    RetryResponse,
    SearchRequest,
    SearchResponse,
    SyncRequest,
    SyncSummary,
)
from rental_rag.services import RAGServices, build_services

logger = get_structured_logger(__name__)

security = HTTPBearer(auto_error=False)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    configure_logging()
    logger.info("app_starting", version=__version__, environment=settings.environment)

    if getattr(app.state, "services", None) is None:
        app.state.services = build_services()
    if settings.is_development:
        app.state.services.database.create_schema()

    logger.info("app_ready", index_backend=settings.index_backend)
    yield
    logger.info("app_shutdown")


app = FastAPI(
    title="Rental RAG API",
    description="Semantic search and assistant over car-rental business records",
    version=__version__,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.is_development else [],
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


def get_services(request: Request) -> RAGServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="RAG system not initialized"
        )
    return services


async def verify_token(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> bool:
    """
    Verify the bearer token against the configured API secret.

    Raises:
        HTTPException: If authentication fails
    """
    if not credentials or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    if credentials.credentials != settings.api_secret_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
        )
    return True


def error_response(status_code: int, error: str, message: str) -> JSONResponse:
    body = ErrorResponse(error=error, message=message)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return error_response(status.HTTP_400_BAD_REQUEST, "validation_error", str(exc.errors()))


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return error_response(status.HTTP_400_BAD_REQUEST, "validation_error", str(exc))


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return error_response(status.HTTP_404_NOT_FOUND, "not_found", str(exc))


@app.exception_handler(ProviderError)
async def provider_error_handler(request: Request, exc: ProviderError):
    logger.error("provider_error", path=request.url.path, provider=exc.provider, error=str(exc))
    return error_response(status.HTTP_502_BAD_GATEWAY, "provider_error", "Upstream provider failed")


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    logger.error("store_error", path=request.url.path, error=str(exc))
    return error_response(status.HTTP_503_SERVICE_UNAVAILABLE, "store_error", "Storage unavailable")


# ============================================================================
# Health & Status Endpoints
# ============================================================================

@app.get("/api/health", response_model=HealthCheck, tags=["System"])
async def health_check(services: RAGServices = Depends(get_services)):
    """Check system health and service availability."""
    service_status = {
        "database": await services.database.health_check(),
        "index": await services.store.health_check(),
        "embeddings": embedding_breaker.state != CircuitState.OPEN,
        "chat": chat_breaker.state != CircuitState.OPEN,
    }

    if all(service_status.values()):
        status_value = "healthy"
    elif service_status["database"] and service_status["index"]:
        status_value = "degraded"
    else:
        status_value = "unhealthy"

    return HealthCheck(status=status_value, version=__version__, services=service_status)


# ============================================================================
# Chat & Search Endpoints
# ============================================================================

@app.post("/api/chat", response_model=ChatReply, tags=["Chat"])
async def chat(
    request: ChatRequest,
    services: RAGServices = Depends(get_services),
    _: bool = Depends(verify_token)
):
    """
    Answer a message using the tenant's indexed data.

    - **tenant_id**: Tenant whose data grounds the answer
    - **user_id**: Author of the message
    - **message**: The user's message
    - **conversation_id**: Optional conversation to continue
    - **display_name**: Optional name to personalise the reply
    """
    try:
        return await services.orchestrator.respond(
            tenant_id=request.tenant_id,
            user_id=request.user_id,
            message=request.message,
            conversation_id=request.conversation_id,
            display_name=request.display_name,
        )
    except (ProviderError, StoreError) as e:
        logger.error("chat_failed", tenant_id=request.tenant_id, error_type=type(e).__name__, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Could not generate a response"
        ) from e


@app.post("/api/search", response_model=SearchResponse, tags=["Chat"])
async def search(
    request: SearchRequest,
    services: RAGServices = Depends(get_services),
    _: bool = Depends(verify_token)
):
    """Semantic search over one tenant's documents."""
    results = await services.retrieval.search(
        tenant_id=request.tenant_id,
        query_text=request.query,
        similarity_floor=request.similarity_floor,
        top_k=request.top_k,
        source_kinds=request.source_kinds,
    )
    return SearchResponse(results=results)


# ============================================================================
# Index Maintenance Endpoints
# ============================================================================

@app.post("/api/rag/sync", response_model=SyncSummary, tags=["Index"])
async def sync_queue(
    request: SyncRequest,
    services: RAGServices = Depends(get_services),
    _: bool = Depends(verify_token)
):
    """Drain pending change-queue items into the index."""
    return await services.sync.drain(tenant_id=request.tenant_id, limit=request.limit)


@app.post("/api/rag/sync/retry", response_model=RetryResponse, tags=["Index"])
async def retry_failed(
    request: RetryRequest,
    services: RAGServices = Depends(get_services),
    _: bool = Depends(verify_token)
):
    """Return failed change-queue items to pending."""
    return RetryResponse(requeued=await services.sync.retry_failed(request.tenant_id))


@app.post("/api/rag/reindex", response_model=ReindexSummary, tags=["Index"])
async def reindex(
    request: ReindexRequest,
    services: RAGServices = Depends(get_services),
    _: bool = Depends(verify_token)
):
    """Rebuild the index for the named tenants, or for every active tenant."""
    return await services.reindexer.reindex(request.tenant_ids)


if __name__ == "__main__":
    uvicorn.run(
        "rental_rag.app:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
    )
