"""
Tests for the embedding client.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from rental_rag.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from rental_rag.embed import EmbeddingClient
from rental_rag.errors import ProviderError, ValidationError


def mock_session(status: int = 200, body=None, text: str = ""):
    """aiohttp-like session whose post() is an async context manager."""
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=body or {})
    response.text = AsyncMock(return_value=text)

    session = MagicMock()
    session.post.return_value.__aenter__ = AsyncMock(return_value=response)
    session.post.return_value.__aexit__ = AsyncMock(return_value=False)
    return session


def make_client(session, **kwargs) -> EmbeddingClient:
    return EmbeddingClient(
        api_key="test-key",
        api_url="https://embeddings.test/v1/embeddings",
        model="voyage-test",
        session=session,
        **kwargs
    )


@pytest.mark.asyncio
async def test_embed_single():
    session = mock_session(body={"data": [{"embedding": [0.1, 0.2], "index": 0}], "usage": {"total_tokens": 3}})
    client = make_client(session)

    assert await client.embed("hello") == [0.1, 0.2]

    _, kwargs = session.post.call_args
    assert kwargs["json"] == {"model": "voyage-test", "input": "hello"}
    assert kwargs["headers"]["Authorization"] == "Bearer test-key"


@pytest.mark.asyncio
async def test_embed_batch_reorders_by_index():
    session = mock_session(body={"data": [
        {"embedding": [3.0], "index": 2},
        {"embedding": [1.0], "index": 0},
        {"embedding": [2.0], "index": 1},
    ]})
    client = make_client(session)

    assert await client.embed_batch(["a", "b", "c"]) == [[1.0], [2.0], [3.0]]


@pytest.mark.asyncio
async def test_embed_batch_empty_input_makes_no_request():
    session = mock_session()
    client = make_client(session)

    assert await client.embed_batch([]) == []
    session.post.assert_not_called()


@pytest.mark.asyncio
async def test_embed_batch_count_mismatch():
    session = mock_session(body={"data": [{"embedding": [1.0], "index": 0}]})
    client = make_client(session)

    with pytest.raises(ProviderError, match="Expected 2 embeddings"):
        await client.embed_batch(["a", "b"])


@pytest.mark.asyncio
async def test_empty_text_rejected():
    session = mock_session()
    client = make_client(session)

    with pytest.raises(ValidationError):
        await client.embed("   ")
    with pytest.raises(ValidationError):
        await client.embed_batch(["ok", ""])
    session.post.assert_not_called()


@pytest.mark.asyncio
async def test_http_error_becomes_provider_error():
    session = mock_session(status=429, text="rate limited")
    client = make_client(session)

    with pytest.raises(ProviderError) as exc_info:
        await client.embed("hello")

    assert exc_info.value.status == 429
    assert exc_info.value.message == "rate limited"
    assert not exc_info.value.timed_out


@pytest.mark.asyncio
async def test_timeout_becomes_provider_error():
    session = MagicMock()
    session.post.side_effect = asyncio.TimeoutError()
    client = make_client(session, timeout=1)

    with pytest.raises(ProviderError) as exc_info:
        await client.embed("hello")
    assert exc_info.value.timed_out


@pytest.mark.asyncio
async def test_connection_error_becomes_provider_error():
    session = MagicMock()
    session.post.side_effect = aiohttp.ClientConnectionError("connection refused")
    client = make_client(session)

    with pytest.raises(ProviderError, match="connection refused"):
        await client.embed("hello")


@pytest.mark.asyncio
async def test_open_circuit_fails_fast():
    session = mock_session(status=500, text="boom")
    breaker = CircuitBreaker(failure_threshold=2, timeout_duration=60, name="embeddings-test")
    client = make_client(session, breaker=breaker)

    for _ in range(2):
        with pytest.raises(ProviderError):
            await client.embed("hello")

    with pytest.raises(CircuitBreakerOpenError):
        await client.embed("hello")
    assert session.post.call_count == 2
