"""
Embedding client for the remote embedding provider.
Speaks the {model, input} -> {data: [{embedding, index}]} protocol (Voyage AI by default).
"""

import asyncio
from typing import Any, Dict, List, Optional, Union

import aiohttp
import structlog

from rental_rag.circuit_breaker import CircuitBreaker, embedding_breaker
from rental_rag.config import settings
from rental_rag.errors import ProviderError, ValidationError

logger = structlog.get_logger(__name__)


class EmbeddingClient:
    """Stateless wrapper around the embedding endpoint. Performs no retries."""

    provider_name = "embeddings"

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        max_concurrency: Optional[int] = None,
        session: Optional[aiohttp.ClientSession] = None,
        breaker: Optional[CircuitBreaker] = None
    ):
        """
        Args:
            api_key: Provider API key (defaults to settings.voyage_api_key)
            api_url: Embedding endpoint URL
            model: Embedding model name
            timeout: Total request timeout in seconds
            max_concurrency: Maximum in-flight requests from this client
            session: Optional shared aiohttp session; one is opened per call otherwise
            breaker: Circuit breaker guarding the provider
        """
        self.api_key = api_key if api_key is not None else settings.voyage_api_key
        self.api_url = api_url or settings.embedding_api_url
        self.model = model or settings.embedding_model
        self.timeout = timeout or settings.embedding_timeout_seconds
        self.session = session
        self.breaker = breaker or embedding_breaker
        self._semaphore = asyncio.Semaphore(max_concurrency or settings.embedding_max_concurrency)

    async def embed(self, text: str) -> List[float]:
        """Embed a single non-empty text."""
        if not text or not text.strip():
            raise ValidationError("Cannot embed empty text")

        data = await self._request(text)
        if not data:
            raise ProviderError("Empty embedding response", provider=self.provider_name)
        return data[0]["embedding"]

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Embed many texts in one request.

        The provider may return items out of order; results are sorted by the
        returned `index` so output position matches input position.
        """
        if not texts:
            return []
        if any(not t or not t.strip() for t in texts):
            raise ValidationError("Cannot embed empty text in batch")

        data = await self._request(texts)
        if len(data) != len(texts):
            raise ProviderError(
                f"Expected {len(texts)} embeddings, got {len(data)}",
                provider=self.provider_name
            )

        ordered = sorted(data, key=lambda item: item["index"])
        return [item["embedding"] for item in ordered]

    async def _request(self, payload_input: Union[str, List[str]]) -> List[Dict[str, Any]]:
        payload = {"model": self.model, "input": payload_input}
        async with self._semaphore:
            body = await self.breaker.call(self._post, payload)

        usage = body.get("usage") or {}
        logger.debug(
            "embedding_request_complete",
            inputs=1 if isinstance(payload_input, str) else len(payload_input),
            total_tokens=usage.get("total_tokens"),
        )
        return body.get("data") or []

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        timeout = aiohttp.ClientTimeout(total=self.timeout)

        try:
            if self.session is not None:
                return await self._send(self.session, payload, headers, timeout)
            async with aiohttp.ClientSession() as session:
                return await self._send(session, payload, headers, timeout)
        except asyncio.TimeoutError as e:
            raise ProviderError(
                f"Embedding request timed out after {self.timeout}s",
                provider=self.provider_name,
                timed_out=True
            ) from e
        except aiohttp.ClientError as e:
            raise ProviderError(str(e), provider=self.provider_name) from e

    async def _send(
        self,
        session: aiohttp.ClientSession,
        payload: Dict[str, Any],
        headers: Dict[str, str],
        timeout: aiohttp.ClientTimeout
    ) -> Dict[str, Any]:
        async with session.post(self.api_url, json=payload, headers=headers, timeout=timeout) as response:
            if response.status >= 400:
                raise ProviderError(
                    await response.text(),
                    status=response.status,
                    provider=self.provider_name
                )
            return await response.json()
