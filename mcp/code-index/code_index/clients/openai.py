"""OpenAI-compatible embedding client.

Thin wrapper around the /embeddings endpoint. Works with api.openai.com and
any server that speaks the same wire format (set base_url).

Uses native async httpx for concurrent requests.
Concurrency controlled via semaphore.

API Reference: https://platform.openai.com/docs/api-reference/embeddings/create
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

import httpx
import tenacity

from code_index.clients import _retry
from code_index.clients._token_batching import pack_token_batches
from code_index.schemas.embeddings import EmbedderInfo, EmbeddingResponse, EmbeddingUsage

__all__ = [
    'OpenAIEmbedder',
]

logger = logging.getLogger(__name__)


class OpenAIEmbedder:
    """Embedding client for the OpenAI embeddings API."""

    DEFAULT_BASE_URL = 'https://api.openai.com/v1'
    DEFAULT_MAX_CONCURRENT = 8
    DEFAULT_TIMEOUT_SECONDS = 30.0

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        dimensions: int,
        base_url: str = DEFAULT_BASE_URL,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize client.

        Args:
            api_key: Bearer token for the API.
            model: Default model identifier (e.g., 'text-embedding-3-small').
            dimensions: Output vector size of the model.
            base_url: API root, without the /embeddings suffix.
            max_concurrent: Max concurrent API requests (semaphore limit).
            timeout: Request timeout in seconds.
            transport: Custom httpx transport (tests use httpx.MockTransport).
        """
        if not api_key:
            raise ValueError('OpenAI embedder requires an API key')
        self._model = model
        self._dimensions = dimensions
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip('/'),
            headers={
                'Authorization': f'Bearer {api_key}',
                'Content-Type': 'application/json',
            },
            timeout=timeout,
            transport=transport,
        )
        self._semaphore = asyncio.Semaphore(max_concurrent)

    @property
    def embedder_info(self) -> EmbedderInfo:
        return EmbedderInfo(provider='openai', model=self._model, dimensions=self._dimensions)

    async def create_embeddings(self, texts: Sequence[str], model: str | None = None) -> EmbeddingResponse:
        """Embed texts, packing them into token-bounded requests.

        Returns:
            Embeddings aligned with texts. Items over the per-item token limit
            are skipped and come back as None.

        Raises:
            httpx.HTTPStatusError: On non-retryable API errors or after retries.
        """
        model_to_use = model or self._model
        embeddings: list[Sequence[float] | None] = [None] * len(texts)
        prompt_tokens = 0
        total_tokens = 0

        for indices in pack_token_batches(texts):
            vectors, usage = await self._embed_batch([texts[i] for i in indices], model_to_use)
            for index, vector in zip(indices, vectors, strict=True):
                embeddings[index] = vector
            prompt_tokens += usage.prompt_tokens
            total_tokens += usage.total_tokens

        return EmbeddingResponse(
            embeddings=embeddings,
            usage=EmbeddingUsage(prompt_tokens=prompt_tokens, total_tokens=total_tokens),
        )

    @_retry.embedder_breaker
    @tenacity.retry(
        retry=tenacity.retry_if_exception(_retry.is_retryable_embedder_error),
        stop=tenacity.stop_after_attempt(3),
        wait=tenacity.wait_exponential(multiplier=0.5, max=5),
        before_sleep=_retry.log_embedder_retry,
        reraise=True,
    )
    async def _embed_batch(self, texts: Sequence[str], model: str) -> tuple[list[list[float]], EmbeddingUsage]:
        """One /embeddings request. Retries on 429, 5xx and transport errors."""
        async with self._semaphore:
            response = await self._client.post('/embeddings', json={'model': model, 'input': list(texts)})
            response.raise_for_status()
            data = response.json()

        # Sort by index to ensure order matches input
        items = sorted(data['data'], key=lambda x: x['index'])
        usage = data.get('usage') or {}
        return (
            [item['embedding'] for item in items],
            EmbeddingUsage(
                prompt_tokens=usage.get('prompt_tokens', 0),
                total_tokens=usage.get('total_tokens', 0),
            ),
        )

    async def close(self) -> None:
        """Close HTTP client and release resources."""
        await self._client.aclose()

    async def __aenter__(self) -> OpenAIEmbedder:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.close()
