"""Ollama embedding client.

Talks to a local Ollama server's /api/embed endpoint. No API key. Requests
are packed with the same token budget as the hosted providers so one huge
batch doesn't stall the local model.

API Reference: https://github.com/ollama/ollama/blob/main/docs/api.md#generate-embeddings
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence

import httpx
import tenacity

from code_index.clients import _retry
from code_index.clients._token_batching import pack_token_batches
from code_index.schemas.embeddings import EmbedderInfo, EmbeddingResponse, EmbeddingUsage

__all__ = [
    'OllamaEmbedder',
]


class OllamaEmbedder:
    """Embedding client for a local Ollama server."""

    DEFAULT_BASE_URL = 'http://localhost:11434'
    DEFAULT_MAX_CONCURRENT = 2  # Local model: little to gain from more
    DEFAULT_TIMEOUT_SECONDS = 60.0

    def __init__(
        self,
        *,
        model: str,
        dimensions: int,
        base_url: str = DEFAULT_BASE_URL,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._model = model
        self._dimensions = dimensions
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip('/'),
            timeout=timeout,
            transport=transport,
        )
        self._semaphore = asyncio.Semaphore(max_concurrent)

    @property
    def embedder_info(self) -> EmbedderInfo:
        return EmbedderInfo(provider='ollama', model=self._model, dimensions=self._dimensions)

    async def create_embeddings(self, texts: Sequence[str], model: str | None = None) -> EmbeddingResponse:
        """Embed texts. Oversized items come back as None."""
        model_to_use = model or self._model
        embeddings: list[Sequence[float] | None] = [None] * len(texts)
        prompt_tokens = 0

        for indices in pack_token_batches(texts):
            vectors, tokens = await self._embed_batch([texts[i] for i in indices], model_to_use)
            if len(vectors) != len(indices):
                raise RuntimeError(f'Ollama returned {len(vectors)} embeddings for {len(indices)} inputs')
            for index, vector in zip(indices, vectors, strict=True):
                embeddings[index] = vector
            prompt_tokens += tokens

        return EmbeddingResponse(
            embeddings=embeddings,
            usage=EmbeddingUsage(prompt_tokens=prompt_tokens, total_tokens=prompt_tokens),
        )

    @_retry.embedder_breaker
    @tenacity.retry(
        retry=tenacity.retry_if_exception(_retry.is_retryable_embedder_error),
        stop=tenacity.stop_after_attempt(3),
        wait=tenacity.wait_exponential(multiplier=0.5, max=5),
        before_sleep=_retry.log_embedder_retry,
        reraise=True,
    )
    async def _embed_batch(self, texts: Sequence[str], model: str) -> tuple[list[list[float]], int]:
        async with self._semaphore:
            response = await self._client.post('/api/embed', json={'model': model, 'input': list(texts)})
            response.raise_for_status()
            data = response.json()
        return data['embeddings'], data.get('prompt_eval_count', 0)

    async def close(self) -> None:
        """Close HTTP client and release resources."""
        await self._client.aclose()
