"""Embedding schemas."""

from __future__ import annotations

from collections.abc import Sequence

from code_index.schemas.base import StrictModel

__all__ = [
    'EmbedderInfo',
    'EmbeddingResponse',
    'EmbeddingUsage',
]


class EmbeddingUsage(StrictModel):
    """Token usage reported by the provider."""

    prompt_tokens: int = 0
    total_tokens: int = 0


class EmbeddingResponse(StrictModel):
    """Embeddings aligned with the input texts.

    An entry is None when its text exceeded the per-item token ceiling and was
    not sent to the provider.
    """

    embeddings: Sequence[Sequence[float] | None]
    usage: EmbeddingUsage


class EmbedderInfo(StrictModel):
    """Identity of the configured embedder."""

    provider: str
    model: str
    dimensions: int
