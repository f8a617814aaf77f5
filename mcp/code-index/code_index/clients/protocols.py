"""Protocol definitions for the embedding and vector store boundaries.

The scanner, watcher and search service depend only on these protocols, so
tests can substitute in-memory fakes and the factory can pick providers.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from code_index.schemas.embeddings import EmbedderInfo, EmbeddingResponse
from code_index.schemas.vectors import SearchHit, VectorRecord

__all__ = [
    'Embedder',
    'VectorStore',
]


class Embedder(Protocol):
    """Protocol for embedding providers."""

    async def create_embeddings(self, texts: Sequence[str], model: str | None = None) -> EmbeddingResponse:
        """Embed texts into vectors.

        Args:
            texts: Texts to embed.
            model: Model override. None uses the configured model.

        Returns:
            Embeddings aligned with texts (None for skipped oversized items).
        """
        ...

    @property
    def embedder_info(self) -> EmbedderInfo:
        """Provider, model and vector dimension."""
        ...

    async def close(self) -> None:
        """Release resources. No-op for clients without external connections."""
        ...


class VectorStore(Protocol):
    """Protocol for the per-workspace vector collection."""

    async def initialize(self) -> bool:
        """Ensure the collection exists. Returns True if it was created."""
        ...

    async def upsert_points(self, records: Sequence[VectorRecord]) -> None: ...

    async def search(self, query_vector: Sequence[float], limit: int = 10) -> Sequence[SearchHit]:
        """Nearest neighbours, highest similarity first."""
        ...

    async def delete_points_by_file_path(self, file_path: str) -> None: ...

    async def delete_points_by_file_paths(self, file_paths: Sequence[str]) -> None:
        """Delete all points whose payload path is one of file_paths. Empty input is a no-op."""
        ...

    async def clear_collection(self) -> None:
        """Delete every point but keep the collection."""
        ...

    async def delete_collection(self) -> None:
        """Drop the collection. No-op if it doesn't exist."""
        ...

    async def collection_exists(self) -> bool: ...

    async def close(self) -> None: ...
