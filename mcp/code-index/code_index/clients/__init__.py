"""API clients for external services."""

from __future__ import annotations

from code_index.clients.ollama import OllamaEmbedder
from code_index.clients.openai import OpenAIEmbedder
from code_index.clients.protocols import Embedder, VectorStore
from code_index.clients.qdrant import QdrantVectorStore
from code_index.schemas.config import (
    EmbedderConfig,
    OllamaEmbedderConfig,
    OpenAIEmbedderConfig,
    resolve_openai_api_key,
)

__all__ = [
    'Embedder',
    'OllamaEmbedder',
    'OpenAIEmbedder',
    'QdrantVectorStore',
    'VectorStore',
    'create_embedder',
]


def create_embedder(config: EmbedderConfig) -> Embedder:
    """Create embedding client based on configuration.

    Raises:
        ValueError: Missing API key, or model dimension unknown and not overridden.
    """
    dimensions = config.vector_dimension()
    if dimensions is None:
        raise ValueError(
            f'Unknown vector dimension for {config.provider} model {config.model!r}; set embedder.dimensions'
        )

    match config:
        case OpenAIEmbedderConfig():
            api_key = resolve_openai_api_key(config)
            if api_key is None:
                raise ValueError('OpenAI API key not configured (config, OPENAI_API_KEY, or secrets file)')
            return OpenAIEmbedder(
                api_key=api_key,
                model=config.model,
                dimensions=dimensions,
                base_url=config.base_url,
            )
        case OllamaEmbedderConfig():
            return OllamaEmbedder(
                model=config.model,
                dimensions=dimensions,
                base_url=config.base_url,
            )

    raise TypeError(f'Unknown config type: {type(config).__name__}')
