"""Pydantic schemas for code index operations."""

from __future__ import annotations

from code_index.schemas.base import StrictModel
from code_index.schemas.blocks import (
    MAX_BLOCK_CHARS,
    MIN_BLOCK_CHARS,
    MIN_CHUNK_REMAINDER_CHARS,
    SUPPORTED_EXTENSIONS,
    CodeBlock,
    is_supported_file,
)
from code_index.schemas.config import (
    CodeIndexConfig,
    EmbedderConfig,
    OllamaEmbedderConfig,
    OpenAIEmbedderConfig,
    load_config,
    save_config,
)
from code_index.schemas.embeddings import EmbedderInfo, EmbeddingResponse, EmbeddingUsage
from code_index.schemas.indexing import (
    FileProcessingResult,
    FileStatus,
    IndexingState,
    IndexingStatus,
    ScanResult,
    ScanStats,
)
from code_index.schemas.vectors import SearchHit, VectorPayload, VectorRecord

__all__ = [
    # Base
    'StrictModel',
    # Blocks
    'MAX_BLOCK_CHARS',
    'MIN_BLOCK_CHARS',
    'MIN_CHUNK_REMAINDER_CHARS',
    'SUPPORTED_EXTENSIONS',
    'CodeBlock',
    'is_supported_file',
    # Config
    'CodeIndexConfig',
    'EmbedderConfig',
    'OllamaEmbedderConfig',
    'OpenAIEmbedderConfig',
    'load_config',
    'save_config',
    # Embeddings
    'EmbedderInfo',
    'EmbeddingResponse',
    'EmbeddingUsage',
    # Indexing
    'FileProcessingResult',
    'FileStatus',
    'IndexingState',
    'IndexingStatus',
    'ScanResult',
    'ScanStats',
    # Vectors
    'SearchHit',
    'VectorPayload',
    'VectorRecord',
]
