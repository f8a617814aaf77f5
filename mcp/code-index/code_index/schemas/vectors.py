"""Vector storage schemas for Qdrant operations.

Typed models for the vector store boundary. Record ids are deterministic:
the same file location always maps to the same id, so re-upserting a changed
block replaces the old vector instead of accumulating next to it.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Sequence
from pathlib import Path
from typing import Annotated

import pydantic

from code_index.schemas.base import StrictModel
from code_index.schemas.blocks import CodeBlock

__all__ = [
    'CODE_BLOCK_NAMESPACE',
    'SearchHit',
    'SearchRequest',
    'VectorPayload',
    'VectorRecord',
    'normalize_file_path',
    'point_id_for',
]

CODE_BLOCK_NAMESPACE = uuid.UUID('f47ac10b-58cc-4372-a567-0e02b2c3d479')


class VectorPayload(StrictModel):
    """Payload stored next to each vector."""

    file_path: str  # Normalized absolute path
    code_chunk: str
    start_line: int
    end_line: int


class VectorRecord(StrictModel):
    """A point to store in the vector database."""

    id: uuid.UUID
    vector: Sequence[float]
    payload: VectorPayload

    @classmethod
    def from_block(cls, block: CodeBlock, vector: Sequence[float], workspace_path: str | Path) -> VectorRecord:
        """Create record for a block, resolving its path against the workspace root."""
        file_path = normalize_file_path(workspace_path, block.file_path)
        return cls(
            id=point_id_for(file_path, block.start_line, block.segment),
            vector=vector,
            payload=VectorPayload(
                file_path=file_path,
                code_chunk=block.content,
                start_line=block.start_line,
                end_line=block.end_line,
            ),
        )


class SearchHit(StrictModel):
    """A single search result."""

    id: str
    score: float
    file_path: str
    start_line: int
    end_line: int
    code_chunk: str


class SearchRequest(StrictModel):
    """Validated search arguments."""

    query: Annotated[str, pydantic.Field(min_length=1)]
    limit: Annotated[int, pydantic.Field(ge=1, le=100)] = 10


def normalize_file_path(workspace_path: str | Path, file_path: str | Path) -> str:
    """Resolve a workspace-relative or absolute path to a normalized absolute path."""
    return os.path.normpath(os.path.join(os.fspath(workspace_path), os.fspath(file_path)))


def point_id_for(normalized_path: str, start_line: int, segment: int = 0) -> uuid.UUID:
    """Deterministic record id from (normalized absolute path, start line).

    Pieces of one over-long line share a start line; segment keeps their ids apart.
    """
    key = f'{normalized_path}:{start_line}' if segment == 0 else f'{normalized_path}:{start_line}:{segment}'
    return uuid.uuid5(CODE_BLOCK_NAMESPACE, key)
