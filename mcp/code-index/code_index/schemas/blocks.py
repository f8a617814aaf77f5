"""Code block schemas.

A code block is the unit of embedding: a contiguous span of one file version.
Defines the supported source extensions and the block size bounds.
"""

from __future__ import annotations

import hashlib
from collections.abc import Set
from pathlib import Path
from typing import Annotated

import pydantic

from code_index.schemas.base import StrictModel

__all__ = [
    'FALLBACK_BLOCK_TYPE',
    'MAX_BLOCK_CHARS',
    'MAX_CHARS_TOLERANCE_FACTOR',
    'MIN_BLOCK_CHARS',
    'MIN_CHUNK_REMAINDER_CHARS',
    'SUPPORTED_EXTENSIONS',
    'CodeBlock',
    'content_hash',
    'is_supported_file',
]

# Block size bounds (characters)
MIN_BLOCK_CHARS = 100
MAX_BLOCK_CHARS = 1000
MAX_CHARS_TOLERANCE_FACTOR = 1.15  # Syntax nodes may exceed MAX by 15%
MIN_CHUNK_REMAINDER_CHARS = 200  # Smallest tail the line splitter will leave behind

FALLBACK_BLOCK_TYPE = 'fallback_chunk'

# Markdown is excluded: large prose sections have no child structure to split on.
SUPPORTED_EXTENSIONS: Set[str] = frozenset(
    {
        '.tla',
        '.js',
        '.jsx',
        '.ts',
        '.vue',
        '.tsx',
        '.py',
        '.rs',
        '.go',
        '.c',
        '.h',
        '.cpp',
        '.hpp',
        '.cs',
        '.rb',
        '.java',
        '.php',
        '.swift',
        '.sol',
        '.kt',
        '.kts',
        '.ex',
        '.exs',
        '.el',
        '.html',
        '.htm',
        '.json',
        '.css',
        '.rdl',
        '.ml',
        '.mli',
        '.lua',
        '.scala',
        '.toml',
        '.zig',
        '.elm',
        '.ejs',
        '.erb',
    }
)


class CodeBlock(StrictModel):
    """A contiguous unit of source text selected for embedding."""

    file_path: str
    identifier: str | None = None
    block_type: str  # Syntax node kind, or 'fallback_chunk'
    start_line: Annotated[int, pydantic.Field(ge=1)]  # 1-based, inclusive
    end_line: Annotated[int, pydantic.Field(ge=1)]
    content: str
    content_hash: str
    file_hash: str
    segment: Annotated[int, pydantic.Field(ge=0)] = 0  # Piece index when one over-long line spans several blocks


def content_hash(file_path: str, start_line: int, end_line: int, content: str) -> str:
    """Fine-grained block identity: location plus text."""
    return hashlib.sha256(f'{file_path}-{start_line}-{end_line}-{content}'.encode()).hexdigest()


def is_supported_file(path: str | Path) -> bool:
    """Check the extension allow-list (case-insensitive)."""
    return Path(path).suffix.lower() in SUPPORTED_EXTENSIONS
