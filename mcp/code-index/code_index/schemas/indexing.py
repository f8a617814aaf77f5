"""Indexing operation schemas.

Models for indexing lifecycle state, progress snapshots, and scan results.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from datetime import datetime
from typing import Literal

from code_index.schemas.base import StrictModel
from code_index.schemas.blocks import CodeBlock

__all__ = [
    'BlocksIndexedCallback',
    'FileParsedCallback',
    'FileProcessingResult',
    'FileStatus',
    'IndexingState',
    'IndexingStatus',
    'ProcessingStatus',
    'ScanErrorCallback',
    'ScanResult',
    'ScanStats',
]

type IndexingState = Literal['Standby', 'Indexing', 'Indexed', 'Error']

type FileStatus = Literal['Processing', 'Indexed', 'Error']

type ProcessingStatus = Literal['success', 'skipped', 'error']


class IndexingStatus(StrictModel):
    """Point-in-time snapshot of the indexing state.

    Emitted on every state change. sequence strictly increases and timestamp
    never goes backwards, so consumers can order snapshots without locking.
    """

    system_status: IndexingState
    message: str
    file_statuses: Mapping[str, FileStatus]
    processed_block_count: int
    total_block_count: int
    sequence: int
    timestamp: datetime


class FileProcessingResult(StrictModel):
    """Outcome of processing a single file in the watcher."""

    path: str
    status: ProcessingStatus
    reason: str | None = None
    error: str | None = None


class ScanStats(StrictModel):
    """File counts from one scan."""

    processed: int  # Files parsed (new or changed)
    skipped: int  # Unchanged, too large, or unreadable


class ScanResult(StrictModel):
    """Result of a full directory scan."""

    blocks: Sequence[CodeBlock]
    stats: ScanStats
    total_block_count: int
    stopped: bool = False  # Stop requested before the scan finished


# Scanner callbacks
type ScanErrorCallback = Callable[[Exception], None]
type BlocksIndexedCallback = Callable[[int], None]
type FileParsedCallback = Callable[[int], None]
