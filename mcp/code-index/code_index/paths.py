"""Centralized file paths for code index.

All persistent file locations in one place. Per-workspace files are namespaced
by a hash of the workspace path so projects never share state.
"""

from __future__ import annotations

import hashlib
from pathlib import Path

__all__ = [
    'CACHE_DIR',
    'CODE_INDEX_DIR',
    'CONFIG_PATH',
    'DEBUG_LOG_PATH',
    'SECRETS_DIR',
    'WORKSPACE_DIR',
    'collection_name_for',
    'hash_cache_path',
    'workspace_key',
]

# Base directories
WORKSPACE_DIR = Path.home() / '.claude-workspace'
CODE_INDEX_DIR = WORKSPACE_DIR / 'code_index'

# Per-workspace hash caches
CACHE_DIR = CODE_INDEX_DIR / 'cache'

# User configuration and credentials
CONFIG_PATH = WORKSPACE_DIR / 'config' / 'code_index.json'
SECRETS_DIR = WORKSPACE_DIR / 'secrets'

# Debug logging (enable detailed server logs for troubleshooting)
DEBUG_LOG_PATH = CODE_INDEX_DIR / 'server.log'


def workspace_key(workspace_path: str | Path) -> str:
    """SHA256 hex digest of the workspace path, used to namespace per-workspace state."""
    return hashlib.sha256(str(workspace_path).encode()).hexdigest()


def hash_cache_path(workspace_path: str | Path, cache_dir: Path = CACHE_DIR) -> Path:
    """Get the hash cache file for a workspace."""
    return cache_dir / f'index-cache-{workspace_key(workspace_path)}.json'


def collection_name_for(workspace_path: str | Path) -> str:
    """Get the Qdrant collection name for a workspace."""
    return f'ws-{workspace_key(workspace_path)[:16]}'
