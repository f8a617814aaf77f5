"""Repository layer for persisted index state."""

from __future__ import annotations

from code_index.repositories.hash_cache import HashCache

__all__ = [
    'HashCache',
]
