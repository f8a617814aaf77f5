"""File hash cache with debounced persistence.

Maps file path -> sha256 of the file content last indexed successfully. The
scanner and watcher use it to skip unchanged files. Mutations hit memory and
schedule a write; bursts of updates coalesce into one write per debounce
window. Losing the last window on a crash only causes re-indexing.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from pathlib import Path

import filelock
import pydantic
from pydantic import TypeAdapter

from code_index.paths import CACHE_DIR, hash_cache_path

__all__ = [
    'HashCache',
]

logger = logging.getLogger(__name__)

_hashes_adapter: TypeAdapter[dict[str, str]] = TypeAdapter(dict[str, str])


class HashCache:
    """Per-workspace path -> hash map persisted as one JSON object.

    Writes are atomic (temp file + rename) and serialized: an asyncio lock
    orders writes from this process, a file lock guards against other processes
    sharing the cache directory.
    """

    DEFAULT_DEBOUNCE_SECONDS = 1.5

    def __init__(self, cache_path: Path, debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS) -> None:
        self._cache_path = cache_path
        self._debounce_seconds = debounce_seconds
        self._file_lock = filelock.FileLock(cache_path.with_name(cache_path.name + '.lock'))
        self._write_lock = asyncio.Lock()
        self._hashes: dict[str, str] = {}
        self._dirty = False
        self._timer: asyncio.TimerHandle | None = None
        self._pending_write: asyncio.Task[None] | None = None

    @classmethod
    def for_workspace(
        cls,
        workspace_path: str | Path,
        cache_dir: Path = CACHE_DIR,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
    ) -> HashCache:
        return cls(hash_cache_path(workspace_path, cache_dir), debounce_seconds)

    @property
    def cache_path(self) -> Path:
        return self._cache_path

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    async def initialize(self) -> None:
        """Load the cache file. Missing or corrupt files start empty."""
        self._hashes = await asyncio.to_thread(self._read)
        self._dirty = False
        logger.debug(f'[CACHE] Loaded {len(self._hashes)} hashes from {self._cache_path}')

    def get(self, file_path: str) -> str | None:
        return self._hashes.get(file_path)

    def update(self, file_path: str, file_hash: str) -> None:
        """Record a hash and schedule a write."""
        self._hashes[file_path] = file_hash
        self._schedule_save()

    def delete(self, file_path: str) -> None:
        """Forget a path and schedule a write. Unknown paths are ignored."""
        if self._hashes.pop(file_path, None) is not None:
            self._schedule_save()

    def get_all(self) -> dict[str, str]:
        """Copy of the whole map."""
        return dict(self._hashes)

    async def save_all(self, hashes: Mapping[str, str]) -> None:
        """Replace the whole map and persist immediately."""
        self._cancel_timer()
        self._hashes = dict(hashes)
        self._dirty = True
        await self._persist()

    async def flush(self) -> None:
        """Cancel any scheduled write and persist now if there are unsaved changes.

        Raises:
            OSError: If the write fails. The cache stays dirty.
        """
        self._cancel_timer()
        if self._pending_write is not None:
            await asyncio.wait([self._pending_write])
        if self._dirty:
            await self._persist()

    async def clear(self) -> None:
        """Drop all hashes and delete the cache file."""
        self._cancel_timer()
        if self._pending_write is not None:
            await asyncio.wait([self._pending_write])
        self._hashes = {}
        self._dirty = False
        async with self._write_lock:
            await asyncio.to_thread(self._unlink)
        logger.info(f'[CACHE] Cleared {self._cache_path}')

    def _schedule_save(self) -> None:
        self._dirty = True
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._debounce_seconds, self._start_debounced_write)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _start_debounced_write(self) -> None:
        self._timer = None
        self._pending_write = asyncio.get_running_loop().create_task(self._debounced_write())

    async def _debounced_write(self) -> None:
        try:
            await self._persist()
        except OSError as e:
            # Stays dirty; the next mutation or flush() retries
            logger.warning(f'[CACHE] Debounced write to {self._cache_path} failed: {e}')
        finally:
            if self._pending_write is asyncio.current_task():
                self._pending_write = None

    async def _persist(self) -> None:
        async with self._write_lock:
            snapshot = dict(self._hashes)
            self._dirty = False
            try:
                await asyncio.to_thread(self._write, snapshot)
            except OSError:
                self._dirty = True
                raise
        logger.debug(f'[CACHE] Wrote {len(snapshot)} hashes to {self._cache_path}')

    def _read(self) -> dict[str, str]:
        if not self._cache_path.exists():
            return {}
        try:
            return _hashes_adapter.validate_json(self._cache_path.read_bytes())
        except (OSError, pydantic.ValidationError) as e:
            logger.warning(f'[CACHE] Ignoring unreadable cache file {self._cache_path}: {e}')
            return {}

    def _write(self, hashes: Mapping[str, str]) -> None:
        with self._file_lock:
            self._cache_path.parent.mkdir(parents=True, exist_ok=True)
            temp_path = self._cache_path.with_suffix('.tmp')
            temp_path.write_text(json.dumps(hashes, indent=2, sort_keys=True) + '\n')
            temp_path.replace(self._cache_path)

    def _unlink(self) -> None:
        with self._file_lock:
            self._cache_path.unlink(missing_ok=True)
