"""Incremental indexing from file system events.

Created and modified files are re-indexed one at a time as events arrive.
Deletions are buffered and flushed as one bulk vector-store delete after a
short quiet period, so removing a directory doesn't fire one request per file.

A path that reappears while its deletion is still pending (editor save via
delete + create, git checkout) is pulled out of the buffer, and processing
waits for any bulk delete already in flight, so fresh records are never
deleted by a stale flush.

A failed bulk delete puts its paths back in the buffer. After
MAX_DELETION_ATTEMPTS the path is handed back to the hash cache with an empty
hash, so the next full scan reconciles it.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import watchfiles

from code_index.clients.protocols import Embedder, VectorStore
from code_index.events import EventEmitter
from code_index.repositories.hash_cache import HashCache
from code_index.schemas.indexing import FileProcessingResult
from code_index.schemas.vectors import VectorRecord, normalize_file_path
from code_index.services.chunking import CodeChunker, file_hash
from code_index.services.ignore import FileFilter
from code_index.services.scanner import read_if_small

__all__ = [
    'MAX_DELETION_ATTEMPTS',
    'FileWatcher',
]

logger = logging.getLogger(__name__)

MAX_DELETION_ATTEMPTS = 3


class _IndexableFilter(watchfiles.DefaultFilter):
    """watchfiles default ignores plus the workspace's own rules."""

    def __init__(self, file_filter: FileFilter) -> None:
        super().__init__()
        self._file_filter = file_filter

    def __call__(self, change: watchfiles.Change, path: str) -> bool:
        return super().__call__(change, path) and self._file_filter.should_index(path)


class FileWatcher:
    """Keeps one workspace's index current between full scans."""

    DEFAULT_DELETION_DEBOUNCE_SECONDS = 0.5

    def __init__(
        self,
        *,
        workspace_path: str | Path,
        hash_cache: HashCache,
        embedder: Embedder,
        vector_store: VectorStore,
        chunker: CodeChunker,
        file_filter: FileFilter,
        deletion_debounce_seconds: float = DEFAULT_DELETION_DEBOUNCE_SECONDS,
    ) -> None:
        self._workspace = Path(workspace_path).resolve()
        self._hash_cache = hash_cache
        self._embedder = embedder
        self._vector_store = vector_store
        self._chunker = chunker
        self._file_filter = file_filter
        self._deletion_debounce_seconds = deletion_debounce_seconds

        self.on_did_start_processing: EventEmitter[str] = EventEmitter('watcher.start')
        self.on_did_finish_processing: EventEmitter[FileProcessingResult] = EventEmitter('watcher.finish')

        self._watch_task: asyncio.Task[None] | None = None
        self._stop_event: asyncio.Event | None = None
        self._pending_deletions: set[str] = set()
        self._deleting: set[str] = set()  # In a bulk delete that hasn't returned yet
        self._deletion_attempts: dict[str, int] = {}
        self._deletion_timer: asyncio.TimerHandle | None = None
        self._deletion_tasks: set[asyncio.Task[None]] = set()

    @property
    def is_watching(self) -> bool:
        return self._watch_task is not None and not self._watch_task.done()

    @property
    def pending_deletions(self) -> frozenset[str]:
        return frozenset(self._pending_deletions)

    async def initialize(self) -> None:
        """Start watching the workspace. No-op if already watching."""
        if self.is_watching:
            return
        self._stop_event = asyncio.Event()
        self._watch_task = asyncio.create_task(self._watch_loop(self._stop_event))
        self._watch_task.add_done_callback(self._on_watch_done)
        logger.info(f'[WATCH] Watching {self._workspace}')

    async def handle_change(self, change: watchfiles.Change, path: str) -> FileProcessingResult | None:
        """Dispatch one file event. Returns the processing result for added/modified files."""
        match change:
            case watchfiles.Change.added | watchfiles.Change.modified:
                return await self.process_file(path)
            case watchfiles.Change.deleted:
                self.handle_deleted(path)
        return None

    async def process_file(self, file_path: str) -> FileProcessingResult:
        """Re-index one file. Never raises: failures come back as an error result."""
        file_key = normalize_file_path(self._workspace, file_path)
        self.on_did_start_processing.emit(file_key)

        # A pending or in-flight delete must not remove the records written below
        self._pending_deletions.discard(file_key)
        self._deleting.discard(file_key)
        self._deletion_attempts.pop(file_key, None)
        if self._deletion_tasks:
            await asyncio.wait(set(self._deletion_tasks))

        try:
            result = await self._index_file(file_key)
        except Exception as e:
            logger.warning(f'[WATCH] Failed to index {file_key}: {type(e).__name__}: {e}')
            result = FileProcessingResult(path=file_key, status='error', error=f'{type(e).__name__}: {e}')

        self.on_did_finish_processing.emit(result)
        return result

    def handle_deleted(self, file_path: str) -> None:
        """Forget a deleted file and schedule its vectors for bulk removal."""
        file_key = normalize_file_path(self._workspace, file_path)
        self._hash_cache.delete(file_key)
        self._pending_deletions.add(file_key)
        self._schedule_deletion_flush()

    async def flush_pending_deletions(self) -> None:
        """Delete all buffered paths now, retrying failures, and wait for in-flight deletes."""
        while self._pending_deletions or self._deletion_tasks:
            self._cancel_deletion_timer()
            if self._deletion_tasks:
                await asyncio.wait(set(self._deletion_tasks))
            elif self._pending_deletions:
                await self._delete_pending()
        self._cancel_deletion_timer()

    def dispose(self) -> None:
        """Stop watching and drop subscribers. Pending deletions are sent immediately."""
        if self._stop_event is not None:
            self._stop_event.set()
        if self._watch_task is not None:
            self._watch_task.cancel()
            self._watch_task = None
        self._cancel_deletion_timer()
        if self._pending_deletions:
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                logger.warning(f'[WATCH] No event loop; dropping {len(self._pending_deletions)} pending deletions')
                self._pending_deletions.clear()
            else:
                self._start_deletion_flush()
        self.on_did_start_processing.clear()
        self.on_did_finish_processing.clear()

    async def _index_file(self, file_key: str) -> FileProcessingResult:
        if not self._file_filter.should_index(file_key):
            return FileProcessingResult(path=file_key, status='skipped', reason='File is ignored')

        content = await asyncio.to_thread(read_if_small, Path(file_key))
        if content is None:
            return FileProcessingResult(path=file_key, status='skipped', reason='File is too large')

        new_hash = file_hash(content)
        if self._hash_cache.get(file_key) == new_hash:
            return FileProcessingResult(path=file_key, status='skipped', reason='File has not changed')

        await self._vector_store.delete_points_by_file_path(file_key)

        blocks = await asyncio.to_thread(self._chunker.parse, file_key, content, new_hash)
        indexable = [block for block in blocks if block.content.strip()]
        if indexable:
            response = await self._embedder.create_embeddings([block.content.strip() for block in indexable])
            records = [
                VectorRecord.from_block(block, vector, self._workspace)
                for block, vector in zip(indexable, response.embeddings, strict=True)
                if vector is not None
            ]
            await self._vector_store.upsert_points(records)

        self._hash_cache.update(file_key, new_hash)
        logger.debug(f'[WATCH] Indexed {file_key}: {len(indexable)} blocks')
        return FileProcessingResult(path=file_key, status='success')

    async def _watch_loop(self, stop_event: asyncio.Event) -> None:
        async for changes in watchfiles.awatch(
            self._workspace,
            watch_filter=_IndexableFilter(self._file_filter),
            stop_event=stop_event,
        ):
            # Per path, a deletion is handled before a re-creation in the same batch
            for change, path in sorted(changes, key=lambda c: (c[1], c[0] != watchfiles.Change.deleted)):
                await self.handle_change(change, path)

    def _on_watch_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        if (exc := task.exception()) is not None:
            logger.error(f'[WATCH] Watch loop crashed: {type(exc).__name__}: {exc}', exc_info=exc)

    def _start_deletion_flush(self) -> None:
        self._deletion_timer = None
        if not self._pending_deletions:
            return
        task = asyncio.get_running_loop().create_task(self._delete_pending())
        self._deletion_tasks.add(task)
        task.add_done_callback(self._deletion_tasks.discard)

    async def _delete_pending(self) -> None:
        paths = sorted(self._pending_deletions)
        self._pending_deletions.clear()
        self._deleting.update(paths)
        try:
            await self._vector_store.delete_points_by_file_paths(paths)
        except Exception as e:
            logger.error(f'[WATCH] Failed to delete points for {len(paths)} removed files: {type(e).__name__}: {e}')
            # Paths re-created meanwhile left _deleting and must not be deleted again
            self._requeue_failed_deletions([path for path in paths if path in self._deleting])
            return
        finally:
            self._deleting.difference_update(paths)
        for path in paths:
            self._deletion_attempts.pop(path, None)
        logger.info(f'[WATCH] Deleted points for {len(paths)} removed file(s)')

    def _requeue_failed_deletions(self, paths: list[str]) -> None:
        retry: list[str] = []
        for path in paths:
            attempts = self._deletion_attempts.get(path, 0) + 1
            if attempts < MAX_DELETION_ATTEMPTS:
                self._deletion_attempts[path] = attempts
                retry.append(path)
            else:
                self._deletion_attempts.pop(path, None)
                # Empty hash never matches a file: the next scan deletes or re-indexes it
                self._hash_cache.update(path, '')
                logger.warning(f'[WATCH] Giving up deleting points for {path}; left for the next scan')
        if retry:
            self._pending_deletions.update(retry)
            self._schedule_deletion_flush()

    def _schedule_deletion_flush(self) -> None:
        self._cancel_deletion_timer()
        loop = asyncio.get_running_loop()
        self._deletion_timer = loop.call_later(self._deletion_debounce_seconds, self._start_deletion_flush)

    def _cancel_deletion_timer(self) -> None:
        if self._deletion_timer is not None:
            self._deletion_timer.cancel()
            self._deletion_timer = None
