"""Directory scanner - bulk indexing pipeline.

Pipeline stages, connected by queues:
1. Parse workers: stat, read, hash, compare with the cache, chunk changed files
2. Coordinator (single task): packs parsed files into batches; owns the buffer
3. Batch workers: delete stale vectors, embed, upsert, commit file hashes

Every block of a file lands in the same batch, so the stale-vector delete for a
modified file can never run after another batch already wrote its new vectors.
A batch is retried as one unit; if it still fails its files keep their old
hashes and are picked up again by the next scan.

After the pipeline drains, cached paths that were not seen are removed from the
vector store and the cache is rewritten.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from pathlib import Path

import attrs
import tenacity

from code_index.clients.protocols import Embedder, VectorStore
from code_index.repositories.hash_cache import HashCache
from code_index.schemas.blocks import CodeBlock
from code_index.schemas.indexing import (
    BlocksIndexedCallback,
    FileParsedCallback,
    ScanErrorCallback,
    ScanResult,
    ScanStats,
)
from code_index.schemas.vectors import VectorRecord, normalize_file_path
from code_index.services.chunking import CodeChunker, file_hash
from code_index.services.ignore import FileFilter

__all__ = [
    'BATCH_PROCESSING_CONCURRENCY',
    'BATCH_SEGMENT_THRESHOLD',
    'INITIAL_RETRY_DELAY_SECONDS',
    'MAX_BATCH_RETRIES',
    'MAX_FILE_SIZE_BYTES',
    'PARSING_CONCURRENCY',
    'BatchProcessingError',
    'DirectoryScanner',
    'read_if_small',
]

logger = logging.getLogger(__name__)

MAX_FILE_SIZE_BYTES = 1 * 1024 * 1024
BATCH_SEGMENT_THRESHOLD = 30  # Blocks per embed/upsert batch
MAX_BATCH_RETRIES = 3
INITIAL_RETRY_DELAY_SECONDS = 0.5
PARSING_CONCURRENCY = 10
BATCH_PROCESSING_CONCURRENCY = 10


class BatchProcessingError(RuntimeError):
    """A batch failed on every attempt. Its files were not committed."""


@attrs.define(frozen=True, kw_only=True)
class _ParsedFile:
    file_path: str
    file_hash: str
    blocks: Sequence[CodeBlock]  # Non-empty after trimming
    is_new: bool  # Not in the cache before this scan


@attrs.define(frozen=True, kw_only=True)
class _Batch:
    files: Sequence[_ParsedFile]

    @property
    def blocks(self) -> list[CodeBlock]:
        return [block for parsed in self.files for block in parsed.blocks]


@attrs.define(kw_only=True)
class _ScanCounters:
    processed: int = 0
    skipped: int = 0
    total_blocks: int = 0
    batches_attempted: int = 0
    batches_failed: int = 0


class DirectoryScanner:
    """Walks a directory and brings the vector store in line with it."""

    def __init__(
        self,
        *,
        embedder: Embedder,
        vector_store: VectorStore,
        chunker: CodeChunker,
        hash_cache: HashCache,
        file_filter: FileFilter,
        batch_segment_threshold: int = BATCH_SEGMENT_THRESHOLD,
        max_batch_retries: int = MAX_BATCH_RETRIES,
        retry_wait: tenacity.wait.wait_base | None = None,
    ) -> None:
        """Initialize scanner.

        Args:
            batch_segment_threshold: Blocks buffered before a batch is dispatched.
            max_batch_retries: Attempts per batch, including the first.
            retry_wait: tenacity wait strategy between batch attempts. Defaults
                to exponential backoff from INITIAL_RETRY_DELAY_SECONDS.
        """
        self._embedder = embedder
        self._vector_store = vector_store
        self._chunker = chunker
        self._hash_cache = hash_cache
        self._file_filter = file_filter
        self._batch_segment_threshold = batch_segment_threshold
        self._max_batch_retries = max_batch_retries
        self._retry_wait = retry_wait or tenacity.wait_exponential(multiplier=INITIAL_RETRY_DELAY_SECONDS)

    async def scan_directory(
        self,
        directory: str | Path,
        *,
        on_error: ScanErrorCallback | None = None,
        on_blocks_indexed: BlocksIndexedCallback | None = None,
        on_file_parsed: FileParsedCallback | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> ScanResult:
        """Index every changed file under directory and drop vectors for vanished ones.

        Args:
            directory: Root to scan (normally the workspace).
            on_error: Called for per-file read errors and exhausted batches.
            on_blocks_indexed: Called with the block count of each stored batch.
            on_file_parsed: Called with the block count of each parsed file.
            stop_event: When set, no new files are parsed and no new batches
                start. Deletion reconciliation is skipped.
        """
        root = Path(directory).resolve()
        stop = stop_event or asyncio.Event()

        def report_error(error: Exception) -> None:
            if on_error is not None:
                on_error(error)

        await asyncio.to_thread(self._file_filter.reload)
        files = await asyncio.to_thread(self._file_filter.list_files, root)
        logger.info(f'[SCAN] Found {len(files):,} supported files under {root}')

        old_hashes = self._hash_cache.get_all()
        new_hashes: dict[str, str] = {}
        visited: set[str] = set()
        all_blocks: list[CodeBlock] = []
        counters = _ScanCounters()

        file_queue: asyncio.Queue[Path] = asyncio.Queue()
        parsed_queue: asyncio.Queue[_ParsedFile | None] = asyncio.Queue()
        batch_queue: asyncio.Queue[_Batch] = asyncio.Queue()
        for path in files:
            file_queue.put_nowait(path)

        async def parse_worker() -> None:
            while True:
                path = await file_queue.get()
                if not stop.is_set():
                    await self._parse_one(
                        root,
                        path,
                        old_hashes=old_hashes,
                        new_hashes=new_hashes,
                        visited=visited,
                        all_blocks=all_blocks,
                        counters=counters,
                        parsed_queue=parsed_queue,
                        report_error=report_error,
                        on_file_parsed=on_file_parsed,
                    )
                file_queue.task_done()

        async def coordinator() -> None:
            buffer: list[_ParsedFile] = []
            buffered_blocks = 0
            while True:
                parsed = await parsed_queue.get()
                if parsed is None:
                    if buffer and not stop.is_set():
                        await batch_queue.put(_Batch(files=buffer))
                    parsed_queue.task_done()
                    return
                buffer.append(parsed)
                buffered_blocks += len(parsed.blocks)
                if buffered_blocks >= self._batch_segment_threshold and not stop.is_set():
                    await batch_queue.put(_Batch(files=buffer))
                    buffer = []
                    buffered_blocks = 0
                parsed_queue.task_done()

        async def batch_worker() -> None:
            while True:
                batch = await batch_queue.get()
                if not stop.is_set():
                    counters.batches_attempted += 1
                    if await self._run_batch(root, batch, report_error):
                        for parsed in batch.files:
                            new_hashes[parsed.file_path] = parsed.file_hash
                        if on_blocks_indexed is not None:
                            on_blocks_indexed(len(batch.blocks))
                    else:
                        counters.batches_failed += 1
                        # Old hash marks the file modified next scan, so its stale vectors get deleted
                        for parsed in batch.files:
                            if not parsed.is_new:
                                new_hashes[parsed.file_path] = old_hashes[parsed.file_path]
                batch_queue.task_done()

        async def wait_queues() -> None:
            await file_queue.join()
            await parsed_queue.put(None)
            await parsed_queue.join()
            await batch_queue.join()

        workers = [asyncio.create_task(parse_worker()) for _ in range(min(PARSING_CONCURRENCY, max(len(files), 1)))]
        workers.append(asyncio.create_task(coordinator()))
        workers.extend(asyncio.create_task(batch_worker()) for _ in range(BATCH_PROCESSING_CONCURRENCY))
        waiter = asyncio.create_task(wait_queues())

        # FAIL-FAST: a crashed worker never calls task_done(), so the waiter
        # would hang. asyncio.wait sees the crash first.
        try:
            pending: set[asyncio.Task[None]] = {waiter, *workers}
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    if task is waiter:
                        task.result()
                        pending.clear()
                        break
                    if not task.cancelled() and (exc := task.exception()) is not None:
                        raise exc
        finally:
            waiter.cancel()
            for task in workers:
                task.cancel()
            await asyncio.gather(waiter, *workers, return_exceptions=True)

        stats = ScanStats(processed=counters.processed, skipped=counters.skipped)

        if stop.is_set():
            # Unvisited files may still exist: keep their hashes, delete nothing
            await self._hash_cache.save_all({**old_hashes, **new_hashes})
            logger.info(f'[SCAN] Stopped: {counters.processed} processed, {counters.skipped} skipped')
            return ScanResult(blocks=all_blocks, stats=stats, total_block_count=counters.total_blocks, stopped=True)

        deleted = sorted(path for path in old_hashes if path not in visited)
        if deleted:
            logger.info(f'[SCAN] Removing vectors for {len(deleted)} deleted file(s)')
            try:
                await self._vector_store.delete_points_by_file_paths(deleted)
            except Exception as e:
                # Keep the hashes so the next scan retries the delete
                logger.warning(f'[SCAN] Failed to delete points for {len(deleted)} files: {e}')
                report_error(e)
                for path in deleted:
                    new_hashes[path] = old_hashes[path]

        await self._hash_cache.save_all(new_hashes)

        logger.info(
            f'[SCAN] Complete: {counters.processed} processed, {counters.skipped} skipped, '
            f'{counters.total_blocks} blocks, {counters.batches_failed}/{counters.batches_attempted} batches failed'
        )
        return ScanResult(blocks=all_blocks, stats=stats, total_block_count=counters.total_blocks)

    async def _parse_one(
        self,
        root: Path,
        path: Path,
        *,
        old_hashes: Mapping[str, str],
        new_hashes: dict[str, str],
        visited: set[str],
        all_blocks: list[CodeBlock],
        counters: _ScanCounters,
        parsed_queue: asyncio.Queue[_ParsedFile | None],
        report_error: ScanErrorCallback,
        on_file_parsed: FileParsedCallback | None,
    ) -> None:
        """Stage 1 for one file. Known file errors are reported and skipped."""
        file_key = normalize_file_path(root, path)
        try:
            content = await asyncio.to_thread(read_if_small, path)
            if content is None:
                counters.skipped += 1
                logger.debug(f'[SCAN] Skipping {path.name}: larger than {MAX_FILE_SIZE_BYTES} bytes')
                return

            current_hash = file_hash(content)
            visited.add(file_key)

            if old_hashes.get(file_key) == current_hash:
                new_hashes[file_key] = current_hash
                counters.skipped += 1
                return

            blocks = await asyncio.to_thread(self._chunker.parse, file_key, content, current_hash)
        except (OSError, UnicodeDecodeError, ValueError) as e:
            counters.skipped += 1
            logger.warning(f'[SCAN] Error processing file {path}: {type(e).__name__}: {e}')
            report_error(e)
            # Still on disk: keep its vectors and hash instead of reconciling it away
            visited.add(file_key)
            if (previous_hash := old_hashes.get(file_key)) is not None:
                new_hashes[file_key] = previous_hash
            return

        if on_file_parsed is not None:
            on_file_parsed(len(blocks))
        all_blocks.extend(blocks)
        counters.processed += 1

        indexable = [block for block in blocks if block.content.strip()]
        is_new = file_key not in old_hashes
        if not indexable and is_new:
            # Nothing stored before, nothing to store now
            new_hashes[file_key] = current_hash
            return

        counters.total_blocks += len(indexable)
        await parsed_queue.put(
            _ParsedFile(file_path=file_key, file_hash=current_hash, blocks=indexable, is_new=is_new)
        )

    async def _run_batch(self, root: Path, batch: _Batch, report_error: ScanErrorCallback) -> bool:
        """Process a batch with retries. Returns False once attempts are exhausted."""
        try:
            async for attempt in tenacity.AsyncRetrying(
                stop=tenacity.stop_after_attempt(self._max_batch_retries),
                wait=self._retry_wait,
                before_sleep=_log_batch_retry,
                reraise=True,
            ):
                with attempt:
                    await self._process_batch(root, batch)
        except Exception as e:
            logger.error(f'[BATCH] Failed to process batch after {self._max_batch_retries} attempts: {e}')
            report_error(
                BatchProcessingError(f'Failed to process batch after {self._max_batch_retries} attempts: {e}')
            )
            return False
        return True

    async def _process_batch(self, root: Path, batch: _Batch) -> None:
        """One attempt: delete stale vectors of modified files, embed, upsert."""
        modified = sorted({parsed.file_path for parsed in batch.files if not parsed.is_new})
        if modified:
            await self._vector_store.delete_points_by_file_paths(modified)

        blocks = batch.blocks
        if not blocks:
            return

        response = await self._embedder.create_embeddings([block.content.strip() for block in blocks])
        records = [
            VectorRecord.from_block(block, vector, root)
            for block, vector in zip(blocks, response.embeddings, strict=True)
            if vector is not None
        ]
        await self._vector_store.upsert_points(records)
        logger.debug(f'[BATCH] Stored {len(records)} blocks from {len(batch.files)} files')


def read_if_small(path: Path) -> str | None:
    """File text, or None if it exceeds MAX_FILE_SIZE_BYTES."""
    if path.stat().st_size > MAX_FILE_SIZE_BYTES:
        return None
    return path.read_text(encoding='utf-8')


def _log_batch_retry(retry_state: tenacity.RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    delay = retry_state.next_action.sleep if retry_state.next_action else 0
    logger.warning(
        f'[RETRY] Batch attempt {retry_state.attempt_number} failed: {type(exc).__name__}: {exc}. '
        f'Retrying in {delay:.1f}s'
    )
