"""Indexing lifecycle for one workspace.

Sequences collection bootstrap -> full scan -> file watcher, and owns the
transitions between Standby, Indexing, Indexed and Error. Start requests
while a run is in progress are rejected, not queued.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from code_index.clients.protocols import VectorStore
from code_index.events import Subscription
from code_index.repositories.hash_cache import HashCache
from code_index.schemas.indexing import FileProcessingResult, IndexingState
from code_index.services.configuration import ConfigManager
from code_index.services.scanner import DirectoryScanner
from code_index.services.state import IndexStateMachine
from code_index.services.watcher import FileWatcher

__all__ = [
    'IndexOrchestrator',
]

logger = logging.getLogger(__name__)


class IndexOrchestrator:
    """Coordinates scanner, watcher and vector store for one workspace."""

    def __init__(
        self,
        *,
        config_manager: ConfigManager,
        state_machine: IndexStateMachine,
        workspace_path: str | Path,
        hash_cache: HashCache,
        vector_store: VectorStore,
        scanner: DirectoryScanner,
        file_watcher: FileWatcher,
    ) -> None:
        self._config_manager = config_manager
        self._state_machine = state_machine
        self._workspace_path = Path(workspace_path)
        self._hash_cache = hash_cache
        self._vector_store = vector_store
        self._scanner = scanner
        self._file_watcher = file_watcher
        self._subscriptions: list[Subscription] = []
        self._is_processing = False
        self._stop_event: asyncio.Event | None = None

    @property
    def state(self) -> IndexingState:
        return self._state_machine.state

    @property
    def is_processing(self) -> bool:
        return self._is_processing

    async def start_indexing(self) -> bool:
        """Bootstrap the collection, scan the workspace, then watch it.

        Returns:
            True if the scan finished and the watcher is running. False if the
            request was rejected, stopped, or failed (state says which).
        """
        if not self._config_manager.is_feature_configured:
            self._state_machine.set_system_state(
                'Standby', 'Missing configuration. Save your settings to start indexing.'
            )
            logger.warning('[ORCHESTRATOR] Start rejected: Missing configuration.')
            return False

        if self._is_processing or self._state_machine.state == 'Indexing':
            logger.warning(
                f'[ORCHESTRATOR] Start rejected: Already processing or in state {self._state_machine.state}.'
            )
            return False

        self._is_processing = True
        self._dispose_watcher()
        stop_event = asyncio.Event()
        self._stop_event = stop_event
        self._state_machine.set_system_state('Indexing', 'Initializing services...')

        try:
            collection_created = await self._vector_store.initialize()
            if collection_created:
                await self._hash_cache.clear()
                logger.info('[ORCHESTRATOR] Vector collection created; cache cleared.')

            self._state_machine.set_system_state('Indexing', 'Services ready. Starting workspace scan...')

            blocks_indexed = 0
            blocks_found = 0

            def on_file_parsed(block_count: int) -> None:
                nonlocal blocks_found
                blocks_found += block_count
                if not stop_event.is_set():
                    self._state_machine.report_block_indexing_progress(blocks_indexed, blocks_found)

            def on_blocks_indexed(block_count: int) -> None:
                nonlocal blocks_indexed
                blocks_indexed += block_count
                if not stop_event.is_set():
                    self._state_machine.report_block_indexing_progress(blocks_indexed, blocks_found)

            def on_error(error: Exception) -> None:
                logger.error(f'[ORCHESTRATOR] Error during initial scan: {type(error).__name__}: {error}')

            result = await self._scanner.scan_directory(
                self._workspace_path,
                on_error=on_error,
                on_blocks_indexed=on_blocks_indexed,
                on_file_parsed=on_file_parsed,
                stop_event=stop_event,
            )

            logger.info(
                f'[ORCHESTRATOR] Initial scan complete. Processed files: {result.stats.processed}, '
                f'skipped files: {result.stats.skipped}, blocks found: {result.total_block_count}, '
                f'blocks indexed: {blocks_indexed}'
            )

            if result.stopped or stop_event.is_set():
                # stop_watcher() already moved the state to Standby
                logger.info('[ORCHESTRATOR] Scan stopped before completion; watcher not started.')
                return False

            await self._start_watcher()
            self._state_machine.set_system_state('Indexed', 'Workspace scan and watcher started.')
            return True

        except Exception as e:
            logger.error(f'[ORCHESTRATOR] Error during indexing: {type(e).__name__}: {e}', exc_info=True)
            try:
                await self._vector_store.clear_collection()
            except Exception as cleanup_error:
                logger.warning(f'[ORCHESTRATOR] Failed to clean up after error: {cleanup_error}')

            await self._hash_cache.clear()
            logger.info('[ORCHESTRATOR] Cleared cache due to scan error.')

            self._state_machine.set_system_state('Error', f'Failed during initial scan: {e}')
            self.stop_watcher()
            return False

        finally:
            self._is_processing = False
            self._stop_event = None

    def stop_watcher(self) -> None:
        """Stop the watcher (and any running scan from scheduling more work)."""
        if self._stop_event is not None:
            self._stop_event.set()
        self._dispose_watcher()
        logger.info('[ORCHESTRATOR] File watcher stopped.')

        if self._state_machine.state != 'Error':
            self._state_machine.set_system_state('Standby', 'File watcher stopped.')

    async def clear_index_data(self) -> None:
        """Stop watching, drop the vector collection and the hash cache."""
        logger.info('[ORCHESTRATOR] Clearing code index data...')
        self._is_processing = True
        try:
            self.stop_watcher()

            try:
                if self._config_manager.is_feature_configured:
                    await self._vector_store.delete_collection()
                    logger.info('[ORCHESTRATOR] Vector collection deleted.')
                else:
                    logger.warning('[ORCHESTRATOR] Service not configured, skipping vector collection clear.')
            except Exception as e:
                logger.error(f'[ORCHESTRATOR] Failed to clear vector collection: {e}')
                self._state_machine.set_system_state('Error', f'Failed to clear vector collection: {e}')

            await self._hash_cache.clear()
            logger.info('[ORCHESTRATOR] Cache cleared.')

            if self._state_machine.state != 'Error':
                self._state_machine.set_system_state('Standby', 'Index data cleared successfully.')
        finally:
            self._is_processing = False

    async def _start_watcher(self) -> None:
        self._state_machine.set_system_state('Indexing', 'Initializing file watcher...')
        await self._file_watcher.initialize()
        self._subscriptions = [
            self._file_watcher.on_did_start_processing.subscribe(self._on_file_started),
            self._file_watcher.on_did_finish_processing.subscribe(self._on_file_finished),
        ]
        logger.info('[ORCHESTRATOR] File watcher started.')

    def _dispose_watcher(self) -> None:
        self._file_watcher.dispose()
        for subscription in self._subscriptions:
            subscription.dispose()
        self._subscriptions = []

    def _on_file_started(self, file_path: str) -> None:
        self._state_machine.update_file_status(file_path, 'Processing', f'Processing file: {Path(file_path).name}')

    def _on_file_finished(self, result: FileProcessingResult) -> None:
        if result.status == 'error':
            self._state_machine.update_file_status(result.path, 'Error')
            logger.error(f'[ORCHESTRATOR] Error processing file {result.path}: {result.error}')
        else:
            self._state_machine.update_file_status(
                result.path, 'Indexed', f'Finished processing {Path(result.path).name}. Index up-to-date.'
            )

        if self._state_machine.state == 'Indexing':
            self._state_machine.set_system_state('Indexed', 'Index up-to-date.')
