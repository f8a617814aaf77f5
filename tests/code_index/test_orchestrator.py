"""Tests for IndexOrchestrator lifecycle: start, stop, clear, and failure rollback."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Callable
from pathlib import Path

import pytest

from code_index.repositories.hash_cache import HashCache
from code_index.schemas.config import CodeIndexConfig, OllamaEmbedderConfig
from code_index.schemas.indexing import IndexingStatus
from code_index.services.chunking import CodeChunker
from code_index.services.configuration import ConfigManager
from code_index.services.ignore import FileFilter
from code_index.services.orchestrator import IndexOrchestrator
from code_index.services.scanner import DirectoryScanner
from code_index.services.state import IndexStateMachine
from code_index.services.watcher import FileWatcher
from tests.code_index.fakes import FakeEmbedder, InMemoryVectorStore, python_function

type WriteFile = Callable[[str, str], Path]


@pytest.fixture
def config_manager(tmp_path: Path) -> ConfigManager:
    return ConfigManager(
        tmp_path / 'code_index.json',
        tmp_path / 'secrets',
        config=CodeIndexConfig(enabled=True, embedder=OllamaEmbedderConfig()),
    )


@pytest.fixture
def state_machine() -> IndexStateMachine:
    return IndexStateMachine()


@pytest.fixture
def file_watcher(
    workspace: Path,
    hash_cache: HashCache,
    embedder: FakeEmbedder,
    vector_store: InMemoryVectorStore,
    chunker: CodeChunker,
    file_filter: FileFilter,
) -> FileWatcher:
    return FileWatcher(
        workspace_path=workspace,
        hash_cache=hash_cache,
        embedder=embedder,
        vector_store=vector_store,
        chunker=chunker,
        file_filter=file_filter,
    )


@pytest.fixture
async def orchestrator(
    config_manager: ConfigManager,
    state_machine: IndexStateMachine,
    workspace: Path,
    hash_cache: HashCache,
    vector_store: InMemoryVectorStore,
    scanner: DirectoryScanner,
    file_watcher: FileWatcher,
) -> AsyncGenerator[IndexOrchestrator]:
    orchestrator = IndexOrchestrator(
        config_manager=config_manager,
        state_machine=state_machine,
        workspace_path=workspace,
        hash_cache=hash_cache,
        vector_store=vector_store,
        scanner=scanner,
        file_watcher=file_watcher,
    )
    yield orchestrator
    orchestrator.stop_watcher()
    await file_watcher.flush_pending_deletions()


class TestStartIndexing:
    async def test_scans_then_watches(
        self,
        orchestrator: IndexOrchestrator,
        state_machine: IndexStateMachine,
        vector_store: InMemoryVectorStore,
        file_watcher: FileWatcher,
        write_file: WriteFile,
    ) -> None:
        path = write_file('a.py', python_function('alpha'))

        assert await orchestrator.start_indexing()

        status = state_machine.current_status()
        assert status.system_status == 'Indexed'
        assert status.message == 'Workspace scan and watcher started.'
        assert vector_store.file_paths() == {str(path)}
        assert file_watcher.is_watching
        assert not orchestrator.is_processing

    async def test_publishes_progress(
        self,
        orchestrator: IndexOrchestrator,
        state_machine: IndexStateMachine,
        write_file: WriteFile,
    ) -> None:
        write_file('a.py', python_function('alpha'))
        published: list[IndexingStatus] = []
        state_machine.on_progress_update.subscribe(published.append)

        await orchestrator.start_indexing()

        messages = [status.message for status in published]
        assert messages[0] == 'Initializing services...'
        assert 'Indexed 1 / 1 blocks found' in messages
        assert messages[-1] == 'Workspace scan and watcher started.'

    async def test_not_configured(
        self,
        orchestrator: IndexOrchestrator,
        config_manager: ConfigManager,
        state_machine: IndexStateMachine,
    ) -> None:
        config_manager.set_config(
            CodeIndexConfig(enabled=True, embedder=OllamaEmbedderConfig(model='unknown-model'))
        )

        assert not await orchestrator.start_indexing()

        status = state_machine.current_status()
        assert status.system_status == 'Standby'
        assert status.message.startswith('Missing configuration')

    async def test_concurrent_start_is_rejected(
        self,
        orchestrator: IndexOrchestrator,
        write_file: WriteFile,
    ) -> None:
        write_file('a.py', python_function('alpha'))

        results = await asyncio.gather(orchestrator.start_indexing(), orchestrator.start_indexing())

        assert sorted(results) == [False, True]

    async def test_existing_collection_keeps_cache(
        self,
        orchestrator: IndexOrchestrator,
        embedder: FakeEmbedder,
        write_file: WriteFile,
    ) -> None:
        write_file('a.py', python_function('alpha'))
        await orchestrator.start_indexing()
        orchestrator.stop_watcher()
        embedder.calls.clear()

        # Collection exists: cached hash holds and nothing is re-embedded
        assert await orchestrator.start_indexing()
        assert embedder.calls == []

    async def test_recreated_collection_reindexes(
        self,
        orchestrator: IndexOrchestrator,
        embedder: FakeEmbedder,
        vector_store: InMemoryVectorStore,
        write_file: WriteFile,
    ) -> None:
        path = write_file('a.py', python_function('alpha'))
        await orchestrator.start_indexing()
        orchestrator.stop_watcher()
        embedder.calls.clear()

        vector_store.exists = False
        vector_store.points.clear()
        assert await orchestrator.start_indexing()

        assert len(embedder.calls) == 1
        assert vector_store.file_paths() == {str(path)}

    async def test_failure_rolls_back(
        self,
        orchestrator: IndexOrchestrator,
        state_machine: IndexStateMachine,
        vector_store: InMemoryVectorStore,
        hash_cache: HashCache,
        file_watcher: FileWatcher,
        write_file: WriteFile,
    ) -> None:
        write_file('a.py', python_function('alpha'))
        await hash_cache.save_all({'/elsewhere/stale.py': 'hash'})
        vector_store.fail_initialize = True

        assert not await orchestrator.start_indexing()

        status = state_machine.current_status()
        assert status.system_status == 'Error'
        assert status.message.startswith('Failed during initial scan:')
        assert vector_store.clear_calls == 1
        assert hash_cache.get_all() == {}
        assert not file_watcher.is_watching

    async def test_can_restart_after_failure(
        self,
        orchestrator: IndexOrchestrator,
        state_machine: IndexStateMachine,
        vector_store: InMemoryVectorStore,
        write_file: WriteFile,
    ) -> None:
        write_file('a.py', python_function('alpha'))
        vector_store.fail_initialize = True
        await orchestrator.start_indexing()
        vector_store.fail_initialize = False

        assert await orchestrator.start_indexing()
        assert state_machine.state == 'Indexed'

    async def test_exhausted_batch_on_rescan_keeps_rest_of_index(
        self,
        orchestrator: IndexOrchestrator,
        state_machine: IndexStateMachine,
        embedder: FakeEmbedder,
        vector_store: InMemoryVectorStore,
        hash_cache: HashCache,
        write_file: WriteFile,
    ) -> None:
        a = write_file('a.py', python_function('alpha'))
        b = write_file('b.py', python_function('beta'))
        c = write_file('c.py', python_function('gamma'))
        assert await orchestrator.start_indexing()
        orchestrator.stop_watcher()
        hashes_before = hash_cache.get_all()

        a.write_text(python_function('alpha', body_lines=9))
        embedder.fail_times = 3

        assert await orchestrator.start_indexing()

        assert state_machine.state == 'Indexed'
        assert vector_store.clear_calls == 0
        assert vector_store.records_for(str(b)) != []
        assert vector_store.records_for(str(c)) != []
        assert hash_cache.get_all() == hashes_before

    async def test_all_batches_failing_is_not_a_scan_failure(
        self,
        orchestrator: IndexOrchestrator,
        state_machine: IndexStateMachine,
        embedder: FakeEmbedder,
        vector_store: InMemoryVectorStore,
        hash_cache: HashCache,
        write_file: WriteFile,
    ) -> None:
        path = write_file('a.py', python_function('alpha'))
        embedder.fail_times = 3

        assert await orchestrator.start_indexing()

        # Nothing committed, so the next start picks the file up again
        assert state_machine.state == 'Indexed'
        assert vector_store.clear_calls == 0
        assert hash_cache.get_all() == {}

        orchestrator.stop_watcher()
        assert await orchestrator.start_indexing()
        assert vector_store.file_paths() == {str(path)}


class TestStopWatcher:
    async def test_stop_returns_to_standby(
        self,
        orchestrator: IndexOrchestrator,
        state_machine: IndexStateMachine,
        file_watcher: FileWatcher,
        write_file: WriteFile,
    ) -> None:
        write_file('a.py', python_function('alpha'))
        await orchestrator.start_indexing()

        orchestrator.stop_watcher()

        assert not file_watcher.is_watching
        assert state_machine.current_status().message == 'File watcher stopped.'
        assert state_machine.state == 'Standby'

    async def test_stop_keeps_error_state(
        self,
        orchestrator: IndexOrchestrator,
        state_machine: IndexStateMachine,
    ) -> None:
        state_machine.set_system_state('Error', 'boom')

        orchestrator.stop_watcher()

        assert state_machine.state == 'Error'

    async def test_stop_during_scan_skips_watcher(
        self,
        orchestrator: IndexOrchestrator,
        state_machine: IndexStateMachine,
        file_watcher: FileWatcher,
        write_file: WriteFile,
    ) -> None:
        write_file('a.py', python_function('alpha'))
        stopped = False

        def stop_when_scanning(status: IndexingStatus) -> None:
            nonlocal stopped
            if not stopped and status.message == 'Services ready. Starting workspace scan...':
                stopped = True
                orchestrator.stop_watcher()

        state_machine.on_progress_update.subscribe(stop_when_scanning)

        assert not await orchestrator.start_indexing()

        assert state_machine.state == 'Standby'
        assert not file_watcher.is_watching

    async def test_watcher_events_update_file_status(
        self,
        orchestrator: IndexOrchestrator,
        state_machine: IndexStateMachine,
        file_watcher: FileWatcher,
        write_file: WriteFile,
    ) -> None:
        await orchestrator.start_indexing()
        path = write_file('b.py', python_function('beta'))

        await file_watcher.process_file(str(path))

        status = state_machine.current_status()
        assert status.file_statuses[str(path)] == 'Indexed'
        assert status.system_status == 'Indexed'


class TestClearIndexData:
    async def test_clears_everything(
        self,
        orchestrator: IndexOrchestrator,
        state_machine: IndexStateMachine,
        vector_store: InMemoryVectorStore,
        hash_cache: HashCache,
        write_file: WriteFile,
    ) -> None:
        write_file('a.py', python_function('alpha'))
        await orchestrator.start_indexing()

        await orchestrator.clear_index_data()

        assert not vector_store.exists
        assert vector_store.points == {}
        assert hash_cache.get_all() == {}
        assert state_machine.current_status().message == 'Index data cleared successfully.'

    async def test_delete_failure_sets_error(
        self,
        orchestrator: IndexOrchestrator,
        state_machine: IndexStateMachine,
        vector_store: InMemoryVectorStore,
        hash_cache: HashCache,
    ) -> None:
        await hash_cache.save_all({'/ws/a.py': 'hash'})
        vector_store.fail_delete_collection = True

        await orchestrator.clear_index_data()

        assert state_machine.state == 'Error'
        assert state_machine.current_status().message.startswith('Failed to clear vector collection:')
        assert hash_cache.get_all() == {}
