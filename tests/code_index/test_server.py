"""Tests for server-side workspace resolution and status shaping."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from pathlib import Path

import pytest

from code_index.schemas.indexing import IndexingStatus
from code_index.server import ServerState, _compact, _resolve_workspace
from code_index.services.configuration import ConfigManager
from code_index.services.manager import CodeIndexManager, WorkspaceRegistry
from tests.code_index.fakes import FakeServiceFactory


@pytest.fixture
async def state(tmp_path: Path, cache_dir: Path) -> AsyncGenerator[ServerState]:
    def make_manager(path: Path) -> CodeIndexManager:
        config_manager = ConfigManager(tmp_path / 'config' / 'code_index.json', tmp_path / 'secrets')
        return CodeIndexManager(
            path,
            config_manager=config_manager,
            service_factory=FakeServiceFactory(config_manager, path),
            cache_dir=cache_dir,
        )

    state = ServerState(registry=WorkspaceRegistry(make_manager))
    yield state
    await state.close()


class TestResolveWorkspace:
    def test_default_is_cwd(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        assert _resolve_workspace(None) == Path.cwd()

    def test_normalizes(self, tmp_path: Path) -> None:
        assert _resolve_workspace(str(tmp_path / 'a' / '..')) == tmp_path.resolve()

    def test_rejects_glob(self) -> None:
        with pytest.raises(ValueError, match='not supported'):
            _resolve_workspace('**')


class TestServerState:
    async def test_manager_for_registers_once(self, state: ServerState, workspace: Path) -> None:
        first = await state.manager_for(str(workspace))
        second = await state.manager_for(str(workspace))

        assert first is second
        assert state.existing_manager_for(str(workspace)) is first
        # Disabled by default: registered but idle
        assert first.state == 'Standby'

    def test_existing_manager_requires_index(self, state: ServerState, workspace: Path) -> None:
        with pytest.raises(ValueError, match='Use index_codebase first'):
            state.existing_manager_for(str(workspace))


class TestCompact:
    def test_drops_file_statuses(self) -> None:
        status = IndexingStatus(
            system_status='Indexed',
            message='Index up-to-date.',
            file_statuses={'/w/a.py': 'Indexed', '/w/b.py': 'Error'},
            processed_block_count=4,
            total_block_count=4,
            sequence=7,
            timestamp=datetime.now(UTC),
        )

        compact = _compact(status)

        assert compact.file_statuses == {}
        assert compact.sequence == 7
        assert compact.message == status.message
