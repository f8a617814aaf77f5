"""Per-workspace engine facade and the workspace registry.

CodeIndexManager owns everything for one workspace: state machine, hash cache,
configuration, and the service graph built from it. The graph is rebuilt when a
configuration reload requires a restart. WorkspaceRegistry maps workspace paths
to managers; the host application owns it, there is no global instance.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from pathlib import Path

from code_index.events import EventEmitter
from code_index.paths import CACHE_DIR
from code_index.repositories.hash_cache import HashCache
from code_index.schemas.indexing import IndexingState, IndexingStatus
from code_index.schemas.vectors import SearchHit
from code_index.services.configuration import ConfigManager, IndexNotConfiguredError
from code_index.services.factory import IndexServices, ServiceFactory
from code_index.services.orchestrator import IndexOrchestrator
from code_index.services.search import SearchService
from code_index.services.state import IndexStateMachine

__all__ = [
    'CodeIndexManager',
    'WorkspaceRegistry',
]

logger = logging.getLogger(__name__)

type ManagerFactory = Callable[[Path], CodeIndexManager]


class CodeIndexManager:
    """Code index engine for a single workspace."""

    def __init__(
        self,
        workspace_path: str | Path,
        *,
        config_manager: ConfigManager | None = None,
        service_factory: ServiceFactory | None = None,
        cache_dir: Path = CACHE_DIR,
    ) -> None:
        self._workspace_path = Path(workspace_path).resolve()
        self._config_manager = config_manager or ConfigManager()
        self._service_factory = service_factory or ServiceFactory(self._config_manager, self._workspace_path)
        self._state_machine = IndexStateMachine()
        self._hash_cache = HashCache.for_workspace(self._workspace_path, cache_dir)
        self._services: IndexServices | None = None
        self._orchestrator: IndexOrchestrator | None = None
        self._search_service: SearchService | None = None

    @property
    def workspace_path(self) -> Path:
        return self._workspace_path

    @property
    def state(self) -> IndexingState:
        return self._state_machine.state

    @property
    def on_progress_update(self) -> EventEmitter[IndexingStatus]:
        return self._state_machine.on_progress_update

    @property
    def is_feature_enabled(self) -> bool:
        return self._config_manager.is_feature_enabled

    @property
    def is_feature_configured(self) -> bool:
        return self._config_manager.is_feature_configured

    @property
    def is_initialized(self) -> bool:
        """Services are built and ready to index."""
        return self._orchestrator is not None

    def current_status(self) -> IndexingStatus:
        return self._state_machine.current_status()

    async def initialize(self) -> None:
        """Load the hash cache and apply the current configuration.

        Indexing starts automatically if the feature is enabled and configured.

        Raises:
            ValueError: If the config file is invalid.
        """
        await self._hash_cache.initialize()
        await self.load_configuration()

    async def load_configuration(self) -> None:
        """Reload configuration and rebuild or clear as the change requires.

        Raises:
            ValueError: If the config file is invalid. The running services are
                left untouched.
        """
        change = self._config_manager.load_configuration()

        if not self._config_manager.is_feature_enabled:
            if self._orchestrator is not None:
                self._orchestrator.stop_watcher()
            self._state_machine.set_system_state('Standby', 'Code indexing is disabled.')
            return

        if not self._config_manager.is_feature_configured:
            self._state_machine.set_system_state(
                'Standby', 'Missing configuration. Save your settings to start indexing.'
            )
            return

        if change.requires_clear and self._orchestrator is not None:
            # Old vectors have the wrong dimension
            await self._orchestrator.clear_index_data()

        if change.requires_restart or self._services is None:
            await self._recreate_services()

        if change.requires_restart or change.requires_clear or self._state_machine.state == 'Standby':
            await self.start_indexing()

    async def start_indexing(self) -> bool:
        """Run a full scan and start watching.

        Returns:
            False when unconfigured, already indexing, or the run failed.
        """
        if not self._config_manager.is_feature_enabled or not self._config_manager.is_feature_configured:
            self._state_machine.set_system_state(
                'Standby', 'Missing configuration. Save your settings to start indexing.'
            )
            return False
        orchestrator = self._orchestrator or await self._recreate_services()
        return await orchestrator.start_indexing()

    def stop_watcher(self) -> None:
        if self._orchestrator is not None:
            self._orchestrator.stop_watcher()

    async def clear_index_data(self) -> None:
        """Drop vectors and cached hashes for this workspace."""
        if self._orchestrator is not None:
            await self._orchestrator.clear_index_data()
            return
        # No services yet: only the cache exists
        await self._hash_cache.clear()
        self._state_machine.set_system_state('Standby', 'Index data cleared successfully.')

    async def search(self, query: str, limit: int = 10) -> list[SearchHit]:
        """Semantic search over this workspace.

        Raises:
            IndexNotConfiguredError: Feature disabled or not configured.
            IndexNotReadyError: Index is not in a queryable state.
        """
        if self._search_service is None:
            raise IndexNotConfiguredError('Code index feature is disabled or not configured.')
        return await self._search_service.search(query, limit)

    async def close(self) -> None:
        """Stop watching, persist the cache, release clients."""
        await self._dispose_services()
        # After the watcher settled its deletes, which may touch the cache
        await self._hash_cache.flush()
        self._state_machine.dispose()
        logger.info(f'[MANAGER] Closed code index for {self._workspace_path}')

    async def _recreate_services(self) -> IndexOrchestrator:
        await self._dispose_services()
        services = self._service_factory.create_services(self._hash_cache)
        self._services = services
        orchestrator = IndexOrchestrator(
            config_manager=self._config_manager,
            state_machine=self._state_machine,
            workspace_path=self._workspace_path,
            hash_cache=self._hash_cache,
            vector_store=services.vector_store,
            scanner=services.scanner,
            file_watcher=services.file_watcher,
        )
        self._orchestrator = orchestrator
        self._search_service = SearchService(
            config_manager=self._config_manager,
            state_machine=self._state_machine,
            embedder=services.embedder,
            vector_store=services.vector_store,
        )
        logger.info(f'[MANAGER] Services created for {self._workspace_path}')
        return orchestrator

    async def _dispose_services(self) -> None:
        if self._orchestrator is not None:
            self._orchestrator.stop_watcher()
        if self._services is not None:
            await self._services.close()
        self._services = None
        self._orchestrator = None
        self._search_service = None


class WorkspaceRegistry:
    """Workspace path -> CodeIndexManager, created and initialized on first use."""

    def __init__(self, manager_factory: ManagerFactory | None = None) -> None:
        self._manager_factory: ManagerFactory = manager_factory or CodeIndexManager
        self._managers: dict[Path, CodeIndexManager] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._managers)

    @property
    def workspaces(self) -> Sequence[Path]:
        return list(self._managers)

    async def get(self, workspace_path: str | Path) -> CodeIndexManager:
        """Manager for a workspace, creating and initializing it if needed.

        Raises:
            ValueError: If the workspace is not a directory or the config is invalid.
        """
        path = Path(workspace_path).expanduser().resolve()
        async with self._lock:
            if (manager := self._managers.get(path)) is not None:
                return manager
            if not path.is_dir():
                raise ValueError(f'Workspace is not a directory: {path}')
            manager = self._manager_factory(path)
            await manager.initialize()
            self._managers[path] = manager
            logger.info(f'[REGISTRY] Registered workspace {path}')
            return manager

    def get_existing(self, workspace_path: str | Path) -> CodeIndexManager | None:
        return self._managers.get(Path(workspace_path).expanduser().resolve())

    async def remove(self, workspace_path: str | Path) -> None:
        """Close and forget a workspace's manager. Unknown paths are ignored."""
        path = Path(workspace_path).expanduser().resolve()
        async with self._lock:
            manager = self._managers.pop(path, None)
        if manager is not None:
            await manager.close()

    async def close_all(self) -> None:
        async with self._lock:
            managers = list(self._managers.values())
            self._managers.clear()
        for manager in managers:
            try:
                await manager.close()
            except Exception as e:
                logger.warning(f'[REGISTRY] Failed to close {manager.workspace_path}: {e}')
