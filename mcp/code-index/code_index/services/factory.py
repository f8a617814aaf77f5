"""Builds the per-workspace service graph from configuration."""

from __future__ import annotations

from pathlib import Path

import attrs

from code_index.clients import create_embedder
from code_index.clients.protocols import Embedder, VectorStore
from code_index.clients.qdrant import QdrantVectorStore
from code_index.repositories.hash_cache import HashCache
from code_index.services.chunking import CodeChunker
from code_index.services.configuration import ConfigManager, IndexNotConfiguredError
from code_index.services.ignore import FileFilter
from code_index.services.scanner import DirectoryScanner
from code_index.services.watcher import FileWatcher

__all__ = [
    'IndexServices',
    'ServiceFactory',
]


@attrs.define(frozen=True, kw_only=True)
class IndexServices:
    """Everything one engine needs, wired to the same embedder and store."""

    embedder: Embedder
    vector_store: VectorStore
    chunker: CodeChunker
    file_filter: FileFilter
    scanner: DirectoryScanner
    file_watcher: FileWatcher

    async def close(self) -> None:
        """Stop the watcher, finish its pending deletes, and release client connections."""
        self.file_watcher.dispose()
        await self.file_watcher.flush_pending_deletions()
        await self.embedder.close()
        await self.vector_store.close()


class ServiceFactory:
    """Creates embedder, vector store, scanner and watcher for one workspace.

    Subclass and override create_embedder() / create_vector_store() to swap
    backends (tests use in-memory fakes).
    """

    def __init__(self, config_manager: ConfigManager, workspace_path: str | Path) -> None:
        self._config_manager = config_manager
        self._workspace_path = Path(workspace_path).resolve()

    def create_embedder(self) -> Embedder:
        return create_embedder(self._config_manager.embedder_config())

    def create_vector_store(self) -> VectorStore:
        config = self._config_manager.config
        vector_size = config.embedder.vector_dimension()
        if vector_size is None:
            raise IndexNotConfiguredError(
                f"Could not determine vector dimension for model '{config.embedder.model}'. Set embedder.dimensions."
            )
        if not config.qdrant_url:
            raise IndexNotConfiguredError('Qdrant URL missing for vector store creation')
        return QdrantVectorStore(
            self._workspace_path,
            vector_size,
            url=config.qdrant_url,
            api_key=config.qdrant_api_key,
        )

    def create_services(self, hash_cache: HashCache) -> IndexServices:
        """Build the full service graph.

        Raises:
            IndexNotConfiguredError: If the configuration is incomplete.
        """
        if not self._config_manager.is_feature_configured:
            raise IndexNotConfiguredError('Cannot create services: Code indexing is not properly configured')

        embedder = self.create_embedder()
        vector_store = self.create_vector_store()
        chunker = CodeChunker()
        file_filter = FileFilter(self._workspace_path)
        return IndexServices(
            embedder=embedder,
            vector_store=vector_store,
            chunker=chunker,
            file_filter=file_filter,
            scanner=DirectoryScanner(
                embedder=embedder,
                vector_store=vector_store,
                chunker=chunker,
                hash_cache=hash_cache,
                file_filter=file_filter,
            ),
            file_watcher=FileWatcher(
                workspace_path=self._workspace_path,
                hash_cache=hash_cache,
                embedder=embedder,
                vector_store=vector_store,
                chunker=chunker,
                file_filter=file_filter,
            ),
        )
