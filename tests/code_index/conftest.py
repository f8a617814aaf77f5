"""Shared fixtures for code index tests: a temp workspace wired to in-memory fakes."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from pathlib import Path

import pytest
import tenacity

from code_index.repositories.hash_cache import HashCache
from code_index.services.chunking import CodeChunker
from code_index.services.ignore import FileFilter
from code_index.services.scanner import DirectoryScanner
from tests.code_index.fakes import FakeEmbedder, InMemoryVectorStore


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    path = tmp_path / 'workspace'
    path.mkdir()
    return path.resolve()


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    return tmp_path / 'cache'


@pytest.fixture
async def hash_cache(workspace: Path, cache_dir: Path) -> AsyncGenerator[HashCache]:
    cache = HashCache.for_workspace(workspace, cache_dir, debounce_seconds=0.01)
    await cache.initialize()
    yield cache
    await cache.flush()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def vector_store() -> InMemoryVectorStore:
    return InMemoryVectorStore()


@pytest.fixture
def chunker() -> CodeChunker:
    return CodeChunker()


@pytest.fixture
def file_filter(workspace: Path) -> FileFilter:
    return FileFilter(workspace)


@pytest.fixture
def scanner(
    embedder: FakeEmbedder,
    vector_store: InMemoryVectorStore,
    chunker: CodeChunker,
    hash_cache: HashCache,
    file_filter: FileFilter,
) -> DirectoryScanner:
    return DirectoryScanner(
        embedder=embedder,
        vector_store=vector_store,
        chunker=chunker,
        hash_cache=hash_cache,
        file_filter=file_filter,
        retry_wait=tenacity.wait_none(),
    )


@pytest.fixture
def write_file(workspace: Path) -> Callable[[str, str], Path]:
    def write(relative: str, content: str) -> Path:
        path = workspace / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        return path

    return write
