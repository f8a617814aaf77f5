"""Domain services for code indexing."""

from __future__ import annotations

from code_index.services.chunking import CodeChunker
from code_index.services.configuration import ConfigManager, ConfigurationChange, IndexNotConfiguredError
from code_index.services.factory import IndexServices, ServiceFactory
from code_index.services.ignore import FileFilter
from code_index.services.manager import CodeIndexManager, WorkspaceRegistry
from code_index.services.orchestrator import IndexOrchestrator
from code_index.services.scanner import BatchProcessingError, DirectoryScanner
from code_index.services.search import IndexNotReadyError, SearchService
from code_index.services.state import IndexStateMachine
from code_index.services.watcher import FileWatcher

__all__ = [
    'BatchProcessingError',
    'CodeChunker',
    'CodeIndexManager',
    'ConfigManager',
    'ConfigurationChange',
    'DirectoryScanner',
    'FileFilter',
    'FileWatcher',
    'IndexNotConfiguredError',
    'IndexNotReadyError',
    'IndexOrchestrator',
    'IndexServices',
    'IndexStateMachine',
    'SearchService',
    'ServiceFactory',
    'WorkspaceRegistry',
]
