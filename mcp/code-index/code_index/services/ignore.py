"""File selection rules for indexing.

Which files get indexed: inside the workspace, not ignored by version control
or the project's .codeindexignore, not under a well-known generated directory,
and with a supported extension.

Enumeration prefers `git ls-files` (respects nested .gitignore files and global
excludes); outside a git repository it walks the tree and applies the root
.gitignore with pathspec.
"""

from __future__ import annotations

import functools
import logging
import os
import subprocess
from collections.abc import Sequence, Set
from pathlib import Path

import git
import pathspec

from code_index.schemas.blocks import is_supported_file

__all__ = [
    'DEFAULT_IGNORED_DIRS',
    'IGNORE_FILE_NAME',
    'FileFilter',
]

logger = logging.getLogger(__name__)

IGNORE_FILE_NAME = '.codeindexignore'

DEFAULT_IGNORED_DIRS: Set[str] = frozenset(
    {
        '.git',
        '.hg',
        '.svn',
        'node_modules',
        '__pycache__',
        '.venv',
        'venv',
        '.tox',
        '.mypy_cache',
        '.pytest_cache',
        '.ruff_cache',
        'dist',
        'build',
        'target',
        '.next',
    }
)


class FileFilter:
    """Ignore rules for one workspace."""

    def __init__(self, workspace_path: str | Path) -> None:
        self._workspace = Path(workspace_path).resolve()
        self._spec = self._load_spec()

    @property
    def workspace_path(self) -> Path:
        return self._workspace

    def reload(self) -> None:
        """Re-read .gitignore and .codeindexignore."""
        self._spec = self._load_spec()

    def is_ignored(self, file_path: str | Path) -> bool:
        """True if the path is outside the workspace or matched by an ignore rule."""
        path = Path(file_path)
        if not path.is_absolute():
            path = self._workspace / path
        try:
            relative = Path(os.path.normpath(path)).relative_to(self._workspace)
        except ValueError:
            return True
        if any(part in DEFAULT_IGNORED_DIRS for part in relative.parts[:-1]):
            return True
        return self._spec.match_file(relative.as_posix())

    def should_index(self, file_path: str | Path) -> bool:
        """Supported extension and not ignored."""
        return is_supported_file(file_path) and not self.is_ignored(file_path)

    def list_files(self, directory: str | Path | None = None) -> Sequence[Path]:
        """Absolute paths of every indexable file under directory (default: workspace).

        Blocking: runs git or walks the tree. Call through asyncio.to_thread.
        """
        root = Path(directory).resolve() if directory is not None else self._workspace
        if _find_git_root(str(root)) is not None:
            candidates = _git_ls_files(root)
        else:
            candidates = self._walk(root)
        files = [path for path in candidates if self.should_index(path)]
        logger.debug(f'[SCAN] {len(files)} indexable files under {root}')
        return files

    def _walk(self, root: Path) -> list[Path]:
        files: list[Path] = []
        for dirpath, dirnames, filenames in os.walk(root):
            current = Path(dirpath)
            # Prune ignored directories in place so os.walk skips them
            dirnames[:] = [
                name
                for name in dirnames
                if name not in DEFAULT_IGNORED_DIRS and not self._is_ignored_dir(current / name)
            ]
            files.extend(current / name for name in filenames)
        return files

    def _is_ignored_dir(self, path: Path) -> bool:
        try:
            relative = path.relative_to(self._workspace)
        except ValueError:
            return False
        return self._spec.match_file(relative.as_posix() + '/')

    def _load_spec(self) -> pathspec.PathSpec:
        lines: list[str] = []
        for name in ('.gitignore', IGNORE_FILE_NAME):
            ignore_path = self._workspace / name
            if ignore_path.is_file():
                try:
                    lines.extend(ignore_path.read_text(encoding='utf-8').splitlines())
                except (OSError, UnicodeDecodeError) as e:
                    logger.warning(f'[SCAN] Could not read {ignore_path}: {e}')
        return pathspec.GitIgnoreSpec.from_lines(lines)


def _git_ls_files(directory: Path) -> list[Path]:
    """Tracked and untracked-but-not-ignored files under directory."""
    result = subprocess.run(
        ['git', 'ls-files', '--cached', '--others', '--exclude-standard'],
        capture_output=True,
        text=True,
        cwd=directory,
        timeout=30,
    )
    if result.returncode != 0:
        raise RuntimeError(f'git ls-files failed: {result.stderr}')

    files = []
    for line in result.stdout.splitlines():
        file_path = (directory / line).resolve()
        # git ls-files lists deleted-but-tracked files too
        if file_path.is_relative_to(directory) and file_path.is_file():
            files.append(file_path)
    return files


@functools.lru_cache(maxsize=128)
def _find_git_root(directory: str) -> str | None:
    """Find the git root directory containing this path. Cached."""
    try:
        repo = git.Repo(directory, search_parent_directories=True)
        return str(repo.working_dir)
    except (git.InvalidGitRepositoryError, git.NoSuchPathError):
        return None
