"""Code Index MCP Server.

Semantic code search over local workspaces using tree-sitter chunking,
embeddings, and Qdrant. Each workspace gets its own engine: an initial scan
followed by a file watcher that keeps the index current.

Tools:
- index_codebase: Scan a workspace and start watching it
- search_codebase: Search indexed code by natural language query
- get_index_status: Current indexing state and progress
- stop_watcher: Stop incremental indexing for a workspace
- clear_index: Delete the vector collection and hash cache for a workspace
"""

from __future__ import annotations

import contextlib
import logging
import sys
import typing
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from pathlib import Path

import mcp.server.fastmcp
import mcp.types

from code_index.paths import CONFIG_PATH
from code_index.schemas.indexing import IndexingStatus
from code_index.schemas.vectors import SearchHit
from code_index.services.manager import CodeIndexManager, WorkspaceRegistry

__all__ = [
    'ServerState',
    'main',
    'server',
]

logger = logging.getLogger(__name__)

type Context = mcp.server.fastmcp.Context[typing.Any, typing.Any, typing.Any]


@dataclass
class ServerState:
    """Container for all server state - initialized once at startup."""

    registry: WorkspaceRegistry

    async def manager_for(self, path: str | None) -> CodeIndexManager:
        """Registered manager for path (default: current directory), creating it on first use."""
        return await self.registry.get(_resolve_workspace(path))

    def existing_manager_for(self, path: str | None) -> CodeIndexManager:
        workspace = _resolve_workspace(path)
        manager = self.registry.get_existing(workspace)
        if manager is None:
            raise ValueError(f'Workspace not indexed: {workspace}. Use index_codebase first.')
        return manager

    async def close(self) -> None:
        await self.registry.close_all()


def register_tools(state: ServerState) -> None:
    """Register MCP tools with closure over server state."""

    @server.tool(
        annotations=mcp.types.ToolAnnotations(
            title='Index Codebase',
            destructiveHint=False,
            idempotentHint=True,
            readOnlyHint=False,
            openWorldHint=True,
        ),
    )
    async def index_codebase(
        path: str | None = None,
        reload_config: bool = False,
        force: bool = False,
        ctx: Context | None = None,
    ) -> IndexingStatus:
        """Index a workspace for semantic code search and keep it up to date.

        Runs an incremental scan (unchanged files are skipped using the hash
        cache), then starts a file watcher. An already indexed workspace is
        left alone unless force is set; calls while a scan is running are
        rejected.

        Args:
            path: Workspace directory. Defaults to the current working directory.
            reload_config: Re-read the config file before indexing. Rebuilds
                clients if the provider changed and clears the index if the
                vector dimension changed.
            force: Re-scan even if the workspace is already indexed.

        Returns:
            IndexingStatus after the scan (state, message, block counts).
        """
        if ctx is None:
            raise ValueError('MCP context required')

        manager = await state.manager_for(path)
        if reload_config:
            await manager.load_configuration()

        if manager.state != 'Indexed' or force:
            await ctx.info(f'Indexing workspace: {manager.workspace_path}')
            started = await manager.start_indexing()
            if not started:
                await ctx.warning(f'Indexing did not complete: {manager.current_status().message}')

        status = manager.current_status()
        await ctx.info(f'{status.system_status}: {status.message}')
        return _compact(status)

    @server.tool(
        annotations=mcp.types.ToolAnnotations(
            title='Search Codebase',
            destructiveHint=False,
            idempotentHint=True,
            readOnlyHint=True,
            openWorldHint=True,
        ),
    )
    async def search_codebase(
        query: str,
        path: str | None = None,
        limit: int = 10,
        ctx: Context | None = None,
    ) -> Sequence[SearchHit]:
        """Search indexed code by meaning.

        Available while the workspace is Indexed, or Indexing (partial results).

        Args:
            query: Natural language description of the code to find.
            path: Workspace directory. Defaults to the current working directory.
            limit: Maximum number of results to return (1-100).

        Returns:
            Code blocks ordered by similarity, highest first, with file path and line range.
        """
        if ctx is None:
            raise ValueError('MCP context required')

        manager = await state.manager_for(path)
        hits = await manager.search(query, limit)
        await ctx.info(f'Found {len(hits)} results in {manager.workspace_path}')
        return hits

    @server.tool(
        annotations=mcp.types.ToolAnnotations(
            title='Get Index Status',
            destructiveHint=False,
            idempotentHint=True,
            readOnlyHint=True,
            openWorldHint=False,
        ),
    )
    async def get_index_status(
        path: str | None = None,
        include_files: bool = False,
    ) -> IndexingStatus:
        """Get the indexing state of a workspace.

        Args:
            path: Workspace directory. Defaults to the current working directory.
            include_files: Include per-file statuses. Defaults to False to keep
                the response compact on large workspaces.

        Returns:
            Latest IndexingStatus snapshot.
        """
        status = state.existing_manager_for(path).current_status()
        return status if include_files else _compact(status)

    @server.tool(
        annotations=mcp.types.ToolAnnotations(
            title='Stop Watcher',
            destructiveHint=False,
            idempotentHint=True,
            readOnlyHint=False,
            openWorldHint=False,
        ),
    )
    async def stop_watcher(path: str | None = None) -> IndexingStatus:
        """Stop watching a workspace for file changes. The index is kept.

        Args:
            path: Workspace directory. Defaults to the current working directory.
        """
        manager = state.existing_manager_for(path)
        manager.stop_watcher()
        return _compact(manager.current_status())

    @server.tool(
        annotations=mcp.types.ToolAnnotations(
            title='Clear Index',
            destructiveHint=True,
            idempotentHint=True,
            readOnlyHint=False,
            openWorldHint=True,
        ),
    )
    async def clear_index(
        path: str | None = None,
        ctx: Context | None = None,
    ) -> IndexingStatus:
        """Delete all indexed data for a workspace.

        Stops the watcher, deletes the vector collection and empties the hash
        cache. The next index_codebase call re-indexes every file.

        Args:
            path: Workspace directory. Defaults to the current working directory.
        """
        if ctx is None:
            raise ValueError('MCP context required')

        manager = await state.manager_for(path)
        await manager.clear_index_data()
        await ctx.info(f'Cleared index for {manager.workspace_path}')
        return _compact(manager.current_status())


@contextlib.asynccontextmanager
async def lifespan(mcp_server: mcp.server.fastmcp.FastMCP) -> AsyncIterator[None]:
    """Manage server lifecycle - initialization before requests, cleanup after shutdown."""

    # Configure logging with timestamps to stderr
    logging.basicConfig(
        level=logging.DEBUG,
        format='%(asctime)s.%(msecs)03d [%(levelname)s] %(name)s: %(message)s',
        datefmt='%H:%M:%S',
        stream=sys.stderr,
    )
    # Silence noisy third-party loggers
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('httpcore').setLevel(logging.WARNING)
    logging.getLogger('watchfiles').setLevel(logging.WARNING)

    state = ServerState(registry=WorkspaceRegistry())
    register_tools(state)

    print('✓ Code Index MCP server initialized', file=sys.stderr)
    print(f'  Config: {CONFIG_PATH}', file=sys.stderr)

    # Server is ready - yield control back to FastMCP
    yield

    await state.close()
    print('✓ Code Index MCP server shutdown', file=sys.stderr)


server = mcp.server.fastmcp.FastMCP('code-index', lifespan=lifespan)


def main() -> None:
    """Entry point for the MCP server."""
    server.run()


def _resolve_workspace(path: str | None) -> Path:
    if path is None:
        return Path.cwd()
    if path == '**':
        raise ValueError("'**' is not supported. Specify a workspace directory.")
    return Path(path).expanduser().resolve()


def _compact(status: IndexingStatus) -> IndexingStatus:
    """Status without per-file entries."""
    return status.model_copy(update={'file_statuses': {}})


if __name__ == '__main__':
    main()
