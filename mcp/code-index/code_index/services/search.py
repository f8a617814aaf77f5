"""Search service - semantic lookup over the code index."""

from __future__ import annotations

import logging

from code_index.clients.protocols import Embedder, VectorStore
from code_index.schemas.vectors import SearchHit, SearchRequest
from code_index.services.configuration import ConfigManager, IndexNotConfiguredError
from code_index.services.state import IndexStateMachine

__all__ = [
    'IndexNotReadyError',
    'SearchService',
]

logger = logging.getLogger(__name__)


class IndexNotReadyError(RuntimeError):
    """The index is not in a queryable state (Indexed or Indexing)."""


class SearchService:
    """Embeds a query and returns the nearest code blocks."""

    def __init__(
        self,
        *,
        config_manager: ConfigManager,
        state_machine: IndexStateMachine,
        embedder: Embedder,
        vector_store: VectorStore,
    ) -> None:
        self._config_manager = config_manager
        self._state_machine = state_machine
        self._embedder = embedder
        self._vector_store = vector_store

    async def search(self, query: str, limit: int = 10) -> list[SearchHit]:
        """Top-limit blocks by similarity, highest first.

        Searching while Indexing is allowed; results are partial.

        Raises:
            pydantic.ValidationError: Empty query or limit outside 1..100.
            IndexNotConfiguredError: Feature disabled or not configured.
            IndexNotReadyError: State is Standby or Error.
        """
        request = SearchRequest(query=query, limit=limit)

        if not self._config_manager.is_feature_enabled or not self._config_manager.is_feature_configured:
            raise IndexNotConfiguredError('Code index feature is disabled or not configured.')

        state = self._state_machine.state
        if state not in ('Indexed', 'Indexing'):
            raise IndexNotReadyError(f'Code index is not ready for search. Current state: {state}')

        try:
            response = await self._embedder.create_embeddings([request.query])
            vector = response.embeddings[0] if response.embeddings else None
            if vector is None:
                raise RuntimeError('Failed to generate embedding for query.')
            hits = list(await self._vector_store.search(vector, request.limit))
        except Exception as e:
            logger.error(f'[SEARCH] Error during search: {type(e).__name__}: {e}')
            self._state_machine.set_system_state('Error', f'Search failed: {e}')
            raise

        logger.debug(f'[SEARCH] {len(hits)} results for {request.query!r}')
        return hits
