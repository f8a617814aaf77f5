"""Qdrant vector store for one workspace.

Thin wrapper around qdrant-client's AsyncQdrantClient. One collection per
workspace, named from a hash of the workspace path. Points carry the
normalized absolute file path in their payload; all per-file deletes filter
on that key, which has a keyword index.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

import pydantic
from qdrant_client import AsyncQdrantClient
from qdrant_client.http.exceptions import UnexpectedResponse
from qdrant_client.http.models import (
    Distance,
    FieldCondition,
    Filter,
    FilterSelector,
    MatchValue,
    PayloadSchemaType,
    PointStruct,
    VectorParams,
)

from code_index.clients import _retry
from code_index.paths import collection_name_for
from code_index.schemas.vectors import SearchHit, VectorPayload, VectorRecord, normalize_file_path

__all__ = [
    'QdrantVectorStore',
]

logger = logging.getLogger(__name__)

FILE_PATH_KEY = 'file_path'


class QdrantVectorStore:
    """Async Qdrant store bound to a single workspace collection."""

    DEFAULT_URL = 'http://localhost:6333'
    DEFAULT_TIMEOUT = 10

    def __init__(
        self,
        workspace_path: str | Path,
        vector_size: int,
        *,
        url: str | None = DEFAULT_URL,
        api_key: str | None = None,
        timeout: int = DEFAULT_TIMEOUT,
        collection_name: str | None = None,
        location: str | None = None,
    ) -> None:
        """Initialize store.

        Args:
            workspace_path: Workspace root. Relative paths resolve against it.
            vector_size: Embedding dimension of the configured model.
            url: Qdrant server URL.
            api_key: Qdrant API key, for hosted clusters.
            timeout: HTTP timeout in seconds.
            collection_name: Override the hash-derived collection name.
            location: Local qdrant-client storage (':memory:' or a path) instead
                of a server. url and api_key are ignored when set.
        """
        self._workspace_path = str(workspace_path)
        self._vector_size = vector_size
        self.collection_name = collection_name or collection_name_for(workspace_path)
        if location is not None:
            self._client = AsyncQdrantClient(location=location)
        else:
            self._client = AsyncQdrantClient(url=url or self.DEFAULT_URL, api_key=api_key, timeout=timeout)

    @_retry.qdrant_retry('initialize')
    async def initialize(self) -> bool:
        """Ensure the collection exists with the right vector size.

        A collection created for a different dimension is dropped and
        recreated: its vectors can't be queried with the current model.

        Returns:
            True if a new collection was created.
        """
        created = False
        if await self._client.collection_exists(self.collection_name):
            existing_size = await self._existing_vector_size()
            if existing_size is not None and existing_size != self._vector_size:
                logger.warning(
                    f'[QDRANT] Collection {self.collection_name} has dimension {existing_size}, '
                    f'expected {self._vector_size}. Recreating.'
                )
                await self._client.delete_collection(self.collection_name)
                created = await self._create_collection()
        else:
            created = await self._create_collection()

        await self._ensure_file_path_index()
        return created

    @_retry.qdrant_retry('upsert')
    async def upsert_points(self, records: Sequence[VectorRecord]) -> None:
        """Insert or replace points. Waits until the write is applied."""
        if not records:
            return
        await self._client.upsert(
            collection_name=self.collection_name,
            points=[
                PointStruct(
                    id=str(record.id),
                    vector=list(record.vector),
                    payload=record.payload.model_dump(),
                )
                for record in records
            ],
            wait=True,
        )

    @_retry.qdrant_retry('search')
    async def search(self, query_vector: Sequence[float], limit: int = 10) -> Sequence[SearchHit]:
        """Nearest neighbours by cosine similarity, highest score first.

        Points whose payload doesn't match VectorPayload are dropped.
        """
        response = await self._client.query_points(
            collection_name=self.collection_name,
            query=list(query_vector),
            limit=limit,
            with_payload=True,
        )

        hits: list[SearchHit] = []
        for point in response.points:
            try:
                payload = VectorPayload.model_validate(point.payload)
            except pydantic.ValidationError:
                logger.debug(f'[QDRANT] Skipping point {point.id} with invalid payload')
                continue
            hits.append(
                SearchHit(
                    id=str(point.id),
                    score=point.score,
                    file_path=payload.file_path,
                    start_line=payload.start_line,
                    end_line=payload.end_line,
                    code_chunk=payload.code_chunk,
                )
            )
        return hits

    async def delete_points_by_file_path(self, file_path: str) -> None:
        await self.delete_points_by_file_paths([file_path])

    @_retry.qdrant_retry('delete')
    async def delete_points_by_file_paths(self, file_paths: Sequence[str]) -> None:
        """Delete every point belonging to any of the given files."""
        if not file_paths:
            return
        normalized = sorted({normalize_file_path(self._workspace_path, p) for p in file_paths})
        await self._client.delete(
            collection_name=self.collection_name,
            points_selector=FilterSelector(
                filter=Filter(
                    should=[FieldCondition(key=FILE_PATH_KEY, match=MatchValue(value=p)) for p in normalized]
                )
            ),
            wait=True,
        )

    @_retry.qdrant_retry('clear')
    async def clear_collection(self) -> None:
        """Delete all points, keeping the collection and its schema."""
        await self._client.delete(
            collection_name=self.collection_name,
            points_selector=FilterSelector(filter=Filter(must=[])),
            wait=True,
        )

    async def delete_collection(self) -> None:
        """Drop the collection if it exists."""
        if await self.collection_exists():
            await self._client.delete_collection(self.collection_name)
            logger.info(f'[QDRANT] Collection {self.collection_name} deleted')
        else:
            logger.info(f'[QDRANT] Collection {self.collection_name} does not exist, skipping deletion')

    async def collection_exists(self) -> bool:
        return await self._client.collection_exists(self.collection_name)

    async def count(self) -> int:
        """Total points in the collection (0 if missing)."""
        if not await self.collection_exists():
            return 0
        info = await self._client.get_collection(self.collection_name)
        return info.points_count or 0

    async def close(self) -> None:
        await self._client.close()

    async def _create_collection(self) -> bool:
        """Create the collection. False if another process created it first."""
        try:
            await self._client.create_collection(
                collection_name=self.collection_name,
                vectors_config=VectorParams(size=self._vector_size, distance=Distance.COSINE),
            )
        except UnexpectedResponse as e:
            if not _retry.is_already_exists_error(e):
                raise
            logger.info(f'[QDRANT] Collection {self.collection_name} was created concurrently')
            return False
        logger.info(f'[QDRANT] Created collection {self.collection_name} (dimension {self._vector_size})')
        return True

    async def _existing_vector_size(self) -> int | None:
        info = await self._client.get_collection(self.collection_name)
        vectors_config = info.config.params.vectors
        if isinstance(vectors_config, VectorParams):
            return vectors_config.size
        return None

    async def _ensure_file_path_index(self) -> None:
        """Create keyword index on file_path if not exists (idempotent)."""
        info = await self._client.get_collection(self.collection_name)
        payload_schema = getattr(info, 'payload_schema', {}) or {}
        if FILE_PATH_KEY in payload_schema:
            return

        try:
            await self._client.create_payload_index(
                collection_name=self.collection_name,
                field_name=FILE_PATH_KEY,
                field_schema=PayloadSchemaType.KEYWORD,
            )
        except UnexpectedResponse as e:
            if not _retry.is_already_exists_error(e):
                raise
            return
        logger.debug('[QDRANT] Created file_path keyword index')
