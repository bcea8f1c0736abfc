"""Meilisearch access for the index rebuild.

Provides:
- Client construction from settings
- Liveness probe gating destructive work
- Index existence check, deletion and creation with per-entity settings
- Batch document writes that wait for Meilisearch to finish indexing
"""

import logging
from typing import Optional

import httpx
from meilisearch_python_sdk import AsyncClient
from meilisearch_python_sdk.errors import MeilisearchApiError, MeilisearchError

from ..config import Settings, settings
from ..errors import ConnectivityError, IndexImportError
from ..schemas.rebuild import IndexDescriptor

logger = logging.getLogger(__name__)

# Errors the Meilisearch client can surface for a failed request
SEARCH_BACKEND_ERRORS = (MeilisearchError, httpx.HTTPError)

INDEX_NOT_FOUND_CODE = "index_not_found"


def create_meili_client(config: Optional[Settings] = None) -> AsyncClient:
    """Build a Meilisearch client from settings."""
    config = config or settings

    if not config.meilisearch_api_key:
        logger.warning(
            "meilisearch_api_key is empty -- Meilisearch is unauthenticated. "
            "Set MEILISEARCH_API_KEY in production."
        )

    return AsyncClient(
        url=config.meilisearch_url,
        api_key=config.meilisearch_api_key,
        timeout=config.meilisearch_timeout,
    )


def _is_index_not_found(exc: MeilisearchApiError) -> bool:
    return getattr(exc, "code", None) == INDEX_NOT_FOUND_CODE or getattr(exc, "status_code", None) == 404


class SearchBackend:
    """Thin wrapper over the Meilisearch client used by the rebuild steps.

    Methods let client errors propagate; callers decide whether a failure is
    fatal and wrap it in the matching error kind.
    """

    def __init__(self, client: AsyncClient, task_timeout_ms: int = 60_000) -> None:
        self.client = client
        self.task_timeout_ms = task_timeout_ms

    async def health(self) -> None:
        await self.client.health()

    async def index_exists(self, index_name: str) -> bool:
        try:
            await self.client.get_index(index_name)
        except MeilisearchApiError as exc:
            if _is_index_not_found(exc):
                return False
            raise
        return True

    async def delete_index(self, index_name: str) -> None:
        await self.client.delete_index_if_exists(index_name)

    async def create_index(self, descriptor: IndexDescriptor) -> None:
        """Create an index and configure it BEFORE any documents are added."""
        index = await self.client.create_index(
            descriptor.index_name, primary_key=descriptor.primary_key
        )

        if descriptor.filterable_attributes:
            task_info = await index.update_filterable_attributes(
                list(descriptor.filterable_attributes)
            )
            await self._wait(task_info.task_uid)

        if descriptor.sortable_attributes:
            task_info = await index.update_sortable_attributes(
                list(descriptor.sortable_attributes)
            )
            await self._wait(task_info.task_uid)

    async def add_documents(self, descriptor: IndexDescriptor, documents: list[dict]) -> None:
        """Write one batch and wait until Meilisearch reports it indexed."""
        if not documents:
            return
        index = self.client.index(descriptor.index_name)
        task_info = await index.add_documents(documents, primary_key=descriptor.primary_key)
        result = await self._wait(task_info.task_uid)

        if getattr(result, "status", None) == "failed":
            raise IndexImportError(
                f"Meilisearch rejected batch for {descriptor.index_name}: {result.error}"
            )

    async def close(self) -> None:
        await self.client.aclose()

    async def _wait(self, task_uid: int):
        return await self.client.wait_for_task(task_uid, timeout_in_ms=self.task_timeout_ms)


def create_search_backend(config: Optional[Settings] = None) -> SearchBackend:
    config = config or settings
    return SearchBackend(create_meili_client(config), config.meilisearch_task_timeout_ms)


class ConnectivityProber:
    """Verify Meilisearch is reachable before anything is dropped."""

    def __init__(self, backend: SearchBackend) -> None:
        self.backend = backend

    async def probe(self) -> Optional[ConnectivityError]:
        try:
            await self.backend.health()
        except SEARCH_BACKEND_ERRORS as exc:
            logger.error("Meilisearch connection failed: %s", exc)
            return ConnectivityError(f"Meilisearch connection failed: {exc}")

        logger.info("Meilisearch connection successful")
        return None
