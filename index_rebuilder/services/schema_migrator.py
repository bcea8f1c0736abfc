"""Recreate missing search indexes.

Walks the whole catalog, so after one entity's index was dropped only that
index is actually created; indexes that still exist are left untouched.
"""

import logging

from ..errors import MigrationError
from .index_catalog import IndexCatalog
from .search_service import SEARCH_BACKEND_ERRORS, SearchBackend

logger = logging.getLogger(__name__)


class SchemaMigrator:
    def __init__(self, catalog: IndexCatalog, backend: SearchBackend) -> None:
        self.catalog = catalog
        self.backend = backend

    async def migrate(self) -> list[str]:
        """Create every catalog index that does not exist. Returns created names."""
        created: list[str] = []

        for descriptor in self.catalog:
            try:
                if await self.backend.index_exists(descriptor.index_name):
                    continue
                await self.backend.create_index(descriptor)
            except SEARCH_BACKEND_ERRORS as exc:
                raise MigrationError(
                    f"Could not create index {descriptor.index_name}: {exc}"
                ) from exc

            logger.info("Created index %s", descriptor.index_name)
            created.append(descriptor.index_name)

        return created
