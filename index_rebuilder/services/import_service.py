"""Bulk import of records into a freshly created index.

Two strategies:
- synchronous: read chunks in primary-key order and write each one,
  waiting for Meilisearch to index it before moving on
- queued: split the table into id ranges and dispatch one background job
  per range; ARQ workers run ``index_chunk`` for each of them
"""

import logging
from typing import Any, Callable, Optional, Protocol

from redis.exceptions import RedisError

from ..errors import IndexImportError
from ..schemas.rebuild import ImportMode, ImportPlan, IndexDescriptor
from .record_source import RecordSource
from .search_service import SEARCH_BACKEND_ERRORS, SearchBackend

logger = logging.getLogger(__name__)

# Name of the ARQ job function registered in worker.WorkerSettings
INDEX_CHUNK_JOB = "index_chunk"

ProgressCallback = Callable[[int, int], None]


class JobDispatcher(Protocol):
    async def dispatch(self, entity_type: str, first_id: Any, last_id: Any) -> None:
        ...


class ArqJobDispatcher:
    """Enqueue chunk jobs onto an ARQ queue."""

    def __init__(self, arq_redis, queue_name: str) -> None:
        self.arq_redis = arq_redis
        self.queue_name = queue_name

    async def dispatch(self, entity_type: str, first_id: Any, last_id: Any) -> None:
        await self.arq_redis.enqueue_job(
            INDEX_CHUNK_JOB,
            entity_type,
            first_id,
            last_id,
            _queue_name=self.queue_name,
        )


class InlineJobDispatcher:
    """Run chunk jobs immediately (the "sync" queue driver)."""

    def __init__(self, importer: "BulkImporter", resolve: Callable[[str], IndexDescriptor]) -> None:
        self.importer = importer
        self.resolve = resolve

    async def dispatch(self, entity_type: str, first_id: Any, last_id: Any) -> None:
        await self.importer.index_range(self.resolve(entity_type), first_id, last_id)


class BulkImporter:
    def __init__(
        self,
        backend: SearchBackend,
        record_source: RecordSource,
        dispatcher: Optional[JobDispatcher] = None,
    ) -> None:
        self.backend = backend
        self.record_source = record_source
        self.dispatcher = dispatcher

    async def import_synchronously(
        self,
        descriptor: IndexDescriptor,
        plan: ImportPlan,
        on_progress: Optional[ProgressCallback] = None,
    ) -> int:
        """Index every record chunk by chunk. Returns the number indexed."""
        if plan.mode is not ImportMode.SYNCHRONOUS:
            raise ValueError(f"Synchronous import got a {plan.mode.value} plan")

        indexed = 0
        async for batch in self.record_source.iter_chunks(descriptor, plan.chunk_size):
            try:
                await self.backend.add_documents(descriptor, batch)
            except SEARCH_BACKEND_ERRORS as exc:
                raise IndexImportError(
                    f"Failed to index {descriptor.entity_type} batch: {exc}"
                ) from exc

            indexed += len(batch)
            if on_progress is not None:
                on_progress(indexed, plan.total_records)

        return indexed

    async def dispatch(self, descriptor: IndexDescriptor, plan: ImportPlan) -> int:
        """Dispatch one background job per chunk. Returns the number of jobs."""
        if plan.mode is not ImportMode.QUEUED:
            raise ValueError(f"Queued import got a {plan.mode.value} plan")
        if self.dispatcher is None:
            raise IndexImportError("No job dispatcher configured for queued import")

        jobs = 0
        async for first_id, last_id in self.record_source.iter_id_ranges(
            descriptor, plan.chunk_size
        ):
            try:
                await self.dispatcher.dispatch(descriptor.entity_type, first_id, last_id)
            except RedisError as exc:
                raise IndexImportError(
                    f"Failed to dispatch {descriptor.entity_type} import job: {exc}"
                ) from exc
            jobs += 1

        logger.info("Dispatched %d import jobs for %s", jobs, descriptor.entity_type)
        return jobs

    async def index_range(self, descriptor: IndexDescriptor, first_id: Any, last_id: Any) -> int:
        """Index the records of one id range. Body of the background job."""
        documents = await self.record_source.fetch_range(descriptor, first_id, last_id)
        try:
            await self.backend.add_documents(descriptor, documents)
        except SEARCH_BACKEND_ERRORS as exc:
            raise IndexImportError(
                f"Failed to index {descriptor.entity_type} {first_id}..{last_id}: {exc}"
            ) from exc
        return len(documents)
