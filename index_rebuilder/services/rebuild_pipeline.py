"""Drop, recreate and reimport the index of one entity type.

States: Idle -> Dropping -> Migrating -> Importing -> Succeeded, with
Failed reachable from Migrating and Importing. Each step returns an error
value instead of raising; whether that error ends the pipeline is decided
from FATAL_ERROR_KINDS alone. A failed drop is tolerated because the
migration step recreates any index that is missing.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from ..errors import (
    CountError,
    DropError,
    ErrorKind,
    IndexImportError,
    MigrationError,
    QueueInspectionError,
    RebuildError,
)
from ..schemas.rebuild import (
    ImportMode,
    ImportPlan,
    IndexDescriptor,
    PipelineState,
    RebuildOutcome,
    TERMINAL_STATES,
    WaitResult,
)
from .import_service import BulkImporter
from .queue_waiter import DEFAULT_MAX_WAIT, QueueCompletionWaiter
from .record_source import RecordSource
from .schema_migrator import SchemaMigrator
from .search_service import SEARCH_BACKEND_ERRORS, SearchBackend

logger = logging.getLogger(__name__)

FATAL_ERROR_KINDS = frozenset({ErrorKind.MIGRATION, ErrorKind.IMPORT})

DEFAULT_CHUNK_SIZE = 500


@dataclass(frozen=True)
class PipelineOptions:
    chunk_size: int = DEFAULT_CHUNK_SIZE
    mode: ImportMode = ImportMode.QUEUED
    wait: bool = False
    queue_name: str = "arq:queue"
    max_wait: float = DEFAULT_MAX_WAIT

    def __post_init__(self) -> None:
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")


class RebuildPipeline:
    """Single-use state machine for one entity's rebuild."""

    def __init__(
        self,
        descriptor: IndexDescriptor,
        backend: SearchBackend,
        migrator: SchemaMigrator,
        record_source: RecordSource,
        importer: BulkImporter,
        waiter: Optional[QueueCompletionWaiter] = None,
        options: Optional[PipelineOptions] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.descriptor = descriptor
        self.backend = backend
        self.migrator = migrator
        self.record_source = record_source
        self.importer = importer
        self.waiter = waiter
        self.options = options or PipelineOptions()
        self.clock = clock

        if self.options.wait and self.options.mode is ImportMode.QUEUED and waiter is None:
            raise ValueError("Waiting on the queue requires a QueueCompletionWaiter")

        self.state = PipelineState.IDLE
        self.history: list[PipelineState] = [PipelineState.IDLE]
        self.records_processed = 0
        self.wait_result: Optional[WaitResult] = None

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    def _transition(self, state: PipelineState) -> None:
        self.state = state
        self.history.append(state)

    async def run(self) -> RebuildOutcome:
        if self.finished:
            raise RuntimeError(f"Pipeline for {self.descriptor.entity_type} already ran")
        if self.state is not PipelineState.IDLE:
            raise RuntimeError(f"Pipeline for {self.descriptor.entity_type} is already running")

        started_at = self.clock()
        steps = (
            (PipelineState.DROPPING, "1/3", self._drop),
            (PipelineState.MIGRATING, "2/3", self._migrate),
            (PipelineState.IMPORTING, "3/3", self._import),
        )

        try:
            for state, label, step in steps:
                self._transition(state)
                logger.info("  [%s] %s %s", label, state.value.capitalize(), self.descriptor.index_name)
                error = await step()
                if error is None:
                    continue
                if error.kind in FATAL_ERROR_KINDS:
                    logger.error("    %s", error)
                    return self._finish(started_at, failure=error.message)
                logger.warning("    %s -- continuing", error)
        except Exception as exc:
            logger.error("    Unexpected error rebuilding %s: %s", self.descriptor.entity_type, exc, exc_info=True)
            return self._finish(started_at, failure=f"Unexpected error: {exc}")

        return self._finish(started_at)

    def _finish(self, started_at: float, failure: Optional[str] = None) -> RebuildOutcome:
        self._transition(PipelineState.FAILED if failure else PipelineState.SUCCEEDED)
        return RebuildOutcome(
            entity_type=self.descriptor.entity_type,
            succeeded=failure is None,
            records_processed=self.records_processed,
            duration=self.clock() - started_at,
            failure_reason=failure,
            wait_result=self.wait_result,
        )

    # ---- Steps ----

    async def _drop(self) -> Optional[RebuildError]:
        index_name = self.descriptor.index_name
        try:
            exists = await self.backend.index_exists(index_name)
        except SEARCH_BACKEND_ERRORS as exc:
            return DropError(f"Could not check index existence: {exc}")

        if not exists:
            logger.info("    Index does not exist (will be created)")
            return None

        try:
            await self.backend.delete_index(index_name)
        except SEARCH_BACKEND_ERRORS as exc:
            return DropError(f"Failed to delete index: {exc}")

        logger.info("    Index dropped")
        return None

    async def _migrate(self) -> Optional[RebuildError]:
        try:
            await self.migrator.migrate()
        except MigrationError as exc:
            return MigrationError(f"Migration failed: {exc}")

        logger.info("    Migration completed")
        return None

    async def _import(self) -> Optional[RebuildError]:
        try:
            total = await self.record_source.count(self.descriptor)
        except CountError as exc:
            logger.warning("    %s", exc)
            total = 0

        if total == 0:
            logger.info("    No records to import")
            return None

        plan = ImportPlan(total_records=total, chunk_size=self.options.chunk_size, mode=self.options.mode)

        try:
            if plan.mode is ImportMode.SYNCHRONOUS:
                self.records_processed = await self.importer.import_synchronously(
                    self.descriptor, plan, on_progress=self._report_progress
                )
                logger.info("    Imported %d records", self.records_processed)
            else:
                await self._import_queued(plan)
        except IndexImportError as exc:
            return IndexImportError(f"Import failed: {exc}")

        return None

    async def _import_queued(self, plan: ImportPlan) -> None:
        queue_name = self.options.queue_name
        baseline: Optional[int] = None

        if self.options.wait:
            try:
                baseline = (await self.waiter.snapshot(queue_name)).pending_count
            except QueueInspectionError as exc:
                logger.warning("    Could not read queue baseline, not waiting: %s", exc)
                self.wait_result = WaitResult.ABORTED

        jobs = await self.importer.dispatch(self.descriptor, plan)
        self.records_processed = plan.total_records
        logger.info(
            "    Queued %d jobs for %d records (chunk size %d)",
            jobs, plan.total_records, plan.chunk_size,
        )

        if baseline is None:
            return

        self.wait_result = await self.waiter.wait(
            queue_name, baseline, plan.expected_job_count, self.options.max_wait
        )
        if self.wait_result is WaitResult.COMPLETED:
            logger.info("    Queued import drained")
        else:
            logger.warning("    Queued import not confirmed (%s), moving on", self.wait_result.value)

    def _report_progress(self, indexed: int, total: int) -> None:
        percent = min(100, int(indexed * 100 / total)) if total else 100
        logger.info("    Indexed %d/%d (%d%%)", indexed, total, percent)
