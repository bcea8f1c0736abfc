"""Drive index rebuilds across one or all entity types.

Entities are rebuilt strictly one after another, in catalog order, so only
the index currently being rebuilt is unsearchable. A full rebuild stops at
the first failed entity.
"""

import logging
import time
from typing import Callable, Optional

from ..errors import CountError, LockError, UnknownEntityError
from ..schemas.rebuild import DryRunEntry, IndexDescriptor, RebuildOutcome, RunReport
from .index_catalog import IndexCatalog
from .rebuild_lock import RebuildLock
from .rebuild_pipeline import RebuildPipeline
from .record_source import RecordSource
from .search_service import ConnectivityProber

logger = logging.getLogger(__name__)

PipelineFactory = Callable[[IndexDescriptor], RebuildPipeline]
ConfirmAll = Callable[[int], bool]
ConfirmOne = Callable[[IndexDescriptor, int], bool]


class RebuildOrchestrator:
    def __init__(
        self,
        catalog: IndexCatalog,
        prober: ConnectivityProber,
        pipeline_factory: PipelineFactory,
        record_source: RecordSource,
        lock: Optional[RebuildLock] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.catalog = catalog
        self.prober = prober
        self.pipeline_factory = pipeline_factory
        self.record_source = record_source
        self.lock = lock
        self.clock = clock

    # ---- Counting ----

    async def count_records(self, descriptor: IndexDescriptor) -> int:
        """Record count for one entity, 0 when it cannot be read."""
        try:
            return await self.record_source.count(descriptor)
        except CountError as exc:
            logger.warning("%s", exc)
            return 0

    async def total_record_count(self) -> int:
        total = 0
        for descriptor in self.catalog:
            total += await self.count_records(descriptor)
        return total

    # ---- Modes ----

    async def rebuild_all(self, confirm: Optional[ConfirmAll] = None) -> RunReport:
        """Rebuild every index in catalog order, stopping at the first failure."""
        started_at = self.clock()

        error = await self.prober.probe()
        if error is not None:
            return RunReport(succeeded=False, error=error.message)

        total = await self.total_record_count()
        logger.info("Total records to re-index: %d", total)

        if confirm is not None and not confirm(total):
            logger.info("Operation cancelled.")
            return RunReport(succeeded=True, total_records=total, cancelled=True)

        outcomes: list[RebuildOutcome] = []
        count = len(self.catalog)

        for position, descriptor in enumerate(self.catalog, start=1):
            logger.info("[%d/%d] Rebuilding %s (index: %s)", position, count, descriptor.entity_type, descriptor.index_name)
            outcome = await self._run_pipeline(descriptor)
            outcomes.append(outcome)

            if not outcome.succeeded:
                logger.error("Failed to rebuild %s. Stopping.", descriptor.entity_type)
                return RunReport(
                    succeeded=False,
                    outcomes=outcomes,
                    duration=self.clock() - started_at,
                    total_records=total,
                    error=f"Failed to rebuild {descriptor.entity_type}: {outcome.failure_reason}",
                )

        duration = self.clock() - started_at
        logger.info("All indexes rebuilt successfully in %.1fs", duration)
        return RunReport(succeeded=True, outcomes=outcomes, duration=duration, total_records=total)

    async def rebuild_entity(self, name: str, confirm: Optional[ConfirmOne] = None) -> RunReport:
        """Rebuild the index of a single entity selected by short name."""
        try:
            descriptor = self.catalog.find_by_short_name(name)
        except UnknownEntityError as exc:
            logger.error("%s", exc)
            return RunReport(succeeded=False, error=exc.message)

        started_at = self.clock()

        error = await self.prober.probe()
        if error is not None:
            return RunReport(succeeded=False, error=error.message)

        record_count = await self.count_records(descriptor)
        logger.info("Rebuilding %s (index: %s, records: %d)", descriptor.entity_type, descriptor.index_name, record_count)

        if confirm is not None and not confirm(descriptor, record_count):
            logger.info("Operation cancelled.")
            return RunReport(succeeded=True, total_records=record_count, cancelled=True)

        outcome = await self._run_pipeline(descriptor)
        duration = self.clock() - started_at

        if outcome.succeeded:
            logger.info("%s rebuilt successfully in %.1fs", descriptor.entity_type, duration)
            return RunReport(succeeded=True, outcomes=[outcome], duration=duration, total_records=record_count)

        logger.error("Failed to rebuild %s", descriptor.entity_type)
        return RunReport(
            succeeded=False,
            outcomes=[outcome],
            duration=duration,
            total_records=record_count,
            error=f"Failed to rebuild {descriptor.entity_type}: {outcome.failure_reason}",
        )

    async def dry_run(self, name: Optional[str] = None) -> RunReport:
        """Report what would be rebuilt without touching any index."""
        if name is None:
            selected = list(self.catalog)
        else:
            try:
                selected = [self.catalog.find_by_short_name(name)]
            except UnknownEntityError as exc:
                logger.error("%s", exc)
                return RunReport(succeeded=False, error=exc.message)

        planned = [
            DryRunEntry(
                entity_type=descriptor.entity_type,
                index_name=descriptor.index_name,
                record_count=await self.count_records(descriptor),
            )
            for descriptor in selected
        ]

        for entry in planned:
            logger.info("DRY RUN: %s -> %s (%d records)", entry.entity_type, entry.index_name, entry.record_count)

        return RunReport(
            succeeded=True,
            planned=planned,
            total_records=sum(entry.record_count for entry in planned),
        )

    # ---- Helpers ----

    async def _run_pipeline(self, descriptor: IndexDescriptor) -> RebuildOutcome:
        pipeline = self.pipeline_factory(descriptor)
        if self.lock is None:
            return await pipeline.run()

        try:
            async with self.lock.hold(descriptor.entity_type):
                return await pipeline.run()
        except LockError as exc:
            logger.error("%s", exc)
            return RebuildOutcome(
                entity_type=descriptor.entity_type,
                succeeded=False,
                records_processed=0,
                duration=0.0,
                failure_reason=exc.message,
            )
