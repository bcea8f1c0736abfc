"""Wire the rebuild collaborators together for one invocation."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from arq.connections import ArqRedis, create_pool
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncEngine

from .config import Settings
from .database import create_engine_from_settings, create_session_maker
from .errors import ConnectivityError
from .schemas.rebuild import ImportMode, IndexDescriptor
from .services.import_service import ArqJobDispatcher, BulkImporter, InlineJobDispatcher
from .services.index_catalog import IndexCatalog, build_default_catalog
from .services.orchestrator import RebuildOrchestrator
from .services.queue_inspector import (
    QueueDepthInspector,
    UnsupportedQueueInspector,
    build_queue_inspector,
)
from .services.queue_waiter import QueueCompletionWaiter
from .services.rebuild_lock import RebuildLock
from .services.rebuild_pipeline import PipelineOptions, RebuildPipeline
from .services.record_source import RecordSource
from .services.schema_migrator import SchemaMigrator
from .services.search_service import ConnectivityProber, create_search_backend
from .worker import parse_redis_url

logger = logging.getLogger(__name__)


def _driver(config: Settings) -> str:
    return config.queue_driver.strip().lower()


def _import_needs_redis(config: Settings, options: PipelineOptions) -> bool:
    """Queued imports dispatch through ARQ unless the sync driver runs them inline."""
    return options.mode is ImportMode.QUEUED and _driver(config) != "sync"


async def _connect_redis(config: Settings) -> ArqRedis:
    try:
        return await create_pool(
            parse_redis_url(config.redis_url, conn_timeout=config.redis_socket_timeout)
        )
    except (RedisError, OSError) as exc:
        raise ConnectivityError(f"Redis connection failed: {exc}") from exc


def _build_inspector(
    config: Settings, engine: AsyncEngine, arq_redis: Optional[ArqRedis]
) -> QueueDepthInspector:
    """Inspector for the queue this run's jobs actually land on."""
    driver = _driver(config)
    if driver in ("database", "redis"):
        # Jobs go through ARQ; the jobs table or list never sees them
        logger.warning(
            "Queue driver '%s' cannot observe jobs dispatched through ARQ; "
            "queue waits will end unconfirmed",
            config.queue_driver,
        )
        return UnsupportedQueueInspector(
            config.queue_driver, "does not receive jobs dispatched through ARQ"
        )
    return build_queue_inspector(config, engine=engine, redis=arq_redis)


@asynccontextmanager
async def open_runtime(
    config: Settings,
    options: PipelineOptions,
    dry_run: bool = False,
    catalog: Optional[IndexCatalog] = None,
) -> AsyncIterator[RebuildOrchestrator]:
    """Yield an orchestrator with every connection it needs; close them after."""
    catalog = catalog or build_default_catalog(config.index_suffix)
    engine = create_engine_from_settings(config)
    record_source = RecordSource(create_session_maker(engine))
    backend = create_search_backend(config)
    arq_redis: Optional[ArqRedis] = None

    try:
        if not dry_run:
            if _import_needs_redis(config, options):
                arq_redis = await _connect_redis(config)
            elif config.rebuild_lock_enabled:
                try:
                    arq_redis = await _connect_redis(config)
                except ConnectivityError as exc:
                    logger.warning("%s -- rebuilding without a lock", exc)

        importer = BulkImporter(backend, record_source)
        if _driver(config) == "sync":
            importer.dispatcher = InlineJobDispatcher(importer, catalog.get)
        elif arq_redis is not None:
            importer.dispatcher = ArqJobDispatcher(arq_redis, config.queue_name)

        waiter = QueueCompletionWaiter(
            _build_inspector(config, engine, arq_redis),
            poll_interval=config.rebuild_poll_interval_seconds,
            stable_polls=config.rebuild_stable_polls,
            fallback_delay=config.rebuild_fallback_delay_seconds,
        )
        migrator = SchemaMigrator(catalog, backend)

        lock = None
        if config.rebuild_lock_enabled and arq_redis is not None:
            lock = RebuildLock(arq_redis, config.rebuild_lock_ttl_seconds)

        def pipeline_factory(descriptor: IndexDescriptor) -> RebuildPipeline:
            return RebuildPipeline(
                descriptor,
                backend=backend,
                migrator=migrator,
                record_source=record_source,
                importer=importer,
                waiter=waiter,
                options=options,
            )

        yield RebuildOrchestrator(
            catalog,
            prober=ConnectivityProber(backend),
            pipeline_factory=pipeline_factory,
            record_source=record_source,
            lock=lock,
        )
    finally:
        if arq_redis is not None:
            await arq_redis.aclose()
        await backend.close()
        await engine.dispose()
