"""
ARQ Worker Configuration

Runs the background chunk imports dispatched by a queued rebuild. The
orchestrator never talks to this process; it only watches the queue depth.

Run with:
    arq index_rebuilder.worker.WorkerSettings
"""

import logging
from typing import Any

from arq.connections import RedisSettings

from .config import settings
from .database import create_engine_from_settings, create_session_maker
from .services.import_service import BulkImporter
from .services.index_catalog import build_default_catalog
from .services.record_source import RecordSource
from .services.search_service import create_search_backend

logger = logging.getLogger(__name__)


# Parse Redis URL into components for ARQ
# Format: redis://host:port/db or redis://:password@host:port/db
def parse_redis_url(url: str, conn_timeout: float = 1) -> RedisSettings:
    """Parse Redis URL into ARQ RedisSettings."""
    from urllib.parse import urlparse

    parsed = urlparse(url)
    return RedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        password=parsed.password,
        database=int(parsed.path.lstrip("/") or 0),
        conn_timeout=conn_timeout,
    )


# =============================================================================
# Import Jobs
# =============================================================================

async def index_chunk(ctx: dict[str, Any], entity_type: str, first_id: Any, last_id: Any) -> dict[str, Any]:
    """
    Index the records of one entity with first_id <= id <= last_id.

    Returns:
        dict with the entity type and number of documents written
    """
    descriptor = ctx["catalog"].get(entity_type)
    indexed = await ctx["importer"].index_range(descriptor, first_id, last_id)
    logger.info("Indexed %d %s records (%s..%s)", indexed, entity_type, first_id, last_id)
    return {"entity_type": entity_type, "indexed": indexed}


# =============================================================================
# Startup/Shutdown Hooks
# =============================================================================

async def startup(ctx: dict[str, Any]) -> None:
    """Initialize resources when worker starts."""
    logger.info("ARQ import worker starting up...")

    engine = create_engine_from_settings(settings)
    backend = create_search_backend(settings)

    ctx["engine"] = engine
    ctx["backend"] = backend
    ctx["catalog"] = build_default_catalog(settings.index_suffix)
    ctx["importer"] = BulkImporter(backend, RecordSource(create_session_maker(engine)))


async def shutdown(ctx: dict[str, Any]) -> None:
    """Cleanup resources when worker stops."""
    logger.info("ARQ import worker shutting down...")

    if "backend" in ctx:
        await ctx["backend"].close()
    if "engine" in ctx:
        await ctx["engine"].dispose()


# =============================================================================
# Worker Settings
# =============================================================================

class WorkerSettings:
    """ARQ worker configuration."""

    # Redis connection
    redis_settings = parse_redis_url(settings.redis_url, conn_timeout=settings.redis_socket_timeout)

    # Queue the rebuild dispatches onto
    queue_name = settings.queue_name

    # Job functions that can be called via arq.enqueue_job()
    functions = [
        index_chunk,
    ]

    # Lifecycle hooks
    on_startup = startup
    on_shutdown = shutdown

    # Worker behavior
    max_jobs = 10  # Max concurrent jobs
    job_timeout = 300  # 5 minutes max per job
    keep_result = 3600  # Keep results for 1 hour
