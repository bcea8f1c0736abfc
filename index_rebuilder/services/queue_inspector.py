"""Pending-job counts for the queue backends background imports may use.

One inspector per backend kind, chosen from ``settings.queue_driver`` when
the inspector is built:

- database: rows in the jobs table for the queue
- redis:    length of the ``<prefix><queue>`` list
- arq:      size of ARQ's queue sorted set
- sync:     always 0, jobs run inline

Any other driver yields an inspector whose reads fail with
QueueInspectionError naming that driver.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy import column, func, select, table
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from ..config import Settings
from ..errors import QueueInspectionError

logger = logging.getLogger(__name__)


class QueueDepthInspector(ABC):
    """Reads how many jobs are waiting on a named queue."""

    driver: str

    @abstractmethod
    async def pending_count(self, queue_name: str) -> int:
        """Return the pending job count or raise QueueInspectionError."""


class DatabaseQueueInspector(QueueDepthInspector):
    driver = "database"

    def __init__(self, engine: AsyncEngine, jobs_table: str = "jobs") -> None:
        self.engine = engine
        self.jobs = table(jobs_table, column("queue"))

    async def pending_count(self, queue_name: str) -> int:
        query = select(func.count()).select_from(self.jobs).where(self.jobs.c.queue == queue_name)
        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(query)
                return result.scalar() or 0
        except SQLAlchemyError as exc:
            raise QueueInspectionError(f"Could not count jobs on queue {queue_name}: {exc}") from exc


class RedisListQueueInspector(QueueDepthInspector):
    driver = "redis"

    def __init__(self, redis: aioredis.Redis, prefix: str = "queues:") -> None:
        self.redis = redis
        self.prefix = prefix

    async def pending_count(self, queue_name: str) -> int:
        try:
            return int(await self.redis.llen(f"{self.prefix}{queue_name}"))
        except RedisError as exc:
            raise QueueInspectionError(f"Could not read Redis queue {queue_name}: {exc}") from exc


class ArqQueueInspector(QueueDepthInspector):
    driver = "arq"

    def __init__(self, redis: aioredis.Redis) -> None:
        self.redis = redis

    async def pending_count(self, queue_name: str) -> int:
        try:
            return int(await self.redis.zcard(queue_name))
        except RedisError as exc:
            raise QueueInspectionError(f"Could not read ARQ queue {queue_name}: {exc}") from exc


class SyncQueueInspector(QueueDepthInspector):
    driver = "sync"

    async def pending_count(self, queue_name: str) -> int:
        return 0


class UnsupportedQueueInspector(QueueDepthInspector):
    def __init__(self, driver: str, reason: str = "is not supported for queue inspection") -> None:
        self.driver = driver
        self.reason = reason

    async def pending_count(self, queue_name: str) -> int:
        raise QueueInspectionError(f"Queue driver '{self.driver}' {self.reason}")


def build_queue_inspector(
    config: Settings,
    engine: Optional[AsyncEngine] = None,
    redis: Optional[aioredis.Redis] = None,
) -> QueueDepthInspector:
    """Pick the inspector for the configured queue driver."""
    driver = config.queue_driver.strip().lower()

    if driver == "database" and engine is not None:
        return DatabaseQueueInspector(engine, config.queue_jobs_table)
    if driver == "redis" and redis is not None:
        return RedisListQueueInspector(redis, config.queue_redis_prefix)
    if driver == "arq" and redis is not None:
        return ArqQueueInspector(redis)
    if driver == "sync":
        return SyncQueueInspector()

    if driver in ("database", "redis", "arq"):
        logger.warning("No connection available for queue driver '%s'", driver)
        return UnsupportedQueueInspector(config.queue_driver, "has no connection configured")
    return UnsupportedQueueInspector(config.queue_driver)
