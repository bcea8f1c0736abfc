"""Per-entity rebuild lock using Redis.

Only one orchestrator is expected to run at a time. Nothing else enforces
that, so each entity's rebuild is wrapped in a Redis ``SET NX`` lock keyed
by entity type; a second invocation reaching the same entity fails it
instead of dropping an index that is being filled.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from ..errors import LockError

logger = logging.getLogger(__name__)

LOCK_KEY_PREFIX = "search_rebuild_lock:"
LOCK_TTL_SECONDS = 3600


def _lock_key(entity_type: str) -> str:
    """Build Redis key for an entity's rebuild lock."""
    return f"{LOCK_KEY_PREFIX}{entity_type}"


# Lua script: Release lock only if caller owns it
# KEYS[1] = lock key, ARGV[1] = owner token
# Returns 1 if released, 0 if not owner or not found
_RELEASE_LOCK_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""


class RebuildLock:
    def __init__(self, redis: aioredis.Redis, ttl_seconds: int = LOCK_TTL_SECONDS) -> None:
        self.redis = redis
        self.ttl_seconds = ttl_seconds

    async def acquire(self, entity_type: str) -> str:
        """Take the lock. Returns the owner token; raises LockError if held."""
        token = uuid.uuid4().hex
        try:
            acquired = await self.redis.set(_lock_key(entity_type), token, nx=True, ex=self.ttl_seconds)
        except RedisError as exc:
            raise LockError(f"Could not acquire rebuild lock for {entity_type}: {exc}") from exc

        if not acquired:
            raise LockError(f"Rebuild of {entity_type} already in progress")
        return token

    async def release(self, entity_type: str, token: str) -> bool:
        try:
            released = await self.redis.eval(_RELEASE_LOCK_SCRIPT, 1, _lock_key(entity_type), token)
        except RedisError as exc:
            logger.warning("Failed to release rebuild lock for %s: %s", entity_type, exc)
            return False
        return bool(released)

    @asynccontextmanager
    async def hold(self, entity_type: str) -> AsyncIterator[None]:
        token = await self.acquire(entity_type)
        try:
            yield
        finally:
            await self.release(entity_type, token)
