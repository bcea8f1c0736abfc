"""Tests for wiring the orchestrator and its connections."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from index_rebuilder.config import Settings
from index_rebuilder.errors import ConnectivityError, QueueInspectionError
from index_rebuilder.runtime import _import_needs_redis, open_runtime
from index_rebuilder.schemas.rebuild import ImportMode
from index_rebuilder.services.import_service import ArqJobDispatcher, InlineJobDispatcher
from index_rebuilder.services.queue_inspector import (
    ArqQueueInspector,
    SyncQueueInspector,
    UnsupportedQueueInspector,
)
from index_rebuilder.services.rebuild_lock import RebuildLock
from index_rebuilder.services.rebuild_pipeline import PipelineOptions


def make_settings(**overrides) -> Settings:
    values = {
        "database_url_override": "sqlite+aiosqlite:///:memory:",
        "meilisearch_api_key": "test-key",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def arq_redis() -> MagicMock:
    redis = MagicMock()
    redis.aclose = AsyncMock()
    return redis


class TestImportNeedsRedis:
    @pytest.mark.parametrize(
        "driver, mode, expected",
        [
            ("arq", ImportMode.QUEUED, True),
            ("database", ImportMode.QUEUED, True),
            ("sync", ImportMode.QUEUED, False),
            ("arq", ImportMode.SYNCHRONOUS, False),
        ],
    )
    def test_decision(self, driver, mode, expected):
        config = make_settings(queue_driver=driver)

        assert _import_needs_redis(config, PipelineOptions(mode=mode)) is expected


class TestOpenRuntime:
    @pytest.mark.asyncio
    async def test_queued_wiring(self, arq_redis):
        config = make_settings(queue_driver="arq")
        options = PipelineOptions(wait=True)

        with patch("index_rebuilder.runtime.create_pool", new=AsyncMock(return_value=arq_redis)):
            async with open_runtime(config, options) as orchestrator:
                pipeline = orchestrator.pipeline_factory(orchestrator.catalog.get("Invoice"))

                assert isinstance(pipeline.importer.dispatcher, ArqJobDispatcher)
                assert isinstance(pipeline.waiter.inspector, ArqQueueInspector)
                assert isinstance(orchestrator.lock, RebuildLock)
                assert pipeline.options is options
                assert len(orchestrator.catalog) == 12

        arq_redis.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_sync_driver_needs_no_redis(self):
        config = make_settings(queue_driver="sync", rebuild_lock_enabled=False)
        create_pool = AsyncMock()

        with patch("index_rebuilder.runtime.create_pool", new=create_pool):
            async with open_runtime(config, PipelineOptions()) as orchestrator:
                pipeline = orchestrator.pipeline_factory(orchestrator.catalog.get("Client"))

                assert isinstance(pipeline.importer.dispatcher, InlineJobDispatcher)
                assert isinstance(pipeline.waiter.inspector, SyncQueueInspector)
                assert orchestrator.lock is None

        create_pool.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_dry_run_opens_no_redis(self):
        create_pool = AsyncMock()

        with patch("index_rebuilder.runtime.create_pool", new=create_pool):
            async with open_runtime(make_settings(), PipelineOptions(), dry_run=True) as orchestrator:
                assert orchestrator.lock is None

        create_pool.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_redis_failure_is_connectivity_error(self):
        create_pool = AsyncMock(side_effect=RedisConnectionError("refused"))

        with patch("index_rebuilder.runtime.create_pool", new=create_pool):
            with pytest.raises(ConnectivityError, match="Redis connection failed"):
                async with open_runtime(make_settings(), PipelineOptions()):
                    pass


class TestQueueDriverWiring:
    """The waiter only observes queues that receive this run's jobs."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("driver", ["database", "redis"])
    async def test_unobservable_driver_waits_unconfirmed(self, arq_redis, driver):
        config = make_settings(queue_driver=driver)

        with patch("index_rebuilder.runtime.create_pool", new=AsyncMock(return_value=arq_redis)):
            async with open_runtime(config, PipelineOptions(wait=True)) as orchestrator:
                pipeline = orchestrator.pipeline_factory(orchestrator.catalog.get("Invoice"))

                assert isinstance(pipeline.importer.dispatcher, ArqJobDispatcher)
                assert isinstance(pipeline.waiter.inspector, UnsupportedQueueInspector)
                with pytest.raises(QueueInspectionError, match=driver):
                    await pipeline.waiter.snapshot(config.queue_name)

    @pytest.mark.asyncio
    async def test_arq_driver_watches_dispatch_queue(self, arq_redis):
        config = make_settings(queue_driver="arq")

        with patch("index_rebuilder.runtime.create_pool", new=AsyncMock(return_value=arq_redis)):
            async with open_runtime(config, PipelineOptions(wait=True)) as orchestrator:
                pipeline = orchestrator.pipeline_factory(orchestrator.catalog.get("Invoice"))

                assert isinstance(pipeline.importer.dispatcher, ArqJobDispatcher)
                assert isinstance(pipeline.waiter.inspector, ArqQueueInspector)
                assert pipeline.waiter.inspector.redis is arq_redis

    @pytest.mark.asyncio
    async def test_sync_driver_runs_jobs_inline(self):
        config = make_settings(queue_driver="sync", rebuild_lock_enabled=False)

        async with open_runtime(config, PipelineOptions(wait=True)) as orchestrator:
            pipeline = orchestrator.pipeline_factory(orchestrator.catalog.get("Invoice"))

            assert isinstance(pipeline.importer.dispatcher, InlineJobDispatcher)
            assert isinstance(pipeline.waiter.inspector, SyncQueueInspector)


class TestLockWithoutRedis:
    """The lock is optional; losing Redis only drops it when imports don't need Redis."""

    @pytest.mark.asyncio
    async def test_synchronous_import_runs_without_lock(self):
        create_pool = AsyncMock(side_effect=RedisConnectionError("down"))
        options = PipelineOptions(mode=ImportMode.SYNCHRONOUS)

        with patch("index_rebuilder.runtime.create_pool", new=create_pool):
            async with open_runtime(make_settings(), options) as orchestrator:
                assert orchestrator.lock is None

        create_pool.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_sync_driver_runs_without_lock(self):
        create_pool = AsyncMock(side_effect=OSError("unreachable"))

        with patch("index_rebuilder.runtime.create_pool", new=create_pool):
            async with open_runtime(make_settings(queue_driver="sync"), PipelineOptions()) as orchestrator:
                assert orchestrator.lock is None

    @pytest.mark.asyncio
    async def test_connect_timeout_comes_from_settings(self, arq_redis):
        create_pool = AsyncMock(return_value=arq_redis)
        config = make_settings(redis_socket_timeout=2.5)

        with patch("index_rebuilder.runtime.create_pool", new=create_pool):
            async with open_runtime(config, PipelineOptions()):
                pass

        assert create_pool.await_args.args[0].conn_timeout == 2.5
