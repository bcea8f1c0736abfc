"""Unit tests for the queue completion waiter.

The waiter runs against a fake inspector and a fake clock whose time only
advances when the waiter sleeps, so no test waits in real time.
"""

import pytest

from index_rebuilder.errors import QueueInspectionError
from index_rebuilder.schemas.rebuild import WaitResult
from index_rebuilder.services.queue_inspector import QueueDepthInspector
from index_rebuilder.services.queue_waiter import QueueCompletionWaiter


class ScriptedInspector(QueueDepthInspector):
    """Returns scripted pending counts, repeating the last one forever."""

    driver = "scripted"

    def __init__(self, *counts) -> None:
        self.counts = list(counts)
        self.calls = 0

    async def pending_count(self, queue_name: str) -> int:
        value = self.counts[min(self.calls, len(self.counts) - 1)]
        self.calls += 1
        if isinstance(value, Exception):
            raise value
        return value


def make_waiter(inspector, clock, **kwargs) -> QueueCompletionWaiter:
    return QueueCompletionWaiter(inspector, clock=clock, sleep=clock.sleep, **kwargs)


class TestImmediateCompletion:
    """The queue is already back at (or below) its baseline."""

    @pytest.mark.asyncio
    async def test_below_baseline_on_first_read(self, fake_clock):
        inspector = ScriptedInspector(8)
        waiter = make_waiter(inspector, fake_clock)

        result = await waiter.wait("arq:queue", baseline=10, expected_job_count=4)

        assert result is WaitResult.COMPLETED
        assert inspector.calls == 1
        assert fake_clock.sleeps == []

    @pytest.mark.asyncio
    async def test_equal_to_baseline_completes(self, fake_clock):
        waiter = make_waiter(ScriptedInspector(10), fake_clock)

        assert await waiter.wait("arq:queue", 10, 4) is WaitResult.COMPLETED

    @pytest.mark.asyncio
    async def test_completes_once_queue_drains(self, fake_clock):
        inspector = ScriptedInspector(20, 18, 15, 10)
        waiter = make_waiter(inspector, fake_clock)

        result = await waiter.wait("arq:queue", baseline=10, expected_job_count=10)

        assert result is WaitResult.COMPLETED
        assert inspector.calls == 4
        assert fake_clock.sleeps == [2.0, 2.0, 2.0]


class TestStabilization:
    """Delta holding still at or below the expected job count."""

    @pytest.mark.asyncio
    async def test_stable_delta_within_expected_completes(self, fake_clock):
        inspector = ScriptedInspector(14)
        waiter = make_waiter(inspector, fake_clock)

        result = await waiter.wait("arq:queue", baseline=10, expected_job_count=4)

        assert result is WaitResult.COMPLETED
        # first read records delta=4, the next 15 reads are unchanged
        assert inspector.calls == 16
        assert fake_clock.now == pytest.approx(30.0)

    @pytest.mark.asyncio
    async def test_fifteen_reads_at_same_delta_are_not_enough(self, fake_clock):
        # the first read only records delta=4, so 15 reads give 14 stable polls
        inspector = ScriptedInspector(*([14] * 15 + [20]))
        waiter = make_waiter(inspector, fake_clock)

        result = await waiter.wait("arq:queue", baseline=10, expected_job_count=4, max_wait=60.0)

        assert result is WaitResult.TIMED_OUT
        assert inspector.calls > 16

    @pytest.mark.asyncio
    async def test_changed_delta_resets_counter(self, fake_clock):
        inspector = ScriptedInspector(*([14] * 10 + [13]))
        waiter = make_waiter(inspector, fake_clock)

        result = await waiter.wait("arq:queue", baseline=10, expected_job_count=4)

        assert result is WaitResult.COMPLETED
        assert inspector.calls == 26

    @pytest.mark.asyncio
    async def test_custom_stable_polls(self, fake_clock):
        inspector = ScriptedInspector(12)
        waiter = make_waiter(inspector, fake_clock, stable_polls=3)

        assert await waiter.wait("arq:queue", 10, 2) is WaitResult.COMPLETED
        assert inspector.calls == 4


class TestTimeout:
    """The deadline bounds every wait."""

    @pytest.mark.asyncio
    async def test_stable_above_expected_times_out(self, fake_clock):
        inspector = ScriptedInspector(20)
        waiter = make_waiter(inspector, fake_clock)

        result = await waiter.wait("arq:queue", baseline=10, expected_job_count=4)

        assert result is WaitResult.TIMED_OUT
        assert fake_clock.now == pytest.approx(600.0)
        assert inspector.calls == 301

    @pytest.mark.asyncio
    async def test_volatile_traffic_times_out(self, fake_clock):
        inspector = ScriptedInspector(*[12 + (i % 3) for i in range(100)])
        waiter = make_waiter(inspector, fake_clock)

        result = await waiter.wait("arq:queue", baseline=10, expected_job_count=4, max_wait=60.0)

        assert result is WaitResult.TIMED_OUT
        assert fake_clock.now == pytest.approx(60.0)

    @pytest.mark.asyncio
    async def test_zero_max_wait_reads_once(self, fake_clock):
        inspector = ScriptedInspector(50)
        waiter = make_waiter(inspector, fake_clock)

        assert await waiter.wait("arq:queue", 10, 4, max_wait=0) is WaitResult.TIMED_OUT
        assert inspector.calls == 1


class TestInspectionFailure:
    """A failed queue read ends the wait without confirmation."""

    @pytest.mark.asyncio
    async def test_failure_aborts_after_fallback_delay(self, fake_clock):
        inspector = ScriptedInspector(QueueInspectionError("redis down"))
        waiter = make_waiter(inspector, fake_clock, fallback_delay=5.0)

        result = await waiter.wait("arq:queue", 10, 4)

        assert result is WaitResult.ABORTED
        assert fake_clock.sleeps == [5.0]

    @pytest.mark.asyncio
    async def test_failure_mid_wait_aborts(self, fake_clock):
        inspector = ScriptedInspector(20, 19, QueueInspectionError("gone"))
        waiter = make_waiter(inspector, fake_clock)

        assert await waiter.wait("arq:queue", 10, 4) is WaitResult.ABORTED
        assert fake_clock.sleeps == [2.0, 2.0, 10.0]


class TestSnapshot:
    @pytest.mark.asyncio
    async def test_snapshot_records_time(self, fake_clock):
        fake_clock.now = 42.0
        waiter = make_waiter(ScriptedInspector(7), fake_clock)

        snapshot = await waiter.snapshot("arq:queue")

        assert snapshot.pending_count == 7
        assert snapshot.observed_at == 42.0
