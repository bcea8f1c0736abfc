"""Decide when this run's background import jobs have left a shared queue.

Jobs are not tagged, so the waiter works from queue depth alone:

- baseline: pending count captured right before this run dispatched
- delta:    current pending count minus baseline

The wait completes as soon as the queue is back at or below the baseline,
or once delta has held still for ``stable_polls`` consecutive polls at a
value no larger than the number of jobs this run dispatched (the tail of
this run plus unrelated steady-state traffic).

This is a heuristic. Unrelated traffic draining at the same moment can end
the wait early, and volatile unrelated traffic can keep it from resolving
until the deadline. The result is advisory and never blocks the pipeline.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable

from ..errors import QueueInspectionError
from ..schemas.rebuild import QueueSnapshot, WaitResult, WaitState
from .queue_inspector import QueueDepthInspector

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_MAX_WAIT = 600.0
DEFAULT_STABLE_POLLS = 15
DEFAULT_FALLBACK_DELAY = 10.0


class QueueCompletionWaiter:
    def __init__(
        self,
        inspector: QueueDepthInspector,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        stable_polls: int = DEFAULT_STABLE_POLLS,
        fallback_delay: float = DEFAULT_FALLBACK_DELAY,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.inspector = inspector
        self.poll_interval = poll_interval
        self.stable_polls = stable_polls
        self.fallback_delay = fallback_delay
        self.clock = clock
        self.sleep = sleep

    async def snapshot(self, queue_name: str) -> QueueSnapshot:
        """Read the queue once. Raises QueueInspectionError."""
        pending = await self.inspector.pending_count(queue_name)
        return QueueSnapshot(pending_count=pending, observed_at=self.clock())

    async def wait(
        self,
        queue_name: str,
        baseline: int,
        expected_job_count: int,
        max_wait: float = DEFAULT_MAX_WAIT,
    ) -> WaitResult:
        started_at = self.clock()
        state = WaitState(baseline=baseline, started_at=started_at, deadline=started_at + max_wait)

        logger.info(
            "Waiting for queue %s to drain (baseline=%d, expected jobs=%d, max %.0fs)",
            queue_name, baseline, expected_job_count, max_wait,
        )

        while True:
            try:
                snapshot = await self.snapshot(queue_name)
            except QueueInspectionError as exc:
                logger.warning("Queue inspection failed, stopping wait: %s", exc)
                await self.sleep(self.fallback_delay)
                return WaitResult.ABORTED

            delta = snapshot.pending_count - state.baseline

            if snapshot.pending_count <= state.baseline:
                logger.info("Queue %s back at baseline (%d pending)", queue_name, snapshot.pending_count)
                return WaitResult.COMPLETED

            if delta == state.last_delta:
                state.stable_observations += 1
            else:
                state.stable_observations = 0
                state.last_delta = delta

            if state.stable_observations >= self.stable_polls and delta <= expected_job_count:
                logger.info(
                    "Queue %s stable at delta=%d for %d polls, assuming drained",
                    queue_name, delta, state.stable_observations,
                )
                return WaitResult.COMPLETED

            if snapshot.observed_at >= state.deadline:
                logger.warning(
                    "Timed out after %.0fs waiting for queue %s (delta=%d)",
                    snapshot.observed_at - state.started_at, queue_name, delta,
                )
                return WaitResult.TIMED_OUT

            logger.debug("Queue %s: %d pending, delta=%d", queue_name, snapshot.pending_count, delta)
            await self.sleep(self.poll_interval)
