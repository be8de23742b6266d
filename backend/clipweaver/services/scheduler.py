"""In-process polling scheduler.

One asyncio task per active job: sleep, tick, repeat until the tick reports the
job terminal or gone. The event loop is the shared worker pool; nothing here
is persisted. After a restart the orchestrator's ``resume`` re-arms every job
whose stored status is still active.

Consecutive transport errors back off exponentially up to ``backoff_max``;
the first successful tick resets the delay.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable

logger = logging.getLogger(__name__)


class TickOutcome(str, enum.Enum):
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    TERMINAL = "terminal"
    TRANSPORT_ERROR = "transport_error"
    GONE = "gone"


_STOP = frozenset({TickOutcome.TERMINAL, TickOutcome.GONE})

Tick = Callable[[str], Awaitable[TickOutcome]]


class PollingScheduler:
    """Per-job recurring timers plus the per-job locks that serialize writes."""

    def __init__(self, tick: Tick, *, interval: float = 5.0, backoff_max: float = 60.0):
        self._tick = tick
        self.interval = interval
        self.backoff_max = max(backoff_max, interval)
        self._tasks: dict[str, asyncio.Task] = {}
        # job id -> [lock, holders + waiters]
        self._locks: dict[str, list] = {}
        self._cancelled: set[str] = set()
        self._closed = False

    # ---- timers -------------------------------------------------------------

    def schedule(self, job_id: str) -> bool:
        """Start polling a job. No-op if already scheduled, cancelled or shut down."""
        if self._closed or job_id in self._cancelled or self.is_scheduled(job_id):
            return False
        self._tasks[job_id] = asyncio.create_task(
            self._run(job_id), name=f"poll-{job_id}"
        )
        logger.debug("Scheduled polling for job %s", job_id)
        return True

    def cancel(self, job_id: str) -> None:
        """Stop polling for good. Any in-flight result for the job is discarded."""
        self._cancelled.add(job_id)
        self.discard(job_id)

    def discard(self, job_id: str) -> None:
        """Stop the timer without tombstoning; the job may be scheduled again."""
        task = self._tasks.pop(job_id, None)
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            logger.debug("Cancelled polling for job %s", job_id)

    def is_scheduled(self, job_id: str) -> bool:
        task = self._tasks.get(job_id)
        return task is not None and not task.done()

    def is_cancelled(self, job_id: str) -> bool:
        """True for tombstoned jobs, and for every job once shut down."""
        return self._closed or job_id in self._cancelled

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def scheduled_ids(self) -> set[str]:
        return {job_id for job_id in self._tasks if self.is_scheduled(job_id)}

    def next_delay(self, consecutive_failures: int) -> float:
        if consecutive_failures <= 0:
            return self.interval
        return min(self.interval * (2 ** consecutive_failures), self.backoff_max)

    # ---- locks --------------------------------------------------------------

    @asynccontextmanager
    async def job_lock(self, job_id: str) -> AsyncIterator[None]:
        """Hold the job's lock. The lock lives only while someone holds or awaits it."""
        entry = self._locks.get(job_id)
        if entry is None:
            entry = self._locks[job_id] = [asyncio.Lock(), 0]
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0 and self._locks.get(job_id) is entry:
                del self._locks[job_id]

    def forget(self, job_id: str) -> None:
        """Drop the tombstone of a job whose row is gone; later ticks find nothing."""
        self._cancelled.discard(job_id)

    @property
    def tracked_ids(self) -> set[str]:
        """Jobs that still hold a lock or a tombstone."""
        return set(self._locks) | self._cancelled

    # ---- lifecycle ----------------------------------------------------------

    async def shutdown(self) -> None:
        """Cancel every timer and wait for them to unwind."""
        self._closed = True
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Polling scheduler stopped (%d timers cancelled)", len(tasks))

    async def _run(self, job_id: str) -> None:
        failures = 0
        try:
            while True:
                await asyncio.sleep(self.next_delay(failures))
                try:
                    outcome = await self._tick(job_id)
                except asyncio.CancelledError:
                    raise
                except Exception:
                    # Keep polling; the stored status decides when to stop.
                    logger.exception("Reconciliation tick crashed for job %s", job_id)
                    outcome = TickOutcome.TRANSPORT_ERROR

                if outcome in _STOP:
                    logger.debug("Polling finished for job %s (%s)", job_id, outcome.value)
                    break
                if outcome == TickOutcome.TRANSPORT_ERROR:
                    failures += 1
                    logger.debug(
                        "Job %s backing off to %.1fs", job_id, self.next_delay(failures)
                    )
                else:
                    failures = 0
        finally:
            if self._tasks.get(job_id) is asyncio.current_task():
                del self._tasks[job_id]
