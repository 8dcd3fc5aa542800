"""Cancellable scheduled tasks on the event loop."""

import asyncio
import time
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Protocol

import structlog
from apscheduler.job import Job as SchedulerJob
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

logger = structlog.get_logger()


class TimerHandle(Protocol):
    """A scheduled callback that can be cancelled."""

    def cancel(self) -> None: ...


class Timers(Protocol):
    """Clock and timer source used by the queue core."""

    def now(self) -> float: ...

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...

    def call_every(self, interval: float, callback: Callable[[], None]) -> TimerHandle: ...

    async def sleep(self, seconds: float) -> None: ...


class _SchedulerHandle:
    """Handle for an APScheduler job; cancelling a finished job is a no-op."""

    def __init__(self, job: SchedulerJob) -> None:
        self._job = job

    def cancel(self) -> None:
        try:
            self._job.remove()
        except JobLookupError:
            pass


class SchedulerTimers:
    """Timers backed by APScheduler's asyncio scheduler.

    Callbacks are wrapped in coroutines so the asyncio executor runs them on
    the event loop thread rather than in a worker thread.
    """

    def __init__(self, scheduler: AsyncIOScheduler | None = None) -> None:
        self.scheduler = scheduler or AsyncIOScheduler()

    def start(self) -> None:
        """Start the underlying scheduler (requires a running event loop)."""
        if not self.scheduler.running:
            self.scheduler.start()

    def shutdown(self) -> None:
        """Stop the scheduler and drop every pending job."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    def now(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        run_date = datetime.now().astimezone() + timedelta(seconds=max(0.0, delay))
        job = self.scheduler.add_job(
            _as_coroutine(callback),
            "date",
            run_date=run_date,
            misfire_grace_time=None,
        )
        return _SchedulerHandle(job)

    def call_every(self, interval: float, callback: Callable[[], None]) -> TimerHandle:
        job = self.scheduler.add_job(
            _as_coroutine(callback),
            "interval",
            seconds=interval,
            coalesce=True,
            max_instances=1,
        )
        return _SchedulerHandle(job)


def _as_coroutine(callback: Callable[[], None]) -> Callable[[], object]:
    async def run() -> None:
        try:
            callback()
        except Exception:
            logger.exception("Scheduled callback failed")

    return run
