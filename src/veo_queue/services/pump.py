"""Queue pump: decides what runs next under concurrency and cost limits."""

import asyncio
from datetime import datetime

import structlog

from veo_queue.models.job import Job, JobStatus
from veo_queue.services.events import EventBus, EventKind
from veo_queue.services.quota import QuotaCooldownController
from veo_queue.services.runner import JobFailure, JobRunner
from veo_queue.services.state import QueueState

logger = structlog.get_logger()

QUOTA_ERROR_MESSAGE = "Quota exhausted (429 / RESOURCE_EXHAUSTED). Queue paused for cooldown."


class QueuePump:
    """Admission control loop.

    Exactly one loop task performs passes. ``kick`` only sets a wake-up
    event, so any number of requests made during a pass collapse into one
    follow-up pass and none are lost.
    """

    def __init__(
        self,
        state: QueueState,
        events: EventBus,
        runner: JobRunner,
        cooldown: QuotaCooldownController,
    ) -> None:
        self.state = state
        self.events = events
        self.runner = runner
        self.cooldown = cooldown
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._loop_task: asyncio.Task[None] | None = None
        self._tasks: dict[str, asyncio.Task[None]] = {}

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def start(self) -> None:
        """Start the loop task on the running event loop."""
        if self.running:
            return
        self._loop_task = asyncio.create_task(self._run(), name="veo-queue-pump")
        self.kick()

    async def stop(self) -> None:
        """Stop the loop and cancel in-flight runners.

        Cancelled jobs are left ``running`` in the persisted snapshot and are
        requeued on the next load.
        """
        tasks = list(self._tasks.values())
        if self._loop_task is not None:
            tasks.append(self._loop_task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._loop_task = None
        self._tasks.clear()

    def kick(self) -> None:
        """Request a pass."""
        self._idle.clear()
        self._wakeup.set()

    async def wait_idle(self) -> None:
        """Wait until no job is running and no pass is pending."""
        await self._idle.wait()

    async def _run(self) -> None:
        logger.info("Queue pump started")
        try:
            while True:
                await self._wakeup.wait()
                self._wakeup.clear()
                self.pump()
                if not self._wakeup.is_set() and not self._tasks:
                    self._idle.set()
        except asyncio.CancelledError:
            logger.info("Queue pump cancelled")
            raise

    def pump(self) -> int:
        """Run one admission pass. Returns the number of jobs dispatched."""
        state = self.state
        settings = state.settings
        dispatched = 0

        while state.running_count < settings.concurrency:
            job = state.next_queued()
            if job is None:
                break
            if state.total_run_count >= settings.cost_cap_jobs:
                logger.info("Paused by cost cap", cap=settings.cost_cap_jobs)
                self.events.emit(EventKind.PAUSED_BY_CAP, cap=settings.cost_cap_jobs)
                break
            if job.id in self._tasks:
                # Should be impossible: a queued job with a live runner
                logger.error("Runner already active for job", job_id=job.id)
                break

            state.mark_dispatched(job)
            self._tasks[job.id] = asyncio.create_task(
                self._dispatch(job), name=f"veo-job-{job.id}"
            )
            dispatched += 1
            logger.info(
                "Job dispatched",
                job_id=job.id,
                attempt=job.attempts,
                running=state.running_count,
                session_dispatches=state.total_run_count,
            )

        if dispatched:
            state.touch()
        else:
            state.save_jobs()
        return dispatched

    async def _dispatch(self, job: Job) -> None:
        try:
            await self.runner.run(job)
        except JobFailure as e:
            self._fail(job, e)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Unexpected runner error", job_id=job.id)
            self._fail(job, JobFailure(f"{type(e).__name__}: {e}"))
        finally:
            self._tasks.pop(job.id, None)
            self.state.mark_finished()
            self.state.touch()
            self.kick()

    def _fail(self, job: Job, failure: JobFailure) -> None:
        job.status = JobStatus.ERROR
        job.progress = 0
        job.eta = 0
        job.finished_at = datetime.now()
        if failure.quota:
            job.error = QUOTA_ERROR_MESSAGE
            logger.warning("Job hit quota", job_id=job.id, error=str(failure))
            self.cooldown.trigger(str(failure))
        else:
            job.error = str(failure)
            logger.warning("Job failed", job_id=job.id, error=job.error)
