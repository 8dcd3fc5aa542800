"""Queue state: the shared ledger of jobs, counters and settings."""

from typing import Any

import structlog
from pydantic import ValidationError

from veo_queue.models.job import Job, JobStatus
from veo_queue.models.settings import QueueSettings
from veo_queue.services.events import EventBus, EventKind
from veo_queue.services.store import QUEUE_KEY, SETTINGS_KEY, JsonStore

logger = structlog.get_logger()


class QueueState:
    """Owns every job plus the running and session dispatch counters.

    All methods are synchronous and run on the event loop thread. Each
    mutation writes the full jobs document and emits ``queue.updated``.
    """

    def __init__(self, store: JsonStore, events: EventBus, defaults: QueueSettings) -> None:
        self.store = store
        self.events = events
        self.defaults = defaults
        self.settings = defaults.model_copy(deep=True)
        self.jobs: list[Job] = []
        self.running_count = 0
        self.total_run_count = 0

    def load(self) -> None:
        """Load settings and jobs, requeueing anything that was in flight."""
        stored_settings = self.store.load(SETTINGS_KEY, {})
        self.settings = self._merge_settings(stored_settings)

        self.jobs = []
        requeued = 0
        for record in self.store.load(QUEUE_KEY, []) or []:
            try:
                job = Job.model_validate(record)
            except ValidationError as e:
                logger.warning("Skipping malformed job record", error=str(e))
                continue
            if job.status != JobStatus.DONE:
                if job.status != JobStatus.QUEUED:
                    requeued += 1
                job.status = JobStatus.QUEUED
                job.progress = 0
                job.eta = 0
                job.error = None
            self.jobs.append(job)

        self.running_count = 0
        self.total_run_count = 0
        logger.info("Queue state loaded", jobs=len(self.jobs), requeued=requeued)

    def _merge_settings(self, stored: Any) -> QueueSettings:
        base = self.defaults.model_dump(mode="json")
        if isinstance(stored, dict):
            base.update(stored)
        try:
            return QueueSettings.model_validate(base)
        except ValidationError as e:
            logger.warning("Stored settings invalid, using defaults", error=str(e))
            return self.defaults.model_copy(deep=True)

    # Persistence

    def save_jobs(self) -> None:
        self.store.save(QUEUE_KEY, [job.model_dump(mode="json") for job in self.jobs])

    def save_settings(self) -> None:
        self.store.save(SETTINGS_KEY, self.settings.model_dump(mode="json"))

    def touch(self) -> None:
        """Persist jobs and notify observers of a changed snapshot."""
        self.save_jobs()
        self.events.emit(EventKind.QUEUE_UPDATED, jobs=self.snapshot())

    def snapshot(self) -> list[dict[str, Any]]:
        return [job.model_dump(mode="json") for job in self.jobs]

    # Reads

    def list_jobs(self) -> list[Job]:
        return list(self.jobs)

    def get(self, job_id: str) -> Job | None:
        for job in self.jobs:
            if job.id == job_id:
                return job
        return None

    def next_queued(self) -> Job | None:
        """First queued job in insertion order."""
        for job in self.jobs:
            if job.status == JobStatus.QUEUED:
                return job
        return None

    # Mutations

    def append(self, job: Job) -> Job:
        self.jobs.append(job)
        self.touch()
        return job

    def update_job(self, job_id: str, **fields: Any) -> Job | None:
        """Set fields on a single job. Returns None for an unknown id."""
        job = self.get(job_id)
        if job is None:
            return None
        for name, value in fields.items():
            if name not in Job.model_fields or name == "id":
                raise AttributeError(f"Job has no mutable field {name!r}")
            setattr(job, name, value)
        self.touch()
        return job

    def clear_done(self) -> int:
        """Remove every finished job. Returns the number removed."""
        before = len(self.jobs)
        self.jobs = [job for job in self.jobs if job.status != JobStatus.DONE]
        removed = before - len(self.jobs)
        self.touch()
        return removed

    def mark_dispatched(self, job: Job) -> None:
        """Move a queued job to running and count the dispatch."""
        if job.status != JobStatus.QUEUED:
            raise ValueError(f"Job {job.id} is {job.status.value}, not queued")
        job.attempts += 1
        job.status = JobStatus.RUNNING
        job.error = None
        self.running_count += 1
        self.total_run_count += 1

    def mark_finished(self) -> None:
        self.running_count = max(0, self.running_count - 1)

    def running_jobs(self) -> list[Job]:
        return [job for job in self.jobs if job.status == JobStatus.RUNNING]
