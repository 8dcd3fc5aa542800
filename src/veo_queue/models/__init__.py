"""Queue models."""

from veo_queue.models.job import Job, JobStatus
from veo_queue.models.settings import CooldownState, QueueSettings

__all__ = ["CooldownState", "Job", "JobStatus", "QueueSettings"]
