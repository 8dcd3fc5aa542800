"""Video generation job model for queue management."""

import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    """Status of a video generation job."""

    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"


def new_job_id() -> str:
    """Generate an opaque job identifier."""
    return f"job_{uuid.uuid4().hex[:10]}"


class Job(BaseModel):
    """A queued video generation request."""

    id: str = Field(default_factory=new_job_id)

    # Request parameters, fixed at creation
    prompt: str
    negative_prompt: str | None = None
    seed: int | None = None
    person_generation: str | None = None

    status: JobStatus = JobStatus.QUEUED
    progress: int = 0
    eta: int = 0

    # Retry tracking
    attempts: int = 0
    error: str | None = None

    output: str | None = None

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.now)
    started_at: datetime | None = None
    finished_at: datetime | None = None
