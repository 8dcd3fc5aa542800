"""API routes for queue control."""

import csv
from datetime import datetime
from pathlib import Path
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field

from veo_queue import __version__
from veo_queue.models.job import JobStatus
from veo_queue.models.settings import QueueSettings
from veo_queue.services.queue import VideoQueue

router = APIRouter(prefix="/api/v1", tags=["queue"])


def get_queue(request: Request) -> VideoQueue:
    """Get the queue attached to the running application."""
    queue: VideoQueue = request.app.state.queue
    return queue


Queue = Annotated[VideoQueue, Depends(get_queue)]


class JobCreate(BaseModel):
    """Request model for enqueueing a job."""

    prompt: str = Field(..., min_length=1)
    negative_prompt: str | None = None
    seed: int | None = None
    person_generation: str | None = None


class JobCreated(BaseModel):
    id: str


class JobResponse(BaseModel):
    """Response model for job data."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    prompt: str
    negative_prompt: str | None
    seed: int | None
    person_generation: str | None
    status: JobStatus
    progress: int
    eta: int
    attempts: int
    error: str | None
    output: str | None
    created_at: datetime
    started_at: datetime | None
    finished_at: datetime | None


class SettingsUpdate(BaseModel):
    """Partial settings update; omitted fields are left unchanged."""

    model_config = ConfigDict(extra="forbid")

    api_key: str | None = None
    output_dir: str | None = None
    watch_dir: str | None = None
    concurrency: int | None = None
    person_generation_default: str | None = None
    cost_cap_jobs: int | None = Field(default=None, ge=0)


class SettingsResponse(BaseModel):
    """Settings with the credential masked."""

    api_key_set: bool
    output_dir: str
    watch_dir: str
    concurrency: int
    person_generation_default: str
    cost_cap_jobs: int
    cooldown_active: bool

    @classmethod
    def from_settings(cls, s: QueueSettings) -> "SettingsResponse":
        return cls(
            api_key_set=bool(s.api_key),
            output_dir=str(s.output_dir),
            watch_dir=s.watch_dir,
            concurrency=s.concurrency,
            person_generation_default=s.person_generation_default,
            cost_cap_jobs=s.cost_cap_jobs,
            cooldown_active=s.quota.active,
        )


class ConcurrencyUpdate(BaseModel):
    """Requested limit; out-of-range values are clamped to 0..8."""

    value: int


class PathRequest(BaseModel):
    path: str


class ImportResponse(BaseModel):
    imported: int


class WatchResponse(BaseModel):
    watching: bool
    directory: str


class ActionResponse(BaseModel):
    status: str


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    pump_running: bool


@router.get("/health", response_model=HealthResponse)
async def health_check(queue: Queue) -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="healthy", version=__version__, pump_running=queue.pump.running)


@router.get("/settings", response_model=SettingsResponse)
async def get_settings(queue: Queue) -> SettingsResponse:
    return SettingsResponse.from_settings(queue.get_settings())


@router.patch("/settings", response_model=SettingsResponse)
async def update_settings(update: SettingsUpdate, queue: Queue) -> SettingsResponse:
    """Merge a partial settings update."""
    try:
        updated = queue.update_settings(update.model_dump(exclude_none=True))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e
    return SettingsResponse.from_settings(updated)


@router.get("/jobs", response_model=list[JobResponse])
async def list_jobs(queue: Queue) -> list[JobResponse]:
    """List every job in queue order."""
    return [JobResponse.model_validate(job) for job in queue.list_jobs()]


@router.post("/jobs", response_model=JobCreated, status_code=status.HTTP_201_CREATED)
async def create_job(job: JobCreate, queue: Queue) -> JobCreated:
    """Enqueue a new video generation job."""
    try:
        job_id = queue.enqueue(
            job.prompt,
            negative_prompt=job.negative_prompt,
            seed=job.seed,
            person_generation=job.person_generation,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e
    return JobCreated(id=job_id)


@router.post("/jobs/{job_id}/retry", response_model=ActionResponse)
async def retry_job(job_id: str, queue: Queue) -> ActionResponse:
    """Requeue a failed job; other jobs are left untouched."""
    retried = queue.retry(job_id)
    return ActionResponse(status="queued" if retried else "unchanged")


@router.post("/queue/start", response_model=ActionResponse)
async def start_queue(queue: Queue) -> ActionResponse:
    queue.start()
    return ActionResponse(status="started")


@router.post("/queue/pause", response_model=ActionResponse)
async def pause_queue(queue: Queue) -> ActionResponse:
    queue.pause()
    return ActionResponse(status="paused")


@router.put("/queue/concurrency", response_model=ConcurrencyUpdate)
async def set_concurrency(update: ConcurrencyUpdate, queue: Queue) -> ConcurrencyUpdate:
    return ConcurrencyUpdate(value=queue.set_concurrency(update.value))


@router.post("/queue/clear-done", response_model=ActionResponse)
async def clear_done(queue: Queue) -> ActionResponse:
    removed = queue.clear_done()
    return ActionResponse(status=f"removed {removed}")


@router.get("/queue/status")
async def queue_status(queue: Queue) -> dict[str, Any]:
    return queue.status()


def _import(queue: VideoQueue, path: str, kind: str) -> ImportResponse:
    file_path = Path(path).expanduser()
    if not file_path.is_file():
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"File not found: {path}",
        )
    importer = queue.import_csv if kind == "csv" else queue.import_txt
    try:
        return ImportResponse(imported=importer(file_path))
    except (OSError, UnicodeDecodeError, csv.Error) as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e


@router.post("/imports/csv", response_model=ImportResponse)
async def import_csv(body: PathRequest, queue: Queue) -> ImportResponse:
    return _import(queue, body.path, "csv")


@router.post("/imports/txt", response_model=ImportResponse)
async def import_txt(body: PathRequest, queue: Queue) -> ImportResponse:
    return _import(queue, body.path, "txt")


@router.post("/watch", response_model=WatchResponse)
async def watch_folder(body: PathRequest, queue: Queue) -> WatchResponse:
    """Watch a folder for TXT/CSV prompt files (empty path stops watching)."""
    try:
        watching = queue.watch(body.path)
    except NotADirectoryError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    return WatchResponse(watching=watching, directory=queue.get_settings().watch_dir)
