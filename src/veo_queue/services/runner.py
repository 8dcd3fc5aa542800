"""Job runner: drives one job through start, poll and download."""

import random
import re
from collections.abc import Awaitable, Callable
from datetime import datetime
from pathlib import Path
from typing import TypeVar

import structlog

from veo_queue.core.config import Settings
from veo_queue.models.job import Job, JobStatus
from veo_queue.services.events import EventBus
from veo_queue.services.quota import is_quota_error
from veo_queue.services.state import QueueState
from veo_queue.services.timers import Timers
from veo_queue.services.veo import (
    GenerationConfig,
    Operation,
    RemoteOperationClient,
    VeoClient,
)

logger = structlog.get_logger()

T = TypeVar("T")

SLUG_MAX_LENGTH = 60
PROGRESS_START = 5
PROGRESS_CEILING = 95
ETA_START = 90
ETA_STEP = 5
ETA_FLOOR = 5

_UNSAFE_CHARS_RE = re.compile(r'[/\\?<>:*|"\x00-\x1f\x80-\x9f]')
_RESERVED_RE = re.compile(r"^\.+$")
_WINDOWS_RESERVED_RE = re.compile(r"^(con|prn|aux|nul|com[0-9]|lpt[0-9])(\..*)?$", re.IGNORECASE)
_TRAILING_RE = re.compile(r"[. ]+$")

ClientFactory = Callable[[str], RemoteOperationClient]


class JobFailure(Exception):
    """A dispatch failed; ``quota`` marks provider rate limiting."""

    def __init__(self, message: str, quota: bool = False) -> None:
        super().__init__(message)
        self.quota = quota


def slugify(prompt: str) -> str:
    """Build a filesystem-safe slug of at most 60 characters from a prompt."""
    clean = re.sub(r"\s+", " ", prompt).strip()[:SLUG_MAX_LENGTH]
    clean = _UNSAFE_CHARS_RE.sub("", clean)
    if _RESERVED_RE.match(clean) or _WINDOWS_RESERVED_RE.match(clean):
        clean = ""
    clean = _TRAILING_RE.sub("", clean)
    return re.sub(r"\s", "_", clean)


def format_timestamp(when: datetime) -> str:
    return when.strftime("%Y-%m-%d_%H-%M-%S")


def output_filename(prompt: str, when: datetime) -> str:
    """Deterministic output file name for a prompt and timestamp."""
    slug = slugify(prompt) or "video"
    return f"{format_timestamp(when)}__{slug}.mp4"


def tick_progress(job: Job, rng: random.Random) -> None:
    """Advance the heuristic progress and ETA of a running job."""
    if job.status != JobStatus.RUNNING:
        return
    job.progress = min(PROGRESS_CEILING, (job.progress or PROGRESS_START) + rng.randint(1, 5))
    job.eta = max(ETA_FLOOR, (job.eta or 60) - ETA_STEP)


def build_generation_config(job: Job, aspect_ratio: str) -> GenerationConfig:
    return GenerationConfig(
        aspect_ratio=aspect_ratio,
        negative_prompt=job.negative_prompt or None,
        seed=job.seed,
        person_generation=job.person_generation or None,
    )


class JobRunner:
    """Runs a single dispatch of a job against the remote generator.

    ``run`` returns when the job is done and raises ``JobFailure`` on any
    failure; it never changes the job's status to ``error`` itself.
    """

    def __init__(
        self,
        state: QueueState,
        events: EventBus,
        timers: Timers,
        config: Settings,
        client_factory: ClientFactory | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.state = state
        self.events = events
        self.timers = timers
        self.config = config
        self.client_factory = client_factory or (lambda api_key: VeoClient(api_key=api_key))
        self.rng = rng or random.Random()

    def _api_key(self) -> str | None:
        return self.state.settings.api_key or self.config.gemini_api_key

    async def run(self, job: Job) -> None:
        """Start, poll and download one job.

        Args:
            job: A job already marked running by the pump

        Raises:
            JobFailure: On a missing credential or any remote failure
        """
        api_key = self._api_key()
        if not api_key:
            raise JobFailure("Missing Gemini API key. Set it in Settings.")

        client = self.client_factory(api_key)
        log = logger.bind(job_id=job.id, attempt=job.attempts)

        job.progress = PROGRESS_START
        job.eta = ETA_START
        job.started_at = datetime.now()
        self.state.touch()

        config = build_generation_config(job, self.config.aspect_ratio)
        log.info("Starting generation", config=config.to_parameters())

        async def start() -> Operation:
            started_op = await client.start(job.prompt, config)
            started_op.raise_for_error()
            return started_op

        operation = await self._phase("Start generation failed", start)

        started = self.timers.now()

        async def poll_until_done() -> None:
            nonlocal operation
            while not operation.done:
                ceiling = self.config.max_poll_seconds
                if ceiling is not None and self.timers.now() - started >= ceiling:
                    raise JobFailure(f"Polling timed out after {ceiling:g}s")
                await self.timers.sleep(self.config.poll_interval_seconds)
                tick_progress(job, self.rng)
                self.state.touch()
                operation = await client.poll(operation)
                operation.raise_for_error()

        await self._phase("Polling failed", poll_until_done)
        log.info("Generation finished", operation=operation.name)

        artifact = operation.first_artifact()
        if artifact is None:
            raise JobFailure("Download failed: No video in response")

        output_dir = Path(self.state.settings.output_dir)
        fname = output_filename(job.prompt, datetime.now())
        out_path = output_dir / fname

        async def download() -> None:
            output_dir.mkdir(parents=True, exist_ok=True)
            await client.download(artifact, out_path)

        await self._phase("Download failed", download)

        job.output = str(out_path)
        job.progress = 100
        job.eta = 0
        job.status = JobStatus.DONE
        job.finished_at = datetime.now()
        log.info("Job completed", output=job.output)
        self.events.notify("Video ready", f"Saved: {fname}")

    async def _phase(self, label: str, step: Callable[[], Awaitable[T]]) -> T:
        """Run one phase, converting any failure into a classified JobFailure."""
        try:
            return await step()
        except JobFailure:
            raise
        except Exception as e:
            message = str(e) or type(e).__name__
            raise JobFailure(f"{label}: {message}", quota=is_quota_error(message)) from e
