"""Video queue service: the boundary used by the API, importers and watcher."""

import random
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

import structlog

from veo_queue.core.config import Settings, settings
from veo_queue.models.job import Job, JobStatus
from veo_queue.models.settings import CooldownState, QueueSettings, clamp_concurrency
from veo_queue.services.events import EventBus
from veo_queue.services.importers import PromptSpec, read_csv, read_prompts, read_txt
from veo_queue.services.pump import QueuePump
from veo_queue.services.quota import QuotaCooldownController
from veo_queue.services.runner import ClientFactory, JobRunner
from veo_queue.services.state import QueueState
from veo_queue.services.store import JsonStore
from veo_queue.services.timers import SchedulerTimers, Timers
from veo_queue.services.watcher import FolderWatcher

logger = structlog.get_logger()

EDITABLE_SETTINGS = frozenset(
    {
        "api_key",
        "output_dir",
        "watch_dir",
        "concurrency",
        "person_generation_default",
        "cost_cap_jobs",
    }
)


def default_queue_settings(config: Settings) -> QueueSettings:
    """Queue settings used when nothing has been persisted yet."""
    return QueueSettings(
        output_dir=config.default_output_dir,
        concurrency=config.default_concurrency,
        person_generation_default=config.default_person_generation,
        cost_cap_jobs=config.default_cost_cap_jobs,
        quota=CooldownState(
            backoff_seconds=config.initial_backoff_seconds,
            max_backoff_seconds=config.max_backoff_seconds,
        ),
    )


class VideoQueue:
    """Wires state, runner, cooldown and pump together for one process."""

    def __init__(
        self,
        config: Settings | None = None,
        *,
        store: JsonStore | None = None,
        events: EventBus | None = None,
        timers: Timers | None = None,
        client_factory: ClientFactory | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config or settings
        self.store = store or JsonStore(self.config.data_dir)
        self.events = events or EventBus()
        self._owned_timers = SchedulerTimers() if timers is None else None
        self.timers: Timers = timers or self._owned_timers  # type: ignore[assignment]

        self.state = QueueState(self.store, self.events, default_queue_settings(self.config))
        self.runner = JobRunner(
            self.state,
            self.events,
            self.timers,
            self.config,
            client_factory=client_factory,
            rng=rng,
        )
        self.cooldown = QuotaCooldownController(
            self.state,
            self.events,
            self.timers,
            on_resume=self._kick,
            tick_seconds=self.config.cooldown_tick_seconds,
            default_concurrency=self.config.default_concurrency,
        )
        self.pump = QueuePump(self.state, self.events, self.runner, self.cooldown)
        self.watcher = FolderWatcher(
            self.import_file, self.timers, interval=self.config.watch_interval_seconds
        )

    def _kick(self) -> None:
        self.pump.kick()

    # Lifecycle

    async def open(self) -> None:
        """Load persisted state and start processing."""
        self.state.load()
        self._ensure_output_dir()
        if self._owned_timers is not None:
            self._owned_timers.start()
        self.cooldown.restore()
        self.pump.start()
        logger.info(
            "Video queue opened",
            data_dir=str(self.store.data_dir),
            concurrency=self.state.settings.concurrency,
            cooldown_active=self.cooldown.active,
        )

    async def close(self) -> None:
        """Stop timers and in-flight work, then flush state."""
        self.watcher.stop()
        self.cooldown.close()
        await self.pump.stop()
        self.state.save_settings()
        self.state.save_jobs()
        if self._owned_timers is not None:
            self._owned_timers.shutdown()
        logger.info("Video queue closed")

    def _ensure_output_dir(self) -> None:
        output_dir = Path(self.state.settings.output_dir)
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning("Could not create output directory", path=str(output_dir), error=str(e))

    # Settings

    def get_settings(self) -> QueueSettings:
        return self.state.settings

    def update_settings(self, partial: Mapping[str, Any]) -> QueueSettings:
        """Merge user-editable fields into the settings and persist them.

        Raises:
            ValueError: On unknown fields or invalid values
        """
        unknown = set(partial) - EDITABLE_SETTINGS
        if unknown:
            raise ValueError(f"Unknown or read-only settings: {', '.join(sorted(unknown))}")

        changes = dict(partial)
        concurrency = changes.pop("concurrency", None)
        if concurrency is not None:
            try:
                concurrency = clamp_concurrency(concurrency)
            except (TypeError, ValueError) as e:
                raise ValueError(f"Invalid concurrency: {concurrency!r}") from e

        # Validate everything before touching the live settings
        merged = self.state.settings.model_dump()
        merged.update(changes)
        updated = QueueSettings.model_validate(merged)
        self.state.settings = updated

        if concurrency is not None:
            self._apply_concurrency(concurrency)

        self._ensure_output_dir()
        self.state.save_settings()
        logger.info("Settings updated", fields=sorted(partial))
        self.pump.kick()
        return updated

    # Jobs

    def list_jobs(self) -> list[Job]:
        return self.state.list_jobs()

    def enqueue(
        self,
        prompt: str,
        negative_prompt: str | None = None,
        seed: int | None = None,
        person_generation: str | None = None,
    ) -> str:
        """Add a job to the end of the queue. Returns its id.

        Raises:
            ValueError: If the prompt is empty
        """
        prompt = (prompt or "").strip()
        if not prompt:
            raise ValueError("Prompt is required")

        job = Job(
            prompt=prompt,
            negative_prompt=negative_prompt or None,
            seed=seed,
            person_generation=person_generation or self.state.settings.person_generation_default,
        )
        self.state.append(job)
        logger.info("Job enqueued", job_id=job.id)
        self.pump.kick()
        return job.id

    def retry(self, job_id: str) -> bool:
        """Requeue a failed job. No-op unless the job is in ``error``."""
        job = self.state.get(job_id)
        if job is None or job.status != JobStatus.ERROR:
            return False
        self.state.update_job(job_id, status=JobStatus.QUEUED, error=None)
        logger.info("Job requeued", job_id=job_id, attempts=job.attempts)
        self.pump.kick()
        return True

    def clear_done(self) -> int:
        removed = self.state.clear_done()
        logger.info("Cleared finished jobs", removed=removed)
        return removed

    # Queue control

    def start(self) -> None:
        """Reset the session dispatch counter and resume admission."""
        self.state.total_run_count = 0
        if self.state.settings.concurrency == 0 and not self.cooldown.active:
            self.state.settings.concurrency = self.config.default_concurrency
            self.state.save_settings()
        logger.info("Queue started", concurrency=self.state.settings.concurrency)
        self.pump.kick()

    def pause(self) -> None:
        """Stop new dispatches; running jobs finish on their own."""
        self._apply_concurrency(0)
        self.state.save_settings()
        self.state.touch()
        logger.info("Queue paused", running=self.state.running_count)

    def set_concurrency(self, value: int) -> int:
        """Set the concurrency limit, clamped to 0..8. Returns the stored value."""
        value = clamp_concurrency(value)
        self._apply_concurrency(value)
        self.state.save_settings()
        self.pump.kick()
        return value

    def _apply_concurrency(self, value: int) -> None:
        if self.cooldown.active:
            self.cooldown.set_concurrency(value)
        else:
            self.state.settings.concurrency = value

    def status(self) -> dict[str, Any]:
        """Counters and cooldown summary for observers."""
        quota = self.state.settings.quota
        counts = {s.value: 0 for s in JobStatus}
        for job in self.state.jobs:
            counts[job.status.value] += 1
        return {
            "concurrency": self.state.settings.concurrency,
            "running_count": self.state.running_count,
            "session_dispatches": self.state.total_run_count,
            "cost_cap_jobs": self.state.settings.cost_cap_jobs,
            "jobs": counts,
            "cooldown": {
                "active": quota.active,
                "remaining_seconds": self.cooldown.remaining_seconds(),
                "backoff_seconds": quota.backoff_seconds,
                "prev_concurrency": quota.prev_concurrency,
            },
        }

    # Bulk sources

    def import_file(self, path: Path) -> int:
        """Enqueue every valid record of a TXT or CSV file."""
        return self._enqueue_all(read_prompts(Path(path)), path)

    def import_txt(self, path: Path) -> int:
        return self._enqueue_all(read_txt(Path(path)), path)

    def import_csv(self, path: Path) -> int:
        return self._enqueue_all(read_csv(Path(path)), path)

    def _enqueue_all(self, specs: Iterable[PromptSpec], path: Path) -> int:
        count = 0
        for spec in specs:
            try:
                self.enqueue(
                    spec.prompt,
                    negative_prompt=spec.negative_prompt,
                    seed=spec.seed,
                    person_generation=spec.person_generation,
                )
            except ValueError:
                continue
            count += 1
        logger.info("Imported prompts", path=str(path), jobs=count)
        return count

    def watch(self, directory: str | Path | None) -> bool:
        """Watch a folder for prompt files; an empty value stops watching.

        Raises:
            NotADirectoryError: If the directory does not exist
        """
        if not directory:
            self.watcher.stop()
            self.state.settings.watch_dir = ""
            self.state.save_settings()
            return False

        path = Path(directory).expanduser()
        if not path.is_dir():
            raise NotADirectoryError(f"Not a directory: {path}")
        self.state.settings.watch_dir = str(path)
        self.state.save_settings()
        self.watcher.watch(path)
        return True
