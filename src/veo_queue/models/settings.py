"""Persisted queue settings and quota cooldown state."""

from pathlib import Path

from pydantic import BaseModel, Field, field_validator

MAX_CONCURRENCY = 8


def clamp_concurrency(value: int) -> int:
    """Clamp a concurrency limit to the supported range."""
    return max(0, min(MAX_CONCURRENCY, int(value)))


class CooldownState(BaseModel):
    """Quota cooldown bookkeeping, persisted so a restart can re-arm it."""

    active: bool = False
    next_retry_at: float | None = None
    prev_concurrency: int | None = None
    backoff_seconds: float = 300.0
    max_backoff_seconds: float = 3600.0


class QueueSettings(BaseModel):
    """User-editable queue settings."""

    api_key: str = ""
    output_dir: Path
    watch_dir: str = ""
    concurrency: int = 2
    person_generation_default: str = "allow_all"
    cost_cap_jobs: int = 100
    quota: CooldownState = Field(default_factory=CooldownState)

    @field_validator("concurrency", mode="before")
    @classmethod
    def _clamp(cls, value: object) -> int:
        try:
            return clamp_concurrency(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return 0

    @field_validator("cost_cap_jobs")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("cost_cap_jobs must be >= 0")
        return value
