"""Application configuration."""

from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    app_name: str = "Veo Queue"
    debug: bool = False
    log_json: bool = False

    # Server
    host: str = "127.0.0.1"
    port: int = 8000

    # Persistence
    data_dir: Path = Path.home() / ".veo-queue"

    # Gemini API (fallback credential when none is stored in the queue settings)
    gemini_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("GEMINI_API_KEY", "VEO_GEMINI_API_KEY"),
    )
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    video_model: str = "veo-3.0-generate-preview"
    aspect_ratio: str = "16:9"
    request_timeout_seconds: float = 60.0

    # Queue defaults
    default_output_dir: Path = Path.home() / "Videos" / "Veo3"
    default_concurrency: int = 2
    default_cost_cap_jobs: int = 100
    default_person_generation: str = "allow_all"

    # Job runner
    poll_interval_seconds: float = 10.0
    max_poll_seconds: float | None = None

    # Quota cooldown
    initial_backoff_seconds: float = 300.0
    max_backoff_seconds: float = 3600.0
    cooldown_tick_seconds: float = 1.0

    # Folder watcher
    watch_interval_seconds: float = 5.0

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "VEO_",
        "extra": "ignore",
    }


settings = Settings()
