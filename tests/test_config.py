"""Tests for configuration settings."""

import os
from pathlib import Path
from unittest.mock import patch

from veo_queue.core.config import Settings


class TestSettingsDefaults:
    """Tests for default configuration values."""

    def test_default_app_name(self) -> None:
        """Default app name should be 'Veo Queue'."""
        settings = Settings()
        assert settings.app_name == "Veo Queue"

    def test_default_poll_interval(self) -> None:
        """Remote operations should be polled every 10 seconds."""
        settings = Settings()
        assert settings.poll_interval_seconds == 10

    def test_no_poll_ceiling_by_default(self) -> None:
        """Polling should be unbounded unless a ceiling is configured."""
        settings = Settings()
        assert settings.max_poll_seconds is None

    def test_backoff_starts_in_minutes(self) -> None:
        """Initial backoff should be minutes, capped at one hour."""
        settings = Settings()
        assert settings.initial_backoff_seconds >= 60
        assert settings.max_backoff_seconds == 3600

    def test_default_queue_limits(self) -> None:
        """Default concurrency is 2 and cost cap is 100 dispatches."""
        settings = Settings()
        assert settings.default_concurrency == 2
        assert settings.default_cost_cap_jobs == 100

    def test_fixed_aspect_ratio(self) -> None:
        """Aspect ratio should be 16:9."""
        settings = Settings()
        assert settings.aspect_ratio == "16:9"


class TestSettingsFromEnvironment:
    """Tests for loading settings from environment variables."""

    def test_gemini_api_key_from_env(self) -> None:
        """The bare GEMINI_API_KEY variable should be honoured."""
        with patch.dict(os.environ, {"GEMINI_API_KEY": "key-123"}):
            settings = Settings()
            assert settings.gemini_api_key == "key-123"

    def test_prefixed_api_key_from_env(self) -> None:
        """VEO_GEMINI_API_KEY should also be accepted."""
        with patch.dict(os.environ, {"VEO_GEMINI_API_KEY": "key-456"}, clear=False):
            os.environ.pop("GEMINI_API_KEY", None)
            settings = Settings()
            assert settings.gemini_api_key == "key-456"

    def test_data_dir_from_env(self) -> None:
        """Data directory should be loadable from environment."""
        with patch.dict(os.environ, {"VEO_DATA_DIR": "/tmp/veo-data"}):
            settings = Settings()
            assert settings.data_dir == Path("/tmp/veo-data")

    def test_poll_ceiling_from_env(self) -> None:
        """Poll ceiling should be loadable from environment."""
        with patch.dict(os.environ, {"VEO_MAX_POLL_SECONDS": "900"}):
            settings = Settings()
            assert settings.max_poll_seconds == 900

    def test_port_from_env(self) -> None:
        """Port should be loadable from environment."""
        with patch.dict(os.environ, {"VEO_PORT": "3000"}):
            settings = Settings()
            assert settings.port == 3000


class TestSettingsTypes:
    """Tests for settings type validation."""

    def test_debug_is_bool(self) -> None:
        """Debug setting should be a boolean."""
        settings = Settings()
        assert isinstance(settings.debug, bool)

    def test_data_dir_is_path(self) -> None:
        """Data directory should be a Path."""
        settings = Settings()
        assert isinstance(settings.data_dir, Path)
