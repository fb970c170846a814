"""Unit tests for settings."""

import pytest
from pydantic import ValidationError

from behavior_profile.config import Settings, get_settings


class TestSettings:
    """Tests for the Settings model."""

    def test_defaults(self):
        """Test default values."""
        settings = Settings(_env_file=None)

        assert settings.ollama_url == "http://localhost:11434"
        assert settings.ollama_model == "llama3.2:3b"
        assert settings.scheduler_background_queue_limit == 10
        assert settings.releaser_min_pending == 3
        assert settings.releaser_batch_size == 5
        assert settings.is_development is False
        assert settings.log_file_path == "logs/behavior_profile.log"

    def test_environment_override(self, monkeypatch):
        """Test values are read from the environment."""
        monkeypatch.setenv("OLLAMA_HOST", "ollama")
        monkeypatch.setenv("OLLAMA_PORT", "8080")
        monkeypatch.setenv("ENVIRONMENT", "Development")

        settings = Settings(_env_file=None)

        assert settings.ollama_url == "http://ollama:8080"
        assert settings.is_development is True

    @pytest.mark.parametrize(
        ("field", "value"),
        [
            ("ollama_temperature", 3.0),
            ("releaser_batch_size", 0),
            ("scheduler_background_queue_limit", 0),
            ("releaser_min_pending", -1),
        ],
    )
    def test_invalid_values(self, field, value):
        """Test out-of-range values are rejected."""
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **{field: value})

    def test_get_settings_is_cached(self):
        """Test the settings instance is reused."""
        assert get_settings() is get_settings()
