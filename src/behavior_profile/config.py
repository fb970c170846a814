"""Configuration management for the behavior profile engine."""

from __future__ import annotations

from functools import lru_cache
from typing import Self

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_parse_none_str="",
        env_parse_enums=True,
    )

    # Application
    environment: str = Field(default="production", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")

    # Logging Configuration
    log_to_file: bool = Field(default=False, description="Enable file-based logging")
    log_directory: str = Field(default="logs", description="Directory for log files")
    log_file_max_bytes: int = Field(
        default=10485760,  # 10MB
        description="Max size per log file before rotation",
    )
    log_file_backup_count: int = Field(
        default=5, description="Number of rotated log files to keep"
    )
    log_file_prefix: str = Field(default="behavior_profile", description="Prefix for log files")

    @property
    def log_file_path(self) -> str:
        """Get the full log file path."""
        return f"{self.log_directory}/{self.log_file_prefix}.log"

    # Ollama Configuration (on-device inference)
    ollama_host: str = Field(default="localhost", description="Ollama host")
    ollama_port: int = Field(default=11434, description="Ollama API port")
    ollama_model: str = Field(
        default="llama3.2:3b", description="Ollama model used for enrichment and summaries"
    )
    ollama_timeout: float = Field(default=60.0, description="Ollama API timeout in seconds")
    ollama_keep_alive: str = Field(
        default="10m", description="How long Ollama keeps the model loaded between calls"
    )
    ollama_temperature: float = Field(default=0.2, description="Sampling temperature")

    # Storage
    events_db_path: str = Field(
        default="data/events.db", description="SQLite database for activity events"
    )
    profile_db_path: str = Field(
        default="data/profile.db", description="SQLite database for profile records"
    )
    tasks_db_path: str = Field(
        default="data/tasks.db", description="SQLite database for deferred background tasks"
    )
    profile_user_id: str = Field(
        default="default", description="Fixed key under which the profile record is stored"
    )
    stp_history_limit: int = Field(
        default=50, description="Number of short-term profiles kept in history"
    )

    # Scheduler / background release
    scheduler_background_queue_limit: int = Field(
        default=10, description="Queue depth at or above which background work is refused"
    )
    releaser_min_pending: int = Field(
        default=3, description="Minimum pending background tasks before a batch is released"
    )
    releaser_batch_size: int = Field(
        default=5, description="Maximum background tasks released per tick"
    )

    @field_validator("ollama_temperature")
    @classmethod
    def validate_temperature(cls, v: float) -> float:
        """Validate temperature is between 0 and 2."""
        if not 0 <= v <= 2:
            raise ValueError(f"ollama_temperature must be between 0 and 2, got: {v}")
        return v

    @field_validator(
        "stp_history_limit",
        "scheduler_background_queue_limit",
        "releaser_batch_size",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate limits are positive."""
        if v < 1:
            raise ValueError(f"Value must be at least 1, got: {v}")
        return v

    @model_validator(mode="after")
    def validate_release_thresholds(self) -> Self:
        """Validate the releaser can ever fire."""
        if self.releaser_min_pending < 0:
            raise ValueError("releaser_min_pending must not be negative")
        return self

    @property
    def ollama_url(self) -> str:
        """Get the full Ollama URL."""
        return f"http://{self.ollama_host}:{self.ollama_port}"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
