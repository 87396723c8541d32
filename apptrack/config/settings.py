"""Configuration settings for apptrack."""

import json
from pathlib import Path
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings have sensible defaults and can be overridden via
    environment variables (prefixed with ``APPTRACK_``) or a .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="APPTRACK_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        enable_decoding=False,
        extra="ignore",
    )

    # Storage
    db_path: Path = Field(
        default=Path("./data/apptrack.db"),
        description="Path to the SQLite database shared by all workers",
    )

    # Scheduling defaults
    default_timezone: str = Field(
        default="America/New_York",
        description="Timezone recorded on schedules when the caller gives none",
    )
    reminder_offsets_minutes: list[int] = Field(
        default_factory=lambda: [1440, 180, 60],
        description="Minutes before the deadline at which reminders fire",
    )

    # Background sweeps
    reminder_batch_size: Annotated[int, Field(gt=0)] = Field(
        default=50,
        description="Maximum schedules scanned per reminder dispatch run",
    )
    expiration_batch_size: Annotated[int, Field(gt=0)] = Field(
        default=200,
        description="Page size used by the expiration sweeper",
    )

    # Collaborators
    profiles_path: Path | None = Field(
        default=None,
        description="YAML/JSON file with per-user profile data (email fallback)",
    )
    outbox_path: Path | None = Field(
        default=None,
        description="If set, notifications are appended to this JSON Lines file",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR",
    )
    log_file: Path | None = Field(
        default=None,
        description="If set, log records are also appended to this file",
    )

    @field_validator("reminder_offsets_minutes", mode="before")
    @classmethod
    def parse_reminder_offsets(cls, v: object) -> list[int]:
        """Parse reminder offsets from env-friendly formats.

        Supports:
        - JSON list: [1440, 180, 60]
        - Comma-separated: 1440, 180, 60
        """
        if v is None:
            return []

        if isinstance(v, (list, tuple)):
            items = list(v)
        elif isinstance(v, str):
            raw = v.strip()
            if not raw:
                return []
            if raw.startswith("["):
                try:
                    items = json.loads(raw)
                except json.JSONDecodeError as e:
                    raise ValueError(f"Invalid reminder offsets: {v}") from e
            else:
                items = [chunk for chunk in raw.split(",") if chunk.strip()]
        else:
            items = [v]

        offsets: list[int] = []
        for item in items:
            minutes = int(str(item).strip())
            if minutes <= 0:
                raise ValueError("Reminder offsets must be positive minute counts")
            offsets.append(minutes)
        return offsets

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a known level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()

    @field_validator("default_timezone", mode="before")
    @classmethod
    def validate_default_timezone(cls, v: str) -> str:
        """Reject blank timezone names."""
        if not isinstance(v, str) or not v.strip():
            raise ValueError("default_timezone must be a non-empty string")
        return v.strip()


# Singleton instance for easy import
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the application settings singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset the settings singleton (useful for testing)."""
    global _settings
    _settings = None
