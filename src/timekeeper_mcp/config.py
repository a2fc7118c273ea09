"""Configuration management for Timekeeper MCP."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .tracking.drift import DriftPolicy


class TimekeeperSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    config_path: Path = Field(
        default=Path("./storage/timers.yaml"), validation_alias="TIMEKEEPER_CONFIG_PATH"
    )
    state_path: Path = Field(
        default=Path("./storage/state.json"), validation_alias="TIMEKEEPER_STATE_PATH"
    )
    chroma_persist_path: Path = Field(
        default=Path("./storage/chroma"), validation_alias="CHROMA_PERSIST_PATH"
    )
    repository: Path | None = Field(default=None, validation_alias="TIMEKEEPER_REPOSITORY")
    git_path: str | None = Field(default=None, validation_alias="GIT_PATH")
    log_level: str = Field(default="INFO", validation_alias="TIMEKEEPER_LOG_LEVEL")
    snapshot_interval: float = Field(default=30, validation_alias="TIMEKEEPER_SNAPSHOT_INTERVAL")
    drift_tolerance_multiplier: int = Field(
        default=3, validation_alias="TIMEKEEPER_DRIFT_TOLERANCE_MULTIPLIER"
    )
    resume_window: float = Field(default=300, validation_alias="TIMEKEEPER_RESUME_WINDOW")
    git_poll_interval: float = Field(default=2, validation_alias="TIMEKEEPER_GIT_POLL_INTERVAL")
    log_limit: int = Field(default=1000, validation_alias="TIMEKEEPER_LOG_LIMIT")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "TIMEKEEPER_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("repository", mode="before")
    @classmethod
    def _blank_repository(cls, value):
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        return value

    @field_validator(
        "snapshot_interval",
        "drift_tolerance_multiplier",
        "resume_window",
        "git_poll_interval",
        "log_limit",
    )
    @classmethod
    def _require_positive(cls, value, info):
        if value <= 0:
            raise ValueError(f"{info.field_name} must be > 0")
        return value

    def drift_policy(self) -> DriftPolicy:
        return DriftPolicy(
            snapshot_interval_ms=int(self.snapshot_interval * 1000),
            tolerance_multiplier=self.drift_tolerance_multiplier,
            resume_window_ms=int(self.resume_window * 1000),
        )


@lru_cache(maxsize=1)
def get_settings() -> TimekeeperSettings:
    """Return cached settings instance."""

    settings = TimekeeperSettings()
    settings.config_path = settings.config_path.expanduser().resolve()
    settings.state_path = settings.state_path.expanduser().resolve()
    settings.chroma_persist_path = settings.chroma_persist_path.expanduser().resolve()
    if settings.repository is not None:
        settings.repository = settings.repository.expanduser().resolve()
    return settings


__all__ = ["TimekeeperSettings", "get_settings"]
