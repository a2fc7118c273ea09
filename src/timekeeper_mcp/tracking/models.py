"""Data models for timers, sessions and the folder tree."""

from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def new_id() -> str:
    return str(uuid4())


class _Record(BaseModel):
    """Base model that serializes with the camelCase names used on disk."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, validate_assignment=True)


class SubTimer(_Record):
    """A single work session inside a timer.

    ``end_time`` absent means the session is running. ``total_elapsed_time``
    holds the milliseconds of every completed running segment; the segment in
    progress starts at ``last_resume_time``.
    """

    id: str = Field(default_factory=new_id)
    label: str
    description: str | None = None
    start_time: datetime
    end_time: datetime | None = None
    total_elapsed_time: int | None = None
    last_resume_time: datetime | None = None
    last_persisted_elapsed_time: int | None = None


class Timer(_Record):
    """A tracked activity made of one or more sequential sessions."""

    id: str = Field(default_factory=new_id)
    label: str
    start_time: datetime
    branch_name: str | None = None
    archived: bool = False
    folder_path: list[int] | None = None
    subtimers: list[SubTimer] = Field(default_factory=list)
    logs: list[str] = Field(default_factory=list)

    @field_validator("subtimers", "logs", mode="before")
    @classmethod
    def _none_as_empty(cls, value):
        return [] if value is None else value


class TimerFolder(_Record):
    """Organizational folder. An empty name denotes the implicit root bucket."""

    name: str
    icon: str | None = None
    timers: list[Timer] = Field(default_factory=list)
    subfolders: list[TimerFolder] = Field(default_factory=list)

    @field_validator("timers", "subfolders", mode="before")
    @classmethod
    def _none_as_empty(cls, value):
        return [] if value is None else value


class TimeTrackerConfig(_Record):
    """Root aggregate persisted as a whole after every mutation."""

    folders: list[TimerFolder] = Field(default_factory=list)
    ignored_branches: list[str] = Field(default_factory=list)
    auto_create_on_branch_checkout: bool = True
    enabled: bool = True

    @field_validator("folders", "ignored_branches", mode="before")
    @classmethod
    def _none_as_empty(cls, value):
        return [] if value is None else value


__all__ = ["SubTimer", "Timer", "TimerFolder", "TimeTrackerConfig", "new_id"]
