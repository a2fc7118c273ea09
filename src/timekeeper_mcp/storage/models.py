"""Records kept outside the timer aggregate."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(slots=True, frozen=True)
class SubTimerRef:
    timer_id: str
    subtimer_id: str

    def to_dict(self) -> dict[str, str]:
        return {"timerId": self.timer_id, "subtimerId": self.subtimer_id}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SubTimerRef:
        return cls(timer_id=str(data["timerId"]), subtimer_id=str(data["subtimerId"]))


@dataclass(slots=True)
class AutoPauseMarker:
    """Sessions paused by a clean shutdown, to be resumed on the next start."""

    paused_at: datetime
    timer_ids: list[str] = field(default_factory=list)
    subtimer_refs: list[SubTimerRef] = field(default_factory=list)


__all__ = ["AutoPauseMarker", "SubTimerRef"]
