"""Storage abstractions for Timekeeper MCP."""

from .chroma import ChromaEvent, ChromaStore, ChromaUnavailableError, DriftCorrectionEvent
from .config_store import ConfigLoadError, ConfigStore
from .models import AutoPauseMarker, SubTimerRef
from .state import StateStore

__all__ = [
    "AutoPauseMarker",
    "ChromaEvent",
    "ChromaStore",
    "ChromaUnavailableError",
    "ConfigLoadError",
    "ConfigStore",
    "DriftCorrectionEvent",
    "StateStore",
    "SubTimerRef",
]
