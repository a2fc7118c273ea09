"""Small JSON key-value store for process state that outlives a run."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any

from .config_store import atomic_write_text

logger = logging.getLogger(__name__)


class StateStore:
    """Persist JSON-compatible values by key; every write goes straight to disk."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()
        self._data = self._read()

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("Discarding unreadable state file", extra={"path": str(self._path)})
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value
            self._write()

    def delete(self, key: str) -> None:
        with self._lock:
            if key in self._data:
                del self._data[key]
                self._write()

    def _write(self) -> None:
        atomic_write_text(self._path, json.dumps(self._data, indent=2, sort_keys=True))


__all__ = ["StateStore"]
