"""File persistence for the timer aggregate."""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
from contextlib import suppress
from pathlib import Path

import yaml
from pydantic import ValidationError

from ..tracking.models import TimeTrackerConfig

logger = logging.getLogger(__name__)


class ConfigLoadError(RuntimeError):
    """Raised when the persisted timer configuration cannot be parsed or validated."""


def atomic_write_text(path: Path, text: str) -> None:
    """Write ``text`` to a sibling temp file and rename it over ``path``."""

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
        os.replace(tmp_name, path)
    except BaseException:
        with suppress(OSError):
            os.unlink(tmp_name)
        raise


class ConfigStore:
    """Loads and saves :class:`TimeTrackerConfig` as YAML (or JSON for ``.json`` paths).

    Every save keeps the previous file as ``<name>.bak``. A file that fails to
    parse is moved aside to ``<name>.corrupt`` and replaced by the backup when
    the backup is valid, otherwise by an empty configuration.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def backup_path(self) -> Path:
        return self._path.with_name(self._path.name + ".bak")

    @property
    def corrupt_path(self) -> Path:
        return self._path.with_name(self._path.name + ".corrupt")

    @property
    def is_json(self) -> bool:
        return self._path.suffix.lower() == ".json"

    def _read(self, path: Path) -> TimeTrackerConfig:
        try:
            text = path.read_text(encoding="utf-8")
            document = json.loads(text) if self.is_json else yaml.safe_load(text)
        except (OSError, ValueError, yaml.YAMLError) as exc:
            raise ConfigLoadError(f"Failed to parse timer configuration in {path}: {exc}") from exc

        if document is None:
            return TimeTrackerConfig()

        try:
            return TimeTrackerConfig.model_validate(document)
        except ValidationError as exc:
            raise ConfigLoadError(f"Timer configuration validation error in {path}: {exc}") from exc

    def load(self, *, strict: bool = False) -> TimeTrackerConfig:
        if not self._path.exists():
            return TimeTrackerConfig()

        try:
            return self._read(self._path)
        except ConfigLoadError as exc:
            if strict:
                raise
            logger.warning("Timer configuration unreadable", extra={"path": str(self._path), "error": str(exc)})

        self._quarantine()
        if self.backup_path.exists():
            try:
                config = self._read(self.backup_path)
            except ConfigLoadError as exc:
                logger.warning("Timer configuration backup unreadable", extra={"error": str(exc)})
            else:
                logger.warning("Restored timer configuration from backup", extra={"path": str(self.backup_path)})
                return config
        return TimeTrackerConfig()

    def _quarantine(self) -> None:
        try:
            os.replace(self._path, self.corrupt_path)
        except OSError:
            logger.exception("Failed to move corrupt timer configuration aside")

    def dump(self, config: TimeTrackerConfig) -> str:
        data = config.model_dump(mode="json", by_alias=True, exclude_none=True)
        if self.is_json:
            return json.dumps(data, indent=2) + "\n"
        return yaml.safe_dump(data, sort_keys=False, allow_unicode=True)

    def save(self, config: TimeTrackerConfig) -> None:
        text = self.dump(config)
        if self._path.exists():
            shutil.copy2(self._path, self.backup_path)
        atomic_write_text(self._path, text)


__all__ = ["ConfigLoadError", "ConfigStore", "atomic_write_text"]
