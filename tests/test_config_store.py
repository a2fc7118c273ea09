from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest
import yaml

from timekeeper_mcp.storage import ConfigLoadError, ConfigStore
from timekeeper_mcp.tracking import SubTimer, Timer, TimerFolder, TimeTrackerConfig

T0 = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)


def _config() -> TimeTrackerConfig:
    return TimeTrackerConfig(
        folders=[
            TimerFolder(
                name="",
                timers=[
                    Timer(
                        id="t1",
                        label="Branch: main",
                        start_time=T0,
                        branch_name="main",
                        subtimers=[
                            SubTimer(
                                id="s1",
                                label="Session 1:",
                                start_time=T0,
                                total_elapsed_time=1500,
                                last_resume_time=T0,
                                last_persisted_elapsed_time=1500,
                            )
                        ],
                        logs=["09:00:00 - Timer created"],
                    )
                ],
            )
        ],
        ignored_branches=["release"],
    )


def test_missing_file_loads_defaults(tmp_path: Path) -> None:
    config = ConfigStore(tmp_path / "timers.yaml").load()
    assert config == TimeTrackerConfig()
    assert config.enabled and config.auto_create_on_branch_checkout


def test_yaml_round_trip_uses_camel_case(tmp_path: Path) -> None:
    store = ConfigStore(tmp_path / "timers.yaml")
    store.save(_config())

    document = yaml.safe_load(store.path.read_text(encoding="utf-8"))
    timer = document["folders"][0]["timers"][0]
    assert timer["branchName"] == "main"
    assert timer["subtimers"][0]["lastPersistedElapsedTime"] == 1500
    assert "endTime" not in timer["subtimers"][0]
    assert document["autoCreateOnBranchCheckout"] is True

    assert store.load() == _config()


def test_json_path_reads_original_format(tmp_path: Path) -> None:
    path = tmp_path / "timers.json"
    path.write_text(
        json.dumps(
            {
                "folders": [
                    {
                        "name": "",
                        "timers": [
                            {
                                "id": "t1",
                                "label": "Legacy",
                                "startTime": "2025-01-06T09:00:00.000Z",
                                "archived": False,
                                "subtimers": [
                                    {
                                        "id": "s1",
                                        "label": "Session 1:",
                                        "startTime": "2025-01-06T09:00:00.000Z",
                                        "endTime": "2025-01-06T09:10:00.000Z",
                                    }
                                ],
                            }
                        ],
                    }
                ],
                "autoCreateOnBranchCheckout": False,
            }
        ),
        encoding="utf-8",
    )

    config = ConfigStore(path).load()

    timer = config.folders[0].timers[0]
    assert timer.subtimers[0].end_time == datetime(2025, 1, 6, 9, 10, tzinfo=timezone.utc)
    assert timer.subtimers[0].total_elapsed_time is None
    assert timer.logs == []
    assert config.auto_create_on_branch_checkout is False


def test_save_keeps_backup_of_previous_file(tmp_path: Path) -> None:
    store = ConfigStore(tmp_path / "timers.yaml")
    store.save(TimeTrackerConfig())
    store.save(_config())

    assert store.backup_path.exists()
    assert ConfigStore(store.backup_path).load() == TimeTrackerConfig()
    assert not list(tmp_path.glob(".timers.yaml.*.tmp"))


def test_corrupt_file_restored_from_backup(tmp_path: Path, caplog) -> None:
    store = ConfigStore(tmp_path / "timers.yaml")
    store.save(_config())
    store.save(_config())
    store.path.write_text("folders: [unterminated", encoding="utf-8")

    assert store.load() == _config()
    assert store.corrupt_path.exists()
    assert "Restored timer configuration from backup" in caplog.text


def test_corrupt_file_without_backup_falls_back_to_defaults(tmp_path: Path) -> None:
    store = ConfigStore(tmp_path / "timers.yaml")
    store.path.write_text("folders: 12", encoding="utf-8")

    assert store.load() == TimeTrackerConfig()
    assert store.corrupt_path.read_text(encoding="utf-8") == "folders: 12"
    assert not store.path.exists()


def test_strict_load_raises(tmp_path: Path) -> None:
    store = ConfigStore(tmp_path / "timers.json")
    store.path.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigLoadError):
        store.load(strict=True)
    assert store.path.exists()
