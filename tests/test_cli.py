from __future__ import annotations

import argparse
import importlib.util
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from conftest import InMemoryChromaClient, ManualClock
from timekeeper_mcp.storage import ChromaStore, ChromaUnavailableError, ConfigStore, StateStore
from timekeeper_mcp.tracking import ConfigChange, SubTimer, Timer, TimerFolder, TimeTrackerConfig

T0 = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)


def _load_module(name: str):
    module_path = Path(__file__).resolve().parents[1] / "scripts" / "timekeeper_diag.py"
    spec = importlib.util.spec_from_file_location(name, module_path)
    assert spec and spec.loader
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture()
def paths(tmp_path: Path, monkeypatch) -> dict[str, Path]:
    config_path = tmp_path / "timers.yaml"
    state_path = tmp_path / "state.json"
    monkeypatch.setenv("TIMEKEEPER_CONFIG_PATH", str(config_path))
    monkeypatch.setenv("TIMEKEEPER_STATE_PATH", str(state_path))
    monkeypatch.setenv("CHROMA_PERSIST_PATH", str(tmp_path / "chroma"))
    ConfigStore(config_path).save(
        TimeTrackerConfig(
            folders=[
                TimerFolder(
                    name="",
                    timers=[
                        Timer(
                            id="t-paused",
                            label="Report",
                            start_time=T0,
                            subtimers=[
                                SubTimer(
                                    id="s-1",
                                    label="Session 1:",
                                    start_time=T0,
                                    end_time=T0 + timedelta(minutes=2),
                                    total_elapsed_time=120_000,
                                )
                            ],
                        ),
                        Timer(id="t-archived", label="Old", start_time=T0, archived=True),
                    ],
                ),
                TimerFolder(
                    name="Clients",
                    timers=[
                        Timer(
                            id="t-branch",
                            label="Branch: main",
                            start_time=T0,
                            branch_name="main",
                            subtimers=[SubTimer(id="s-2", label="Session 1:", start_time=T0, last_resume_time=T0)],
                        )
                    ],
                ),
            ]
        )
    )
    return {"config": config_path, "state": state_path}


def test_timers_json(paths, capsys) -> None:
    diag = _load_module("timekeeper_diag_timers")

    diag.cmd_timers(argparse.Namespace(json=True, archived=False))

    payload = json.loads(capsys.readouterr().out)
    assert [item["id"] for item in payload] == ["t-paused", "t-branch"]
    assert payload[0]["elapsed_ms"] == 120_000
    assert payload[1]["running"] is True


def test_timers_text_includes_archived(paths, capsys) -> None:
    diag = _load_module("timekeeper_diag_text")

    diag.cmd_timers(argparse.Namespace(json=False, archived=True))

    lines = capsys.readouterr().out.splitlines()
    assert len(lines) == 3
    assert lines[0] == "t-paused [paused] Report -> 2m 0s"


def test_sessions_unknown_timer_exits(paths, capsys) -> None:
    diag = _load_module("timekeeper_diag_sessions")

    with pytest.raises(SystemExit):
        diag.cmd_sessions(argparse.Namespace(timer_id="missing"))
    assert "not found" in capsys.readouterr().out

    diag.cmd_sessions(argparse.Namespace(timer_id="t-paused"))
    sessions = json.loads(capsys.readouterr().out)
    assert sessions[0]["elapsed"] == "2m 0s"


def _journal(tmp_path: Path, corrections: int = 0) -> ChromaStore:
    clock = ManualClock(T0)
    journal = ChromaStore(tmp_path / "chroma", client_factory=InMemoryChromaClient, clock=clock)
    for idx in range(corrections):
        journal.record_change(
            ConfigChange(
                reason="drift_corrected",
                timer_id="t-branch" if idx % 2 == 0 else "t-paused",
                subtimer_id=f"s-{idx}",
                detail={"elapsed_before_ms": 900_000, "corrected_ms": 30_000, "gap_ms": 900_000},
            )
        )
        clock.advance(minutes=1)
    return journal


def test_metrics_counts_corrections(paths, tmp_path, monkeypatch, capsys) -> None:
    diag = _load_module("timekeeper_diag_metrics")
    journal = _journal(tmp_path, corrections=2)
    journal.record_change(ConfigChange(reason="subtimer_paused", timer_id="t-branch"))
    monkeypatch.setattr(diag, "load_store", lambda _settings: journal)

    diag.cmd_metrics(argparse.Namespace())

    metrics = json.loads(capsys.readouterr().out)
    assert metrics["timers_total"] == 3
    assert metrics["timers_running"] == 1
    assert metrics["timers_archived"] == 1
    assert metrics["branch_timers"] == 1
    assert metrics["folders_total"] == 1
    assert metrics["drift_corrections"] == 2


def test_metrics_without_chroma(paths, tmp_path, monkeypatch, capsys) -> None:
    diag = _load_module("timekeeper_diag_metrics_offline")

    def unavailable():
        raise ChromaUnavailableError("chromadb missing")

    journal = ChromaStore(tmp_path / "chroma", client_factory=unavailable)
    monkeypatch.setattr(diag, "load_store", lambda _settings: journal)

    diag.cmd_metrics(argparse.Namespace())

    assert json.loads(capsys.readouterr().out)["drift_corrections"] is None


def test_corrections_limit_and_filter(paths, tmp_path, monkeypatch, capsys) -> None:
    diag = _load_module("timekeeper_diag_corrections")
    journal = _journal(tmp_path, corrections=5)
    monkeypatch.setattr(diag, "load_store", lambda _settings: journal)

    diag.cmd_corrections(argparse.Namespace(timer_id="t-branch", limit=2))

    payload = json.loads(capsys.readouterr().out)
    assert [item["subtimer_id"] for item in payload] == ["s-2", "s-4"]
    assert payload[0]["corrected_ms"] == 30_000
    assert payload[0]["discarded_ms"] == 870_000
    assert payload[1]["timestamp"] == (T0 + timedelta(minutes=4)).isoformat()


def test_marker(paths, capsys) -> None:
    diag = _load_module("timekeeper_diag_marker")

    diag.cmd_marker(argparse.Namespace())
    assert json.loads(capsys.readouterr().out)["present"] is False

    state = StateStore(paths["state"])
    state.set("time_tracker.auto_paused_at", T0.isoformat())
    state.set("time_tracker.auto_paused_timers", ["t-branch"])

    diag.cmd_marker(argparse.Namespace())
    marker = json.loads(capsys.readouterr().out)
    assert marker["present"] is True
    assert marker["timers"] == ["t-branch"]


def test_unreadable_config_exits(tmp_path: Path, monkeypatch, capsys) -> None:
    config_path = tmp_path / "timers.yaml"
    config_path.write_text("folders: [", encoding="utf-8")
    monkeypatch.setenv("TIMEKEEPER_CONFIG_PATH", str(config_path))
    diag = _load_module("timekeeper_diag_unreadable")

    with pytest.raises(SystemExit) as excinfo:
        diag.main(["timers"])

    assert excinfo.value.code == 1
    assert "Timer configuration unreadable" in capsys.readouterr().out
    assert config_path.exists()
