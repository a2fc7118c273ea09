from __future__ import annotations

from pathlib import Path

import pytest

from conftest import InMemoryChromaClient, ManualClock
from timekeeper_mcp.storage import ChromaStore, ChromaUnavailableError
from timekeeper_mcp.tracking import ConfigChange


@pytest.fixture()
def journal(tmp_path: Path, clock: ManualClock) -> ChromaStore:
    return ChromaStore(tmp_path, client_factory=InMemoryChromaClient, clock=clock)


def _correction(timer_id: str, before: int, corrected: int) -> ConfigChange:
    return ConfigChange(
        reason="drift_corrected",
        timer_id=timer_id,
        subtimer_id=f"{timer_id}-session",
        detail={
            "elapsed_before_ms": before,
            "persisted_ms": corrected,
            "corrected_ms": corrected,
            "drift_ms": before - corrected,
            "gap_ms": before,
        },
    )


def test_record_and_fetch_events(journal: ChromaStore) -> None:
    event = journal.record_event(
        timer_id="timer-1",
        event_type="subtimer_paused",
        body={"elapsed_ms": 1000},
        metadata={"subtimer_id": "s1"},
    )

    assert event.timer_id == "timer-1"
    assert event.sequence == 1

    [fetched] = journal.fetch_timer_events("timer-1")
    assert fetched.metadata["subtimer_id"] == "s1"
    assert fetched.body() == {"elapsed_ms": 1000}


def test_fetch_limit_keeps_latest(journal: ChromaStore, clock: ManualClock) -> None:
    for index in range(3):
        journal.record_event(timer_id="timer-2", event_type=f"e{index}", body="x")
        clock.advance(seconds=1)

    events = journal.fetch_timer_events("timer-2", limit=2)

    assert [event.event_type for event in events] == ["e1", "e2"]
    assert [event.sequence for event in events] == [2, 3]


def test_record_change_flattens_metadata(journal: ChromaStore) -> None:
    event = journal.record_change(
        ConfigChange(reason="timer_moved", timer_id="timer-3", detail={"folder_path": [1, 0], "previous": None})
    )

    assert event is not None
    assert event.event_type == "timer_moved"
    assert event.metadata["folder_path"] == "[1, 0]"
    assert "previous" not in event.metadata
    assert event.body()["folder_path"] == [1, 0]


def test_record_change_skips_snapshots_and_files_tracker_changes(journal: ChromaStore) -> None:
    assert journal.record_change(ConfigChange(reason="snapshot", detail={"sessions": 3})) is None
    assert journal.record_change(ConfigChange(reason="drift_checked", timer_id="t")) is None

    event = journal.record_change(ConfigChange(reason="tracking_toggled", detail={"enabled": False}))

    assert event.timer_id == "tracker"
    assert journal.search_events() == [event]


def test_search_filters(journal: ChromaStore) -> None:
    journal.record_change(ConfigChange(reason="commit_recorded", timer_id="t", detail={"message": "Fix auth"}))
    journal.record_change(ConfigChange(reason="commit_recorded", timer_id="t", detail={"message": "Fix logging"}))
    journal.record_change(_correction("u", 600_000, 60_000))

    results = journal.search_events("auth")
    assert len(results) == 1
    assert results[0].metadata["message"] == "Fix auth"
    assert len(journal.search_events(filters={"event_type": "drift_corrected"})) == 1


def test_fetch_drift_corrections(journal: ChromaStore, clock: ManualClock) -> None:
    journal.record_change(_correction("a", 660_000, 60_000))
    clock.advance(seconds=1)
    journal.record_change(_correction("b", 660_000, 60_000))
    clock.advance(seconds=1)
    journal.record_change(_correction("a", 100_000, 95_000))
    journal.record_change(ConfigChange(reason="subtimer_paused", timer_id="a"))

    corrections = journal.fetch_drift_corrections()
    assert [(item.timer_id, item.discarded_ms) for item in corrections] == [
        ("a", 600_000),
        ("b", 600_000),
        ("a", 5_000),
    ]
    assert corrections[0].subtimer_id == "a-session"
    assert corrections[0].to_dict()["gap_ms"] == 660_000

    assert [item.discarded_ms for item in journal.fetch_drift_corrections(timer_id="a")] == [600_000, 5_000]
    assert [item.timer_id for item in journal.fetch_drift_corrections(min_loss_ms=10_000)] == ["a", "b"]
    assert [item.timer_id for item in journal.fetch_drift_corrections(limit=1)] == ["a"]
    assert journal.fetch_drift_corrections(limit=1)[0].discarded_ms == 5_000


def test_unavailable_client_raises(tmp_path: Path) -> None:
    def factory():
        raise ChromaUnavailableError("chromadb missing")

    store = ChromaStore(tmp_path, client_factory=factory)
    with pytest.raises(ChromaUnavailableError):
        store.ping()
