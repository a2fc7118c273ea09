from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from timekeeper_mcp.tracking import TimeTracker, TimeTrackerConfig


class ManualClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class MemoryPersistence:
    def __init__(self, config: TimeTrackerConfig | None = None) -> None:
        self.config = config or TimeTrackerConfig()
        self.saves = 0
        self.fail: Exception | None = None
        self.last_saved: dict | None = None

    def load(self) -> TimeTrackerConfig:
        return self.config

    def save(self, config: TimeTrackerConfig) -> None:
        if self.fail is not None:
            raise self.fail
        self.saves += 1
        self.last_saved = config.model_dump(mode="json", by_alias=True, exclude_none=True)


class MemoryState:
    def __init__(self) -> None:
        self.values: dict[str, object] = {}

    def get(self, key, default=None):
        return self.values.get(key, default)

    def set(self, key, value) -> None:
        self.values[key] = value

    def delete(self, key) -> None:
        self.values.pop(key, None)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def persistence() -> MemoryPersistence:
    return MemoryPersistence()


@pytest.fixture
def tracker(persistence: MemoryPersistence, clock: ManualClock) -> TimeTracker:
    return TimeTracker(persistence, clock=clock)


class InMemoryCollection:
    def __init__(self) -> None:
        self.records: list[tuple[str, str, dict]] = []

    def add(self, *, documents, metadatas, ids) -> None:
        for document, metadata, record_id in zip(documents, metadatas, ids):
            self.records.append((record_id, document, dict(metadata)))

    def get(self, *, where=None, limit=None):
        records = [
            record
            for record in self.records
            if all(record[2].get(key) == value for key, value in (where or {}).items())
        ][:limit]
        return {
            "ids": [record[0] for record in records],
            "documents": [record[1] for record in records],
            "metadatas": [record[2] for record in records],
        }


class InMemoryChromaClient:
    def __init__(self) -> None:
        self.collections: dict[str, InMemoryCollection] = {}

    def get_or_create_collection(self, name: str) -> InMemoryCollection:
        return self.collections.setdefault(name, InMemoryCollection())
