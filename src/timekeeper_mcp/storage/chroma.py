"""Chroma-backed journal of timer activity."""

from __future__ import annotations

import json
import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Iterable, Protocol

if TYPE_CHECKING:
    from ..tracking.lifecycle import ConfigChange

# change reasons left out of the journal
UNJOURNALED_REASONS = frozenset({"snapshot", "drift_checked"})
DRIFT_CORRECTED = "drift_corrected"
TRACKER_SUBJECT = "tracker"


class ChromaUnavailableError(RuntimeError):
    """Raised when the Chroma client cannot be constructed."""


class CollectionProtocol(Protocol):
    def add(self, *, documents: Iterable[str], metadatas: Iterable[dict[str, Any]], ids: Iterable[str]) -> None:
        ...

    def get(self, *, where: dict[str, Any] | None = None, limit: int | None = None) -> dict[str, list[Any]]:
        ...


class ClientProtocol(Protocol):
    def get_or_create_collection(self, name: str) -> CollectionProtocol:
        ...


@dataclass(slots=True)
class ChromaEvent:
    """One journal entry; ``timer_id`` is ``"tracker"`` for tracker-wide changes."""

    id: str
    timer_id: str
    event_type: str
    document: str
    metadata: dict[str, Any]
    timestamp: datetime

    @property
    def sequence(self) -> int:
        return int(self.metadata.get("sequence", 0))

    def body(self) -> Any:
        try:
            return json.loads(self.document)
        except ValueError:
            return self.document


@dataclass(frozen=True, slots=True)
class DriftCorrectionEvent:
    """A journaled clamp of a session's elapsed time after an unclean shutdown."""

    event_id: str
    timer_id: str
    subtimer_id: str | None
    elapsed_before_ms: int
    corrected_ms: int
    gap_ms: int | None
    timestamp: datetime

    @property
    def discarded_ms(self) -> int:
        return self.elapsed_before_ms - self.corrected_ms

    @classmethod
    def from_event(cls, event: ChromaEvent) -> DriftCorrectionEvent:
        metadata = event.metadata
        gap = metadata.get("gap_ms")
        return cls(
            event_id=event.id,
            timer_id=event.timer_id,
            subtimer_id=metadata.get("subtimer_id"),
            elapsed_before_ms=int(metadata.get("elapsed_before_ms") or 0),
            corrected_ms=int(metadata.get("corrected_ms") or 0),
            gap_ms=int(gap) if gap is not None else None,
            timestamp=event.timestamp,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "timer_id": self.timer_id,
            "subtimer_id": self.subtimer_id,
            "elapsed_before_ms": self.elapsed_before_ms,
            "corrected_ms": self.corrected_ms,
            "discarded_ms": self.discarded_ms,
            "gap_ms": self.gap_ms,
            "timestamp": self.timestamp.isoformat(),
        }


def _scalar_metadata(values: dict[str, Any]) -> dict[str, Any]:
    # chroma metadata only accepts str, int, float and bool values
    return {
        key: value if isinstance(value, (str, int, float, bool)) else json.dumps(value)
        for key, value in values.items()
        if value is not None
    }


class ChromaStore:
    """Append-only journal of the tracker's change notifications.

    Entries are ordered by timestamp, then by a per-timer sequence number
    assigned in this process.
    """

    def __init__(
        self,
        path: Path,
        *,
        collection_name: str = "timekeeper_events",
        client_factory: Callable[[], ClientProtocol] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path = Path(path)
        self._collection_name = collection_name
        self._client_factory = client_factory or self._persistent_client
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._collection: CollectionProtocol | None = None
        self._sequences: Counter[str] = Counter()

    def _persistent_client(self) -> ClientProtocol:
        try:
            import chromadb
        except ImportError as exc:  # pragma: no cover - depends on environment
            raise ChromaUnavailableError(
                "chromadb package is not installed; install timekeeper-mcp with persistence extras"
            ) from exc

        return chromadb.PersistentClient(path=str(self._path))

    @property
    def collection(self) -> CollectionProtocol:
        if self._collection is None:
            self._collection = self._client_factory().get_or_create_collection(self._collection_name)
        return self._collection

    def ping(self) -> bool:
        """Verify that the underlying collection can be obtained."""

        return self.collection is not None

    def record_change(self, change: ConfigChange) -> ChromaEvent | None:
        """Journal a tracker change; snapshots and no-op drift checks are skipped."""

        if change.reason in UNJOURNALED_REASONS:
            return None
        return self.record_event(
            timer_id=change.timer_id or TRACKER_SUBJECT,
            event_type=change.reason,
            body={
                "reason": change.reason,
                "timer_id": change.timer_id,
                "subtimer_id": change.subtimer_id,
                **change.detail,
            },
            metadata={"subtimer_id": change.subtimer_id, **change.detail},
        )

    def record_event(
        self,
        *,
        timer_id: str,
        event_type: str,
        body: Any,
        metadata: dict[str, Any] | None = None,
    ) -> ChromaEvent:
        self._sequences[timer_id] += 1
        timestamp = self._clock()
        event = ChromaEvent(
            id=f"{timer_id}:{uuid.uuid4().hex}",
            timer_id=timer_id,
            event_type=event_type,
            document=body if isinstance(body, str) else json.dumps(body),
            metadata={
                **_scalar_metadata(metadata or {}),
                "timer_id": timer_id,
                "event_type": event_type,
                "timestamp": timestamp.isoformat(),
                "sequence": self._sequences[timer_id],
            },
            timestamp=timestamp,
        )
        self.collection.add(documents=[event.document], metadatas=[event.metadata], ids=[event.id])
        return event

    def _query(self, where: dict[str, Any] | None) -> list[ChromaEvent]:
        result = self.collection.get(where=where)
        events = []
        for event_id, document, metadata in zip(
            result.get("ids", []), result.get("documents", []), result.get("metadatas", [])
        ):
            stamp = metadata.get("timestamp")
            events.append(
                ChromaEvent(
                    id=event_id,
                    timer_id=metadata.get("timer_id", ""),
                    event_type=metadata.get("event_type", ""),
                    document=document,
                    metadata=metadata,
                    timestamp=datetime.fromisoformat(stamp) if isinstance(stamp, str) else self._clock(),
                )
            )
        events.sort(key=lambda event: (event.timestamp, event.sequence))
        return events

    def fetch_timer_events(self, timer_id: str, *, limit: int | None = None) -> list[ChromaEvent]:
        """Return a timer's entries oldest first; ``limit`` keeps the latest ones."""

        events = self._query({"timer_id": timer_id})
        return events[-limit:] if limit else events

    def search_events(
        self,
        query: str | None = None,
        *,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[ChromaEvent]:
        events = self._query(filters)
        if query:
            needle = query.lower()
            events = [
                event
                for event in events
                if needle in event.document.lower()
                or any(needle in str(value).lower() for value in event.metadata.values())
            ]
        return events[:limit] if limit else events

    def fetch_drift_corrections(
        self,
        *,
        timer_id: str | None = None,
        min_loss_ms: int = 0,
        limit: int | None = None,
    ) -> list[DriftCorrectionEvent]:
        """Return drift corrections oldest first, keeping the latest ``limit``."""

        corrections = [
            correction
            for correction in map(DriftCorrectionEvent.from_event, self._query({"event_type": DRIFT_CORRECTED}))
            if (not timer_id or correction.timer_id == timer_id) and correction.discarded_ms >= min_loss_ms
        ]
        return corrections[-limit:] if limit and limit > 0 else corrections


__all__ = [
    "ChromaEvent",
    "ChromaStore",
    "ChromaUnavailableError",
    "DriftCorrectionEvent",
    "UNJOURNALED_REASONS",
]
