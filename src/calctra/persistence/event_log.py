"""Append-only event log — the audit record of every market state change.

Every registration, submission, match, completion and cancellation
produces an event record appended to the log. Events are immutable once
written. The log serves as:
1. The observability feed for external logging and indexing.
2. The audit trail for disputes between requesters and providers.
3. The source for reconstructing catalog history.

Components append inside their commit. If the append fails, the commit
is rolled back, so no state change exists without its event.
"""

from __future__ import annotations

import enum
import hashlib
import json
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import structlog

from calctra.errors import ErrorCode, MatchingError

logger = structlog.get_logger("calctra.events")


class EventKind(str, enum.Enum):
    """Classification of market events."""
    RESOURCE_REGISTERED = "resource_registered"
    RESOURCE_UPDATED = "resource_updated"
    RESOURCE_ACTIVITY_CHANGED = "resource_activity_changed"
    REQUEST_SUBMITTED = "request_submitted"
    REQUEST_MATCHED = "request_matched"
    REQUEST_COMPLETED = "request_completed"
    REQUEST_FAILED = "request_failed"
    REQUEST_CANCELLED = "request_cancelled"
    MATCHING_CYCLE_RUN = "matching_cycle_run"


def _canonical_hash(
    event_id: str,
    event_kind: str,
    timestamp_utc: str,
    actor_id: str,
    payload: dict[str, Any],
) -> str:
    canonical = json.dumps(
        {
            "event_id": event_id,
            "event_kind": event_kind,
            "timestamp_utc": timestamp_utc,
            "actor_id": actor_id,
            "payload": payload,
        },
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


@dataclass(frozen=True)
class EventRecord:
    """A single immutable event in the market log.

    The event_hash is computed at creation time over the canonical JSON
    form, so tampering with a persisted line is detected on reload.
    """
    event_id: str
    event_kind: EventKind
    timestamp_utc: str
    actor_id: str
    payload: dict[str, Any]
    event_hash: str

    @staticmethod
    def create(
        event_id: str,
        event_kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        timestamp_utc: Optional[datetime] = None,
    ) -> EventRecord:
        """Create a new event record with computed hash."""
        ts = timestamp_utc or datetime.now(timezone.utc)
        ts_str = ts.strftime("%Y-%m-%dT%H:%M:%SZ")
        return EventRecord(
            event_id=event_id,
            event_kind=event_kind,
            timestamp_utc=ts_str,
            actor_id=actor_id,
            payload=payload,
            event_hash=_canonical_hash(
                event_id, event_kind.value, ts_str, actor_id, payload,
            ),
        )

    def to_line(self) -> str:
        """One JSONL line, keys sorted so the file diffs cleanly."""
        return json.dumps(
            {
                "event_id": self.event_id,
                "event_kind": self.event_kind.value,
                "timestamp_utc": self.timestamp_utc,
                "actor_id": self.actor_id,
                "payload": self.payload,
                "event_hash": self.event_hash,
            },
            sort_keys=True,
            ensure_ascii=False,
        )

    @staticmethod
    def from_line(line: str, line_num: int = 0) -> EventRecord:
        """Parse a persisted line and verify its hash.

        Raises ValueError on malformed JSON, unknown kinds, missing
        fields or a hash that does not match the content.
        """
        try:
            data = json.loads(line)
            record = EventRecord(
                event_id=data["event_id"],
                event_kind=EventKind(data["event_kind"]),
                timestamp_utc=data["timestamp_utc"],
                actor_id=data["actor_id"],
                payload=data["payload"],
                event_hash=data["event_hash"],
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed event (line {line_num}): {e}") from e

        computed = _canonical_hash(
            record.event_id,
            record.event_kind.value,
            record.timestamp_utc,
            record.actor_id,
            record.payload,
        )
        if record.event_hash != computed:
            raise ValueError(
                f"Integrity check failed (line {line_num}): event {record.event_id} "
                f"stored hash {record.event_hash} != computed {computed}"
            )
        return record


class EventLog:
    """Thread-safe append-only event log, optionally backed by JSONL.

    Nothing is ever modified or removed. With a storage path every
    append is written through to the file before it becomes visible,
    and an existing file is replayed (and verified) on construction.
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: list[EventRecord] = []
        self._storage_path = storage_path
        self._event_ids: set[str] = set()
        self._lock = threading.Lock()

        if storage_path and storage_path.exists():
            self._replay(storage_path)

    def append(self, event: EventRecord) -> None:
        """Add ``event`` at the end of the log.

        Raises ValueError for a reused event_id and OSError if the
        write-through fails; in both cases the log is unchanged.
        """
        with self._lock:
            if event.event_id in self._event_ids:
                raise ValueError(f"Duplicate event ID: {event.event_id}")
            if self._storage_path:
                with self._storage_path.open("a", encoding="utf-8") as f:
                    f.write(event.to_line() + "\n")
            self._events.append(event)
            self._event_ids.add(event.event_id)

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        with self._lock:
            return [e for e in self._events if kind is None or e.event_kind == kind]

    def events_for(self, key: str, value: Any) -> list[EventRecord]:
        """Events whose payload carries ``key == value``."""
        return [e for e in self.events() if e.payload.get(key) == value]

    def event_hashes(self, kind: Optional[EventKind] = None) -> list[str]:
        return [e.event_hash for e in self.events(kind)]

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._events)

    @property
    def last_event(self) -> Optional[EventRecord]:
        with self._lock:
            return self._events[-1] if self._events else None

    def _replay(self, path: Path) -> None:
        # Fail-closed: one bad or repeated line rejects the whole file.
        with path.open("r", encoding="utf-8") as f:
            for line_num, raw in enumerate(f, 1):
                if not raw.strip():
                    continue
                event = EventRecord.from_line(raw, line_num)
                if event.event_id in self._event_ids:
                    raise ValueError(
                        f"Duplicate event ID on recovery (line {line_num}): {event.event_id}"
                    )
                self._events.append(event)
                self._event_ids.add(event.event_id)


class EventRecorder:
    """Issues event ids and appends events on behalf of components.

    The id counter starts from the log's current size so a reloaded log
    never sees a colliding id.
    """

    def __init__(self, event_log: EventLog) -> None:
        self._log = event_log
        self._lock = threading.Lock()
        self._counter = event_log.count

    @property
    def log(self) -> EventLog:
        return self._log

    def record(
        self,
        kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
    ) -> EventRecord:
        """Append one event. Raises ValueError or OSError on failure."""
        with self._lock:
            self._counter += 1
            event_id = f"EVT-{self._counter:08d}"
        event = EventRecord.create(
            event_id=event_id,
            event_kind=kind,
            actor_id=actor_id,
            payload=payload,
        )
        self._log.append(event)
        logger.debug("event_appended", event_id=event_id, kind=kind.value, **payload)
        return event

    def commit(
        self,
        kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
    ) -> EventRecord:
        """Append the event that commits an operation.

        Translates log failures into MatchingError(AUDIT_FAILURE) so the
        calling component can roll back and surface a domain error.
        """
        try:
            return self.record(kind, actor_id, payload)
        except (ValueError, OSError) as e:
            logger.error("event_append_failed", kind=kind.value, error=str(e))
            raise MatchingError(
                ErrorCode.AUDIT_FAILURE, f"Event log failure: {e}",
            ) from e
