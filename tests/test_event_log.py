"""Tests for the append-only event log — integrity and replay protection."""

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from calctra.errors import ErrorCode, MatchingError
from calctra.persistence.event_log import EventKind, EventLog, EventRecord, EventRecorder


def _make_event(event_id: str = "EVT-00000001", **payload) -> EventRecord:
    return EventRecord.create(
        event_id=event_id,
        event_kind=EventKind.REQUEST_SUBMITTED,
        actor_id="alice",
        payload=payload or {"request_id": 0},
        timestamp_utc=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )


class TestEventRecord:
    def test_hash_is_deterministic(self) -> None:
        assert _make_event().event_hash == _make_event().event_hash
        assert _make_event().event_hash.startswith("sha256:")

    def test_hash_covers_payload(self) -> None:
        assert _make_event(request_id=1).event_hash != _make_event(request_id=2).event_hash


class TestInMemoryLog:
    def test_append_and_filter(self) -> None:
        log = EventLog()
        log.append(_make_event("EVT-1"))
        log.append(EventRecord.create("EVT-2", EventKind.REQUEST_MATCHED, "authority", {"request_id": 0}))
        assert log.count == 2
        assert [e.event_id for e in log.events(EventKind.REQUEST_MATCHED)] == ["EVT-2"]
        assert len(log.events_for("request_id", 0)) == 2
        assert log.last_event.event_id == "EVT-2"

    def test_duplicate_id_rejected(self) -> None:
        log = EventLog()
        log.append(_make_event("EVT-1"))
        with pytest.raises(ValueError, match="Duplicate"):
            log.append(_make_event("EVT-1"))
        assert log.count == 1

    def test_empty_log(self) -> None:
        log = EventLog()
        assert log.count == 0
        assert log.last_event is None
        assert log.event_hashes() == []


class TestFilePersistence:
    def test_round_trip(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(storage_path=path)
        log.append(_make_event("EVT-1", request_id=0, price="1.5"))
        log.append(_make_event("EVT-2", request_id=1))

        reloaded = EventLog(storage_path=path)
        assert reloaded.count == 2
        assert reloaded.event_hashes() == log.event_hashes()
        assert reloaded.events()[0].payload == {"request_id": 0, "price": "1.5"}

    def test_tampered_line_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        EventLog(storage_path=path).append(_make_event("EVT-1", request_id=0))
        record = json.loads(path.read_text(encoding="utf-8"))
        record["payload"]["request_id"] = 7
        path.write_text(json.dumps(record) + "\n", encoding="utf-8")

        with pytest.raises(ValueError, match="Integrity check failed"):
            EventLog(storage_path=path)

    def test_replayed_line_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        EventLog(storage_path=path).append(_make_event("EVT-1"))
        line = path.read_text(encoding="utf-8")
        path.write_text(line + line, encoding="utf-8")

        with pytest.raises(ValueError, match="Duplicate event ID on recovery"):
            EventLog(storage_path=path)

    def test_blank_lines_ignored(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        EventLog(storage_path=path).append(_make_event("EVT-1"))
        path.write_text(path.read_text(encoding="utf-8") + "\n\n", encoding="utf-8")
        assert EventLog(storage_path=path).count == 1


class TestEventRecorder:
    def test_ids_are_sequential(self) -> None:
        recorder = EventRecorder(EventLog())
        first = recorder.record(EventKind.RESOURCE_REGISTERED, "p", {"resource_id": 0})
        second = recorder.record(EventKind.RESOURCE_REGISTERED, "p", {"resource_id": 1})
        assert (first.event_id, second.event_id) == ("EVT-00000001", "EVT-00000002")

    def test_counter_resumes_after_reload(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        EventRecorder(EventLog(storage_path=path)).record(
            EventKind.RESOURCE_REGISTERED, "p", {"resource_id": 0},
        )
        event = EventRecorder(EventLog(storage_path=path)).record(
            EventKind.RESOURCE_REGISTERED, "p", {"resource_id": 1},
        )
        assert event.event_id == "EVT-00000002"

    def test_commit_translates_failures(self, monkeypatch) -> None:
        log = EventLog()
        recorder = EventRecorder(log)

        def _broken(event) -> None:
            raise OSError("read-only filesystem")

        monkeypatch.setattr(log, "append", _broken)
        with pytest.raises(MatchingError) as exc:
            recorder.commit(EventKind.REQUEST_CANCELLED, "alice", {"request_id": 0})
        assert exc.value.code == ErrorCode.AUDIT_FAILURE
        assert "read-only filesystem" in str(exc.value)


class TestLineFormat:
    def test_line_round_trip(self) -> None:
        event = _make_event("EVT-9", request_id=3)
        assert EventRecord.from_line(event.to_line()) == event

    def test_malformed_line_rejected(self) -> None:
        with pytest.raises(ValueError, match="Malformed event"):
            EventRecord.from_line('{"event_id": "EVT-1"}', 4)

    def test_unknown_kind_rejected(self) -> None:
        line = _make_event().to_line().replace("request_submitted", "epoch_closed")
        with pytest.raises(ValueError):
            EventRecord.from_line(line)
