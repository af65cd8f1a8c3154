"""Persistence — keyed record store and the append-only event log."""

from calctra.persistence.event_log import EventKind, EventLog, EventRecord, EventRecorder
from calctra.persistence.record_store import RecordKind, RecordStore

__all__ = [
    "EventKind",
    "EventLog",
    "EventRecord",
    "EventRecorder",
    "RecordKind",
    "RecordStore",
]
