"""Keyed record store with per-record locks.

Records are keyed by (kind, id). Each key has its own lock, so
operations on unrelated records never contend. An operation that touches
several records takes their locks through ``locked()``, which acquires
them in one global order: requests before resources, then ascending id.
Nested ``locked()`` calls must follow the same order.

Records are mutated in place while their lock is held. Readers outside
a lock may see a record between two commits but never a half-applied
one for fields that are assigned atomically; anything decided off-lock
is re-validated under the lock before it is written.
"""

from __future__ import annotations

import enum
import threading
from contextlib import ExitStack, contextmanager
from typing import Any, Iterator, Optional

from calctra.errors import ErrorCode, MatchingError


class RecordKind(str, enum.Enum):
    """Catalogs held in the store, in lock-acquisition order."""
    REQUEST = "request"
    RESOURCE = "resource"


_LOCK_ORDER = {RecordKind.REQUEST: 0, RecordKind.RESOURCE: 1}

RecordKey = tuple[RecordKind, int]


class RecordStore:
    """In-memory repository of market records."""

    def __init__(self) -> None:
        self._records: dict[RecordKey, Any] = {}
        self._locks: dict[RecordKey, threading.Lock] = {}
        self._guard = threading.Lock()

    def insert(self, kind: RecordKind, record_id: int, record: Any) -> None:
        """Store a new record. Raises ValueError if the key is taken."""
        key = (kind, record_id)
        with self._guard:
            if key in self._records:
                raise ValueError(f"Duplicate {kind.value} id: {record_id}")
            self._records[key] = record
            self._locks[key] = threading.Lock()

    def get(self, kind: RecordKind, record_id: int) -> Optional[Any]:
        with self._guard:
            return self._records.get((kind, record_id))

    def require(self, kind: RecordKind, record_id: int) -> Any:
        record = self.get(kind, record_id)
        if record is None:
            raise MatchingError(
                ErrorCode.NOT_FOUND, f"Unknown {kind.value} id: {record_id}",
            )
        return record

    def values(self, kind: RecordKind) -> list[Any]:
        """All records of a kind, in ascending id order."""
        with self._guard:
            keys = sorted(k for k in self._records if k[0] == kind)
            return [self._records[k] for k in keys]

    def count(self, kind: RecordKind) -> int:
        with self._guard:
            return sum(1 for k in self._records if k[0] == kind)

    @contextmanager
    def locked(self, *keys: RecordKey) -> Iterator[None]:
        """Hold the locks of every given record for the block.

        Raises MatchingError(NOT_FOUND) before locking anything if a key
        is unknown.
        """
        ordered = sorted(set(keys), key=lambda k: (_LOCK_ORDER[k[0]], k[1]))
        with self._guard:
            missing = [k for k in ordered if k not in self._locks]
            if missing:
                kind, record_id = missing[0]
                raise MatchingError(
                    ErrorCode.NOT_FOUND, f"Unknown {kind.value} id: {record_id}",
                )
            locks = [self._locks[k] for k in ordered]
        with ExitStack() as stack:
            for lock in locks:
                stack.enter_context(lock)
            yield
