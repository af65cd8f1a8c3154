"""System counters — sequence generators and the active-match gauge.

One SystemState exists per deployment and is handed to every component
that mutates the catalogs. All counter updates go through a single lock,
so id assignment never hands out duplicates and the gauge is never read
mid-update.

Ids start at 0 and are assigned from the current count, mirroring the
ledger program the market was first deployed on.
"""

from __future__ import annotations

import threading
from typing import Any

from calctra.errors import ConsistencyFault, ErrorCode

# Counters are bounded like the unsigned 64-bit fields they replace.
COUNTER_MAX = 2**64 - 1


class SystemState:
    """Process-wide counters owned by the deploying authority."""

    def __init__(self, authority: str) -> None:
        if not authority:
            raise ValueError("SystemState requires an authority identity")
        self._authority = authority
        self._lock = threading.Lock()
        self._resource_count = 0
        self._request_count = 0
        self._active_matches = 0

    @property
    def authority(self) -> str:
        return self._authority

    @property
    def resource_count(self) -> int:
        with self._lock:
            return self._resource_count

    @property
    def request_count(self) -> int:
        with self._lock:
            return self._request_count

    @property
    def active_matches(self) -> int:
        with self._lock:
            return self._active_matches

    def next_resource_id(self) -> int:
        """Reserve the next resource id and bump ``resource_count``."""
        with self._lock:
            if self._resource_count >= COUNTER_MAX:
                raise ConsistencyFault(
                    ErrorCode.COUNTER_OVERFLOW, "resource_count exhausted",
                )
            assigned = self._resource_count
            self._resource_count += 1
            return assigned

    def next_request_id(self) -> int:
        """Reserve the next request id and bump ``request_count``."""
        with self._lock:
            if self._request_count >= COUNTER_MAX:
                raise ConsistencyFault(
                    ErrorCode.COUNTER_OVERFLOW, "request_count exhausted",
                )
            assigned = self._request_count
            self._request_count += 1
            return assigned

    def increment_active_matches(self) -> int:
        with self._lock:
            if self._active_matches >= COUNTER_MAX:
                raise ConsistencyFault(
                    ErrorCode.COUNTER_OVERFLOW, "active_matches overflow",
                )
            self._active_matches += 1
            return self._active_matches

    def decrement_active_matches(self) -> int:
        """Release one active match.

        Raises ConsistencyFault instead of wrapping below zero: a
        decrement with no active match means the gauge has drifted from
        the request catalog.
        """
        with self._lock:
            if self._active_matches == 0:
                raise ConsistencyFault(
                    ErrorCode.COUNTER_UNDERFLOW,
                    "active_matches would drop below zero",
                )
            self._active_matches -= 1
            return self._active_matches

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "authority": self._authority,
                "resource_count": self._resource_count,
                "request_count": self._request_count,
                "active_matches": self._active_matches,
            }
