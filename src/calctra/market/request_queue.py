"""Request queue — computation requests awaiting a match.

Any verified identity may submit. A request enters PENDING with no
matched resource; from there only the matching engine and the lifecycle
manager change it.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from calctra.identity.authorization import AuthenticatedCaller
from calctra.market.validation import (
    optional_label,
    require_price,
    require_quantity,
    validate_requirements,
)
from calctra.models.market import ComputationRequest, RequestStatus, Requirements
from calctra.models.system import SystemState
from calctra.persistence.event_log import EventKind, EventRecorder
from calctra.persistence.record_store import RecordKind, RecordStore

logger = structlog.get_logger("calctra.requests")


class RequestQueue:
    """Accepts computation requests and lists them by status."""

    def __init__(
        self,
        store: RecordStore,
        state: SystemState,
        events: EventRecorder,
    ) -> None:
        self._store = store
        self._state = state
        self._events = events

    def submit(
        self,
        requester: AuthenticatedCaller,
        requirements: Requirements,
        max_price_per_unit: Any,
        preferred_location: Optional[str] = None,
        min_reputation: int = 0,
        computation_type: str = "",
        duration_estimate: int = 0,
    ) -> ComputationRequest:
        """Queue a new PENDING request and return it."""
        validate_requirements(requirements)
        max_price = require_price("max_price_per_unit", max_price_per_unit)
        optional_label("preferred_location", preferred_location)
        if isinstance(min_reputation, bool) or not isinstance(min_reputation, int):
            # Signed: a requester may accept providers below zero.
            require_quantity("min_reputation", min_reputation)
        require_quantity("duration_estimate", duration_estimate)

        request_id = self._state.next_request_id()
        request = ComputationRequest(
            request_id=request_id,
            requester=requester.identity,
            requirements=requirements,
            max_price_per_unit=max_price,
            preferred_location=preferred_location,
            min_reputation=min_reputation,
            computation_type=str(computation_type or ""),
            duration_estimate=duration_estimate,
            status=RequestStatus.PENDING,
            submitted_utc=datetime.now(timezone.utc),
        )
        self._events.commit(
            EventKind.REQUEST_SUBMITTED,
            requester.identity,
            {
                "request_id": request_id,
                "requester": requester.identity,
                "compute_power": requirements.compute_power,
                "memory": requirements.memory,
                "storage": requirements.storage,
                "needs_gpu": requirements.needs_gpu,
                "gpu_memory": requirements.gpu_memory,
                "max_price_per_unit": str(max_price),
                "preferred_location": preferred_location,
                "min_reputation": min_reputation,
                "status": request.status.value,
            },
        )
        self._store.insert(RecordKind.REQUEST, request_id, request)
        logger.info("request_submitted", request_id=request_id, requester=requester.identity)
        return request

    def get(self, request_id: int) -> Optional[ComputationRequest]:
        return self._store.get(RecordKind.REQUEST, request_id)

    def all(self) -> list[ComputationRequest]:
        return self._store.values(RecordKind.REQUEST)

    def pending(self) -> list[ComputationRequest]:
        """PENDING requests in ascending id order (oldest first)."""
        return [r for r in self.all() if r.status == RequestStatus.PENDING]

    def by_status(self, status: RequestStatus) -> list[ComputationRequest]:
        return [r for r in self.all() if r.status == status]
