"""Matching engine — commits one request to one resource.

``match`` is the primitive: the caller names the (request, resource)
pair and the engine validates every precondition while holding both
record locks, then commits. Check and write happen under the same
locks, so two racing matches on one pending request produce exactly
one success and one RequestNotPending.

Preconditions, checked in order:
    1. caller is the authority or the resource's provider
    2. request is PENDING
    3. resource compatibility (see selection.incompatibility)
    4. resource has engagement capacity under the policy

``run_matching_cycle`` layers candidate selection on top: for each
pending request (oldest first) it picks the best candidate and tries
to commit it. Failures leave the request pending for the next cycle.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from calctra.errors import ErrorCode, MatchingError
from calctra.identity.authorization import (
    AuthenticatedCaller,
    is_authority,
    require_matcher,
)
from calctra.market.selection import incompatibility, select_best_candidate
from calctra.models.market import (
    ComputationRequest,
    CycleResult,
    MatchResult,
    RequestStatus,
    ResourceRecord,
)
from calctra.models.system import SystemState
from calctra.persistence.event_log import EventKind, EventRecorder
from calctra.persistence.record_store import RecordKind, RecordStore
from calctra.policy.resolver import PolicyResolver

logger = structlog.get_logger("calctra.matching")


class MatchingEngine:
    """Validates and commits request/resource matches.

    Usage:
        engine = MatchingEngine(store, state, resolver, recorder)
        result = engine.match(request_id, resource_id, provider)
        cycle = engine.run_matching_cycle(authority)
    """

    def __init__(
        self,
        store: RecordStore,
        state: SystemState,
        resolver: PolicyResolver,
        events: EventRecorder,
    ) -> None:
        self._store = store
        self._state = state
        self._resolver = resolver
        self._events = events
        self._max_engagements = resolver.max_engagements_per_resource()
        self._metrics_lock = threading.Lock()
        self._total_matched = 0
        self._total_rejected = 0
        self._cycles_run = 0

    def has_capacity(self, resource: ResourceRecord) -> bool:
        """True if the engagement policy admits one more match."""
        if self._max_engagements == 0:
            return True
        return len(resource.engaged_request_ids) < self._max_engagements

    def match(
        self,
        request_id: int,
        resource_id: int,
        caller: AuthenticatedCaller,
        strict_location: Optional[bool] = None,
    ) -> MatchResult:
        """Commit ``request_id`` to ``resource_id`` or raise MatchingError."""
        strict = (
            self._resolver.strict_location_default()
            if strict_location is None else bool(strict_location)
        )
        req_key = (RecordKind.REQUEST, request_id)
        res_key = (RecordKind.RESOURCE, resource_id)
        try:
            with self._store.locked(req_key, res_key):
                request: ComputationRequest = self._store.require(*req_key)
                resource: ResourceRecord = self._store.require(*res_key)
                self._check_preconditions(caller, request, resource, strict)
                result = self._commit(caller, request, resource)
        except MatchingError as e:
            self._count(rejected=1)
            logger.info(
                "match_rejected",
                request_id=request_id,
                resource_id=resource_id,
                code=e.code.value,
            )
            raise

        self._count(matched=1)
        logger.info(
            "match_committed",
            request_id=request_id,
            resource_id=resource_id,
            price_per_unit=str(result.price_per_unit),
        )
        return result

    def select_best_candidate(
        self,
        request_id: int,
        strict_location: Optional[bool] = None,
    ) -> Optional[int]:
        """Best resource for a request from the current registry.

        A read-only snapshot: the returned id is re-validated by
        ``match`` before anything is committed.
        """
        strict = (
            self._resolver.strict_location_default()
            if strict_location is None else bool(strict_location)
        )
        request: ComputationRequest = self._store.require(RecordKind.REQUEST, request_id)
        return select_best_candidate(request, self._pool(), strict)

    def run_matching_cycle(
        self,
        caller: AuthenticatedCaller,
        batch_size: Optional[int] = None,
        strict_location: Optional[bool] = None,
    ) -> CycleResult:
        """Greedily match pending requests, oldest first.

        Only the authority may run a cycle. At most ``batch_size``
        pending requests are considered (policy default when None).
        The summary event is best-effort: if it cannot be appended the
        committed matches stand and the failure is logged.
        """
        if not is_authority(caller, self._state):
            raise MatchingError(
                ErrorCode.UNAUTHORIZED_MATCHER,
                f"{caller} may not run a matching cycle",
            )
        limit = self._resolver.matching_batch_size() if batch_size is None else batch_size
        if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
            raise MatchingError(
                ErrorCode.INVALID_ARGUMENT,
                f"batch_size must be a positive integer, got {batch_size!r}",
            )
        strict = (
            self._resolver.strict_location_default()
            if strict_location is None else bool(strict_location)
        )

        pending = [
            r for r in self._store.values(RecordKind.REQUEST)
            if r.status == RequestStatus.PENDING
        ][:limit]
        matched: list[MatchResult] = []
        unmatched: list[int] = []
        for request in pending:
            resource_id = select_best_candidate(request, self._pool(), strict)
            if resource_id is None:
                unmatched.append(request.request_id)
                continue
            try:
                matched.append(
                    self.match(request.request_id, resource_id, caller, strict)
                )
            except MatchingError:
                # Lost a race for the request or resource; retried next cycle.
                unmatched.append(request.request_id)

        result = CycleResult(matched=matched, unmatched_request_ids=unmatched)
        self._count(cycles=1)
        try:
            self._events.commit(
                EventKind.MATCHING_CYCLE_RUN,
                caller.identity,
                {
                    "considered": len(pending),
                    "matched_request_ids": [m.request_id for m in matched],
                    "unmatched_request_ids": unmatched,
                },
            )
        except MatchingError as e:
            # Each match already carries its own REQUEST_MATCHED event.
            logger.error("matching_cycle_audit_failed", error=str(e))
        logger.info(
            "matching_cycle_run",
            considered=len(pending),
            matched=result.matched_count,
            unmatched=len(unmatched),
        )
        return result

    def metrics(self) -> dict[str, Any]:
        with self._metrics_lock:
            return {
                "total_matched": self._total_matched,
                "total_rejected": self._total_rejected,
                "cycles_run": self._cycles_run,
            }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _pool(self) -> list[ResourceRecord]:
        return [
            r for r in self._store.values(RecordKind.RESOURCE)
            if r.is_active and self.has_capacity(r)
        ]

    def _check_preconditions(
        self,
        caller: AuthenticatedCaller,
        request: ComputationRequest,
        resource: ResourceRecord,
        strict_location: bool,
    ) -> None:
        require_matcher(caller, self._state, resource)
        if request.status != RequestStatus.PENDING:
            raise MatchingError(
                ErrorCode.REQUEST_NOT_PENDING,
                f"Request {request.request_id} is {request.status.value}, not pending",
            )
        error = incompatibility(request, resource, strict_location)
        if error is not None:
            raise error
        if not self.has_capacity(resource):
            raise MatchingError(
                ErrorCode.RESOURCE_ENGAGED,
                f"Resource {resource.resource_id} already serves "
                f"{len(resource.engaged_request_ids)} request(s)",
            )

    def _commit(
        self,
        caller: AuthenticatedCaller,
        request: ComputationRequest,
        resource: ResourceRecord,
    ) -> MatchResult:
        # Gauge first: an overflow is a fault and must surface before
        # any record is touched.
        self._state.increment_active_matches()
        request.status = RequestStatus.MATCHED
        request.matched_resource = resource.resource_id
        request.agreed_price = resource.price_per_unit
        request.matched_utc = datetime.now(timezone.utc)
        request.version += 1
        resource.engaged_request_ids.add(request.request_id)
        resource.version += 1

        try:
            self._events.commit(
                EventKind.REQUEST_MATCHED,
                caller.identity,
                {
                    "request_id": request.request_id,
                    "resource_id": resource.resource_id,
                    "requester": request.requester,
                    "provider": resource.provider,
                    "price_per_unit": str(resource.price_per_unit),
                },
            )
        except MatchingError:
            request.status = RequestStatus.PENDING
            request.matched_resource = None
            request.agreed_price = None
            request.matched_utc = None
            request.version -= 1
            resource.engaged_request_ids.discard(request.request_id)
            resource.version -= 1
            self._state.decrement_active_matches()
            raise

        return MatchResult(
            request_id=request.request_id,
            resource_id=resource.resource_id,
            requester=request.requester,
            provider=resource.provider,
            price_per_unit=resource.price_per_unit,
            status=request.status,
        )

    def _count(self, matched: int = 0, rejected: int = 0, cycles: int = 0) -> None:
        with self._metrics_lock:
            self._total_matched += matched
            self._total_rejected += rejected
            self._cycles_run += cycles
