"""Request lifecycle — state machine plus completion and cancellation.

Request lifecycle:
    PENDING → MATCHED → COMPLETED
                      → FAILED
    PENDING / MATCHED → CANCELLED

State semantics:
- PENDING: submitted, waiting for a resource.
- MATCHED: paired with exactly one resource; counted by active_matches.
- COMPLETED: terminal. Computation succeeded; provider reputation +step.
- FAILED: terminal. Computation failed; provider reputation -step.
- CANCELLED: terminal. Withdrawn before completion.

Fail-closed: any transition not listed is rejected, and nothing leaves
a terminal state.
"""

from __future__ import annotations

import contextlib
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

import structlog

from calctra.errors import ErrorCode, MatchingError
from calctra.identity.authorization import AuthenticatedCaller, require_participant
from calctra.market.reputation import ReputationLedger
from calctra.market.settlement import SettlementError, SettlementGateway
from calctra.models.market import (
    CompletionResult,
    ComputationRequest,
    RequestStatus,
    ResourceRecord,
)
from calctra.models.system import SystemState
from calctra.persistence.event_log import EventKind, EventRecorder
from calctra.persistence.record_store import RecordKind, RecordStore

logger = structlog.get_logger("calctra.lifecycle")


# Valid transitions: {from_state: {allowed_to_states}}
_TRANSITIONS: dict[RequestStatus, set[RequestStatus]] = {
    RequestStatus.PENDING: {RequestStatus.MATCHED, RequestStatus.CANCELLED},
    RequestStatus.MATCHED: {
        RequestStatus.COMPLETED,
        RequestStatus.FAILED,
        RequestStatus.CANCELLED,
    },
    # Terminal states: no outgoing transitions
    RequestStatus.COMPLETED: set(),
    RequestStatus.FAILED: set(),
    RequestStatus.CANCELLED: set(),
}


class RequestStateMachine:
    """Validates and applies request status transitions.

    Pure computation: validates transitions only. Locking, counters and
    event logging are handled by the components that call it.
    """

    @staticmethod
    def validate_transition(
        request: ComputationRequest,
        target: RequestStatus,
    ) -> list[str]:
        """Check if a transition is valid. Returns errors (empty = OK)."""
        current = request.status
        allowed = _TRANSITIONS.get(current, set())

        if target not in allowed:
            allowed_str = ", ".join(s.value for s in sorted(allowed, key=lambda x: x.value))
            return [
                f"Invalid request transition: {current.value} → {target.value}. "
                f"Allowed from {current.value}: [{allowed_str}]"
            ]
        return []

    @staticmethod
    def apply_transition(
        request: ComputationRequest,
        target: RequestStatus,
    ) -> list[str]:
        """Validate and apply a transition. Returns errors, mutates on success."""
        errors = RequestStateMachine.validate_transition(request, target)
        if errors:
            return errors
        request.status = target
        return []

    @staticmethod
    def require_transition(
        request: ComputationRequest,
        target: RequestStatus,
    ) -> None:
        """Raise InvalidStateTransition unless ``target`` is reachable."""
        errors = RequestStateMachine.validate_transition(request, target)
        if errors:
            raise MatchingError(ErrorCode.INVALID_STATE_TRANSITION, errors[0])

    @staticmethod
    def is_terminal(status: RequestStatus) -> bool:
        return not _TRANSITIONS.get(status)

    @staticmethod
    def valid_transitions(status: RequestStatus) -> set[RequestStatus]:
        return set(_TRANSITIONS.get(status, set()))


class LifecycleManager:
    """Drives matched requests to a terminal status.

    Usage:
        manager = LifecycleManager(store, state, recorder, ledger)
        result = manager.complete(request_id, resource_id, 10, True, requester)
        request = manager.cancel(other_request_id, requester)
    """

    def __init__(
        self,
        store: RecordStore,
        state: SystemState,
        events: EventRecorder,
        ledger: ReputationLedger,
        settlement: Optional[SettlementGateway] = None,
    ) -> None:
        self._store = store
        self._state = state
        self._events = events
        self._ledger = ledger
        self._settlement = settlement

    def complete(
        self,
        request_id: int,
        resource_id: int,
        actual_duration: int,
        success: bool,
        caller: AuthenticatedCaller,
    ) -> CompletionResult:
        """Conclude a matched computation and book usage and reputation.

        Funds are settled before the records change. If the completion
        event cannot be appended, the records are restored and the
        settlement is reversed through the gateway.
        """
        if (
            isinstance(actual_duration, bool)
            or not isinstance(actual_duration, int)
            or actual_duration < 0
        ):
            raise MatchingError(
                ErrorCode.INVALID_ARGUMENT,
                f"actual_duration must be a non-negative integer, got {actual_duration!r}",
            )

        req_key = (RecordKind.REQUEST, request_id)
        res_key = (RecordKind.RESOURCE, resource_id)
        with self._store.locked(req_key, res_key):
            request: ComputationRequest = self._store.require(*req_key)
            resource: ResourceRecord = self._store.require(*res_key)

            require_participant(
                caller, self._state, request, self._matched_provider(request),
            )
            target = RequestStatus.COMPLETED if success else RequestStatus.FAILED
            if RequestStateMachine.is_terminal(request.status):
                RequestStateMachine.require_transition(request, target)
            if request.status != RequestStatus.MATCHED:
                raise MatchingError(
                    ErrorCode.REQUEST_NOT_MATCHED,
                    f"Request {request_id} is {request.status.value}, not matched",
                )
            if request.matched_resource != resource_id:
                raise MatchingError(
                    ErrorCode.RESOURCE_MISMATCH,
                    f"Request {request_id} is matched to resource "
                    f"{request.matched_resource}, not {resource_id}",
                )
            RequestStateMachine.require_transition(request, target)

            entry = self._ledger.compute(resource, actual_duration, success)
            price = (
                request.agreed_price
                if request.agreed_price is not None else resource.price_per_unit
            )
            transfer = {
                "payer": request.requester,
                "payee": resource.provider,
                "amount": price * actual_duration,
                "request_id": request_id,
                "success": success,
            }

            # The gauge goes first: an underflow is a fault and must
            # surface before funds move or any record is touched.
            self._state.decrement_active_matches()
            try:
                self._settle(transfer)
            except MatchingError:
                self._state.increment_active_matches()
                raise

            prior_status = request.status
            prior_closed = request.closed_utc
            self._ledger.apply(resource, entry)
            resource.engaged_request_ids.discard(request_id)
            resource.version += 1
            request.status = target
            request.closed_utc = datetime.now(timezone.utc)
            request.version += 1

            try:
                self._events.commit(
                    EventKind.REQUEST_COMPLETED if success else EventKind.REQUEST_FAILED,
                    caller.identity,
                    {
                        "request_id": request_id,
                        "resource_id": resource_id,
                        "status": target.value,
                        "actual_duration": actual_duration,
                        "reputation_score": entry.new_reputation,
                        "total_usage_time": entry.new_usage_time,
                        "settlement_amount": str(transfer["amount"]),
                    },
                )
            except MatchingError as e:
                request.status = prior_status
                request.closed_utc = prior_closed
                request.version -= 1
                self._ledger.revert(resource, entry)
                resource.engaged_request_ids.add(request_id)
                resource.version -= 1
                self._state.increment_active_matches()
                self._reverse(transfer, e)
                raise

        logger.info(
            "computation_concluded",
            request_id=request_id,
            resource_id=resource_id,
            status=target.value,
            reputation_score=entry.new_reputation,
        )
        return CompletionResult(
            request_id=request_id,
            resource_id=resource_id,
            status=target,
            actual_duration=actual_duration,
            reputation_score=entry.new_reputation,
            total_usage_time=entry.new_usage_time,
            settlement_amount=Decimal(transfer["amount"]),
        )

    def cancel(
        self,
        request_id: int,
        caller: AuthenticatedCaller,
    ) -> ComputationRequest:
        """Withdraw a PENDING or MATCHED request.

        Cancelling a match releases the resource and the active-match
        slot; reputation and usage are untouched.
        """
        req_key = (RecordKind.REQUEST, request_id)
        with self._store.locked(req_key):
            request: ComputationRequest = self._store.require(*req_key)
            matched_id = request.matched_resource
            # matched_resource only changes under the request lock, so
            # taking the resource lock second keeps the global order.
            resource_lock = (
                self._store.locked((RecordKind.RESOURCE, matched_id))
                if matched_id is not None else contextlib.nullcontext()
            )
            with resource_lock:
                require_participant(
                    caller, self._state, request, self._matched_provider(request),
                )
                RequestStateMachine.require_transition(request, RequestStatus.CANCELLED)

                was_matched = request.status == RequestStatus.MATCHED
                resource: Optional[ResourceRecord] = (
                    self._store.require(RecordKind.RESOURCE, matched_id)
                    if was_matched else None
                )
                if was_matched:
                    self._state.decrement_active_matches()

                prior_status = request.status
                prior_price = request.agreed_price
                request.status = RequestStatus.CANCELLED
                request.matched_resource = None
                request.agreed_price = None
                request.closed_utc = datetime.now(timezone.utc)
                request.version += 1
                if resource is not None:
                    resource.engaged_request_ids.discard(request_id)
                    resource.version += 1

                try:
                    self._events.commit(
                        EventKind.REQUEST_CANCELLED,
                        caller.identity,
                        {
                            "request_id": request_id,
                            "resource_id": matched_id,
                            "previous_status": prior_status.value,
                            "status": request.status.value,
                        },
                    )
                except MatchingError:
                    request.status = prior_status
                    request.matched_resource = matched_id
                    request.agreed_price = prior_price
                    request.closed_utc = None
                    request.version -= 1
                    if resource is not None:
                        resource.engaged_request_ids.add(request_id)
                        resource.version -= 1
                        self._state.increment_active_matches()
                    raise

        logger.info(
            "request_cancelled",
            request_id=request_id,
            released_resource=matched_id if was_matched else None,
        )
        return request

    def _matched_provider(self, request: ComputationRequest) -> Optional[str]:
        if request.matched_resource is None:
            return None
        resource = self._store.get(RecordKind.RESOURCE, request.matched_resource)
        return resource.provider if resource is not None else None

    def _settle(self, transfer: dict[str, Any]) -> None:
        if self._settlement is None:
            return
        try:
            self._settlement.settle(**transfer)
        except SettlementError as e:
            logger.warning(
                "settlement_failed", request_id=transfer["request_id"], error=str(e),
            )
            raise MatchingError(
                ErrorCode.SETTLEMENT_FAILED,
                f"Settlement for request {transfer['request_id']} failed: {e}",
            ) from e

    def _reverse(self, transfer: dict[str, Any], cause: MatchingError) -> None:
        """Undo a settlement whose completion was rolled back."""
        if self._settlement is None:
            return
        try:
            self._settlement.reverse(**transfer)
        except SettlementError as e:
            logger.error(
                "settlement_reversal_failed",
                request_id=transfer["request_id"],
                amount=str(transfer["amount"]),
                error=str(e),
            )
            raise MatchingError(
                ErrorCode.SETTLEMENT_FAILED,
                f"Completion of request {transfer['request_id']} rolled back "
                f"({cause}) but its settlement could not be reversed: {e}",
            ) from e
        logger.info("settlement_reversed", request_id=transfer["request_id"])
