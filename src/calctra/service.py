"""Calctra service — unified facade for the compute market.

This is the primary interface for programmatic access to the market.
It wires the subsystems together:
- Resource registry (register, update, activate/deactivate)
- Request queue (submit, list pending)
- Matching engine (match a pair, select candidates, run cycles)
- Lifecycle manager (complete, fail, cancel)
- Reputation & usage ledger (applied on completion)
- Event log (audit record of every committed operation)

Every operation returns a ServiceResult. Domain rejections come back as
failed results carrying their ErrorCode. A ConsistencyFault means a
system counter left its valid range; it is not a rejection and is
raised to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import structlog

from calctra import __version__
from calctra.commands import (
    CancelRequest,
    Command,
    CompleteComputation,
    MatchRequest,
    RegisterResource,
    RunMatchingCycle,
    SetResourceActive,
    SubmitRequest,
    UpdateResource,
)
from calctra.errors import ErrorCode, MatchingError
from calctra.identity.authorization import (
    IdentityGate,
    IdentityVerifier,
    PreVerified,
)
from calctra.market.lifecycle import LifecycleManager
from calctra.market.matching import MatchingEngine
from calctra.market.registry import ResourceRegistry
from calctra.market.reputation import ReputationLedger
from calctra.market.request_queue import RequestQueue
from calctra.market.settlement import SettlementGateway
from calctra.models.market import (
    Capabilities,
    CompletionResult,
    ComputationRequest,
    CycleResult,
    MatchResult,
    RequestStatus,
    Requirements,
    ResourceRecord,
)
from calctra.models.system import SystemState
from calctra.persistence.event_log import EventLog, EventRecorder
from calctra.persistence.record_store import RecordStore
from calctra.policy.resolver import PolicyResolver

logger = structlog.get_logger("calctra.service")


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)
    error_code: Optional[ErrorCode] = None


class CalctraService:
    """Unified compute-market facade.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        service = CalctraService("authority", resolver)

        result = service.register_resource(
            "provider", Capabilities(compute_power=100, memory=64), "10", "US",
        )
        result = service.submit_request(
            "alice", Requirements(compute_power=50, memory=32), "15",
        )
        result = service.match(request_id, resource_id, "provider")
        result = service.complete(request_id, resource_id, 10, True, "alice")

    Persistence (optional):
        service = CalctraService("authority", resolver,
                                 event_log=EventLog(storage_path=path))
    """

    def __init__(
        self,
        authority: str,
        resolver: Optional[PolicyResolver] = None,
        verifier: Optional[IdentityVerifier] = None,
        event_log: Optional[EventLog] = None,
        settlement: Optional[SettlementGateway] = None,
    ) -> None:
        if not authority:
            raise ValueError("authority identity must be non-empty")
        self._resolver = resolver or PolicyResolver.default()
        self._gate = IdentityGate(verifier or PreVerified())
        self._state = SystemState(authority)
        self._store = RecordStore()
        self._event_log = event_log if event_log is not None else EventLog()
        self._events = EventRecorder(self._event_log)

        self._registry = ResourceRegistry(self._store, self._state, self._events)
        self._queue = RequestQueue(self._store, self._state, self._events)
        self._matching = MatchingEngine(
            self._store, self._state, self._resolver, self._events,
        )
        self._lifecycle = LifecycleManager(
            self._store, self._state, self._events,
            ReputationLedger(self._resolver), settlement,
        )
        self._handlers: dict[type, Callable[[Any], ServiceResult]] = {
            RegisterResource: self._handle_register_resource,
            UpdateResource: self._handle_update_resource,
            SetResourceActive: self._handle_set_resource_active,
            SubmitRequest: self._handle_submit_request,
            MatchRequest: self._handle_match_request,
            CompleteComputation: self._handle_complete_computation,
            CancelRequest: self._handle_cancel_request,
            RunMatchingCycle: self._handle_run_matching_cycle,
        }
        logger.info(
            "service_started",
            authority=authority,
            max_engagements=self._resolver.max_engagements_per_resource(),
            events_loaded=self._event_log.count,
        )

    @property
    def state(self) -> SystemState:
        return self._state

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    @property
    def resolver(self) -> PolicyResolver:
        return self._resolver

    # ------------------------------------------------------------------
    # Resource registry
    # ------------------------------------------------------------------

    def register_resource(
        self,
        provider: str,
        capabilities: Capabilities,
        price_per_unit: Any,
        location: str,
        resource_type: str = "",
    ) -> ServiceResult:
        """Offer a new resource. The caller becomes its provider."""
        try:
            caller = self._gate.authenticate(provider)
            record = self._registry.register(
                caller, capabilities, price_per_unit, location, resource_type,
            )
            return ServiceResult(success=True, data=_resource_data(record))
        except MatchingError as e:
            return _failure(e)

    def update_resource(
        self,
        resource_id: int,
        caller: str,
        price_per_unit: Optional[Any] = None,
        capabilities: Optional[Capabilities] = None,
        location: Optional[str] = None,
    ) -> ServiceResult:
        try:
            record = self._registry.update_resource(
                resource_id, self._gate.authenticate(caller),
                price_per_unit=price_per_unit,
                capabilities=capabilities,
                location=location,
            )
            return ServiceResult(success=True, data=_resource_data(record))
        except MatchingError as e:
            return _failure(e)

    def set_resource_active(
        self, resource_id: int, caller: str, active: bool,
    ) -> ServiceResult:
        try:
            record = self._registry.set_active(
                resource_id, self._gate.authenticate(caller), active,
            )
            return ServiceResult(success=True, data=_resource_data(record))
        except MatchingError as e:
            return _failure(e)

    def get_resource(self, resource_id: int) -> Optional[ResourceRecord]:
        return self._registry.get(resource_id)

    def list_resources(self, active_only: bool = False) -> list[ResourceRecord]:
        return self._registry.active() if active_only else self._registry.all()

    # ------------------------------------------------------------------
    # Request queue
    # ------------------------------------------------------------------

    def submit_request(
        self,
        requester: str,
        requirements: Requirements,
        max_price_per_unit: Any,
        preferred_location: Optional[str] = None,
        min_reputation: int = 0,
        computation_type: str = "",
        duration_estimate: int = 0,
    ) -> ServiceResult:
        """Queue a computation request. The caller becomes its requester."""
        try:
            request = self._queue.submit(
                self._gate.authenticate(requester),
                requirements,
                max_price_per_unit,
                preferred_location=preferred_location,
                min_reputation=min_reputation,
                computation_type=computation_type,
                duration_estimate=duration_estimate,
            )
            return ServiceResult(success=True, data=_request_data(request))
        except MatchingError as e:
            return _failure(e)

    def get_request(self, request_id: int) -> Optional[ComputationRequest]:
        return self._queue.get(request_id)

    def pending_requests(self) -> list[ComputationRequest]:
        """PENDING requests, oldest first."""
        return self._queue.pending()

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def match(
        self,
        request_id: int,
        resource_id: int,
        caller: str,
        strict_location: Optional[bool] = None,
    ) -> ServiceResult:
        """Commit a specific (request, resource) pair."""
        try:
            result = self._matching.match(
                request_id, resource_id,
                self._gate.authenticate(caller),
                strict_location=strict_location,
            )
            return ServiceResult(success=True, data=_match_data(result))
        except MatchingError as e:
            return _failure(e)

    def select_best_candidate(
        self,
        request_id: int,
        strict_location: Optional[bool] = None,
    ) -> ServiceResult:
        """Best resource id for a request, or None in ``data``."""
        try:
            resource_id = self._matching.select_best_candidate(
                request_id, strict_location=strict_location,
            )
            return ServiceResult(
                success=True,
                data={"request_id": request_id, "resource_id": resource_id},
            )
        except MatchingError as e:
            return _failure(e)

    def run_matching_cycle(
        self, caller: str, batch_size: Optional[int] = None,
    ) -> ServiceResult:
        """Authority-driven greedy pass over the pending queue."""
        try:
            cycle = self._matching.run_matching_cycle(
                self._gate.authenticate(caller), batch_size=batch_size,
            )
            return ServiceResult(success=True, data=_cycle_data(cycle))
        except MatchingError as e:
            return _failure(e)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def complete(
        self,
        request_id: int,
        resource_id: int,
        actual_duration: int,
        success: bool,
        caller: str,
    ) -> ServiceResult:
        """Conclude a matched computation as completed or failed."""
        try:
            result = self._lifecycle.complete(
                request_id, resource_id, actual_duration, success,
                self._gate.authenticate(caller),
            )
            return ServiceResult(success=True, data=_completion_data(result))
        except MatchingError as e:
            return _failure(e)

    def cancel(self, request_id: int, caller: str) -> ServiceResult:
        try:
            request = self._lifecycle.cancel(
                request_id, self._gate.authenticate(caller),
            )
            return ServiceResult(success=True, data=_request_data(request))
        except MatchingError as e:
            return _failure(e)

    # ------------------------------------------------------------------
    # Command dispatch
    # ------------------------------------------------------------------

    def execute(self, command: Command) -> ServiceResult:
        """Dispatch one command object to its operation."""
        handler = self._handlers.get(type(command))
        if handler is None:
            return ServiceResult(
                success=False,
                errors=[f"Unsupported command: {type(command).__name__}"],
                error_code=ErrorCode.INVALID_ARGUMENT,
            )
        return handler(command)

    def _handle_register_resource(self, cmd: RegisterResource) -> ServiceResult:
        return self.register_resource(
            cmd.caller, cmd.capabilities, cmd.price_per_unit,
            cmd.location, cmd.resource_type,
        )

    def _handle_update_resource(self, cmd: UpdateResource) -> ServiceResult:
        return self.update_resource(
            cmd.resource_id, cmd.caller,
            price_per_unit=cmd.price_per_unit,
            capabilities=cmd.capabilities,
            location=cmd.location,
        )

    def _handle_set_resource_active(self, cmd: SetResourceActive) -> ServiceResult:
        return self.set_resource_active(cmd.resource_id, cmd.caller, cmd.active)

    def _handle_submit_request(self, cmd: SubmitRequest) -> ServiceResult:
        return self.submit_request(
            cmd.caller, cmd.requirements, cmd.max_price_per_unit,
            preferred_location=cmd.preferred_location,
            min_reputation=cmd.min_reputation,
            computation_type=cmd.computation_type,
            duration_estimate=cmd.duration_estimate,
        )

    def _handle_match_request(self, cmd: MatchRequest) -> ServiceResult:
        return self.match(
            cmd.request_id, cmd.resource_id, cmd.caller,
            strict_location=cmd.strict_location,
        )

    def _handle_complete_computation(self, cmd: CompleteComputation) -> ServiceResult:
        return self.complete(
            cmd.request_id, cmd.resource_id, cmd.actual_duration,
            cmd.success, cmd.caller,
        )

    def _handle_cancel_request(self, cmd: CancelRequest) -> ServiceResult:
        return self.cancel(cmd.request_id, cmd.caller)

    def _handle_run_matching_cycle(self, cmd: RunMatchingCycle) -> ServiceResult:
        return self.run_matching_cycle(cmd.caller, batch_size=cmd.batch_size)

    # ------------------------------------------------------------------
    # Status and queries
    # ------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        """Return market-wide status summary."""
        resources = self._registry.all()
        requests = self._queue.all()
        by_status = {s.value: 0 for s in RequestStatus}
        for r in requests:
            by_status[r.status.value] += 1
        return {
            "version": __version__,
            "system": self._state.snapshot(),
            "resources": {
                "total": len(resources),
                "active": sum(1 for r in resources if r.is_active),
                "engaged": sum(1 for r in resources if r.engaged_request_ids),
            },
            "requests": {
                "total": len(requests),
                "by_status": by_status,
            },
            "matching": self._matching.metrics(),
            "events": self._event_log.count,
        }


def _failure(e: MatchingError) -> ServiceResult:
    return ServiceResult(success=False, errors=[str(e)], error_code=e.code)


def _resource_data(record: ResourceRecord) -> dict[str, Any]:
    caps = record.capabilities
    return {
        "resource_id": record.resource_id,
        "provider": record.provider,
        "compute_power": caps.compute_power,
        "memory": caps.memory,
        "storage": caps.storage,
        "gpu_type": caps.gpu_type,
        "gpu_memory": caps.gpu_memory,
        "price_per_unit": str(record.price_per_unit),
        "location": record.location,
        "resource_type": record.resource_type,
        "is_active": record.is_active,
        "reputation_score": record.reputation_score,
        "total_usage_time": record.total_usage_time,
        "engaged_request_ids": sorted(record.engaged_request_ids),
    }


def _request_data(request: ComputationRequest) -> dict[str, Any]:
    return {
        "request_id": request.request_id,
        "requester": request.requester,
        "status": request.status.value,
        "matched_resource": request.matched_resource,
        "max_price_per_unit": str(request.max_price_per_unit),
        "preferred_location": request.preferred_location,
        "min_reputation": request.min_reputation,
    }


def _match_data(result: MatchResult) -> dict[str, Any]:
    return {
        "request_id": result.request_id,
        "resource_id": result.resource_id,
        "requester": result.requester,
        "provider": result.provider,
        "price_per_unit": str(result.price_per_unit),
        "status": result.status.value,
    }


def _completion_data(result: CompletionResult) -> dict[str, Any]:
    return {
        "request_id": result.request_id,
        "resource_id": result.resource_id,
        "status": result.status.value,
        "actual_duration": result.actual_duration,
        "reputation_score": result.reputation_score,
        "total_usage_time": result.total_usage_time,
        "settlement_amount": str(result.settlement_amount),
    }


def _cycle_data(cycle: CycleResult) -> dict[str, Any]:
    return {
        "matched": [_match_data(m) for m in cycle.matched],
        "matched_count": cycle.matched_count,
        "unmatched_request_ids": list(cycle.unmatched_request_ids),
    }
