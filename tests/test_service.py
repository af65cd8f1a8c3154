"""Tests for the service facade — end-to-end market flows."""

from decimal import Decimal
from pathlib import Path

import pytest

from calctra.commands import (
    CancelRequest,
    CompleteComputation,
    MatchRequest,
    RegisterResource,
    RunMatchingCycle,
    SetResourceActive,
    SubmitRequest,
    UpdateResource,
    command_from_dict,
)
from calctra.errors import ConsistencyFault, ErrorCode
from calctra.identity.authorization import SignerSet
from calctra.models.market import Capabilities, RequestStatus, Requirements
from calctra.persistence.event_log import EventKind, EventLog
from calctra.policy.resolver import PolicyResolver
from calctra.service import CalctraService


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


@pytest.fixture
def service() -> CalctraService:
    return CalctraService("authority", PolicyResolver.from_config_dir(CONFIG_DIR))


def _register(service: CalctraService, provider: str = "provider-1", **kwargs) -> int:
    caps = {"compute_power": 100, "memory": 64}
    caps.update(kwargs.pop("caps", {}))
    result = service.register_resource(
        provider, Capabilities(**caps),
        kwargs.pop("price", "10"), kwargs.pop("location", "US"),
    )
    assert result.success, result.errors
    return result.data["resource_id"]


def _submit(service: CalctraService, requester: str = "alice", **kwargs) -> int:
    needs = {"compute_power": 50, "memory": 32}
    needs.update(kwargs.pop("needs", {}))
    result = service.submit_request(
        requester, Requirements(**needs), kwargs.pop("max_price", "20"), **kwargs,
    )
    assert result.success, result.errors
    return result.data["request_id"]


class TestMarketScenarios:
    def test_match_then_rematch_then_complete(self, service: CalctraService) -> None:
        r1 = _register(service, location="US")
        q1 = _submit(service, preferred_location="US")

        result = service.match(q1, r1, "authority")
        assert result.success
        assert result.data["status"] == "matched"
        assert service.get_request(q1).status == RequestStatus.MATCHED
        assert service.state.active_matches == 1

        again = service.match(q1, r1, "authority")
        assert not again.success
        assert again.error_code == ErrorCode.REQUEST_NOT_PENDING

        done = service.complete(q1, r1, 10, True, "alice")
        assert done.success
        resource = service.get_resource(r1)
        assert resource.reputation_score == 1
        assert resource.total_usage_time == 10
        assert service.get_request(q1).status == RequestStatus.COMPLETED
        assert service.state.active_matches == 0

    def test_insufficient_power(self, service: CalctraService) -> None:
        r2 = _register(service, caps={"compute_power": 10})
        q2 = _submit(service, needs={"compute_power": 50})
        result = service.match(q2, r2, "authority")
        assert result.error_code == ErrorCode.INSUFFICIENT_COMPUTATION_POWER
        assert "InsufficientComputationPower" in result.errors[0]

    def test_cancel_pending_then_match(self, service: CalctraService) -> None:
        r = _register(service)
        q3 = _submit(service)
        assert service.cancel(q3, "alice").data["status"] == "cancelled"
        assert service.match(q3, r, "authority").error_code == ErrorCode.REQUEST_NOT_PENDING

    def test_reputation_tie_break(self, service: CalctraService) -> None:
        r3 = _register(service, price="5")
        r4 = _register(service, price="5")
        service.get_resource(r3).reputation_score = 2
        service.get_resource(r4).reputation_score = 5
        q4 = _submit(service)
        assert service.select_best_candidate(q4).data["resource_id"] == r4

    def test_no_candidate(self, service: CalctraService) -> None:
        q = _submit(service)
        result = service.select_best_candidate(q)
        assert result.success
        assert result.data["resource_id"] is None

    def test_pending_requests_oldest_first(self, service: CalctraService) -> None:
        ids = [_submit(service) for _ in range(3)]
        service.cancel(ids[1], "alice")
        assert [r.request_id for r in service.pending_requests()] == [ids[0], ids[2]]


class TestServiceErrors:
    def test_unknown_request(self, service: CalctraService) -> None:
        result = service.cancel(42, "alice")
        assert not result.success
        assert result.error_code == ErrorCode.NOT_FOUND

    def test_invalid_registration(self, service: CalctraService) -> None:
        result = service.register_resource(
            "provider-1", Capabilities(compute_power=-1, memory=1), "1", "US",
        )
        assert result.error_code == ErrorCode.INVALID_CAPABILITY
        assert service.state.resource_count == 0

    def test_unverified_caller_rejected(self) -> None:
        service = CalctraService("authority", verifier=SignerSet({"authority", "alice"}))
        result = service.register_resource(
            "mallory", Capabilities(compute_power=1, memory=1), "1", "US",
        )
        assert result.error_code == ErrorCode.UNAUTHORIZED
        assert service.submit_request(
            "alice", Requirements(compute_power=1, memory=1), "1",
        ).success

    def test_consistency_fault_propagates(self, service: CalctraService) -> None:
        r = _register(service)
        q = _submit(service)
        service.match(q, r, "authority")
        service.state.decrement_active_matches()
        with pytest.raises(ConsistencyFault):
            service.complete(q, r, 1, True, "alice")

    def test_authority_required(self) -> None:
        with pytest.raises(ValueError):
            CalctraService("")


class TestCommands:
    def test_full_flow_through_execute(self, service: CalctraService) -> None:
        caps = Capabilities(compute_power=100, memory=64)
        needs = Requirements(compute_power=50, memory=32)
        results = [
            service.execute(RegisterResource("provider-1", caps, "10", "US")),
            service.execute(UpdateResource("provider-1", 0, price_per_unit="8")),
            service.execute(SubmitRequest("alice", needs, "20")),
            service.execute(MatchRequest("provider-1", 0, 0)),
            service.execute(CompleteComputation("alice", 0, 0, 5, True)),
            service.execute(SetResourceActive("provider-1", 0, False)),
        ]
        assert all(r.success for r in results), [r.errors for r in results]
        assert results[4].data["settlement_amount"] == "40"
        assert service.get_resource(0).is_active is False
        assert service.list_resources(active_only=True) == []
        assert [r.resource_id for r in service.list_resources()] == [0]

    def test_cycle_and_cancel_commands(self, service: CalctraService) -> None:
        _register(service)
        q0 = _submit(service)
        q1 = _submit(service)
        cycle = service.execute(RunMatchingCycle("authority"))
        assert cycle.data["matched_count"] == 1
        assert cycle.data["unmatched_request_ids"] == [q1]
        assert service.execute(CancelRequest("alice", q0)).success
        assert service.state.active_matches == 0

    def test_non_authority_cycle_rejected(self, service: CalctraService) -> None:
        result = service.execute(RunMatchingCycle("alice"))
        assert result.error_code == ErrorCode.UNAUTHORIZED_MATCHER

    def test_unsupported_command(self, service: CalctraService) -> None:
        result = service.execute(object())
        assert not result.success
        assert result.error_code == ErrorCode.INVALID_ARGUMENT

    def test_command_from_dict(self) -> None:
        command = command_from_dict({
            "op": "submit_request",
            "caller": "alice",
            "requirements": {"compute_power": 5, "memory": 2, "needs_gpu": True},
            "max_price_per_unit": "3.5",
        })
        assert isinstance(command, SubmitRequest)
        assert command.requirements.needs_gpu is True
        assert command.max_price_per_unit == "3.5"

    def test_command_from_dict_rejects_unknown(self) -> None:
        with pytest.raises(ValueError, match="Unknown command op"):
            command_from_dict({"op": "mint_tokens"})
        with pytest.raises(ValueError, match="Bad arguments"):
            command_from_dict({"op": "cancel_request", "caller": "alice"})


class TestStatus:
    def test_status_summary(self, service: CalctraService) -> None:
        r = _register(service)
        _register(service, provider="provider-2")
        q = _submit(service)
        _submit(service)
        service.match(q, r, "authority")
        service.match(q, r, "authority")

        status = service.status()
        assert status["system"]["resource_count"] == 2
        assert status["system"]["request_count"] == 2
        assert status["system"]["active_matches"] == 1
        assert status["resources"] == {"total": 2, "active": 2, "engaged": 1}
        assert status["requests"]["by_status"]["matched"] == 1
        assert status["requests"]["by_status"]["pending"] == 1
        assert status["matching"]["total_matched"] == 1
        assert status["matching"]["total_rejected"] == 1
        assert status["events"] == 5


class TestPersistence:
    def test_events_survive_restart(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        service = CalctraService("authority", event_log=EventLog(storage_path=path))
        r = _register(service)
        q = _submit(service)
        service.match(q, r, "authority")

        reloaded = EventLog(storage_path=path)
        assert reloaded.count == 3
        assert [e.event_kind for e in reloaded.events()] == [
            EventKind.RESOURCE_REGISTERED,
            EventKind.REQUEST_SUBMITTED,
            EventKind.REQUEST_MATCHED,
        ]
        assert reloaded.events(EventKind.REQUEST_MATCHED)[0].payload["price_per_unit"] == "10"

    def test_agreed_price_fixed_at_match(self, service: CalctraService) -> None:
        r = _register(service, price="3")
        q = _submit(service)
        service.match(q, r, "provider-1")
        service.update_resource(r, "provider-1", price_per_unit="9")
        result = service.complete(q, r, 2, True, "provider-1")
        assert Decimal(result.data["settlement_amount"]) == Decimal("6")
