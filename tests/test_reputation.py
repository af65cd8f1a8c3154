"""Tests for the reputation and usage ledger — saturating updates."""

from decimal import Decimal

import pytest

from calctra.market.reputation import USAGE_TIME_MAX, ReputationLedger, saturating_add
from calctra.models.market import Capabilities, ResourceRecord
from calctra.policy.resolver import PolicyResolver


def _make_resource(reputation: int = 0, usage: int = 0) -> ResourceRecord:
    return ResourceRecord(
        resource_id=1,
        provider="provider-1",
        capabilities=Capabilities(compute_power=1, memory=1),
        price_per_unit=Decimal("1"),
        location="US",
        reputation_score=reputation,
        total_usage_time=usage,
    )


@pytest.fixture
def ledger() -> ReputationLedger:
    return ReputationLedger(PolicyResolver.default())


class TestSaturatingAdd:
    def test_within_range(self) -> None:
        assert saturating_add(5, 3, -10, 10) == 8

    def test_clamps_high_and_low(self) -> None:
        assert saturating_add(9, 5, -10, 10) == 10
        assert saturating_add(-9, -5, -10, 10) == -10


class TestLedger:
    def test_success_increments(self, ledger: ReputationLedger) -> None:
        entry = ledger.compute(_make_resource(), 10, True)
        assert (entry.new_reputation, entry.new_usage_time) == (1, 10)

    def test_failure_decrements(self, ledger: ReputationLedger) -> None:
        entry = ledger.compute(_make_resource(reputation=3, usage=4), 6, False)
        assert (entry.new_reputation, entry.new_usage_time) == (2, 10)

    def test_saturates_at_ceiling(self, ledger: ReputationLedger) -> None:
        entry = ledger.compute(_make_resource(reputation=100), 1, True)
        assert entry.new_reputation == 100

    def test_saturates_at_floor(self, ledger: ReputationLedger) -> None:
        entry = ledger.compute(_make_resource(reputation=-100), 1, False)
        assert entry.new_reputation == -100

    def test_usage_saturates(self, ledger: ReputationLedger) -> None:
        entry = ledger.compute(_make_resource(usage=USAGE_TIME_MAX - 1), 50, True)
        assert entry.new_usage_time == USAGE_TIME_MAX

    def test_compute_is_pure(self, ledger: ReputationLedger) -> None:
        resource = _make_resource(reputation=2, usage=2)
        ledger.compute(resource, 5, True)
        assert (resource.reputation_score, resource.total_usage_time) == (2, 2)

    def test_apply_and_revert(self, ledger: ReputationLedger) -> None:
        resource = _make_resource(reputation=2, usage=2)
        entry = ledger.compute(resource, 5, True)
        ReputationLedger.apply(resource, entry)
        assert (resource.reputation_score, resource.total_usage_time) == (3, 7)
        ReputationLedger.revert(resource, entry)
        assert (resource.reputation_score, resource.total_usage_time) == (2, 2)

    def test_configured_bounds_and_step(self) -> None:
        ledger = ReputationLedger(
            PolicyResolver({"reputation": {"floor": -5, "ceiling": 5, "step": 2}})
        )
        assert ledger.compute(_make_resource(reputation=4), 1, True).new_reputation == 5
        assert ledger.compute(_make_resource(reputation=-4), 1, False).new_reputation == -5
        assert ledger.compute(_make_resource(), 1, True).new_reputation == 2
