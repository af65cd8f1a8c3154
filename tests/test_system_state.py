"""Tests for system counters — id generation and the active-match gauge."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from calctra.errors import ConsistencyFault, ErrorCode
from calctra.models.system import COUNTER_MAX, SystemState


@pytest.fixture
def state() -> SystemState:
    return SystemState("authority")


class TestIdGeneration:
    def test_ids_start_at_zero(self, state: SystemState) -> None:
        assert state.next_resource_id() == 0
        assert state.next_request_id() == 0

    def test_ids_strictly_increase(self, state: SystemState) -> None:
        ids = [state.next_resource_id() for _ in range(5)]
        assert ids == [0, 1, 2, 3, 4]
        assert state.resource_count == 5

    def test_catalogs_are_independent(self, state: SystemState) -> None:
        state.next_resource_id()
        state.next_resource_id()
        assert state.next_request_id() == 0
        assert state.request_count == 1
        assert state.resource_count == 2

    def test_concurrent_ids_are_unique(self, state: SystemState) -> None:
        with ThreadPoolExecutor(max_workers=8) as pool:
            ids = list(pool.map(lambda _: state.next_request_id(), range(500)))
        assert sorted(ids) == list(range(500))
        assert state.request_count == 500

    def test_overflow_is_a_fault(self, state: SystemState) -> None:
        state._resource_count = COUNTER_MAX
        with pytest.raises(ConsistencyFault) as exc:
            state.next_resource_id()
        assert exc.value.code == ErrorCode.COUNTER_OVERFLOW
        assert state.resource_count == COUNTER_MAX


class TestActiveMatches:
    def test_increment_and_decrement(self, state: SystemState) -> None:
        assert state.increment_active_matches() == 1
        assert state.increment_active_matches() == 2
        assert state.decrement_active_matches() == 1
        assert state.active_matches == 1

    def test_underflow_is_a_fault(self, state: SystemState) -> None:
        with pytest.raises(ConsistencyFault) as exc:
            state.decrement_active_matches()
        assert exc.value.code == ErrorCode.COUNTER_UNDERFLOW
        assert state.active_matches == 0

    def test_concurrent_updates_balance(self, state: SystemState) -> None:
        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(lambda _: state.increment_active_matches(), range(200)))
            list(pool.map(lambda _: state.decrement_active_matches(), range(150)))
        assert state.active_matches == 50


class TestSnapshot:
    def test_snapshot_fields(self, state: SystemState) -> None:
        state.next_resource_id()
        snap = state.snapshot()
        assert snap == {
            "authority": "authority",
            "resource_count": 1,
            "request_count": 0,
            "active_matches": 0,
        }

    def test_authority_required(self) -> None:
        with pytest.raises(ValueError):
            SystemState("")
