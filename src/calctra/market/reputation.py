"""Reputation and usage bookkeeping for concluded computations.

Called only by the lifecycle manager's ``complete``, inside the same
locked commit that moves the request to COMPLETED or FAILED, so a
reputation change never exists without its terminal transition.

Both updates saturate instead of wrapping:
- reputation moves by ``step`` within [floor, ceiling];
- usage time grows up to USAGE_TIME_MAX.
"""

from __future__ import annotations

from dataclasses import dataclass

from calctra.models.market import ResourceRecord
from calctra.policy.resolver import PolicyResolver

USAGE_TIME_MAX = 2**64 - 1


def saturating_add(value: int, delta: int, floor: int, ceiling: int) -> int:
    return max(floor, min(ceiling, value + delta))


@dataclass(frozen=True)
class UsageEntry:
    """Before/after values of one ledger update."""
    resource_id: int
    previous_reputation: int
    new_reputation: int
    previous_usage_time: int
    new_usage_time: int


class ReputationLedger:
    """Computes and applies saturating reputation/usage updates."""

    def __init__(self, resolver: PolicyResolver) -> None:
        self._bounds = resolver.reputation_bounds()

    def compute(
        self,
        resource: ResourceRecord,
        actual_duration: int,
        success: bool,
    ) -> UsageEntry:
        """Pure: the entry that ``apply`` would write."""
        bounds = self._bounds
        delta = bounds.step if success else -bounds.step
        return UsageEntry(
            resource_id=resource.resource_id,
            previous_reputation=resource.reputation_score,
            new_reputation=saturating_add(
                resource.reputation_score, delta, bounds.floor, bounds.ceiling,
            ),
            previous_usage_time=resource.total_usage_time,
            new_usage_time=saturating_add(
                resource.total_usage_time, actual_duration, 0, USAGE_TIME_MAX,
            ),
        )

    @staticmethod
    def apply(resource: ResourceRecord, entry: UsageEntry) -> None:
        resource.reputation_score = entry.new_reputation
        resource.total_usage_time = entry.new_usage_time

    @staticmethod
    def revert(resource: ResourceRecord, entry: UsageEntry) -> None:
        resource.reputation_score = entry.previous_reputation
        resource.total_usage_time = entry.previous_usage_time
