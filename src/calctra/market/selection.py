"""Candidate selection — filters and ranks resources for a request.

Pure computation: nothing here reads the store or takes a lock. The
matching engine re-checks compatibility under lock before committing,
so a ranking computed from a slightly stale pool is safe.

Eligibility (each failure has its own error code, checked in order):
    active → compute power → memory → storage/GPU → price
    → location (strict mode only) → reputation

Ranking (total order, so selection is reproducible):
    1. exact preferred-location match first (when a preference is set)
    2. price_per_unit ascending
    3. reputation_score descending
    4. resource_id ascending
"""

from __future__ import annotations

from typing import Iterable, Optional

from calctra.errors import ErrorCode, MatchingError
from calctra.models.market import ComputationRequest, ResourceRecord


def incompatibility(
    request: ComputationRequest,
    resource: ResourceRecord,
    strict_location: bool = False,
) -> Optional[MatchingError]:
    """Return the first reason ``resource`` cannot serve ``request``.

    None means the resource is eligible. Authorization, request status
    and engagement capacity are the engine's concern, not this one's.
    """
    rid = resource.resource_id
    if not resource.is_active:
        return MatchingError(ErrorCode.RESOURCE_NOT_ACTIVE, f"Resource {rid} is not active")

    have = resource.capabilities
    need = request.requirements
    if have.compute_power < need.compute_power:
        return MatchingError(
            ErrorCode.INSUFFICIENT_COMPUTATION_POWER,
            f"Resource {rid} offers {have.compute_power} compute power, "
            f"request {request.request_id} needs {need.compute_power}",
        )
    if have.memory < need.memory:
        return MatchingError(
            ErrorCode.INSUFFICIENT_MEMORY,
            f"Resource {rid} offers {have.memory} memory, "
            f"request {request.request_id} needs {need.memory}",
        )
    if have.storage < need.storage:
        return MatchingError(
            ErrorCode.INSUFFICIENT_CAPABILITY,
            f"Resource {rid} offers {have.storage} storage, "
            f"request {request.request_id} needs {need.storage}",
        )
    if need.needs_gpu and (not have.has_gpu or have.gpu_memory < need.gpu_memory):
        return MatchingError(
            ErrorCode.INSUFFICIENT_CAPABILITY,
            f"Resource {rid} GPU ({have.gpu_type or 'none'}, {have.gpu_memory}) "
            f"does not satisfy request {request.request_id} ({need.gpu_memory})",
        )

    if resource.price_per_unit > request.max_price_per_unit:
        return MatchingError(
            ErrorCode.PRICE_TOO_HIGH,
            f"Resource {rid} price {resource.price_per_unit} exceeds "
            f"ceiling {request.max_price_per_unit}",
        )

    if (
        strict_location
        and request.preferred_location is not None
        and resource.location != request.preferred_location
    ):
        return MatchingError(
            ErrorCode.LOCATION_MISMATCH,
            f"Resource {rid} is in {resource.location}, "
            f"request requires {request.preferred_location}",
        )

    if resource.reputation_score < request.min_reputation:
        return MatchingError(
            ErrorCode.REPUTATION_TOO_LOW,
            f"Resource {rid} reputation {resource.reputation_score} below "
            f"minimum {request.min_reputation}",
        )
    return None


def is_eligible(
    request: ComputationRequest,
    resource: ResourceRecord,
    strict_location: bool = False,
) -> bool:
    return incompatibility(request, resource, strict_location) is None


def _rank_key(request: ComputationRequest, resource: ResourceRecord) -> tuple:
    preferred = request.preferred_location
    location_rank = 0 if preferred is None or resource.location == preferred else 1
    return (
        location_rank,
        resource.price_per_unit,
        -resource.reputation_score,
        resource.resource_id,
    )


def rank_candidates(
    request: ComputationRequest,
    pool: Iterable[ResourceRecord],
    strict_location: bool = False,
) -> list[ResourceRecord]:
    """Eligible resources, best first."""
    candidates = [r for r in pool if is_eligible(request, r, strict_location)]
    candidates.sort(key=lambda r: _rank_key(request, r))
    return candidates


def select_best_candidate(
    request: ComputationRequest,
    pool: Iterable[ResourceRecord],
    strict_location: bool = False,
) -> Optional[int]:
    """Id of the best eligible resource, or None if none qualifies."""
    ranked = rank_candidates(request, pool, strict_location)
    if not ranked:
        return None
    return ranked[0].resource_id
