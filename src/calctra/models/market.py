"""Compute market models — resources, requests, and match outcomes.

Providers register resources, requesters submit computation requests,
the matching engine pairs one pending request with one resource, and
the lifecycle manager drives the request to a terminal status.

Request lifecycle: PENDING → MATCHED → COMPLETED / FAILED
                   PENDING / MATCHED → CANCELLED

Quantities (compute power, memory, storage, GPU memory, durations) are
non-negative integers in provider-declared units. Prices are Decimal,
never float.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional


class RequestStatus(str, enum.Enum):
    """Lifecycle state of a computation request."""
    PENDING = "pending"
    MATCHED = "matched"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Capabilities:
    """Hardware offered by a resource."""
    compute_power: int
    memory: int
    storage: int = 0
    gpu_type: Optional[str] = None
    gpu_memory: int = 0

    @property
    def has_gpu(self) -> bool:
        return bool(self.gpu_type)


@dataclass(frozen=True)
class Requirements:
    """Minimum hardware a computation request needs."""
    compute_power: int
    memory: int
    storage: int = 0
    needs_gpu: bool = False
    gpu_memory: int = 0


@dataclass
class ResourceRecord:
    """A computational resource offered for hire by a provider.

    Never deleted: a provider withdraws a resource by deactivating it.
    ``engaged_request_ids`` holds the requests currently matched to this
    resource; its size is bounded by the engagement policy.
    """
    resource_id: int
    provider: str
    capabilities: Capabilities
    price_per_unit: Decimal
    location: str
    resource_type: str = ""
    is_active: bool = True
    reputation_score: int = 0
    total_usage_time: int = 0
    engaged_request_ids: set[int] = field(default_factory=set)
    registered_utc: Optional[datetime] = None
    version: int = 0


@dataclass
class ComputationRequest:
    """A requester's demand for compute, awaiting or holding a match."""
    request_id: int
    requester: str
    requirements: Requirements
    max_price_per_unit: Decimal
    preferred_location: Optional[str] = None
    min_reputation: int = 0
    computation_type: str = ""
    duration_estimate: int = 0
    status: RequestStatus = RequestStatus.PENDING
    matched_resource: Optional[int] = None
    # Resource price captured when the match commits; later price
    # updates by the provider do not change what this engagement costs.
    agreed_price: Optional[Decimal] = None
    submitted_utc: Optional[datetime] = None
    matched_utc: Optional[datetime] = None
    closed_utc: Optional[datetime] = None
    version: int = 0


@dataclass(frozen=True)
class MatchResult:
    """A committed pairing between one request and one resource."""
    request_id: int
    resource_id: int
    requester: str
    provider: str
    price_per_unit: Decimal
    status: RequestStatus


@dataclass(frozen=True)
class CompletionResult:
    """Outcome of a completed or failed computation."""
    request_id: int
    resource_id: int
    status: RequestStatus
    actual_duration: int
    reputation_score: int
    total_usage_time: int
    settlement_amount: Decimal


@dataclass(frozen=True)
class CycleResult:
    """Summary of one caller-driven matching cycle."""
    matched: list[MatchResult] = field(default_factory=list)
    unmatched_request_ids: list[int] = field(default_factory=list)

    @property
    def matched_count(self) -> int:
        return len(self.matched)
