"""Core data models for the Calctra compute market."""

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

__all__ = [
    "Capabilities",
    "CompletionResult",
    "ComputationRequest",
    "CycleResult",
    "MatchResult",
    "RequestStatus",
    "Requirements",
    "ResourceRecord",
    "SystemState",
]
