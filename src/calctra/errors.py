"""Error kinds surfaced by the matching core.

Every failed operation raises a MatchingError carrying one ErrorCode.
Failures are terminal for the attempted operation: components validate
fully before writing, and roll back in-memory writes if the audit
append fails.

ConsistencyFault is deliberately not a MatchingError. It signals that a
counter invariant has been broken (gauge underflow, sequence overflow),
which is a defect rather than a caller mistake, so the service facade
lets it propagate instead of converting it to a failed result.
"""

from __future__ import annotations

import enum


class ErrorCode(str, enum.Enum):
    """Distinct failure modes of market operations."""
    UNAUTHORIZED = "Unauthorized"
    UNAUTHORIZED_MATCHER = "UnauthorizedMatcher"
    UNAUTHORIZED_COMPLETION = "UnauthorizedCompletion"
    REQUEST_NOT_PENDING = "RequestNotPending"
    REQUEST_NOT_MATCHED = "RequestNotMatched"
    RESOURCE_NOT_ACTIVE = "ResourceNotActive"
    RESOURCE_MISMATCH = "ResourceMismatch"
    RESOURCE_ENGAGED = "ResourceEngaged"
    INSUFFICIENT_COMPUTATION_POWER = "InsufficientComputationPower"
    INSUFFICIENT_MEMORY = "InsufficientMemory"
    INSUFFICIENT_CAPABILITY = "InsufficientCapability"
    PRICE_TOO_HIGH = "PriceTooHigh"
    LOCATION_MISMATCH = "LocationMismatch"
    REPUTATION_TOO_LOW = "ReputationTooLow"
    INVALID_STATE_TRANSITION = "InvalidStateTransition"
    COUNTER_UNDERFLOW = "CounterUnderflow"
    COUNTER_OVERFLOW = "CounterOverflow"
    INVALID_CAPABILITY = "InvalidCapability"
    INVALID_ARGUMENT = "InvalidArgument"
    NOT_FOUND = "NotFound"
    SETTLEMENT_FAILED = "SettlementFailed"
    AUDIT_FAILURE = "AuditFailure"


class MatchingError(Exception):
    """Raised when a market operation is rejected."""

    def __init__(self, code: ErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code

    def __str__(self) -> str:
        return f"{self.code.value}: {self.args[0]}"


class ConsistencyFault(RuntimeError):
    """Raised when a system counter would leave its valid range."""

    def __init__(self, code: ErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code
