"""Market instructions as immutable command objects.

Each command carries the verified caller identity and the arguments of
one market operation. ``CalctraService.execute`` dispatches them, so a
transport layer (CLI, RPC, replay file) only has to build commands.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Union

from calctra.models.market import Capabilities, Requirements


@dataclass(frozen=True)
class RegisterResource:
    caller: str
    capabilities: Capabilities
    price_per_unit: Any
    location: str
    resource_type: str = ""


@dataclass(frozen=True)
class UpdateResource:
    caller: str
    resource_id: int
    price_per_unit: Optional[Any] = None
    capabilities: Optional[Capabilities] = None
    location: Optional[str] = None


@dataclass(frozen=True)
class SetResourceActive:
    caller: str
    resource_id: int
    active: bool


@dataclass(frozen=True)
class SubmitRequest:
    caller: str
    requirements: Requirements
    max_price_per_unit: Any
    preferred_location: Optional[str] = None
    min_reputation: int = 0
    computation_type: str = ""
    duration_estimate: int = 0


@dataclass(frozen=True)
class MatchRequest:
    caller: str
    request_id: int
    resource_id: int
    strict_location: Optional[bool] = None


@dataclass(frozen=True)
class CompleteComputation:
    caller: str
    request_id: int
    resource_id: int
    actual_duration: int
    success: bool


@dataclass(frozen=True)
class CancelRequest:
    caller: str
    request_id: int


@dataclass(frozen=True)
class RunMatchingCycle:
    caller: str
    batch_size: Optional[int] = None


Command = Union[
    RegisterResource,
    UpdateResource,
    SetResourceActive,
    SubmitRequest,
    MatchRequest,
    CompleteComputation,
    CancelRequest,
    RunMatchingCycle,
]


def command_from_dict(raw: dict[str, Any]) -> Command:
    """Build a command from its JSON form.

    ``{"op": "submit_request", "caller": "alice", "requirements": {...}, ...}``
    Capability and requirement blocks are nested objects. Prices should
    be strings so they parse exactly.
    """
    if not isinstance(raw, dict):
        raise ValueError(f"Command must be a JSON object, got {type(raw).__name__}")
    data = dict(raw)
    op = data.pop("op", None)
    cls = _BY_OP.get(op)
    if cls is None:
        raise ValueError(f"Unknown command op: {op!r}")
    try:
        if data.get("capabilities") is not None:
            data["capabilities"] = Capabilities(**data["capabilities"])
        if "requirements" in data:
            data["requirements"] = Requirements(**data["requirements"])
        return cls(**data)
    except TypeError as e:
        raise ValueError(f"Bad arguments for {op}: {e}") from e


_BY_OP: dict[str, type] = {
    "register_resource": RegisterResource,
    "update_resource": UpdateResource,
    "set_resource_active": SetResourceActive,
    "submit_request": SubmitRequest,
    "match_request": MatchRequest,
    "complete_computation": CompleteComputation,
    "cancel_request": CancelRequest,
    "run_matching_cycle": RunMatchingCycle,
}
