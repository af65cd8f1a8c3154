"""Structural validation of capability, requirement and price input.

Only malformed input is rejected: wrong types, negative quantities,
blank identifiers, GPU memory without a GPU. Odd but well-formed
combinations (zero compute power with non-zero memory) are accepted.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from calctra.errors import ErrorCode, MatchingError
from calctra.models.market import Capabilities, Requirements


def _invalid(message: str) -> MatchingError:
    return MatchingError(ErrorCode.INVALID_CAPABILITY, message)


def require_quantity(name: str, value: Any) -> int:
    """A non-negative integer quantity. Booleans are not quantities."""
    if value is None:
        raise _invalid(f"{name} is required")
    if isinstance(value, bool) or not isinstance(value, int):
        raise _invalid(f"{name} must be an integer, got {type(value).__name__}")
    if value < 0:
        raise _invalid(f"{name} must be non-negative, got {value}")
    return value


def require_price(name: str, value: Any) -> Decimal:
    """A finite, non-negative price. Floats are refused."""
    if value is None:
        raise _invalid(f"{name} is required")
    if isinstance(value, (bool, float)):
        raise _invalid(f"{name} must be Decimal, int or str, got {type(value).__name__}")
    try:
        price = Decimal(value) if not isinstance(value, Decimal) else value
    except (InvalidOperation, TypeError, ValueError):
        raise _invalid(f"{name} is not a number: {value!r}") from None
    if not price.is_finite():
        raise _invalid(f"{name} must be finite, got {value!r}")
    if price < 0:
        raise _invalid(f"{name} must be non-negative, got {price}")
    return price


def require_label(name: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise _invalid(f"{name} must be a non-empty string")
    return value


def optional_label(name: str, value: Any) -> Optional[str]:
    if value is None:
        return None
    return require_label(name, value)


def validate_capabilities(capabilities: Any) -> Capabilities:
    if not isinstance(capabilities, Capabilities):
        raise _invalid("capabilities must be a Capabilities record")
    require_quantity("compute_power", capabilities.compute_power)
    require_quantity("memory", capabilities.memory)
    require_quantity("storage", capabilities.storage)
    require_quantity("gpu_memory", capabilities.gpu_memory)
    optional_label("gpu_type", capabilities.gpu_type)
    if capabilities.gpu_memory > 0 and not capabilities.has_gpu:
        raise _invalid("gpu_memory declared without a gpu_type")
    return capabilities


def validate_requirements(requirements: Any) -> Requirements:
    if not isinstance(requirements, Requirements):
        raise _invalid("requirements must be a Requirements record")
    require_quantity("compute_power", requirements.compute_power)
    require_quantity("memory", requirements.memory)
    require_quantity("storage", requirements.storage)
    require_quantity("gpu_memory", requirements.gpu_memory)
    if not isinstance(requirements.needs_gpu, bool):
        raise _invalid("needs_gpu must be a boolean")
    if requirements.gpu_memory > 0 and not requirements.needs_gpu:
        raise _invalid("gpu_memory required without needs_gpu")
    return requirements
