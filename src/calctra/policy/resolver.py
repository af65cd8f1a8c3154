"""Policy resolver — loads market tunables and answers policy questions.

Policy lives in ``market_policy.json`` inside a config directory:

    {
      "reputation": {"floor": -100, "ceiling": 100, "step": 1},
      "matching": {
        "max_engagements_per_resource": 1,
        "batch_size": 50,
        "strict_location": false
      },
      "logging": {"level": "INFO", "format": "console"}
    }

Missing sections fall back to DEFAULT_POLICY. ``from_env`` reads a
``.env`` file through python-dotenv and lets ``CALCTRA_*`` variables
override individual values. Invalid policy raises ValueError at load
time, never at first use.
"""

from __future__ import annotations

import copy
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

POLICY_FILENAME = "market_policy.json"

DEFAULT_POLICY: dict[str, Any] = {
    "reputation": {"floor": -100, "ceiling": 100, "step": 1},
    "matching": {
        "max_engagements_per_resource": 1,
        "batch_size": 50,
        "strict_location": False,
    },
    "logging": {"level": "INFO", "format": "console"},
}

# env var -> (section, key, parser)
_ENV_OVERRIDES: dict[str, tuple[str, str, Any]] = {
    "CALCTRA_REPUTATION_FLOOR": ("reputation", "floor", int),
    "CALCTRA_REPUTATION_CEILING": ("reputation", "ceiling", int),
    "CALCTRA_REPUTATION_STEP": ("reputation", "step", int),
    "CALCTRA_MAX_ENGAGEMENTS": ("matching", "max_engagements_per_resource", int),
    "CALCTRA_BATCH_SIZE": ("matching", "batch_size", int),
    "CALCTRA_STRICT_LOCATION": (
        "matching", "strict_location",
        lambda v: v.strip().lower() in ("1", "true", "yes", "on"),
    ),
    "CALCTRA_LOG_LEVEL": ("logging", "level", str),
    "CALCTRA_LOG_FORMAT": ("logging", "format", str),
}


@dataclass(frozen=True)
class ReputationBounds:
    """Saturation range and per-outcome step for reputation scores."""
    floor: int
    ceiling: int
    step: int


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    format: str = "console"


class PolicyResolver:
    """Read-only view over validated market policy."""

    def __init__(self, policy: dict[str, Any]) -> None:
        merged = copy.deepcopy(DEFAULT_POLICY)
        for section, values in policy.items():
            if not isinstance(values, dict):
                raise ValueError(f"Policy section {section!r} must be an object")
            merged.setdefault(section, {}).update(values)
        self._policy = merged
        self._validate()

    @classmethod
    def default(cls) -> PolicyResolver:
        return cls({})

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> PolicyResolver:
        path = Path(config_dir) / POLICY_FILENAME
        with path.open("r", encoding="utf-8") as f:
            return cls(json.load(f))

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> PolicyResolver:
        """Build policy from ``CALCTRA_CONFIG_DIR`` plus env overrides.

        Variables already present in the process environment win over
        the ``.env`` file.
        """
        load_dotenv(env_file)
        config_dir = os.environ.get("CALCTRA_CONFIG_DIR")
        if config_dir:
            with (Path(config_dir) / POLICY_FILENAME).open("r", encoding="utf-8") as f:
                policy = json.load(f)
        else:
            policy = {}

        for var, (section, key, parse) in _ENV_OVERRIDES.items():
            raw = os.environ.get(var)
            if raw is None:
                continue
            try:
                value = parse(raw)
            except ValueError as e:
                raise ValueError(f"{var}={raw!r}: {e}") from e
            policy.setdefault(section, {})[key] = value
        return cls(policy)

    def reputation_bounds(self) -> ReputationBounds:
        rep = self._policy["reputation"]
        return ReputationBounds(
            floor=rep["floor"], ceiling=rep["ceiling"], step=rep["step"],
        )

    def max_engagements_per_resource(self) -> int:
        """Concurrent matches one resource may hold. 0 means unlimited."""
        return self._policy["matching"]["max_engagements_per_resource"]

    def matching_batch_size(self) -> int:
        return self._policy["matching"]["batch_size"]

    def strict_location_default(self) -> bool:
        return self._policy["matching"]["strict_location"]

    def logging_config(self) -> LoggingConfig:
        log = self._policy["logging"]
        return LoggingConfig(level=log["level"], format=log["format"])

    def as_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self._policy)

    def _validate(self) -> None:
        rep = self._policy["reputation"]
        for key in ("floor", "ceiling", "step"):
            if not _is_int(rep.get(key)):
                raise ValueError(f"reputation.{key} must be an integer")
        if rep["floor"] > 0 or rep["ceiling"] < 0:
            raise ValueError("reputation range must contain 0 (the initial score)")
        if rep["floor"] >= rep["ceiling"]:
            raise ValueError(
                f"reputation.floor ({rep['floor']}) must be below "
                f"reputation.ceiling ({rep['ceiling']})"
            )
        if rep["step"] <= 0:
            raise ValueError("reputation.step must be positive")

        matching = self._policy["matching"]
        limit = matching.get("max_engagements_per_resource")
        if not _is_int(limit) or limit < 0:
            raise ValueError("matching.max_engagements_per_resource must be >= 0")
        batch = matching.get("batch_size")
        if not _is_int(batch) or batch <= 0:
            raise ValueError("matching.batch_size must be a positive integer")
        if not isinstance(matching.get("strict_location"), bool):
            raise ValueError("matching.strict_location must be a boolean")

        fmt = self._policy["logging"].get("format")
        if fmt not in ("console", "json"):
            raise ValueError(f"logging.format must be 'console' or 'json', got {fmt!r}")


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)
