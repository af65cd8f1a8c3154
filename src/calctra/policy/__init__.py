"""Market policy — tunables loaded from config and environment."""

from calctra.policy.resolver import LoggingConfig, PolicyResolver, ReputationBounds

__all__ = ["LoggingConfig", "PolicyResolver", "ReputationBounds"]
