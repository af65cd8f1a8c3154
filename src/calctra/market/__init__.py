"""Compute market — registry, request queue, matching and lifecycle.

Providers register resources, requesters queue requests, the matching
engine commits one request to one resource, and the lifecycle manager
drives the match to completion, failure or cancellation.
"""

from calctra.market.lifecycle import LifecycleManager, RequestStateMachine
from calctra.market.matching import MatchingEngine
from calctra.market.registry import ResourceRegistry
from calctra.market.reputation import ReputationLedger
from calctra.market.request_queue import RequestQueue
from calctra.market.settlement import SettlementError, SettlementGateway

__all__ = [
    "LifecycleManager",
    "MatchingEngine",
    "ReputationLedger",
    "RequestQueue",
    "RequestStateMachine",
    "ResourceRegistry",
    "SettlementError",
    "SettlementGateway",
]
