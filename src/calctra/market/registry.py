"""Resource registry — the catalog of provider-offered compute.

Registration always creates a new record with the next sequence id:
a provider offering the same machine twice gets two records. Records
are never deleted; ``set_active(False)`` withdraws one from matching.

Only the owning provider may toggle activity or update price, hardware
or location. Reputation and usage are written exclusively by the
lifecycle manager when a computation concludes.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from calctra.errors import MatchingError
from calctra.identity.authorization import AuthenticatedCaller, require_provider
from calctra.market.validation import (
    require_label,
    require_price,
    validate_capabilities,
)
from calctra.models.market import Capabilities, ResourceRecord
from calctra.models.system import SystemState
from calctra.persistence.event_log import EventKind, EventRecorder
from calctra.persistence.record_store import RecordKind, RecordStore

logger = structlog.get_logger("calctra.registry")


class ResourceRegistry:
    """Registers and maintains resource records.

    Usage:
        registry = ResourceRegistry(store, state, recorder)
        record = registry.register(
            provider, Capabilities(compute_power=100, memory=64),
            Decimal("10"), "US",
        )
        registry.set_active(record.resource_id, provider, False)
    """

    def __init__(
        self,
        store: RecordStore,
        state: SystemState,
        events: EventRecorder,
    ) -> None:
        self._store = store
        self._state = state
        self._events = events

    def register(
        self,
        provider: AuthenticatedCaller,
        capabilities: Capabilities,
        price_per_unit: Any,
        location: str,
        resource_type: str = "",
    ) -> ResourceRecord:
        """Add a new active resource with zero reputation and usage."""
        validate_capabilities(capabilities)
        price = require_price("price_per_unit", price_per_unit)
        require_label("location", location)
        if not isinstance(resource_type, str):
            resource_type = str(resource_type)

        # Audit event is the commit point; the id is consumed even if
        # the append fails, which keeps ids unique without reuse.
        resource_id = self._state.next_resource_id()
        record = ResourceRecord(
            resource_id=resource_id,
            provider=provider.identity,
            capabilities=capabilities,
            price_per_unit=price,
            location=location,
            resource_type=resource_type,
            registered_utc=datetime.now(timezone.utc),
        )
        self._events.commit(
            EventKind.RESOURCE_REGISTERED,
            provider.identity,
            {
                "resource_id": resource_id,
                "provider": provider.identity,
                "compute_power": capabilities.compute_power,
                "memory": capabilities.memory,
                "storage": capabilities.storage,
                "gpu_type": capabilities.gpu_type,
                "gpu_memory": capabilities.gpu_memory,
                "price_per_unit": str(price),
                "location": location,
                "resource_type": resource_type,
            },
        )
        self._store.insert(RecordKind.RESOURCE, resource_id, record)
        logger.info(
            "resource_registered",
            resource_id=resource_id,
            provider=provider.identity,
            location=location,
        )
        return record

    def set_active(
        self,
        resource_id: int,
        caller: AuthenticatedCaller,
        active: bool,
    ) -> ResourceRecord:
        """Toggle whether the resource may receive new matches.

        Deactivating does not touch matches already committed.
        """
        key = (RecordKind.RESOURCE, resource_id)
        with self._store.locked(key):
            record: ResourceRecord = self._store.require(*key)
            require_provider(caller, record)
            previous = record.is_active
            record.is_active = bool(active)
            record.version += 1
            try:
                self._events.commit(
                    EventKind.RESOURCE_ACTIVITY_CHANGED,
                    caller.identity,
                    {"resource_id": resource_id, "is_active": record.is_active},
                )
            except MatchingError:
                record.is_active = previous
                record.version -= 1
                raise
        logger.info("resource_activity_changed", resource_id=resource_id, is_active=record.is_active)
        return record

    def update_resource(
        self,
        resource_id: int,
        caller: AuthenticatedCaller,
        price_per_unit: Optional[Any] = None,
        capabilities: Optional[Capabilities] = None,
        location: Optional[str] = None,
    ) -> ResourceRecord:
        """Change price, hardware or location of an owned resource.

        Fields left as None are unchanged. Validation matches
        ``register``. New terms apply to future matches only.
        """
        price = (
            require_price("price_per_unit", price_per_unit)
            if price_per_unit is not None else None
        )
        if capabilities is not None:
            validate_capabilities(capabilities)
        if location is not None:
            require_label("location", location)

        key = (RecordKind.RESOURCE, resource_id)
        with self._store.locked(key):
            record: ResourceRecord = self._store.require(*key)
            require_provider(caller, record)
            prior = replace(record, engaged_request_ids=set(record.engaged_request_ids))

            changes: dict[str, Any] = {}
            if price is not None:
                record.price_per_unit = price
                changes["price_per_unit"] = str(price)
            if capabilities is not None:
                record.capabilities = capabilities
                changes["capabilities"] = {
                    "compute_power": capabilities.compute_power,
                    "memory": capabilities.memory,
                    "storage": capabilities.storage,
                    "gpu_type": capabilities.gpu_type,
                    "gpu_memory": capabilities.gpu_memory,
                }
            if location is not None:
                record.location = location
                changes["location"] = location
            record.version += 1

            try:
                self._events.commit(
                    EventKind.RESOURCE_UPDATED,
                    caller.identity,
                    {"resource_id": resource_id, **changes},
                )
            except MatchingError:
                record.price_per_unit = prior.price_per_unit
                record.capabilities = prior.capabilities
                record.location = prior.location
                record.version = prior.version
                raise
        logger.info("resource_updated", resource_id=resource_id, fields=sorted(changes))
        return record

    def get(self, resource_id: int) -> Optional[ResourceRecord]:
        return self._store.get(RecordKind.RESOURCE, resource_id)

    def all(self) -> list[ResourceRecord]:
        return self._store.values(RecordKind.RESOURCE)

    def active(self) -> list[ResourceRecord]:
        return [r for r in self.all() if r.is_active]
