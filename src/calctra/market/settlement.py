"""Settlement gateway — the boundary to the external token contract.

The market never moves funds itself. When a computation concludes, the
lifecycle manager asks a SettlementGateway to transfer
``agreed_price * actual_duration`` from requester to provider. The call
is synchronous: if it raises, the completion is aborted and no market
state changes.

Settlement happens before the completion event is appended. If that
append then fails, the lifecycle manager calls ``reverse`` with the same
arguments so the transfer does not outlive the rolled-back completion.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol, runtime_checkable


class SettlementError(Exception):
    """Raised by a gateway that could not settle or reverse a completion."""


@runtime_checkable
class SettlementGateway(Protocol):
    """Contract for payment settlement backends."""

    def settle(
        self,
        payer: str,
        payee: str,
        amount: Decimal,
        request_id: int,
        success: bool,
    ) -> None:
        """Transfer ``amount`` or raise SettlementError."""
        ...

    def reverse(
        self,
        payer: str,
        payee: str,
        amount: Decimal,
        request_id: int,
        success: bool,
    ) -> None:
        """Undo a ``settle`` call with the same arguments."""
        ...
