"""Caller identity and authorization checks.

Signature verification belongs to the hosting platform. The market only
sees identities that platform has already verified: an IdentityGate asks
an IdentityVerifier whether an identity signed the current operation and,
if so, hands back an AuthenticatedCaller. Every mutating operation takes
an AuthenticatedCaller and compares identities by equality.

Privileged roles:
- authority: the deploying identity held by SystemState.
- provider: the identity that registered a resource.
- requester: the identity that submitted a request.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Protocol, runtime_checkable

from calctra.errors import ErrorCode, MatchingError
from calctra.models.market import ComputationRequest, ResourceRecord
from calctra.models.system import SystemState


@runtime_checkable
class IdentityVerifier(Protocol):
    """Contract for the external identity layer."""

    def is_signer(self, identity: str) -> bool:
        """True if ``identity`` signed the operation being processed."""
        ...


@dataclass(frozen=True)
class AuthenticatedCaller:
    """An identity already verified by the identity layer."""
    identity: str

    def __str__(self) -> str:
        return self.identity


class SignerSet:
    """IdentityVerifier backed by a fixed set of signing identities.

    Stands in for the platform's per-transaction signer list.
    """

    def __init__(self, signers: Iterable[str] = ()) -> None:
        self._signers = set(signers)

    def add(self, identity: str) -> None:
        self._signers.add(identity)

    def remove(self, identity: str) -> None:
        self._signers.discard(identity)

    def is_signer(self, identity: str) -> bool:
        return identity in self._signers


class PreVerified:
    """IdentityVerifier for hosts that verify every caller upstream.

    Accepts any non-empty identity.
    """

    def is_signer(self, identity: str) -> bool:
        return bool(identity)


class IdentityGate:
    """Turns raw identities into AuthenticatedCaller capabilities."""

    def __init__(self, verifier: IdentityVerifier) -> None:
        if not isinstance(verifier, IdentityVerifier):
            raise TypeError(
                f"verifier must satisfy IdentityVerifier, got {type(verifier)}"
            )
        self._verifier = verifier

    def authenticate(self, identity: str) -> AuthenticatedCaller:
        if not identity or not self._verifier.is_signer(identity):
            raise MatchingError(
                ErrorCode.UNAUTHORIZED, f"{identity!r} is not a signer",
            )
        return AuthenticatedCaller(identity)


def is_authority(caller: AuthenticatedCaller, state: SystemState) -> bool:
    return caller.identity == state.authority


def require_provider(caller: AuthenticatedCaller, resource: ResourceRecord) -> None:
    """Only the owning provider may change a resource record."""
    if caller.identity != resource.provider:
        raise MatchingError(
            ErrorCode.UNAUTHORIZED,
            f"{caller} does not own resource {resource.resource_id}",
        )


def require_matcher(
    caller: AuthenticatedCaller,
    state: SystemState,
    resource: ResourceRecord,
) -> None:
    """Matches are committed by the authority or the resource's provider."""
    if not (is_authority(caller, state) or caller.identity == resource.provider):
        raise MatchingError(
            ErrorCode.UNAUTHORIZED_MATCHER,
            f"{caller} may not match resource {resource.resource_id}",
        )


def require_participant(
    caller: AuthenticatedCaller,
    state: SystemState,
    request: ComputationRequest,
    matched_provider: Optional[str],
) -> None:
    """Completion and cancellation are open to the engagement's parties.

    ``matched_provider`` is the provider of the request's matched
    resource, or None while the request is unmatched.
    """
    allowed = {request.requester, state.authority}
    if matched_provider is not None:
        allowed.add(matched_provider)
    if caller.identity not in allowed:
        raise MatchingError(
            ErrorCode.UNAUTHORIZED_COMPLETION,
            f"{caller} is not a party to request {request.request_id}",
        )
