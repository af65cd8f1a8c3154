"""Identity boundary — verified callers and role checks."""

from calctra.identity.authorization import (
    AuthenticatedCaller,
    IdentityGate,
    IdentityVerifier,
    PreVerified,
    SignerSet,
)

__all__ = [
    "AuthenticatedCaller",
    "IdentityGate",
    "IdentityVerifier",
    "PreVerified",
    "SignerSet",
]
