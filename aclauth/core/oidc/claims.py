"""Verified claim sets and the projected identity.

``ClaimSet`` is a tagged base over the auth kinds the cluster supports;
``AuthClaims`` is the OIDC variant. An ``Identity`` pairs a claim set with
the flat ``value.*`` variables binding rules interpolate.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from types import MappingProxyType
from typing import Any, ClassVar

ClaimValue = str | tuple[str, ...]


class ClaimsKind(StrEnum):
    """Auth kinds that can produce a claim set."""

    OIDC = "oidc"


@dataclass(frozen=True)
class ClaimSet:
    """Base of the claim set union. Subclasses fix ``kind``."""

    kind: ClassVar[ClaimsKind]


@dataclass(frozen=True)
class AuthClaims(ClaimSet):
    """Claims from a verified OIDC ID token.

    ``value`` holds only the claims exposed through the auth method's claim
    mappings, keyed by external claim name. ``raw`` keeps every verified
    claim for callers that need more (token issuance, auditing).
    """

    kind: ClassVar[ClaimsKind] = ClaimsKind.OIDC

    value: Mapping[str, ClaimValue] = field(default_factory=dict)
    subject: str = ""
    issuer: str = ""
    audience: tuple[str, ...] = ()
    expires_at: datetime | None = None
    raw: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "value", MappingProxyType(dict(self.value)))
        object.__setattr__(self, "raw", MappingProxyType(dict(self.raw)))

    def __bool__(self) -> bool:
        return bool(self.raw)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return {
            "kind": self.kind.value,
            "subject": self.subject,
            "issuer": self.issuer,
            "audience": list(self.audience),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "value": {k: list(v) if isinstance(v, tuple) else v for k, v in self.value.items()},
        }


@dataclass(frozen=True)
class Identity:
    """The caller-facing result of a completed login.

    Attributes:
        claims: Claim set suitable for selection by a binding rule.
        claim_mappings: ``"value." + name`` variables suitable for
            interpolation in a binding rule's bind name.
    """

    claims: ClaimSet
    claim_mappings: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "claim_mappings", MappingProxyType(dict(self.claim_mappings)))
