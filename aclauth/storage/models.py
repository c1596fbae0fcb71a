"""Auth method records consumed by the login flow.

These mirror the ACL auth-method configuration owned by the cluster's
auth-method store. Keys accepted by ``from_dict`` are the snake_case field
names used in YAML files.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from enum import StrEnum
from typing import Any

AUTH_METHOD_TYPE_OIDC = "OIDC"

DEFAULT_SIGNING_ALGS = ("RS256",)


class TokenLocality(StrEnum):
    """Where tokens minted through an auth method are valid."""

    LOCAL = "local"
    GLOBAL = "global"


def _as_tuple(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(v) for v in value)


@dataclass(frozen=True)
class AuthMethodConfig:
    """OIDC configuration block of an auth method.

    Immutable for the lifetime of a flow. ``claim_mappings`` and
    ``list_claim_mappings`` map an external claim name (or a ``/``-prefixed
    JSON pointer) to the internal bind name used by binding rules.
    """

    oidc_discovery_url: str
    oidc_client_id: str
    oidc_client_secret: str = ""
    oidc_scopes: tuple[str, ...] = ()
    bound_audiences: tuple[str, ...] = ()
    bound_issuer: str | None = None
    allowed_redirect_uris: tuple[str, ...] = ()
    discovery_ca_pem: tuple[str, ...] = ()
    signing_algs: tuple[str, ...] = DEFAULT_SIGNING_ALGS
    clock_skew_leeway: int | None = None
    claim_mappings: dict[str, str] = field(default_factory=dict)
    list_claim_mappings: dict[str, str] = field(default_factory=dict)

    def is_redirect_allowed(self, redirect_uri: str) -> bool:
        """Check a redirect URI against the allow-list (exact match)."""
        return bool(redirect_uri) and redirect_uri in self.allowed_redirect_uris

    @property
    def expected_audiences(self) -> frozenset[str]:
        """Audiences an ID token must intersect; the client ID when none are bound."""
        if self.bound_audiences:
            return frozenset(self.bound_audiences)
        return frozenset({self.oidc_client_id})

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuthMethodConfig:
        """Create an AuthMethodConfig from a dictionary."""
        leeway = data.get("clock_skew_leeway")
        return cls(
            oidc_discovery_url=data.get("oidc_discovery_url", ""),
            oidc_client_id=data.get("oidc_client_id", ""),
            oidc_client_secret=data.get("oidc_client_secret") or "",
            oidc_scopes=_as_tuple(data.get("oidc_scopes")),
            bound_audiences=_as_tuple(data.get("bound_audiences")),
            bound_issuer=data.get("bound_issuer") or None,
            allowed_redirect_uris=_as_tuple(data.get("allowed_redirect_uris")),
            discovery_ca_pem=_as_tuple(data.get("discovery_ca_pem")),
            signing_algs=_as_tuple(data.get("signing_algs")) or DEFAULT_SIGNING_ALGS,
            clock_skew_leeway=int(leeway) if leeway is not None else None,
            claim_mappings={str(k): str(v) for k, v in (data.get("claim_mappings") or {}).items()},
            list_claim_mappings={str(k): str(v) for k, v in (data.get("list_claim_mappings") or {}).items()},
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "oidc_discovery_url": self.oidc_discovery_url,
            "oidc_client_id": self.oidc_client_id,
            "oidc_client_secret": self.oidc_client_secret,
            "oidc_scopes": list(self.oidc_scopes),
            "bound_audiences": list(self.bound_audiences),
            "bound_issuer": self.bound_issuer,
            "allowed_redirect_uris": list(self.allowed_redirect_uris),
            "discovery_ca_pem": list(self.discovery_ca_pem),
            "signing_algs": list(self.signing_algs),
            "clock_skew_leeway": self.clock_skew_leeway,
            "claim_mappings": dict(self.claim_mappings),
            "list_claim_mappings": dict(self.list_claim_mappings),
        }

    def validate(self) -> list[str]:
        """Return a list of problems that prevent this config from driving a flow."""
        problems = []
        if not self.oidc_discovery_url:
            problems.append("oidc_discovery_url is required")
        if not self.oidc_client_id:
            problems.append("oidc_client_id is required")
        if not self.allowed_redirect_uris:
            problems.append("at least one allowed redirect URI is required")
        if "none" in {alg.lower() for alg in self.signing_algs}:
            problems.append("signing algorithm 'none' is not allowed")
        return problems


@dataclass(frozen=True)
class AuthMethod:
    """An ACL auth method record."""

    name: str
    type: str
    config: AuthMethodConfig
    token_locality: TokenLocality = TokenLocality.LOCAL
    max_token_ttl: timedelta = timedelta(hours=1)
    default: bool = False

    @property
    def is_oidc(self) -> bool:
        return self.type.upper() == AUTH_METHOD_TYPE_OIDC

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuthMethod:
        """Create an AuthMethod from a dictionary.

        ``max_token_ttl`` is given in seconds.
        """
        return cls(
            name=data["name"],
            type=data.get("type", AUTH_METHOD_TYPE_OIDC),
            config=AuthMethodConfig.from_dict(data.get("config") or {}),
            token_locality=TokenLocality(data.get("token_locality", TokenLocality.LOCAL)),
            max_token_ttl=timedelta(seconds=data.get("max_token_ttl", 3600)),
            default=data.get("default", False),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "name": self.name,
            "type": self.type,
            "token_locality": self.token_locality.value,
            "max_token_ttl": int(self.max_token_ttl.total_seconds()),
            "default": self.default,
            "config": self.config.to_dict(),
        }
