"""Projection of verified claims into a bindable identity."""

from __future__ import annotations

from aclauth.core.oidc.claims import AuthClaims, Identity
from aclauth.core.oidc.utils import claim_to_string
from aclauth.storage.models import AuthMethodConfig

VALUE_PREFIX = "value."


def new_identity(config: AuthMethodConfig, claims: AuthClaims) -> Identity:
    """Build the identity for a completed login.

    Every bind name declared in the claim mappings is present, as an empty
    string when the token did not carry the claim. Claim values present in
    ``claims.value`` are then written under their external claim name.

    Args:
        config: OIDC configuration of the auth method used.
        claims: Verified claims.

    Returns:
        Identity with ``value.*`` variables for binding rules.
    """
    mappings: dict[str, str] = {}
    for bind_name in config.claim_mappings.values():
        mappings[VALUE_PREFIX + bind_name] = ""
    for bind_name in config.list_claim_mappings.values():
        mappings[VALUE_PREFIX + bind_name] = ""

    for claim_name, value in claims.value.items():
        mappings[VALUE_PREFIX + claim_name] = claim_to_string(value)

    return Identity(claims=claims, claim_mappings=mappings)


class IdentityProjector:
    """Turns AuthClaims into an Identity. Stateless."""

    def project(self, config: AuthMethodConfig, claims: AuthClaims) -> Identity:
        return new_identity(config, claims)
