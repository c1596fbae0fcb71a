"""OIDC login flow implementation."""

from aclauth.core.oidc.claims import AuthClaims, ClaimSet, ClaimsKind, ClaimValue, Identity
from aclauth.core.oidc.discovery import (
    ProviderCache,
    ProviderMetadata,
    SigningKeys,
    TTLCache,
    discovery_document_url,
    fetch_jwks,
    fetch_provider_metadata,
)
from aclauth.core.oidc.flows import AuthCompleter, AuthURLIssuer, resolve_auth_method
from aclauth.core.oidc.identity import IdentityProjector, new_identity
from aclauth.core.oidc.provider import ProviderClient, build_ssl_context
from aclauth.core.oidc.service import OIDCAuthService
from aclauth.core.oidc.state import StateRecord, StateStore, generate_state_token
from aclauth.core.oidc.utils import claim_to_list, claim_to_string, extract_mapped_claims, lookup_claim

__all__ = [
    # Claims
    "AuthClaims",
    "ClaimSet",
    "ClaimsKind",
    "ClaimValue",
    "Identity",
    # Discovery
    "ProviderCache",
    "ProviderMetadata",
    "SigningKeys",
    "TTLCache",
    "discovery_document_url",
    "fetch_jwks",
    "fetch_provider_metadata",
    # Flows
    "AuthCompleter",
    "AuthURLIssuer",
    "resolve_auth_method",
    # Identity
    "IdentityProjector",
    "new_identity",
    # Provider
    "ProviderClient",
    "build_ssl_context",
    # Service
    "OIDCAuthService",
    # State
    "StateRecord",
    "StateStore",
    "generate_state_token",
    # Utils
    "claim_to_list",
    "claim_to_string",
    "extract_mapped_claims",
    "lookup_claim",
]
