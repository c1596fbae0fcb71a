"""Auth method records and lookup."""

from aclauth.storage.auth_methods import (
    AuthMethodLookup,
    AuthMethodStore,
    load_auth_methods,
    parse_auth_methods,
)
from aclauth.storage.models import (
    AUTH_METHOD_TYPE_OIDC,
    AuthMethod,
    AuthMethodConfig,
    TokenLocality,
)

__all__ = [
    "AUTH_METHOD_TYPE_OIDC",
    "AuthMethod",
    "AuthMethodConfig",
    "AuthMethodLookup",
    "AuthMethodStore",
    "TokenLocality",
    "load_auth_methods",
    "parse_auth_methods",
]
