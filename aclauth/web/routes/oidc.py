"""ACL OIDC login endpoints.

Both endpoints take a JSON body and answer with JSON. Authentication
failures only ever return the generic message; the specific cause is in
the audit log.
"""

from __future__ import annotations

import logging
from typing import Any

from flask import Blueprint, current_app, request

from aclauth.core.errors import (
    ACLAuthError,
    AuthenticationError,
    AuthMethodNotFound,
    ConfigurationError,
    ProviderTimeout,
    ProviderTransportError,
)
from aclauth.core.oidc.service import OIDCAuthService

logger = logging.getLogger(__name__)

acl_oidc_bp = Blueprint("acl_oidc", __name__, url_prefix="/v1/acl/oidc")


def get_service() -> OIDCAuthService:
    """Get the OIDCAuthService registered on the current app."""
    service: OIDCAuthService = current_app.extensions["aclauth"]
    return service


def error_status(error: ACLAuthError) -> int:
    """Map a login error to its HTTP status code."""
    # Timeouts first: DiscoveryTimeout is also a ConfigurationError
    if isinstance(error, ProviderTimeout):
        return 504
    if isinstance(error, ProviderTransportError):
        return 502
    if isinstance(error, AuthMethodNotFound):
        return 404
    if isinstance(error, ConfigurationError):
        return 400
    if isinstance(error, AuthenticationError):
        return 403
    return 500


@acl_oidc_bp.errorhandler(ACLAuthError)
def handle_login_error(error: ACLAuthError) -> tuple[dict[str, str], int]:
    status = error_status(error)
    if status >= 500:
        logger.error(f"OIDC login failed ({error.kind}): {error.message}")
    else:
        logger.info(f"OIDC login rejected ({error.kind})")
    return {"error": error.public_message}, status


def _json_body() -> dict[str, Any]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _param(data: dict[str, Any], name: str) -> str:
    value = data.get(name, "")
    return value if isinstance(value, str) else ""


@acl_oidc_bp.route("/auth-url", methods=["POST"])
def auth_url() -> dict[str, Any]:
    """Start an OIDC login and return the provider authorization URL."""
    data = _json_body()
    url = get_service().get_auth_url(
        _param(data, "AuthMethodName"),
        _param(data, "RedirectURI"),
        _param(data, "ClientNonce"),
    )
    return {"AuthURL": url}


@acl_oidc_bp.route("/complete-auth", methods=["POST"])
def complete_auth() -> dict[str, Any]:
    """Finish an OIDC login and return the projected identity."""
    data = _json_body()
    identity = get_service().login(
        _param(data, "AuthMethodName"),
        _param(data, "RedirectURI"),
        _param(data, "ClientNonce"),
        _param(data, "Code"),
        _param(data, "State"),
    )
    return {
        "Identity": {
            "Kind": identity.claims.kind.value,
            "Subject": getattr(identity.claims, "subject", ""),
            "ClaimMappings": dict(identity.claim_mappings),
        }
    }
