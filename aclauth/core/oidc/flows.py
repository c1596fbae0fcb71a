"""OIDC login flow handlers.

Two steps, each one request from the caller:

- ``AuthURLIssuer`` mints a state token and returns the provider
  authorization URL.
- ``AuthCompleter`` redeems the state, exchanges the authorization code and
  verifies the ID token.

Neither step retries. Authentication failures are written to the audit log
with their specific cause before being re-raised.
"""

from __future__ import annotations

import hmac
import logging
from collections.abc import Callable

from aclauth.core.errors import (
    AuthenticationError,
    AuthMethodNotFound,
    InvalidAuthMethod,
    InvalidRequest,
    NonceMismatch,
)
from aclauth.core.logging import audit_auth_failure
from aclauth.core.oidc.claims import AuthClaims
from aclauth.core.oidc.provider import ProviderClient
from aclauth.core.oidc.state import StateStore
from aclauth.storage.auth_methods import AuthMethodLookup
from aclauth.storage.models import AuthMethod, AuthMethodConfig

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[AuthMethodConfig], ProviderClient]


def resolve_auth_method(auth_methods: AuthMethodLookup, name: str) -> AuthMethod:
    """Look up an auth method that can drive an OIDC flow.

    Raises:
        InvalidRequest: If ``name`` is empty.
        AuthMethodNotFound: If no auth method has that name.
        InvalidAuthMethod: If the auth method is not of type OIDC.
    """
    if not name:
        raise InvalidRequest("auth method name is required")
    method = auth_methods.get(name)
    if method is None:
        raise AuthMethodNotFound(f"auth method {name!r} not found")
    if not method.is_oidc:
        raise InvalidAuthMethod(f"auth method {name!r} has type {method.type!r}, expected OIDC")
    return method


def _require(**params: str) -> None:
    missing = [name for name, value in params.items() if not value]
    if missing:
        raise InvalidRequest(f"missing required parameter(s): {', '.join(missing)}")


class AuthURLIssuer:
    """Issues provider authorization URLs bound to fresh state tokens."""

    def __init__(
        self,
        auth_methods: AuthMethodLookup,
        state_store: StateStore,
        provider_factory: ProviderFactory,
    ) -> None:
        self.auth_methods = auth_methods
        self.state_store = state_store
        self.provider_factory = provider_factory

    def get_auth_url(self, auth_method_name: str, redirect_uri: str, client_nonce: str) -> str:
        """Start a login flow.

        The redirect URI is checked before a state token is minted or the
        provider is contacted.

        Args:
            auth_method_name: Name of an OIDC auth method.
            redirect_uri: Where the provider should send the caller back.
            client_nonce: Caller-chosen nonce, echoed in the ID token.

        Returns:
            The provider authorization URL.

        Raises:
            InvalidRequest: A required parameter is empty.
            AuthMethodNotFound: The auth method does not exist.
            InvalidAuthMethod: The auth method is not OIDC.
            RedirectNotAllowed: The redirect URI is not allow-listed.
            DiscoveryError: The provider could not be discovered.
        """
        method = resolve_auth_method(self.auth_methods, auth_method_name)

        with self.provider_factory(method.config) as provider:
            provider.check_redirect_uri(redirect_uri)
            _require(client_nonce=client_nonce)

            state = self.state_store.create(method.name, client_nonce)
            try:
                url = provider.build_auth_url(redirect_uri, state, client_nonce)
            except Exception:
                self.state_store.discard(state)
                raise

        logger.info(f"Issued authorization URL for auth method {method.name!r}")
        return url


class AuthCompleter:
    """Completes login flows started by ``AuthURLIssuer``."""

    def __init__(
        self,
        auth_methods: AuthMethodLookup,
        state_store: StateStore,
        provider_factory: ProviderFactory,
    ) -> None:
        self.auth_methods = auth_methods
        self.state_store = state_store
        self.provider_factory = provider_factory

    def complete_auth(
        self,
        auth_method_name: str,
        redirect_uri: str,
        client_nonce: str,
        code: str,
        state: str,
    ) -> AuthClaims:
        """Finish a login flow and return the verified claims.

        The state token is consumed first, so a replayed callback fails even
        when every later step would have succeeded.

        Args:
            auth_method_name: Name of the auth method used for the URL.
            redirect_uri: Redirect URI used for the URL.
            client_nonce: Nonce used for the URL.
            code: Authorization code from the provider callback.
            state: State token from the provider callback.

        Returns:
            AuthClaims of the verified ID token.

        Raises:
            ConfigurationError: Unknown or non-OIDC auth method, missing
                parameters, disallowed redirect URI or failed discovery.
            AuthenticationError: State, nonce, exchange or token failure.
            ProviderTransportError: The provider could not be reached.
        """
        method = resolve_auth_method(self.auth_methods, auth_method_name)
        _require(redirect_uri=redirect_uri, client_nonce=client_nonce, code=code, state=state)

        stage = "state"
        try:
            expected_nonce = self.state_store.consume(state, method.name)

            stage = "nonce"
            if not hmac.compare_digest(expected_nonce.encode(), client_nonce.encode()):
                raise NonceMismatch("client nonce does not match the nonce the flow was started with")

            with self.provider_factory(method.config) as provider:
                stage = "exchange"
                id_token = provider.exchange(code, redirect_uri)

                stage = "verify"
                claims = provider.verify(id_token, expected_nonce)
        except AuthenticationError as e:
            audit_auth_failure(e, method.name, stage)
            raise

        logger.info(f"Completed OIDC login for auth method {method.name!r}")
        return claims
