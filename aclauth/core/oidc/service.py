"""Server-scoped composition of the OIDC login flow.

One ``OIDCAuthService`` is built per server instance. It owns the pending
state tokens and the provider cache, so both live exactly as long as the
server does.
"""

from __future__ import annotations

import logging

import httpx

from aclauth.core.config import AppConfig, OIDCSettings
from aclauth.core.logging import ProtocolLogger
from aclauth.core.oidc.claims import AuthClaims, Identity
from aclauth.core.oidc.discovery import ProviderCache
from aclauth.core.oidc.flows import AuthCompleter, AuthURLIssuer, resolve_auth_method
from aclauth.core.oidc.identity import IdentityProjector
from aclauth.core.oidc.provider import ProviderClient
from aclauth.core.oidc.state import StateStore
from aclauth.storage.auth_methods import AuthMethodLookup, AuthMethodStore, load_auth_methods
from aclauth.storage.models import AuthMethodConfig

logger = logging.getLogger(__name__)


class OIDCAuthService:
    """Entry point for the two login steps and identity projection."""

    def __init__(
        self,
        auth_methods: AuthMethodLookup,
        settings: OIDCSettings | None = None,
        state_store: StateStore | None = None,
        provider_cache: ProviderCache | None = None,
        protocol_logger: ProtocolLogger | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            auth_methods: Lookup for auth method records.
            settings: OIDC tuning; defaults apply when omitted.
            state_store: Pending state tokens; built from settings when omitted.
            provider_cache: Discovery and key cache; built from settings when omitted.
            protocol_logger: Protocol logger for provider HTTP traffic.
            transport: Optional httpx transport for every provider client.
        """
        self.settings = settings or OIDCSettings()
        self.auth_methods = auth_methods
        self.state_store = state_store or StateStore(
            ttl_seconds=self.settings.state_ttl_seconds,
            max_records=self.settings.max_pending_states,
        )
        self.provider_cache = provider_cache or ProviderCache(
            ttl_seconds=self.settings.discovery_cache_ttl_seconds,
            refresh_interval_seconds=self.settings.jwks_refresh_interval_seconds,
        )
        self._protocol_logger = protocol_logger
        self._transport = transport

        self.issuer = AuthURLIssuer(auth_methods, self.state_store, self.provider_client)
        self.completer = AuthCompleter(auth_methods, self.state_store, self.provider_client)
        self.projector = IdentityProjector()

    @classmethod
    def from_config(
        cls,
        app_config: AppConfig,
        auth_methods: AuthMethodLookup | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> OIDCAuthService:
        """Build the service from application configuration.

        Auth methods are loaded from ``auth_methods_file`` unless a lookup
        is passed in; with neither, the service starts with no methods.
        """
        if auth_methods is None:
            if app_config.auth_methods_file is not None:
                auth_methods = load_auth_methods(app_config.auth_methods_file)
            else:
                logger.warning("No auth methods file configured; no auth methods available")
                auth_methods = AuthMethodStore()
        return cls(auth_methods, settings=app_config.oidc, transport=transport)

    def provider_client(self, config: AuthMethodConfig) -> ProviderClient:
        """Create a provider client sharing this service's cache."""
        return ProviderClient(
            config,
            self.provider_cache,
            timeout=self.settings.http_timeout_seconds,
            clock_skew_seconds=self.settings.clock_skew_seconds,
            protocol_logger=self._protocol_logger,
            transport=self._transport,
        )

    def get_auth_url(self, auth_method_name: str, redirect_uri: str, client_nonce: str) -> str:
        return self.issuer.get_auth_url(auth_method_name, redirect_uri, client_nonce)

    def complete_auth(
        self,
        auth_method_name: str,
        redirect_uri: str,
        client_nonce: str,
        code: str,
        state: str,
    ) -> AuthClaims:
        return self.completer.complete_auth(auth_method_name, redirect_uri, client_nonce, code, state)

    def login(
        self,
        auth_method_name: str,
        redirect_uri: str,
        client_nonce: str,
        code: str,
        state: str,
    ) -> Identity:
        """Complete a login flow and project the result into an Identity."""
        claims = self.complete_auth(auth_method_name, redirect_uri, client_nonce, code, state)
        method = resolve_auth_method(self.auth_methods, auth_method_name)
        return self.projector.project(method.config, claims)
