"""OIDC provider client driven by an auth method's configuration.

Covers the provider side of the login flow: discovery, authorization URL
construction, authorization code exchange and ID token verification.
Signature and time checks are delegated to PyJWT.
"""

from __future__ import annotations

import hmac
import logging
import ssl
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlencode

import httpx
import jwt

from aclauth.core.errors import (
    AudienceMismatch,
    ExchangeError,
    ExchangeTimeout,
    InvalidSignature,
    IssuerMismatch,
    MalformedToken,
    NonceMismatch,
    ProviderUnavailable,
    RedirectNotAllowed,
    TokenExpired,
    TokenNotYetValid,
)
from aclauth.core.logging import LoggingClient, ProtocolLogger, get_protocol_logger
from aclauth.core.oidc.claims import AuthClaims
from aclauth.core.oidc.discovery import ProviderCache, ProviderMetadata
from aclauth.core.oidc.utils import extract_mapped_claims
from aclauth.storage.models import AuthMethodConfig

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0
DEFAULT_CLOCK_SKEW = 60


def build_ssl_context(ca_pems: tuple[str, ...]) -> ssl.SSLContext | bool:
    """Build TLS verification settings for provider requests.

    Args:
        ca_pems: PEM encoded CA certificates to trust.

    Returns:
        An SSL context trusting only the given CAs, or True for the system
        trust store when none are configured.
    """
    if not ca_pems:
        return True
    context = ssl.create_default_context()
    context.load_verify_locations(cadata="\n".join(ca_pems))
    return context


class ProviderClient:
    """Talks to the provider configured in one auth method.

    Instances are cheap; discovery documents and signing keys live in the
    shared ProviderCache. Use as a context manager to release the HTTP
    client.
    """

    def __init__(
        self,
        config: AuthMethodConfig,
        cache: ProviderCache,
        timeout: float = DEFAULT_TIMEOUT,
        clock_skew_seconds: int = DEFAULT_CLOCK_SKEW,
        protocol_logger: ProtocolLogger | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the provider client.

        Args:
            config: OIDC configuration of the auth method.
            cache: Shared discovery and key cache.
            timeout: Timeout in seconds for each provider request.
            clock_skew_seconds: Default leeway for exp/nbf/iat checks.
            protocol_logger: Optional protocol logger for HTTP traffic capture.
            transport: Optional httpx transport (used to stub the provider).
        """
        self.config = config
        self._cache = cache
        self._timeout = timeout
        self._clock_skew = config.clock_skew_leeway if config.clock_skew_leeway is not None else clock_skew_seconds
        self._protocol_logger = protocol_logger or get_protocol_logger()
        self._transport = transport
        self._http_client: LoggingClient | None = None

    @property
    def http_client(self) -> LoggingClient:
        """Get or create HTTP client with logging."""
        if self._http_client is None:
            kwargs: dict[str, Any] = {
                "protocol_logger": self._protocol_logger,
                "timeout": httpx.Timeout(self._timeout),
            }
            if self._transport is not None:
                kwargs["transport"] = self._transport
            else:
                kwargs["verify"] = build_ssl_context(self.config.discovery_ca_pem)
            self._http_client = LoggingClient(**kwargs)
        return self._http_client

    def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client is not None:
            self._http_client.close()
            self._http_client = None

    def __enter__(self) -> ProviderClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def discover(self) -> ProviderMetadata:
        """Get the provider's discovery metadata (cached)."""
        return self._cache.get_metadata(self.http_client, self.config.oidc_discovery_url)

    def check_redirect_uri(self, redirect_uri: str) -> None:
        """Reject redirect URIs outside the auth method's allow-list.

        Raises:
            RedirectNotAllowed: If the URI is not allowed.
        """
        if not self.config.is_redirect_allowed(redirect_uri):
            raise RedirectNotAllowed(f"Redirect URI {redirect_uri!r} is not allowed by this auth method")

    def build_auth_url(self, redirect_uri: str, state: str, nonce: str) -> str:
        """Build the provider authorization URL.

        The redirect URI is checked before any network access.

        Args:
            redirect_uri: Callback URI; must be in the allow-list.
            state: State token correlating the callback.
            nonce: Nonce the provider must echo in the ID token.

        Returns:
            Fully encoded authorization URL.

        Raises:
            RedirectNotAllowed: If the redirect URI is not allowed.
            DiscoveryError: If discovery fails.
        """
        self.check_redirect_uri(redirect_uri)
        metadata = self.discover()

        scopes = ["openid"]
        scopes.extend(s for s in self.config.oidc_scopes if s not in scopes)

        params: dict[str, str] = {
            "client_id": self.config.oidc_client_id,
            "nonce": nonce,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(scopes),
            "state": state,
        }

        extra_audiences = [aud for aud in self.config.bound_audiences if aud != self.config.oidc_client_id]
        if extra_audiences:
            params["audience"] = " ".join(extra_audiences)

        separator = "&" if "?" in metadata.authorization_endpoint else "?"
        return f"{metadata.authorization_endpoint}{separator}{urlencode(params)}"

    def exchange(self, code: str, redirect_uri: str) -> str:
        """Exchange an authorization code for an ID token.

        Args:
            code: Authorization code from the callback.
            redirect_uri: The redirect URI used for the authorization request.

        Returns:
            The raw (unverified) ID token.

        Raises:
            RedirectNotAllowed: If the redirect URI is not allowed.
            ExchangeTimeout: The token endpoint did not answer in time.
            ProviderUnavailable: The token endpoint could not be reached.
            ExchangeError: The provider rejected the code or answered without an ID token.
        """
        self.check_redirect_uri(redirect_uri)
        metadata = self.discover()

        data: dict[str, str] = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": self.config.oidc_client_id,
        }
        if self.config.oidc_client_secret:
            data["client_secret"] = self.config.oidc_client_secret

        try:
            response = self.http_client.post(
                metadata.token_endpoint,
                data=data,
                headers={"Accept": "application/json"},
            )
        except httpx.TimeoutException as e:
            raise ExchangeTimeout(f"Timeout during token exchange with {metadata.token_endpoint}: {e}") from e
        except httpx.HTTPError as e:
            raise ProviderUnavailable(f"HTTP error during token exchange: {e}") from e

        try:
            response_data = response.json()
        except ValueError as e:
            raise ExchangeError(
                f"Token endpoint returned non-JSON response with status {response.status_code}"
            ) from e
        if not isinstance(response_data, dict):
            raise ExchangeError("Token endpoint returned a non-object JSON response")

        if response.status_code != 200 or "error" in response_data:
            error_code = response_data.get("error", "token_error")
            description = response_data.get(
                "error_description",
                f"Token request failed with status {response.status_code}",
            )
            logger.debug(f"Token endpoint rejected code exchange: HTTP {response.status_code} {error_code}")
            raise ExchangeError(f"Token exchange failed: {error_code}: {description}", error_code=error_code)

        id_token = response_data.get("id_token")
        if not isinstance(id_token, str) or not id_token:
            raise ExchangeError("Token response did not include an id_token", error_code="missing_id_token")

        return id_token

    def verify(self, raw_token: str, expected_nonce: str) -> AuthClaims:
        """Verify an ID token and extract its claims.

        Args:
            raw_token: ID token returned by the token endpoint.
            expected_nonce: The nonce the authorization request was built with.

        Returns:
            AuthClaims for the verified token.

        Raises:
            MalformedToken: The token cannot be decoded or lacks required claims.
            InvalidSignature: Algorithm not allowed, no matching key, or bad signature.
            TokenExpired: The token is expired (TokenNotYetValid for nbf/iat).
            IssuerMismatch: ``iss`` differs from the expected issuer.
            AudienceMismatch: No bound audience is present in ``aud``.
            NonceMismatch: ``nonce`` differs from ``expected_nonce``.
        """
        try:
            header = jwt.get_unverified_header(raw_token)
        except jwt.DecodeError as e:
            raise MalformedToken(f"Invalid JWT format: {e}") from e

        alg = header.get("alg", "")
        if alg not in self.config.signing_algs:
            raise InvalidSignature(f"Token algorithm {alg!r} is not one of {list(self.config.signing_algs)}")

        metadata = self.discover()
        payload = self._decode_verified(raw_token, header, alg, metadata)

        expected_issuer = self.config.bound_issuer or metadata.issuer
        if payload.get("iss") != expected_issuer:
            raise IssuerMismatch(f"Issuer mismatch: expected {expected_issuer!r}, got {payload.get('iss')!r}")

        audience = _audience_list(payload.get("aud"))
        if not self.config.expected_audiences.intersection(audience):
            raise AudienceMismatch(
                f"Audience {audience} does not include any of {sorted(self.config.expected_audiences)}"
            )
        azp = payload.get("azp")
        if len(audience) > 1 and azp is not None and azp != self.config.oidc_client_id:
            raise AudienceMismatch(f"Authorized party {azp!r} is not client {self.config.oidc_client_id!r}")

        token_nonce = payload.get("nonce")
        if not isinstance(token_nonce, str) or not hmac.compare_digest(token_nonce.encode(), expected_nonce.encode()):
            raise NonceMismatch("ID token nonce does not match the authorization request")

        return AuthClaims(
            value=extract_mapped_claims(payload, self.config.claim_mappings, self.config.list_claim_mappings),
            subject=str(payload.get("sub", "")),
            issuer=payload["iss"],
            audience=tuple(audience),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=UTC),
            raw=payload,
        )

    def _decode_verified(
        self,
        raw_token: str,
        header: dict[str, Any],
        alg: str,
        metadata: ProviderMetadata,
    ) -> dict[str, Any]:
        """Check signature and time claims, refreshing keys once on a miss."""
        for attempt in range(2):
            key = self._select_key(header, alg, metadata.jwks_uri)
            if key is None:
                if attempt == 0 and self._refresh_keys(metadata.jwks_uri):
                    continue
                raise InvalidSignature(f"No key in provider JWKS matches kid={header.get('kid')!r} alg={alg}")

            try:
                payload: dict[str, Any] = jwt.decode(
                    raw_token,
                    key.key,
                    algorithms=[alg],
                    leeway=self._clock_skew,
                    options={
                        "verify_aud": False,
                        "verify_iss": False,
                        "require": ["iss", "exp"],
                    },
                )
                return payload
            except jwt.InvalidSignatureError as e:
                if attempt == 0 and self._refresh_keys(metadata.jwks_uri):
                    continue
                raise InvalidSignature(f"Signature verification failed: {e}") from e
            except jwt.ExpiredSignatureError as e:
                raise TokenExpired(f"Token has expired: {e}") from e
            except jwt.ImmatureSignatureError as e:
                raise TokenNotYetValid(f"Token is not yet valid: {e}") from e
            except jwt.InvalidAlgorithmError as e:
                raise InvalidSignature(f"Key cannot verify algorithm {alg}: {e}") from e
            except jwt.InvalidTokenError as e:
                raise MalformedToken(f"Token rejected: {e}") from e

        raise InvalidSignature("Signature verification failed after key refresh")

    def _refresh_keys(self, jwks_uri: str) -> bool:
        logger.debug(f"Refreshing JWKS for {self.config.oidc_discovery_url}")
        return self._cache.invalidate_keys(jwks_uri)

    def _select_key(self, header: dict[str, Any], alg: str, jwks_uri: str) -> jwt.PyJWK | None:
        return self._cache.get_keys(self.http_client, jwks_uri).find(header.get("kid"), alg)


def _audience_list(aud: Any) -> list[str]:
    if aud is None:
        return []
    if isinstance(aud, str):
        return [aud]
    if isinstance(aud, list) and all(isinstance(a, str) for a in aud):
        return list(aud)
    raise AudienceMismatch(f"Unusable aud claim of type {type(aud).__name__}")
