"""Provider discovery and signing key retrieval with caching.

Discovery documents are cached by discovery URL and key sets by JWKS URI.
Entries live for a fixed TTL and can be invalidated explicitly, which the
provider client does when a token references a key the cached set does not
know (key rotation). Such forced refreshes are rate limited per JWKS URI.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

import httpx
import jwt
from jwt.exceptions import InvalidKeyError, PyJWKError, PyJWKSetError

from aclauth.core.errors import DiscoveryError, DiscoveryTimeout, ProviderTimeout, ProviderUnavailable

logger = logging.getLogger(__name__)

WELL_KNOWN_PATH = ".well-known/openid-configuration"

T = TypeVar("T")


@dataclass(frozen=True)
class ProviderMetadata:
    """The subset of an OIDC discovery document the login flow relies on."""

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    jwks_uri: str
    userinfo_endpoint: str | None = None
    scopes_supported: tuple[str, ...] = ()
    id_token_signing_alg_values_supported: tuple[str, ...] = ()
    raw_config: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_document(cls, document: dict[str, Any], discovery_url: str) -> ProviderMetadata:
        """Validate a discovery document.

        Args:
            document: Parsed JSON discovery document.
            discovery_url: The issuer URL the document was fetched for.

        Raises:
            DiscoveryError: If required fields are missing or the issuer
                does not match the discovery URL.
        """
        required = ("issuer", "authorization_endpoint", "token_endpoint", "jwks_uri")
        missing = [name for name in required if not isinstance(document.get(name), str) or not document[name]]
        if missing:
            raise DiscoveryError(f"Discovery document for {discovery_url} is missing: {', '.join(missing)}")

        issuer = document["issuer"]
        if issuer.rstrip("/") != discovery_url.rstrip("/"):
            raise DiscoveryError(f"Discovery issuer {issuer!r} does not match discovery URL {discovery_url!r}")

        return cls(
            issuer=issuer,
            authorization_endpoint=document["authorization_endpoint"],
            token_endpoint=document["token_endpoint"],
            jwks_uri=document["jwks_uri"],
            userinfo_endpoint=document.get("userinfo_endpoint"),
            scopes_supported=tuple(document.get("scopes_supported") or ()),
            id_token_signing_alg_values_supported=tuple(document.get("id_token_signing_alg_values_supported") or ()),
            raw_config=document,
        )


def discovery_document_url(discovery_url: str) -> str:
    """Build the well-known configuration URL for an issuer URL."""
    url = discovery_url.rstrip("/")
    if url.endswith(WELL_KNOWN_PATH):
        return url
    return f"{url}/{WELL_KNOWN_PATH}"


def fetch_provider_metadata(client: httpx.Client, discovery_url: str) -> ProviderMetadata:
    """Fetch and validate a provider's discovery document.

    Args:
        client: HTTP client carrying the timeout and TLS trust to use.
        discovery_url: Issuer URL (the well-known path is appended).

    Returns:
        Validated ProviderMetadata.

    Raises:
        DiscoveryTimeout: The request timed out.
        DiscoveryError: The provider is unreachable or the document is malformed.
    """
    url = discovery_document_url(discovery_url)
    logger.debug(f"Fetching OIDC discovery from {url}")

    try:
        response = client.get(url, headers={"Accept": "application/json"})
    except httpx.TimeoutException as e:
        raise DiscoveryTimeout(f"Timeout fetching OIDC configuration from {url}: {e}") from e
    except httpx.HTTPError as e:
        raise DiscoveryError(f"Request error fetching OIDC configuration from {url}: {e}") from e

    if response.status_code != 200:
        raise DiscoveryError(f"HTTP {response.status_code} fetching OIDC configuration: {response.text[:200]}")

    try:
        document = response.json()
    except ValueError as e:
        raise DiscoveryError(f"Invalid JSON in OIDC configuration: {e}") from e

    if not isinstance(document, dict):
        raise DiscoveryError("OIDC configuration is not a JSON object")

    return ProviderMetadata.from_document(document, discovery_url)


@dataclass(frozen=True)
class SigningKeys:
    """A provider's key set, with each JWK kept as published.

    A JWK without an ``alg`` member can serve any algorithm its key type
    supports, so keys are parsed for the algorithm a token asks for.
    """

    jwks: tuple[dict[str, Any], ...]

    def find(self, kid: str | None, alg: str) -> jwt.PyJWK | None:
        """Return the first signature key matching ``kid`` that can verify ``alg``."""
        for jwk in self.jwks:
            if kid is not None and jwk.get("kid") != kid:
                continue
            if jwk.get("use", "sig") != "sig":
                continue
            declared = jwk.get("alg")
            if declared and declared != alg:
                continue
            try:
                return jwt.PyJWK(jwk, algorithm=alg)
            except (PyJWKError, InvalidKeyError):
                # Key type does not fit alg
                continue
        return None


def fetch_jwks(client: httpx.Client, jwks_uri: str) -> SigningKeys:
    """Fetch a provider's JSON Web Key Set.

    Raises:
        ProviderTimeout: The request timed out.
        ProviderUnavailable: The provider could not be reached.
        DiscoveryError: The key set is missing or unusable.
    """
    logger.debug(f"Fetching JWKS from {jwks_uri}")

    try:
        response = client.get(jwks_uri, headers={"Accept": "application/json"})
    except httpx.TimeoutException as e:
        raise ProviderTimeout(f"Timeout fetching JWKS from {jwks_uri}: {e}") from e
    except httpx.HTTPError as e:
        raise ProviderUnavailable(f"Request error fetching JWKS from {jwks_uri}: {e}") from e

    if response.status_code != 200:
        raise DiscoveryError(f"HTTP {response.status_code} fetching JWKS from {jwks_uri}")

    try:
        document = response.json()
    except ValueError as e:
        raise DiscoveryError(f"Invalid JSON in JWKS from {jwks_uri}: {e}") from e

    keys = document.get("keys") if isinstance(document, dict) else None
    if not isinstance(keys, list):
        raise DiscoveryError(f"JWKS from {jwks_uri} is not a JSON object with a keys list")

    jwks = [key for key in keys if isinstance(key, dict)]
    try:
        # At least one key must be usable
        jwt.PyJWKSet(jwks)
    except (PyJWKSetError, PyJWKError, InvalidKeyError) as e:
        raise DiscoveryError(f"Unusable JWKS from {jwks_uri}: {e}") from e

    return SigningKeys(tuple(jwks))


@dataclass
class _CacheEntry(Generic[T]):
    value: T
    expires_at: float


class TTLCache(Generic[T]):
    """Small in-memory TTL cache with single-flight loading.

    Reads take no lock. Loading a missing or stale key is serialized per
    key, so concurrent misses trigger one fetch.
    """

    def __init__(
        self,
        ttl_seconds: float,
        maxsize: int = 256,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._maxsize = maxsize
        self._clock = clock
        self._store: dict[str, _CacheEntry[T]] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def get(self, key: str) -> T | None:
        entry = self._store.get(key)
        if entry is None or entry.expires_at <= self._clock():
            return None
        return entry.value

    def get_or_load(self, key: str, loader: Callable[[], T]) -> T:
        """Return the cached value for ``key``, loading it when missing or stale.

        Errors raised by ``loader`` propagate and nothing is cached.
        """
        value = self.get(key)
        if value is not None:
            return value

        with self._lock_for(key):
            value = self.get(key)
            if value is not None:
                return value
            value = loader()
            self._set(key, value)
            return value

    def invalidate(self, key: str) -> None:
        self._store.pop(key, None)

    def clear(self) -> None:
        self._store.clear()

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None

    def _lock_for(self, key: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def _set(self, key: str, value: T) -> None:
        now = self._clock()
        if len(self._store) >= self._maxsize and key not in self._store:
            for k in [k for k, e in self._store.items() if e.expires_at <= now]:
                self._store.pop(k, None)
            if len(self._store) >= self._maxsize:
                self._store.pop(next(iter(self._store)), None)
        self._store[key] = _CacheEntry(value=value, expires_at=now + self.ttl_seconds)


class ProviderCache:
    """Discovery documents and key sets shared by all flows of a server."""

    def __init__(
        self,
        ttl_seconds: float = 3600,
        refresh_interval_seconds: float = 30,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.metadata: TTLCache[ProviderMetadata] = TTLCache(ttl_seconds, clock=clock)
        self.keys: TTLCache[SigningKeys] = TTLCache(ttl_seconds, clock=clock)
        self.refresh_interval_seconds = refresh_interval_seconds
        self._clock = clock
        self._refreshed_at: dict[str, float] = {}
        self._refresh_guard = threading.Lock()

    def get_metadata(self, client: httpx.Client, discovery_url: str) -> ProviderMetadata:
        return self.metadata.get_or_load(discovery_url, lambda: fetch_provider_metadata(client, discovery_url))

    def get_keys(self, client: httpx.Client, jwks_uri: str) -> SigningKeys:
        return self.keys.get_or_load(jwks_uri, lambda: fetch_jwks(client, jwks_uri))

    def invalidate_keys(self, jwks_uri: str) -> bool:
        """Drop a cached key set so the next lookup refetches it.

        Forced refreshes of one JWKS URI are at least
        ``refresh_interval_seconds`` apart.

        Returns:
            False if the key set was refreshed too recently and was kept.
        """
        now = self._clock()
        with self._refresh_guard:
            last = self._refreshed_at.get(jwks_uri)
            if last is not None and now - last < self.refresh_interval_seconds:
                logger.debug(f"JWKS for {jwks_uri} refreshed {now - last:.1f}s ago; keeping cached keys")
                return False
            self._refreshed_at[jwks_uri] = now

        logger.info(f"Invalidating cached JWKS for {jwks_uri}")
        self.keys.invalidate(jwks_uri)
        return True

    def invalidate(self, discovery_url: str) -> None:
        """Drop a provider's discovery document and its key set."""
        metadata = self.metadata.get(discovery_url)
        self.metadata.invalidate(discovery_url)
        if metadata is not None:
            self.keys.invalidate(metadata.jwks_uri)
