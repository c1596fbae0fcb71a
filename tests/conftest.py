"""Pytest configuration and fixtures."""

from __future__ import annotations

import json
import secrets
import time
from collections.abc import Callable, Generator
from typing import Any
from urllib.parse import parse_qs, urlparse

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from flask import Flask
from flask.testing import FlaskClient
from jwt.algorithms import get_default_algorithms

from aclauth.app import create_app
from aclauth.core.config import OIDCSettings
from aclauth.core.oidc.discovery import ProviderCache
from aclauth.core.oidc.provider import ProviderClient
from aclauth.core.oidc.service import OIDCAuthService
from aclauth.core.oidc.state import StateStore
from aclauth.storage.auth_methods import AuthMethodStore
from aclauth.storage.models import AuthMethod, AuthMethodConfig

ISSUER = "https://idp.example.com"
CLIENT_ID = "aclauth-client"
CLIENT_SECRET = "s3cret-client-value"
REDIRECT_URI = "http://cb"

SigningKey = ec.EllipticCurvePrivateKey | rsa.RSAPrivateKey


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeOIDCProvider:
    """In-process OIDC provider served through ``httpx.MockTransport``.

    Signs real ES256 (or RSA) ID tokens. ``authorize`` plays the part of the user
    logging in at the provider: it takes an authorization URL and returns
    the code and state the provider would redirect back with.
    """

    def __init__(self, issuer: str = ISSUER, client_id: str = CLIENT_ID) -> None:
        self.issuer = issuer
        self.client_id = client_id
        self.requests: list[httpx.Request] = []
        self.token_requests: list[dict[str, str]] = []

        # Knobs for the tokens the provider issues
        self.subject = "user-123"
        self.audience: Any = client_id
        self.token_issuer = issuer
        self.claims: dict[str, Any] = {"foo": "hello", "groups": ["dev", "ops"]}
        self.lifetime = 300
        self.nonce_override: str | None = None
        self.algorithm = "ES256"
        # Whether published JWKs carry an "alg" member
        self.publish_alg = True

        # Knobs for endpoint behaviour
        self.discovery_overrides: dict[str, Any] = {}
        self.discovery_status = 200
        self.token_error: str | None = None
        self.raise_on: dict[str, Exception] = {}

        self._codes: dict[str, str] = {}
        self.rotate_keys()

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def rotate_keys(self, algorithm: str | None = None) -> None:
        """Replace the signing key (and its kid), optionally switching algorithm."""
        if algorithm:
            self.algorithm = algorithm
        if self.algorithm.startswith(("RS", "PS")):
            self.private_key: SigningKey = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        else:
            self.private_key = ec.generate_private_key(ec.SECP256R1())
        self.kid = f"key-{secrets.token_hex(4)}"

    def jwks(self) -> dict[str, Any]:
        algorithm = get_default_algorithms()[self.algorithm]
        jwk = json.loads(algorithm.to_jwk(self.private_key.public_key()))
        jwk.update({"kid": self.kid, "use": "sig"})
        if self.publish_alg:
            jwk["alg"] = self.algorithm
        return {"keys": [jwk]}

    def discovery_document(self) -> dict[str, Any]:
        document = {
            "issuer": self.issuer,
            "authorization_endpoint": f"{self.issuer}/authorize",
            "token_endpoint": f"{self.issuer}/token",
            "jwks_uri": f"{self.issuer}/jwks",
            "scopes_supported": ["openid", "profile", "email"],
            "id_token_signing_alg_values_supported": [self.algorithm],
        }
        document.update(self.discovery_overrides)
        return document

    def issue_token(
        self,
        nonce: str | None,
        private_key: SigningKey | None = None,
        kid: str | None = None,
        omit: tuple[str, ...] = (),
        **overrides: Any,
    ) -> str:
        """Sign an ID token with the current (or a given) key.

        Claims named in ``omit`` are left out of the payload.
        """
        now = int(time.time())
        payload: dict[str, Any] = {
            "iss": self.token_issuer,
            "sub": self.subject,
            "aud": self.audience,
            "iat": now,
            "exp": now + self.lifetime,
            "nonce": nonce,
        }
        payload.update(self.claims)
        payload.update(overrides)
        for name in omit:
            payload.pop(name, None)
        return jwt.encode(
            payload,
            private_key or self.private_key,
            algorithm=self.algorithm,
            headers={"kid": kid or self.kid},
        )

    def authorize(self, auth_url: str, code: str | None = None) -> tuple[str, str]:
        """Simulate a successful login at the provider.

        Returns:
            The authorization code and the state echoed back.
        """
        params = parse_qs(urlparse(auth_url).query)
        code = code or f"code-{secrets.token_hex(8)}"
        self._codes[code] = params["nonce"][0]
        return code, params["state"][0]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path in self.raise_on:
            raise self.raise_on[path]

        if path == "/.well-known/openid-configuration":
            if self.discovery_status != 200:
                return httpx.Response(self.discovery_status, text="unavailable")
            return httpx.Response(200, json=self.discovery_document())

        if path == "/jwks":
            return httpx.Response(200, json=self.jwks())

        if path == "/token" and request.method == "POST":
            form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
            self.token_requests.append(form)
            if self.token_error:
                return httpx.Response(400, json={"error": self.token_error, "error_description": "rejected"})
            nonce = self._codes.pop(form.get("code", ""), None)
            if nonce is None or form.get("client_id") != self.client_id:
                return httpx.Response(400, json={"error": "invalid_grant"})
            id_token = self.issue_token(self.nonce_override or nonce)
            return httpx.Response(
                200,
                json={"access_token": "at-123", "token_type": "Bearer", "id_token": id_token},
            )

        return httpx.Response(404, json={"error": "not_found"})

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]


def make_auth_method(name: str = "method1", **config_overrides: Any) -> AuthMethod:
    config: dict[str, Any] = {
        "oidc_discovery_url": ISSUER,
        "oidc_client_id": CLIENT_ID,
        "oidc_client_secret": CLIENT_SECRET,
        "allowed_redirect_uris": [REDIRECT_URI],
        "signing_algs": ["ES256"],
        "claim_mappings": {"foo": "bar"},
        "list_claim_mappings": {"groups": "groups"},
    }
    config.update(config_overrides)
    return AuthMethod.from_dict({"name": name, "type": "OIDC", "config": config})


@pytest.fixture
def idp() -> FakeOIDCProvider:
    """Fake OIDC provider."""
    return FakeOIDCProvider()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def auth_method() -> AuthMethod:
    return make_auth_method()


@pytest.fixture
def auth_methods(auth_method: AuthMethod) -> AuthMethodStore:
    return AuthMethodStore([auth_method])


@pytest.fixture
def provider_factory(idp: FakeOIDCProvider) -> Callable[[AuthMethodConfig], ProviderClient]:
    """Build provider clients talking to the fake provider through one cache."""
    cache = ProviderCache()

    def factory(config: AuthMethodConfig) -> ProviderClient:
        return ProviderClient(config, cache, transport=idp.transport)

    return factory


@pytest.fixture
def service(auth_methods: AuthMethodStore, idp: FakeOIDCProvider, clock: FakeClock) -> OIDCAuthService:
    """Login service wired to the fake provider, with a controllable state clock."""
    settings = OIDCSettings()
    return OIDCAuthService(
        auth_methods,
        settings=settings,
        state_store=StateStore(ttl_seconds=settings.state_ttl_seconds, clock=clock),
        transport=idp.transport,
    )


@pytest.fixture
def app(service: OIDCAuthService) -> Generator[Flask, None, None]:
    """Create application for testing."""
    app = create_app({"TESTING": True}, service=service)
    yield app


@pytest.fixture
def client(app: Flask) -> FlaskClient:
    """Create test client."""
    return app.test_client()
