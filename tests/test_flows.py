"""End-to-end tests for the two-step OIDC login flow."""

import logging

import httpx
import pytest

from aclauth.core.errors import (
    GENERIC_AUTH_FAILURE,
    AudienceMismatch,
    AuthenticationError,
    AuthMethodMismatch,
    AuthMethodNotFound,
    DiscoveryError,
    ExchangeError,
    InvalidAuthMethod,
    InvalidRequest,
    InvalidState,
    NonceMismatch,
    ProviderUnavailable,
    RedirectNotAllowed,
)
from aclauth.core.oidc.flows import AuthCompleter, AuthURLIssuer
from aclauth.core.oidc.service import OIDCAuthService
from aclauth.core.oidc.state import StateStore
from aclauth.storage.auth_methods import AuthMethodStore
from aclauth.storage.models import AuthMethod, AuthMethodConfig
from tests.conftest import REDIRECT_URI, FakeClock, FakeOIDCProvider, make_auth_method


class TestGetAuthURL:
    """Tests for starting a login."""

    def test_issues_state(self, service: OIDCAuthService, idp: FakeOIDCProvider) -> None:
        url = service.get_auth_url("method1", REDIRECT_URI, "nonceA")

        _, state = idp.authorize(url)
        assert state.startswith("st_")
        assert state in service.state_store

    def test_redirect_not_allowed(self, service: OIDCAuthService, idp: FakeOIDCProvider) -> None:
        """No state is minted and the provider is never contacted."""
        with pytest.raises(RedirectNotAllowed):
            service.get_auth_url("method1", "http://evil.example.com/cb", "nonceA")

        assert idp.requests == []
        assert len(service.state_store) == 0

    def test_unknown_auth_method(self, service: OIDCAuthService) -> None:
        with pytest.raises(AuthMethodNotFound):
            service.get_auth_url("nope", REDIRECT_URI, "nonceA")

    def test_non_oidc_auth_method(self, service: OIDCAuthService) -> None:
        service.auth_methods.upsert(
            AuthMethod(name="jwt1", type="JWT", config=AuthMethodConfig("", ""))
        )
        with pytest.raises(InvalidAuthMethod):
            service.get_auth_url("jwt1", REDIRECT_URI, "nonceA")

    @pytest.mark.parametrize(
        ("name", "redirect_uri", "nonce"),
        [("", REDIRECT_URI, "nonceA"), ("method1", REDIRECT_URI, "")],
    )
    def test_missing_parameters(self, service: OIDCAuthService, name: str, redirect_uri: str, nonce: str) -> None:
        with pytest.raises(InvalidRequest):
            service.get_auth_url(name, redirect_uri, nonce)

    @pytest.mark.parametrize(
        ("redirect_uri", "nonce"),
        [("", "nonceA"), ("http://evil.example.com/cb", ""), ("", "")],
    )
    def test_redirect_checked_before_other_parameters(
        self, service: OIDCAuthService, idp: FakeOIDCProvider, redirect_uri: str, nonce: str
    ) -> None:
        with pytest.raises(RedirectNotAllowed):
            service.get_auth_url("method1", redirect_uri, nonce)

        assert idp.requests == []
        assert len(service.state_store) == 0

    def test_discovery_failure_discards_state(self, service: OIDCAuthService, idp: FakeOIDCProvider) -> None:
        idp.discovery_status = 500
        with pytest.raises(DiscoveryError):
            service.get_auth_url("method1", REDIRECT_URI, "nonceA")

        assert len(service.state_store) == 0


class TestCompleteAuth:
    """Tests for completing a login."""

    def test_round_trip_then_replay(self, service: OIDCAuthService, idp: FakeOIDCProvider) -> None:
        url = service.get_auth_url("method1", REDIRECT_URI, "nonceA")
        code, state = idp.authorize(url)

        claims = service.complete_auth("method1", REDIRECT_URI, "nonceA", code, state)

        assert claims.subject == "user-123"
        assert claims.value["foo"] == "hello"

        with pytest.raises(InvalidState):
            service.complete_auth("method1", REDIRECT_URI, "nonceA", code, state)

    def test_known_code_scenario(self, service: OIDCAuthService, idp: FakeOIDCProvider) -> None:
        url = service.get_auth_url("method1", "http://cb", "nonceA")
        _, state = idp.authorize(url, code="codeX")

        claims = service.complete_auth("method1", "http://cb", "nonceA", "codeX", state)

        assert claims
        assert claims.raw["nonce"] == "nonceA"
        with pytest.raises(InvalidState):
            service.complete_auth("method1", "http://cb", "nonceA", "codeX", state)

    def test_replay_fails_before_provider_contact(self, service: OIDCAuthService, idp: FakeOIDCProvider) -> None:
        url = service.get_auth_url("method1", REDIRECT_URI, "nonceA")
        code, state = idp.authorize(url)
        service.complete_auth("method1", REDIRECT_URI, "nonceA", code, state)
        exchanges = len(idp.token_requests)

        with pytest.raises(InvalidState):
            service.complete_auth("method1", REDIRECT_URI, "nonceA", code, state)

        assert len(idp.token_requests) == exchanges

    def test_client_nonce_mismatch(self, service: OIDCAuthService, idp: FakeOIDCProvider) -> None:
        url = service.get_auth_url("method1", REDIRECT_URI, "nonceA")
        code, state = idp.authorize(url)

        with pytest.raises(NonceMismatch):
            service.complete_auth("method1", REDIRECT_URI, "nonceB", code, state)

        # The state was consumed by the failed attempt
        with pytest.raises(InvalidState):
            service.complete_auth("method1", REDIRECT_URI, "nonceA", code, state)
        assert idp.token_requests == []

    def test_token_nonce_mismatch(self, service: OIDCAuthService, idp: FakeOIDCProvider) -> None:
        idp.nonce_override = "injected"
        url = service.get_auth_url("method1", REDIRECT_URI, "nonceA")
        code, state = idp.authorize(url)

        with pytest.raises(NonceMismatch):
            service.complete_auth("method1", REDIRECT_URI, "nonceA", code, state)

    def test_expired_state(self, service: OIDCAuthService, idp: FakeOIDCProvider, clock: FakeClock) -> None:
        url = service.get_auth_url("method1", REDIRECT_URI, "nonceA")
        code, state = idp.authorize(url)

        clock.advance(service.settings.state_ttl_seconds + 1)

        with pytest.raises(InvalidState):
            service.complete_auth("method1", REDIRECT_URI, "nonceA", code, state)

    def test_state_for_other_auth_method(self, service: OIDCAuthService, idp: FakeOIDCProvider) -> None:
        service.auth_methods.upsert(make_auth_method("method2"))
        url = service.get_auth_url("method1", REDIRECT_URI, "nonceA")
        code, state = idp.authorize(url)

        with pytest.raises(AuthMethodMismatch):
            service.complete_auth("method2", REDIRECT_URI, "nonceA", code, state)

    def test_audience_mismatch(self, service: OIDCAuthService, idp: FakeOIDCProvider) -> None:
        idp.audience = "another-client"
        url = service.get_auth_url("method1", REDIRECT_URI, "nonceA")
        code, state = idp.authorize(url)

        with pytest.raises(AudienceMismatch):
            service.complete_auth("method1", REDIRECT_URI, "nonceA", code, state)

    def test_exchange_rejected(self, service: OIDCAuthService, idp: FakeOIDCProvider) -> None:
        url = service.get_auth_url("method1", REDIRECT_URI, "nonceA")
        _, state = idp.authorize(url)

        with pytest.raises(ExchangeError):
            service.complete_auth("method1", REDIRECT_URI, "nonceA", "forged-code", state)

    def test_redirect_not_allowed(self, service: OIDCAuthService, idp: FakeOIDCProvider) -> None:
        url = service.get_auth_url("method1", REDIRECT_URI, "nonceA")
        code, state = idp.authorize(url)

        with pytest.raises(RedirectNotAllowed):
            service.complete_auth("method1", "http://evil.example.com/cb", "nonceA", code, state)

        assert idp.token_requests == []

    def test_missing_code(self, service: OIDCAuthService) -> None:
        with pytest.raises(InvalidRequest, match="code"):
            service.complete_auth("method1", REDIRECT_URI, "nonceA", "", "st_x")

    def test_public_message_is_generic(self, service: OIDCAuthService) -> None:
        with pytest.raises(AuthenticationError) as exc_info:
            service.complete_auth("method1", REDIRECT_URI, "nonceA", "codeX", "st_unknown")

        assert exc_info.value.public_message == GENERIC_AUTH_FAILURE
        assert exc_info.value.message != GENERIC_AUTH_FAILURE

    def test_failure_is_audited(
        self,
        service: OIDCAuthService,
        idp: FakeOIDCProvider,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        url = service.get_auth_url("method1", REDIRECT_URI, "secret-nonce-value")
        code, state = idp.authorize(url)

        with caplog.at_level(logging.WARNING, logger="aclauth.audit"):
            with pytest.raises(NonceMismatch):
                service.complete_auth("method1", REDIRECT_URI, "other-nonce", code, state)

        records = [r for r in caplog.records if r.name == "aclauth.audit"]
        assert len(records) == 1
        message = records[0].getMessage()
        assert "kind=nonce_mismatch" in message
        assert "stage=nonce" in message
        assert "'method1'" in message
        assert "secret-nonce-value" not in message
        assert state not in message


class TestFlowComponents:
    """Tests for AuthURLIssuer and AuthCompleter wired by hand."""

    def test_shared_state_store(self, provider_factory, idp: FakeOIDCProvider) -> None:
        methods = AuthMethodStore([make_auth_method()])
        store = StateStore()
        issuer = AuthURLIssuer(methods, store, provider_factory)
        completer = AuthCompleter(methods, store, provider_factory)

        url = issuer.get_auth_url("method1", REDIRECT_URI, "nonceA")
        code, state = idp.authorize(url)
        claims = completer.complete_auth("method1", REDIRECT_URI, "nonceA", code, state)

        assert claims.raw["nonce"] == "nonceA"
        assert len(store) == 0

    def test_independent_flows(self, service: OIDCAuthService, idp: FakeOIDCProvider) -> None:
        """Interleaved flows each complete with their own state and nonce."""
        url_a = service.get_auth_url("method1", REDIRECT_URI, "nonceA")
        url_b = service.get_auth_url("method1", REDIRECT_URI, "nonceB")
        code_a, state_a = idp.authorize(url_a)
        code_b, state_b = idp.authorize(url_b)

        claims_b = service.complete_auth("method1", REDIRECT_URI, "nonceB", code_b, state_b)
        claims_a = service.complete_auth("method1", REDIRECT_URI, "nonceA", code_a, state_a)

        assert claims_a.raw["nonce"] == "nonceA"
        assert claims_b.raw["nonce"] == "nonceB"

    def test_transport_failure_during_exchange(self, service: OIDCAuthService, idp: FakeOIDCProvider) -> None:
        url = service.get_auth_url("method1", REDIRECT_URI, "nonceA")
        code, state = idp.authorize(url)
        idp.raise_on["/token"] = httpx.ConnectError("refused")

        with pytest.raises(ProviderUnavailable) as exc_info:
            service.complete_auth("method1", REDIRECT_URI, "nonceA", code, state)

        assert exc_info.value.retryable
