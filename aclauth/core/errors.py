"""Error taxonomy for the OIDC login flow.

Every failure is scoped to a single flow attempt. Errors carry a stable
``kind`` (used in audit records) and a ``public_message`` that is safe to
hand back to the caller.

Subclass hierarchy::

    ACLAuthError
    +-- ConfigurationError
    |   +-- RedirectNotAllowed
    |   +-- AuthMethodNotFound
    |   +-- InvalidAuthMethod
    |   +-- InvalidRequest
    |   +-- DiscoveryError
    |       +-- DiscoveryTimeout
    +-- AuthenticationError
    |   +-- InvalidState
    |   |   +-- UnknownState
    |   |   +-- AuthMethodMismatch
    |   +-- NonceMismatch
    |   +-- TokenError
    |       +-- ExchangeError
    |       |   +-- ExchangeTimeout
    |       +-- InvalidSignature
    |       +-- MalformedToken
    |       +-- IssuerMismatch
    |       +-- AudienceMismatch
    |       +-- TokenExpired
    |           +-- TokenNotYetValid
    +-- ProviderTransportError
        +-- ProviderUnavailable
        +-- ProviderTimeout
            +-- DiscoveryTimeout
            +-- ExchangeTimeout

Authentication errors are potential attack indicators. Their
``public_message`` never names the failed check; the specific cause is
only written to the audit log.
"""

from __future__ import annotations

GENERIC_AUTH_FAILURE = "authentication failed"


class ACLAuthError(Exception):
    """Base exception for all login flow errors.

    Args:
        message: Detailed description for server-side logs.
    """

    kind: str = "error"
    retryable: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def public_message(self) -> str:
        """Message that may be returned to the caller."""
        return self.message


class ConfigurationError(ACLAuthError):
    """Caller- or operator-correctable problem; reported immediately."""

    kind = "configuration_error"


class RedirectNotAllowed(ConfigurationError):
    kind = "redirect_not_allowed"


class AuthMethodNotFound(ConfigurationError):
    kind = "auth_method_not_found"


class InvalidAuthMethod(ConfigurationError):
    """The auth method exists but cannot drive an OIDC flow."""

    kind = "invalid_auth_method"


class InvalidRequest(ConfigurationError):
    """A required request parameter is missing or empty."""

    kind = "invalid_request"


class DiscoveryError(ConfigurationError):
    """Provider discovery document is unreachable or malformed."""

    kind = "discovery_error"


class AuthenticationError(ACLAuthError):
    """Protocol, state or token failure. Never retried automatically."""

    kind = "authentication_error"

    @property
    def public_message(self) -> str:
        return GENERIC_AUTH_FAILURE


class InvalidState(AuthenticationError):
    kind = "invalid_state"


class UnknownState(InvalidState):
    """State token is unknown, expired or already consumed."""

    kind = "unknown_state"


class AuthMethodMismatch(InvalidState):
    """State token was minted for a different auth method."""

    kind = "auth_method_mismatch"


class NonceMismatch(AuthenticationError):
    kind = "nonce_mismatch"


class TokenError(AuthenticationError):
    kind = "token_error"


class ExchangeError(TokenError):
    """The provider refused the authorization code exchange.

    Args:
        message: Detailed description.
        error_code: OAuth2 ``error`` value returned by the provider, if any.
    """

    kind = "exchange_error"

    def __init__(self, message: str, error_code: str | None = None) -> None:
        super().__init__(message)
        self.error_code = error_code


class InvalidSignature(TokenError):
    kind = "invalid_signature"


class MalformedToken(TokenError):
    kind = "malformed_token"


class IssuerMismatch(TokenError):
    kind = "issuer_mismatch"


class AudienceMismatch(TokenError):
    kind = "audience_mismatch"


class TokenExpired(TokenError):
    kind = "token_expired"


class TokenNotYetValid(TokenExpired):
    """Token ``nbf``/``iat`` lies in the future; shares the expiry kind family."""

    kind = "token_not_yet_valid"


class ProviderTransportError(ACLAuthError):
    """Network failure talking to the provider.

    Transient: the caller may restart the flow from GetAuthURL.
    """

    kind = "provider_transport_error"
    retryable = True


class ProviderUnavailable(ProviderTransportError):
    kind = "provider_unavailable"


class ProviderTimeout(ProviderTransportError):
    kind = "provider_timeout"


class DiscoveryTimeout(DiscoveryError, ProviderTimeout):
    kind = "discovery_timeout"
    retryable = True


class ExchangeTimeout(ExchangeError, ProviderTimeout):
    """The token endpoint did not answer in time.

    Ambiguous outcome: the provider may not have consumed the code, so a
    single retry with the same code is acceptable. A definite error
    response from the provider is never retried.
    """

    kind = "exchange_timeout"
    retryable = True
