"""Core login flow, configuration and logging."""

from aclauth.core.errors import (
    GENERIC_AUTH_FAILURE,
    ACLAuthError,
    AuthenticationError,
    ConfigurationError,
    ProviderTransportError,
)
from aclauth.core.logging import (
    HTTPExchange,
    LoggingClient,
    LogLevel,
    ProtocolLogger,
    audit_auth_failure,
    configure_logging,
    get_protocol_logger,
    redact_sensitive,
    set_protocol_logger,
)

__all__ = [
    # Errors
    "GENERIC_AUTH_FAILURE",
    "ACLAuthError",
    "AuthenticationError",
    "ConfigurationError",
    "ProviderTransportError",
    # Logging
    "HTTPExchange",
    "LoggingClient",
    "LogLevel",
    "ProtocolLogger",
    "audit_auth_failure",
    "configure_logging",
    "get_protocol_logger",
    "redact_sensitive",
    "set_protocol_logger",
]
