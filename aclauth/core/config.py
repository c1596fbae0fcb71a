"""Application configuration management.

Loads configuration from config.yaml files and environment variables.
Environment variables take precedence over config file settings.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

# Default config locations
DEFAULT_CONFIG_DIR = Path.home() / ".aclauth"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"

# Environment variable prefix
ENV_PREFIX = "ACLAUTH_"


@dataclass
class ServerSettings:
    """HTTP server configuration settings."""

    host: str = "127.0.0.1"
    port: int = 4649
    debug: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ServerSettings:
        """Create ServerSettings from a dictionary."""
        return cls(
            host=data.get("host", "127.0.0.1"),
            port=data.get("port", 4649),
            debug=data.get("debug", False),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "host": self.host,
            "port": self.port,
            "debug": self.debug,
        }


@dataclass
class OIDCSettings:
    """Tuning for the OIDC login flow."""

    # Lifetime of an issued state token
    state_ttl_seconds: int = 300
    # Upper bound on pending (issued, unconsumed) state tokens
    max_pending_states: int = 10_000
    # Per-request timeout for discovery, JWKS and token endpoint calls
    http_timeout_seconds: float = 15.0
    # How long discovery documents and key sets are reused
    discovery_cache_ttl_seconds: int = 3600
    # Minimum gap between forced key set refreshes for one JWKS URI
    jwks_refresh_interval_seconds: int = 30
    # Leeway for exp/nbf/iat when the auth method does not set one
    clock_skew_seconds: int = 60

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OIDCSettings:
        """Create OIDCSettings from a dictionary."""
        return cls(
            state_ttl_seconds=data.get("state_ttl_seconds", 300),
            max_pending_states=data.get("max_pending_states", 10_000),
            http_timeout_seconds=data.get("http_timeout_seconds", 15.0),
            discovery_cache_ttl_seconds=data.get("discovery_cache_ttl_seconds", 3600),
            jwks_refresh_interval_seconds=data.get("jwks_refresh_interval_seconds", 30),
            clock_skew_seconds=data.get("clock_skew_seconds", 60),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "state_ttl_seconds": self.state_ttl_seconds,
            "max_pending_states": self.max_pending_states,
            "http_timeout_seconds": self.http_timeout_seconds,
            "discovery_cache_ttl_seconds": self.discovery_cache_ttl_seconds,
            "jwks_refresh_interval_seconds": self.jwks_refresh_interval_seconds,
            "clock_skew_seconds": self.clock_skew_seconds,
        }


@dataclass
class LoggingSettings:
    """Protocol and audit logging settings."""

    level: str = "INFO"
    trace_enabled: bool = False
    log_file: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LoggingSettings:
        """Create LoggingSettings from a dictionary."""
        return cls(
            level=data.get("level", "INFO"),
            trace_enabled=data.get("trace_enabled", False),
            log_file=data.get("log_file"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "level": self.level,
            "trace_enabled": self.trace_enabled,
            "log_file": self.log_file,
        }


@dataclass
class AppConfig:
    """Main application configuration."""

    server: ServerSettings = field(default_factory=ServerSettings)
    oidc: OIDCSettings = field(default_factory=OIDCSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    auth_methods_file: Path | None = None
    config_path: Path | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], config_path: Path | None = None) -> AppConfig:
        """Create AppConfig from a dictionary."""
        auth_methods_file = data.get("auth_methods_file")
        return cls(
            server=ServerSettings.from_dict(data.get("server") or {}),
            oidc=OIDCSettings.from_dict(data.get("oidc") or {}),
            logging=LoggingSettings.from_dict(data.get("logging") or {}),
            auth_methods_file=Path(auth_methods_file).expanduser() if auth_methods_file else None,
            config_path=config_path,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "server": self.server.to_dict(),
            "oidc": self.oidc.to_dict(),
            "logging": self.logging.to_dict(),
            "auth_methods_file": str(self.auth_methods_file) if self.auth_methods_file else None,
        }

    def save(self, path: Path | None = None) -> None:
        """Save configuration to a YAML file.

        Args:
            path: Path to save to. Uses config_path or default if not specified.
        """
        save_path = path or self.config_path or DEFAULT_CONFIG_FILE
        save_path.parent.mkdir(parents=True, exist_ok=True)

        with open(save_path, "w") as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False)


def _get_env_bool(key: str, default: bool) -> bool:
    """Get a boolean from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _get_env_int(key: str, default: int) -> int:
    """Get an integer from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Ignoring non-integer value for {key}: {value!r}")
        return default


def _get_env_float(key: str, default: float) -> float:
    """Get a float from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Ignoring non-numeric value for {key}: {value!r}")
        return default


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load application configuration.

    Configuration is loaded in this order (later values override earlier):
    1. Default values
    2. config.yaml file (if exists)
    3. Environment variables

    Args:
        config_path: Path to config file. Uses default if not specified.

    Returns:
        AppConfig with merged settings.
    """
    config = AppConfig()

    file_path = config_path or DEFAULT_CONFIG_FILE
    if file_path.exists():
        try:
            with open(file_path) as f:
                data = yaml.safe_load(f) or {}
            config = AppConfig.from_dict(data, config_path=file_path)
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Invalid config file {file_path}, using defaults: {e}")

    # Server settings
    if os.environ.get(f"{ENV_PREFIX}HOST"):
        config.server.host = os.environ[f"{ENV_PREFIX}HOST"]

    config.server.port = _get_env_int(f"{ENV_PREFIX}PORT", config.server.port)
    config.server.debug = _get_env_bool(f"{ENV_PREFIX}DEBUG", config.server.debug)

    # OIDC settings
    oidc = config.oidc
    oidc.state_ttl_seconds = _get_env_int(f"{ENV_PREFIX}STATE_TTL_SECONDS", oidc.state_ttl_seconds)
    oidc.max_pending_states = _get_env_int(f"{ENV_PREFIX}MAX_PENDING_STATES", oidc.max_pending_states)
    oidc.http_timeout_seconds = _get_env_float(f"{ENV_PREFIX}HTTP_TIMEOUT_SECONDS", oidc.http_timeout_seconds)
    oidc.discovery_cache_ttl_seconds = _get_env_int(
        f"{ENV_PREFIX}DISCOVERY_CACHE_TTL_SECONDS", oidc.discovery_cache_ttl_seconds
    )
    oidc.jwks_refresh_interval_seconds = _get_env_int(
        f"{ENV_PREFIX}JWKS_REFRESH_INTERVAL_SECONDS", oidc.jwks_refresh_interval_seconds
    )
    oidc.clock_skew_seconds = _get_env_int(f"{ENV_PREFIX}CLOCK_SKEW_SECONDS", oidc.clock_skew_seconds)

    # Logging settings
    if os.environ.get(f"{ENV_PREFIX}LOG_LEVEL"):
        config.logging.level = os.environ[f"{ENV_PREFIX}LOG_LEVEL"]

    config.logging.trace_enabled = _get_env_bool(f"{ENV_PREFIX}LOG_TRACE", config.logging.trace_enabled)

    if os.environ.get(f"{ENV_PREFIX}LOG_FILE"):
        config.logging.log_file = os.environ[f"{ENV_PREFIX}LOG_FILE"]

    if os.environ.get(f"{ENV_PREFIX}AUTH_METHODS_FILE"):
        config.auth_methods_file = Path(os.environ[f"{ENV_PREFIX}AUTH_METHODS_FILE"]).expanduser()

    return config


def get_default_config_yaml() -> str:
    """Get the default config.yaml content as a string.

    Useful for generating example configuration files.
    """
    return """\
# aclauth configuration file
# Environment variables override these settings (prefix: ACLAUTH_)

server:
  host: "127.0.0.1"
  port: 4649
  debug: false

oidc:
  # Seconds an issued state token stays redeemable
  state_ttl_seconds: 300

  # Pending state tokens kept before the oldest are evicted
  max_pending_states: 10000

  # Timeout for discovery, JWKS and token endpoint requests
  http_timeout_seconds: 15.0

  # Seconds discovery documents and signing keys are reused
  discovery_cache_ttl_seconds: 3600

  # Minimum seconds between forced signing key refreshes
  jwks_refresh_interval_seconds: 30

  # Default leeway for token exp/nbf/iat checks
  clock_skew_seconds: 60

logging:
  # ERROR, INFO, DEBUG or TRACE
  level: "INFO"

  # TRACE includes raw tokens and secrets; never enable in production
  trace_enabled: false

  # log_file: ~/.aclauth/aclauth.log

# YAML file holding the auth method definitions
# auth_methods_file: ~/.aclauth/auth_methods.yaml
"""
