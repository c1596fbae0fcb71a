"""Auth method lookup.

The cluster owns auth-method CRUD; the login flow only needs to resolve a
method by name. ``AuthMethodStore`` is an in-memory, thread-safe store that
can be seeded from a YAML file.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Protocol

import yaml

from aclauth.storage.models import AuthMethod

logger = logging.getLogger(__name__)


class AuthMethodLookup(Protocol):
    """Anything that can resolve an auth method by name."""

    def get(self, name: str) -> AuthMethod | None: ...


class AuthMethodStore:
    """In-memory auth method store keyed by name."""

    def __init__(self, methods: list[AuthMethod] | None = None) -> None:
        self._lock = threading.Lock()
        self._methods: dict[str, AuthMethod] = {}
        for method in methods or []:
            self.upsert(method)

    def get(self, name: str) -> AuthMethod | None:
        """Get an auth method by name."""
        with self._lock:
            return self._methods.get(name)

    def upsert(self, method: AuthMethod) -> None:
        """Create or replace an auth method."""
        with self._lock:
            self._methods[method.name] = method
        logger.debug(f"Stored auth method {method.name!r} ({method.type})")

    def delete(self, name: str) -> bool:
        """Delete an auth method.

        Returns:
            True if a method was removed.
        """
        with self._lock:
            return self._methods.pop(name, None) is not None

    def list_methods(self) -> list[AuthMethod]:
        """List all auth methods ordered by name."""
        with self._lock:
            return [self._methods[name] for name in sorted(self._methods)]

    def default(self) -> AuthMethod | None:
        """Get the auth method flagged as default, if any."""
        with self._lock:
            for method in self._methods.values():
                if method.default:
                    return method
        return None

    def __len__(self) -> int:
        with self._lock:
            return len(self._methods)


def parse_auth_methods(data: Any) -> list[AuthMethod]:
    """Parse auth methods from loaded YAML data.

    Accepts either a list of method mappings or a mapping with an
    ``auth_methods`` list.

    Raises:
        ValueError: If the data has the wrong shape or a method is invalid.
    """
    if isinstance(data, dict):
        data = data.get("auth_methods", [])
    if not isinstance(data, list):
        raise ValueError("auth methods must be a list")

    methods = []
    for entry in data:
        if not isinstance(entry, dict) or "name" not in entry:
            raise ValueError(f"invalid auth method entry: {entry!r}")
        method = AuthMethod.from_dict(entry)
        if method.is_oidc:
            problems = method.config.validate()
            if problems:
                raise ValueError(f"auth method {method.name!r}: {'; '.join(problems)}")
        methods.append(method)
    return methods


def load_auth_methods(path: Path) -> AuthMethodStore:
    """Load an AuthMethodStore from a YAML file.

    Args:
        path: YAML file with the auth method definitions.

    Returns:
        Store holding every method from the file.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or []
    methods = parse_auth_methods(data)
    logger.info(f"Loaded {len(methods)} auth method(s) from {path}")
    return AuthMethodStore(methods)
