"""Single-use state tokens correlating an authorization URL with its callback."""

from __future__ import annotations

import hmac
import logging
import secrets
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass

from aclauth.core.errors import AuthMethodMismatch, UnknownState

logger = logging.getLogger(__name__)

STATE_TOKEN_PREFIX = "st_"
STATE_TOKEN_BYTES = 32  # 256-bit tokens


def generate_state_token() -> str:
    """Generate an unguessable state token.

    Returns:
        ``st_`` followed by 256 random bits, URL-safe base64 encoded.
    """
    return STATE_TOKEN_PREFIX + secrets.token_urlsafe(STATE_TOKEN_BYTES)


@dataclass(frozen=True)
class StateRecord:
    """A pending authorization request."""

    token: str
    client_nonce: str
    auth_method: str
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class StateStore:
    """In-memory store of pending state tokens.

    Owned by one server instance. All access is serialized by a lock so
    that a token can be consumed at most once, even under concurrent
    callbacks. Expired records are swept lazily on ``create`` and the
    number of pending records is capped (oldest evicted first).
    """

    def __init__(
        self,
        ttl_seconds: float = 300,
        max_records: int = 10_000,
        sweep_interval_seconds: float = 30,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the state store.

        Args:
            ttl_seconds: How long an issued state stays redeemable.
            max_records: Maximum number of pending records.
            sweep_interval_seconds: Minimum time between lazy sweeps.
            clock: Monotonic time source, injectable for tests.
        """
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_records <= 0:
            raise ValueError("max_records must be positive")

        self.ttl_seconds = ttl_seconds
        self.max_records = max_records
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._records: OrderedDict[str, StateRecord] = OrderedDict()
        self._last_sweep = clock()

    def create(self, auth_method: str, client_nonce: str) -> str:
        """Record a new pending request and return its state token.

        Args:
            auth_method: Name of the auth method the flow uses.
            client_nonce: Nonce supplied by the caller.

        Returns:
            The new state token.
        """
        with self._lock:
            now = self._clock()
            if now - self._last_sweep >= self.sweep_interval_seconds:
                self._sweep_locked(now)

            while len(self._records) >= self.max_records:
                self._records.popitem(last=False)
                logger.warning(f"State store full ({self.max_records}); evicted oldest pending state")

            token = generate_state_token()
            while token in self._records:
                token = generate_state_token()

            self._records[token] = StateRecord(
                token=token,
                client_nonce=client_nonce,
                auth_method=auth_method,
                created_at=now,
                expires_at=now + self.ttl_seconds,
            )
            return token

    def consume(self, token: str, auth_method: str) -> str:
        """Redeem a state token exactly once.

        The record is removed whatever the outcome, so a token presented
        with the wrong auth method is burned as well.

        Args:
            token: State token returned by the provider callback.
            auth_method: Auth method named at completion time.

        Returns:
            The client nonce recorded when the token was created.

        Raises:
            UnknownState: Token absent, already consumed or expired.
            AuthMethodMismatch: Token was minted for another auth method.
        """
        with self._lock:
            record = self._records.pop(token, None)
            now = self._clock()

        if record is None:
            raise UnknownState("state token is unknown or already consumed")
        if record.is_expired(now):
            raise UnknownState(f"state token expired {now - record.expires_at:.0f}s ago")
        if not hmac.compare_digest(record.auth_method.encode(), auth_method.encode()):
            raise AuthMethodMismatch(
                f"state token was issued for auth method {record.auth_method!r}, presented for {auth_method!r}"
            )
        return record.client_nonce

    def discard(self, token: str) -> None:
        """Drop a pending record without redeeming it."""
        with self._lock:
            self._records.pop(token, None)

    def sweep(self) -> int:
        """Remove expired records.

        Returns:
            Number of records removed.
        """
        with self._lock:
            return self._sweep_locked(self._clock())

    def _sweep_locked(self, now: float) -> int:
        expired = [token for token, record in self._records.items() if record.is_expired(now)]
        for token in expired:
            del self._records[token]
        self._last_sweep = now
        if expired:
            logger.debug(f"Swept {len(expired)} expired state token(s)")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, token: object) -> bool:
        with self._lock:
            return token in self._records
