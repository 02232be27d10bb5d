"""Instance-scoped session token cache."""

from __future__ import annotations

import hashlib
from datetime import datetime, timedelta, timezone
from typing import Callable

from ... import config
from ...models import CachedToken, PayerCredential

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def credential_cache_key(credentials: PayerCredential) -> str:
    """Cache key identifying the credential a token was issued for.

    Stored credentials are keyed by id; unsaved ones by a digest of the
    encrypted blob, so two practices never share a token.
    """
    if credentials.id:
        return f"id:{credentials.id}"
    digest = hashlib.sha256(credentials.encrypted_credentials.encode()).hexdigest()
    return f"sha256:{digest}"


class TokenCache:
    """Holds one token per credential for the adapter that owns it.

    A token stops being valid ``expiry_buffer_seconds`` before its real
    expiry. There is no lock: two coroutines that find the same token stale
    at the same time will both re-authenticate, and the later result wins.
    """

    def __init__(
        self,
        expiry_buffer_seconds: float = config.TOKEN_EXPIRY_BUFFER_SECONDS,
        default_ttl_seconds: float = config.DEFAULT_TOKEN_TTL_SECONDS,
        clock: Clock = utcnow,
    ) -> None:
        self.expiry_buffer = timedelta(seconds=expiry_buffer_seconds)
        self.default_ttl = timedelta(seconds=default_ttl_seconds)
        self._clock = clock
        self._tokens: dict[str, CachedToken] = {}

    def __len__(self) -> int:
        return len(self._tokens)

    def cached(self, key: str) -> CachedToken | None:
        """Cached entry for a key, valid or not."""
        return self._tokens.get(key)

    def is_valid(self, key: str) -> bool:
        """Check whether a token is cached and outside the expiry buffer."""
        cached = self._tokens.get(key)
        if cached is None:
            return False
        return self._clock() < cached.expires_at - self.expiry_buffer

    def get(self, key: str) -> str | None:
        """Return the cached token if it is still valid."""
        if self.is_valid(key):
            return self._tokens[key].token
        return None

    def store(
        self, key: str, token: str, expires_at: datetime | None = None
    ) -> CachedToken:
        """Cache a token, applying the default TTL when no expiry is known."""
        if expires_at is None:
            expires_at = self._clock() + self.default_ttl
        elif expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)

        cached = CachedToken(token=token, expires_at=expires_at)
        self._tokens[key] = cached
        return cached

    def invalidate(self, key: str | None = None) -> None:
        """Drop the token for a key, or every token when no key is given."""
        if key is None:
            self._tokens.clear()
        else:
            self._tokens.pop(key, None)
