"""In-process cache whose entries never outlive the token they are keyed by."""

import hashlib
import time
from collections.abc import Callable
from typing import Any


class TokenBoundCache:
    """
    TTL cache keyed by access token.

    Keys are stored as SHA-256 digests so raw bearer tokens never sit in
    memory as dict keys. Each entry expires at
    ``min(now + max_ttl, token_expires_at)``. Expired entries are dropped on
    every write.
    """

    def __init__(self, max_ttl: float, clock: Callable[[], float] = time.time):
        self.max_ttl = max_ttl
        self._clock = clock
        self._data: dict[str, tuple[float, Any]] = {}

    @staticmethod
    def _key(token: str) -> str:
        return hashlib.sha256(token.encode("utf-8")).hexdigest()

    def get(self, token: str) -> Any | None:
        key = self._key(token)
        item = self._data.get(key)
        if item is None:
            return None
        expires_at, value = item
        if self._clock() >= expires_at:
            self._data.pop(key, None)
            return None
        return value

    def set(self, token: str, value: Any, token_expires_at: float | None = None) -> bool:
        """
        Store a value.

        Args:
            token: Access token the value belongs to
            value: Value to cache
            token_expires_at: Token expiry as a POSIX timestamp, if known

        Returns:
            False when the effective TTL is not positive and nothing was stored
        """
        now = self._clock()
        self._evict_expired(now)
        expires_at = now + self.max_ttl
        if token_expires_at is not None:
            expires_at = min(expires_at, token_expires_at)
        if expires_at <= now:
            return False
        self._data[self._key(token)] = (expires_at, value)
        return True

    def _evict_expired(self, now: float) -> None:
        expired = [key for key, (expires_at, _) in self._data.items() if now >= expires_at]
        for key in expired:
            del self._data[key]

    def invalidate(self, token: str) -> None:
        self._data.pop(self._key(token), None)

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)
