"""Tests for the token-bound user info cache and JWT expiry helper."""

import jwt
import pytest

from ix_sso.utils.cache import TokenBoundCache
from ix_sso.utils.jwt import get_token_expiry
from conftest import make_access_token


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class TestTokenBoundCache:
    """Entry lifetime"""

    def test_entry_capped_by_token_expiry(self, clock):
        cache = TokenBoundCache(3600, clock=clock)

        cache.set("token", {"sub": "abc123"}, token_expires_at=1060)

        clock.now = 1059
        assert cache.get("token") == {"sub": "abc123"}
        clock.now = 1060
        assert cache.get("token") is None

    def test_entry_capped_by_max_ttl(self, clock):
        cache = TokenBoundCache(30, clock=clock)

        cache.set("token", "value", token_expires_at=5000)

        clock.now = 1031
        assert cache.get("token") is None

    def test_already_expired_token_is_not_stored(self, clock):
        cache = TokenBoundCache(3600, clock=clock)

        assert cache.set("token", "value", token_expires_at=999) is False
        assert len(cache) == 0

    def test_expired_entries_are_evicted_on_write(self, clock):
        cache = TokenBoundCache(3600, clock=clock)
        for index in range(5):
            cache.set(f"token-{index}", index, token_expires_at=1060)
        assert len(cache) == 5

        clock.now = 1100
        cache.set("fresh", "value", token_expires_at=2000)

        assert len(cache) == 1
        assert cache.get("fresh") == "value"

    def test_invalidate_and_clear(self, clock):
        cache = TokenBoundCache(3600, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)

        cache.invalidate("a")
        assert cache.get("a") is None
        assert len(cache) == 1

        cache.clear()
        assert len(cache) == 0


class TestTokenExpiry:
    """exp claim extraction"""

    def test_exp_claim(self):
        assert get_token_expiry(make_access_token(exp=1060)) == 1060.0

    @pytest.mark.parametrize("token", [None, "", "not-a-jwt"])
    def test_not_a_jwt(self, token):
        assert get_token_expiry(token) is None

    def test_missing_exp(self):
        token = jwt.encode(
            {"sub": "abc123"}, "test-signing-key-with-at-least-32-bytes", algorithm="HS256"
        )

        assert get_token_expiry(token) is None
