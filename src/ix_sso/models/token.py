"""Token models for the OAuth2 flows.

These are DTO models (not stored in database). Relative lifetimes from the
token endpoint are turned into absolute timestamps at the moment the response
is parsed, since ``expires_in`` decays with every second it sits around.
"""

from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compute_expiry(expires_in: int, received_at: datetime | None = None) -> datetime:
    """
    Absolute expiry for a relative lifetime.

    Args:
        expires_in: Lifetime in whole seconds
        received_at: When the token was received (default: now, UTC)

    Returns:
        received_at + expires_in seconds
    """
    received_at = received_at or utcnow()
    return received_at + timedelta(seconds=int(expires_in))


class TokenSet(BaseModel):
    """
    Token endpoint response with absolute expiry timestamps.

    Build with ``TokenSet.from_response`` so that the expiry is anchored to
    the time of receipt.
    """

    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(..., description="Bearer access token")
    refresh_token: str | None = Field(None, description="Refresh token")
    token_type: str = Field("Bearer", description="Token type")
    expires_in: int = Field(..., description="Access token lifetime in seconds", ge=0)
    refresh_expires_in: int | None = Field(None, description="Refresh token lifetime in seconds")
    id_token: str | None = Field(None, description="OIDC ID token")
    scope: str | None = Field(None, description="Granted scopes")

    received_at: datetime = Field(default_factory=utcnow, description="Time of receipt (UTC)")
    expires_at: datetime | None = Field(None, description="Absolute access token expiry")
    refresh_expires_at: datetime | None = Field(None, description="Absolute refresh token expiry")

    @classmethod
    def from_response(
        cls,
        payload: dict[str, Any],
        received_at: datetime | None = None,
    ) -> "TokenSet":
        """
        Parse a token endpoint JSON body.

        Args:
            payload: Decoded JSON body
            received_at: Time of receipt (default: now, UTC)

        Returns:
            TokenSet with expires_at / refresh_expires_at filled in
        """
        received_at = received_at or utcnow()
        token_set = cls(**payload, received_at=received_at)
        token_set.expires_at = compute_expiry(token_set.expires_in, received_at)
        if token_set.refresh_expires_in:
            token_set.refresh_expires_at = compute_expiry(
                token_set.refresh_expires_in, received_at
            )
        return token_set

    def is_expired(self, now: datetime | None = None) -> bool:
        """True when the access token expiry is in the past (or now)."""
        if self.expires_at is None:
            return False
        return (now or utcnow()) >= self.expires_at

    def expires_within(self, seconds: int, now: datetime | None = None) -> bool:
        """True when the access token expires within ``seconds``."""
        if self.expires_at is None:
            return False
        return (now or utcnow()) + timedelta(seconds=seconds) >= self.expires_at

    def seconds_remaining(self, now: datetime | None = None) -> float:
        if self.expires_at is None:
            return 0.0
        return max(0.0, (self.expires_at - (now or utcnow())).total_seconds())


class IntrospectionResult(BaseModel):
    """
    Token introspection response (RFC 7662).

    Only ``active`` is guaranteed; other members are kept as extra fields.
    """

    model_config = ConfigDict(extra="allow")

    active: bool = Field(False, description="Whether the token is currently active")
    sub: str | None = Field(None, description="Subject of the token")
    exp: int | None = Field(None, description="Expiry as POSIX timestamp")
    client_id: str | None = Field(None, description="Client the token was issued to")
    username: str | None = Field(None, description="Human-readable identifier")
