"""User, role and SSO identity models.

The SSO-specific state of a user lives in an embedded :class:`SsoIdentity`
value object, so user stores only need to persist four extra columns:
external_id, auth_provider, encrypted_refresh_token and token_expires_at.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from ..utils.crypto import TokenCipher


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthProvider(str, Enum):
    """Authentication provider of a user account.

    Other provider names (e.g. "saml") may appear on accounts created by
    other integrations and are kept verbatim.
    """

    LOCAL = "local"
    SSO = "sso"


class SsoIdentity(BaseModel):
    """
    SSO state of one user account.

    Examples:
        SsoIdentity(external_id="f:9c1e...", auth_provider="sso")
    """

    external_id: str | None = Field(
        None,
        description="IdP subject (unique, nullable)",
        max_length=255,
    )

    auth_provider: str = Field(
        AuthProvider.LOCAL.value,
        description="Provider that authenticates this account: local | sso | other",
        max_length=50,
    )

    encrypted_refresh_token: str | None = Field(
        None,
        description="Refresh token ciphertext (Fernet)",
    )

    token_expires_at: datetime | None = Field(
        None,
        description="Absolute access token expiry",
    )

    # ==================== PROVIDER ====================

    def is_sso_user(self) -> bool:
        return self.auth_provider == AuthProvider.SSO.value

    def is_local_user(self) -> bool:
        return not self.auth_provider or self.auth_provider == AuthProvider.LOCAL.value

    def link(self, subject: str) -> None:
        """Bind this account to an IdP subject."""
        self.external_id = subject
        self.auth_provider = AuthProvider.SSO.value

    # ==================== REFRESH TOKEN ====================

    def set_refresh_token(self, refresh_token: str | None, cipher: "TokenCipher") -> None:
        """Store a refresh token encrypted, or clear it with None."""
        if refresh_token is None:
            self.encrypted_refresh_token = None
        else:
            self.encrypted_refresh_token = cipher.encrypt(refresh_token)

    def get_refresh_token(self, cipher: "TokenCipher") -> str | None:
        """Decrypted refresh token, or None if missing or undecryptable."""
        return cipher.try_decrypt(self.encrypted_refresh_token)

    # ==================== EXPIRY ====================

    def update_token_expiration(self, expires_in: int, now: datetime | None = None) -> None:
        """Set expiry from a relative lifetime in seconds."""
        self.token_expires_at = (now or _utcnow()) + timedelta(seconds=int(expires_in))

    def set_token_expiry(self, expires_at: datetime | None) -> None:
        self.token_expires_at = expires_at

    def has_token_expired(self, now: datetime | None = None) -> bool:
        if not self.is_sso_user() or self.token_expires_at is None:
            return False
        return (now or _utcnow()) >= self.token_expires_at

    def is_token_expiring_soon(
        self,
        grace_period_seconds: int = 300,
        now: datetime | None = None,
    ) -> bool:
        if not self.is_sso_user() or self.token_expires_at is None:
            return False
        grace_start = self.token_expires_at - timedelta(seconds=grace_period_seconds)
        return (now or _utcnow()) >= grace_start

    def clear_tokens(self) -> None:
        self.encrypted_refresh_token = None
        self.token_expires_at = None


class User(BaseModel):
    """
    User account as seen by the SSO engine.

    The user store owns persistence; the engine only mutates the fields it
    understands (email, display_name, password_hash, roles, sso).

    Examples:
        User(
            email="john.doe@example.com",
            display_name="John Doe",
            sso=SsoIdentity(external_id="f:1234", auth_provider="sso"),
        )
    """

    id: UUID = Field(default_factory=uuid4, description="User ID")

    email: str = Field(..., description="Email address", max_length=255)

    display_name: str = Field(..., description="Display name", max_length=255)

    password_hash: str | None = Field(
        None,
        description="Password hash. Unusable placeholder for SSO-provisioned users.",
    )

    role_id: UUID | None = Field(None, description="Primary role")

    role_ids: list[UUID] = Field(default_factory=list, description="All assigned roles")

    sso: SsoIdentity = Field(default_factory=SsoIdentity)

    is_active: bool = Field(True, description="Whether the account is active")

    last_login: datetime | None = Field(None, description="Last successful login")

    created_at: datetime | None = Field(None)

    updated_at: datetime | None = Field(None)

    @property
    def external_id(self) -> str | None:
        return self.sso.external_id

    @property
    def auth_provider(self) -> str:
        return self.sso.auth_provider


class Role(BaseModel):
    """Local role."""

    id: UUID = Field(default_factory=uuid4)

    name: str = Field(..., description="Role name (unique)", max_length=100)

    description: str | None = Field(None, max_length=1000)
