"""Exception hierarchy for SSO operations.

Every failure that leaves the package is one of these types. Transport-level
errors (httpx) are translated into them by the provider and by
:func:`ix_sso.utils.errors.classify_exception`.
"""

from enum import Enum
from typing import Any


class FailureReason(str, Enum):
    """Why a login attempt ended in the FAILED state."""

    CSRF = "csrf"
    IDP_DENIED = "idp_denied"
    MISSING_CODE = "missing_code"
    CONNECTION = "connection"
    AUTHENTICATION = "authentication"


class SSOError(Exception):
    """
    Base exception for all SSO errors.

    Attributes:
        message: Human-readable message (never contains secrets)
        status_code: HTTP-style status code suggested for the caller
        retryable: Whether the retry executor may attempt the operation again
    """

    default_message = "SSO operation failed"
    default_status_code = 500
    retryable = False

    def __init__(self, message: str | None = None, status_code: int | None = None):
        self.message = message or self.default_message
        self.status_code = status_code if status_code is not None else self.default_status_code
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize the exception for structured logging."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "status_code": self.status_code,
        }


class ConfigurationError(SSOError):
    """Required setting missing or malformed. Fatal, never retried."""

    default_message = "SSO configuration is invalid"
    default_status_code = 500

    @classmethod
    def missing(cls, key: str) -> "ConfigurationError":
        return cls(f"Required SSO configuration key '{key}' is missing")

    @classmethod
    def invalid(cls, key: str, reason: str = "") -> "ConfigurationError":
        message = f"SSO configuration key '{key}' is invalid"
        if reason:
            message += f": {reason}"
        return cls(message)


class IdPConnectionError(SSOError):
    """Identity provider unreachable or timed out."""

    default_message = "Failed to connect to identity provider"
    default_status_code = 503
    retryable = True

    @classmethod
    def timeout(cls) -> "IdPConnectionError":
        return cls("Connection to identity provider timed out", 504)

    @classmethod
    def unreachable(cls) -> "IdPConnectionError":
        return cls("Identity provider is unreachable", 503)


class AuthenticationError(SSOError):
    """IdP rejected the request, or the callback failed CSRF validation."""

    default_message = "Authentication with identity provider failed"
    default_status_code = 401

    def __init__(
        self,
        message: str | None = None,
        status_code: int | None = None,
        reason: FailureReason | None = None,
    ):
        super().__init__(message, status_code)
        self.reason = reason

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["reason"] = self.reason.value if self.reason else None
        return data


class TokenError(SSOError):
    """Refresh, validation or introspection failure."""

    default_message = "Token operation failed"
    default_status_code = 401

    @classmethod
    def expired(cls) -> "TokenError":
        return cls("Access token has expired")

    @classmethod
    def invalid(cls) -> "TokenError":
        return cls("Access token is invalid")

    @classmethod
    def refresh_failed(cls) -> "TokenError":
        return cls("refresh failed")


class TokenExpiredError(TokenError):
    """A stored token is past its expiry and could not be renewed."""

    default_message = "Token has expired"

    @classmethod
    def access_token(cls) -> "TokenExpiredError":
        return cls("Access token has expired")

    @classmethod
    def refresh_token(cls) -> "TokenExpiredError":
        return cls("Refresh token has expired")

    @classmethod
    def with_details(cls, token_type: str, expires_at: str | None = None) -> "TokenExpiredError":
        message = f"{token_type} token has expired"
        if expires_at:
            message += f" (expired at: {expires_at})"
        return cls(message)


class ProvisioningError(SSOError):
    """User or role reconciliation failed."""

    default_message = "User provisioning failed"
    default_status_code = 500

    @classmethod
    def creation_failed(cls, email: str, reason: str | None = None) -> "ProvisioningError":
        message = f"Failed to create user with email: {email}"
        if reason:
            message += f" - Reason: {reason}"
        return cls(message, 500)

    @classmethod
    def update_failed(cls, email: str, reason: str | None = None) -> "ProvisioningError":
        message = f"Failed to update user with email: {email}"
        if reason:
            message += f" - Reason: {reason}"
        return cls(message, 500)

    @classmethod
    def missing_required_field(cls, field: str) -> "ProvisioningError":
        return cls(f"missing {field}: required claim '{field}' is absent from IdP user data", 422)

    @classmethod
    def role_mapping_failed(cls, email: str, reason: str | None = None) -> "ProvisioningError":
        message = f"Failed to map roles for user: {email}"
        if reason:
            message += f" - Reason: {reason}"
        return cls(message, 500)

    @classmethod
    def duplicate_user(cls, email: str) -> "ProvisioningError":
        return cls(
            f"User with email '{email}' already exists with different authentication provider",
            409,
        )

    @classmethod
    def invalid_user_data(cls, reason: str) -> "ProvisioningError":
        return cls(f"Invalid user data: {reason}", 422)
