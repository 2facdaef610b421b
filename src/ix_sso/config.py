"""SSO configuration settings."""

from typing import TypeVar
from urllib.parse import urlparse

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError

T = TypeVar("T", bound="SSOSettings")

DEFAULT_SENSITIVE_KEYS = [
    "password",
    "client_secret",
    "access_token",
    "refresh_token",
    "id_token",
    "token",
    "secret",
    "authorization",
    "api_key",
    "code",
    "state",
]


class TimeoutSettings(BaseModel):
    """Per-request timeouts for identity provider calls (seconds)."""

    connect: float = Field(default=10, description="Connect timeout in seconds", gt=0)
    request: float = Field(default=30, description="Total request timeout in seconds", gt=0)


class RetrySettings(BaseModel):
    """Transport retry switch and bounds.

    The backoff policy itself lives in ``error_handling``; this group caps the
    attempt count and sets a floor for the delay between HTTP attempts.
    """

    enabled: bool = Field(default=True, description="Retry transient identity provider failures")
    times: int = Field(
        default=3,
        description="Upper bound on attempts per HTTP call (caps error_handling.max_retries)",
        ge=1,
        le=10,
    )
    sleep: int = Field(
        default=100,
        description="Minimum sleep between HTTP attempts in milliseconds "
        "(floor for error_handling.retry_delay)",
        ge=0,
    )


class ErrorHandlingSettings(BaseModel):
    """Error reporting and backoff policy."""

    show_details: bool = Field(
        default=False,
        description="Append exception details to user-facing messages (not for production)",
    )
    log_stack_traces: bool = Field(default=True, description="Log full stack traces for errors")
    max_retries: int = Field(
        default=3, description="Maximum attempts before failing", ge=1, le=10
    )
    retry_delay: int = Field(
        default=1000, description="Base delay between attempts in milliseconds", ge=0
    )
    exponential_backoff: bool = Field(default=True, description="Double the delay per attempt")


class LoggingSettings(BaseModel):
    """Logging behaviour for SSO operations."""

    enabled: bool = Field(default=True, description="Enable SSO logging")
    level: str = Field(default="info", description="Minimum log level")
    json_output: bool = Field(default=False, description="Render log lines as JSON")
    sensitive_keys: list[str] = Field(
        default_factory=lambda: list(DEFAULT_SENSITIVE_KEYS),
        description="Key fragments whose values are redacted before logging",
    )


class SSOSettings(BaseSettings):
    """
    OpenID Connect single sign-on settings with configurable environment prefix.

    Configuration precedence (highest to lowest):
    1. Environment variables ({PREFIX}*)
    2. .env file
    3. Default values

    Example usage:
        # Default (uses SSO_* environment variables)
        settings = SSOSettings()

        # For a service-specific prefix (uses IX_DS_SSO_* environment variables)
        settings = SSOSettings.with_prefix("IX_DS_SSO_")

    Example .env file:
        SSO_ENABLED=true
        SSO_BASE_URL=https://keycloak.example.com
        SSO_REALM=insurx
        SSO_CLIENT_ID=ix-admin
        SSO_CLIENT_SECRET=your-client-secret
        SSO_REDIRECT_URI=https://admin.example.com/auth/sso/callback
        SSO_DEFAULT_ROLE=viewer
        SSO_ROLE_MAPPING='{"realm-admin": "admin", "sales": ["broker", "viewer"]}'
        SSO_TIMEOUT__CONNECT=5
        SSO_ERROR_HANDLING__MAX_RETRIES=3
        SSO_TOKEN_ENCRYPTION_KEY=<Fernet key>
    """

    model_config = SettingsConfigDict(
        env_prefix="SSO_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # ==================== GENERAL ====================

    enabled: bool = Field(
        default=False,
        description="Enable SSO. When disabled only local authentication is available.",
    )

    debug: bool = Field(
        default=False,
        description="Debug mode. Adds exception details to user-facing errors.",
    )

    # ==================== IDENTITY PROVIDER ====================

    client_id: str = Field(default="", description="OAuth client ID registered in the realm")

    client_secret: str = Field(default="", description="OAuth client secret")

    base_url: str = Field(
        default="",
        description="Identity provider base URL, without the /realms/{realm} path",
    )

    realm: str = Field(default="master", description="Realm name")

    redirect_uri: str = Field(
        default="",
        description="Callback URL (must match the client's valid redirect URIs)",
    )

    post_logout_redirect_uri: str | None = Field(
        default=None,
        description="Where the IdP sends the browser after logout. Defaults to redirect_uri.",
    )

    scopes: list[str] = Field(
        default=["openid", "profile", "email"],
        description="OAuth scopes requested at login",
    )

    # ==================== PROVISIONING ====================

    auto_provision_users: bool = Field(
        default=True,
        description="Create local accounts on first SSO login",
    )

    sync_user_data: bool = Field(
        default=True,
        description="Update profile fields and roles from IdP claims on every login",
    )

    enable_role_mapping: bool = Field(
        default=True,
        description="Translate IdP roles into local roles",
    )

    role_mapping: dict[str, str | list[str]] = Field(
        default_factory=dict,
        description="IdP role name -> local role name(s)",
    )

    default_role: str = Field(
        default="viewer",
        description="Local role used when no IdP role maps",
    )

    # ==================== FALLBACK ====================

    allow_local_auth: bool = Field(
        default=True,
        description="Keep local credential login available while SSO is enabled",
    )

    fallback_on_error: bool = Field(
        default=True,
        description="Offer local login when an SSO attempt fails",
    )

    allow_access_on_validation_error: bool = Field(
        default=False,
        description="Treat an unreachable IdP during token validation as valid. "
        "Availability over security; insecure by design, off by default.",
    )

    # ==================== TOKENS ====================

    cache_tokens: bool = Field(
        default=True,
        description="Cache user info per access token until the token expires",
    )

    cache_ttl: int = Field(
        default=3600,
        description="Upper bound for user info cache entries in seconds",
        ge=0,
    )

    token_refresh_grace_period: int = Field(
        default=300,
        description="Refresh access tokens this many seconds before they expire",
        ge=0,
    )

    token_encryption_key: str = Field(
        default="",
        description="Fernet key used to encrypt refresh tokens at rest",
    )

    # ==================== NESTED GROUPS ====================

    timeout: TimeoutSettings = Field(default_factory=TimeoutSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    error_handling: ErrorHandlingSettings = Field(default_factory=ErrorHandlingSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    # ==================== CLASS METHODS ====================

    @classmethod
    def with_prefix(cls: type[T], prefix: str, **overrides) -> T:
        """
        Create settings instance with custom environment prefix.

        Args:
            prefix: Environment variable prefix (e.g., "IX_DS_SSO_")
            **overrides: Explicit values that win over the environment

        Returns:
            SSOSettings instance configured with the specified prefix
        """

        class _PrefixedSettings(cls):
            model_config = SettingsConfigDict(
                env_prefix=prefix,
                env_file=".env",
                env_file_encoding="utf-8",
                env_nested_delimiter="__",
                case_sensitive=False,
                extra="ignore",
            )

        return _PrefixedSettings(**overrides)

    # ==================== COMPUTED PROPERTIES ====================

    @property
    def normalized_base_url(self) -> str:
        """Base URL without trailing slash."""
        return self.base_url.rstrip("/")

    @property
    def realm_url(self) -> str:
        """Realm root URL."""
        return f"{self.normalized_base_url}/realms/{self.realm}"

    @property
    def local_login_available(self) -> bool:
        """Whether a failed SSO attempt may fall back to local login."""
        return self.fallback_on_error and self.allow_local_auth

    def normalized_role_mapping(self) -> dict[str, list[str]]:
        """Role mapping with every value as a list."""
        return {
            idp_role: [local] if isinstance(local, str) else list(local)
            for idp_role, local in self.role_mapping.items()
        }

    # ==================== VALIDATION ====================

    def ensure_valid(self) -> None:
        """
        Fail fast on missing or malformed required settings.

        Does nothing when SSO is disabled.

        Raises:
            ConfigurationError: If a required key is missing or malformed
        """
        if not self.enabled:
            return

        for key in ("base_url", "realm", "client_id", "client_secret", "redirect_uri"):
            if not getattr(self, key):
                raise ConfigurationError.missing(key)

        for key in ("base_url", "redirect_uri", "post_logout_redirect_uri"):
            value = getattr(self, key)
            if value and not _is_http_url(value):
                raise ConfigurationError.invalid(key, "must be an absolute http(s) URL")

        if not self.default_role:
            raise ConfigurationError.missing("default_role")

    def validate_production_config(self) -> list[str]:
        """
        Validate configuration for production deployment.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if not self.enabled:
            return errors

        try:
            self.ensure_valid()
        except ConfigurationError as e:
            errors.append(e.message)

        if not self.token_encryption_key:
            errors.append("TOKEN_ENCRYPTION_KEY is required to store refresh tokens")

        if self.base_url and not self.base_url.startswith("https://"):
            errors.append("BASE_URL must use https in production")

        if self.debug or self.error_handling.show_details:
            errors.append("DEBUG and ERROR_HANDLING__SHOW_DETAILS must be disabled in production")

        if self.allow_access_on_validation_error:
            errors.append("ALLOW_ACCESS_ON_VALIDATION_ERROR should be disabled in production")

        return errors


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)
