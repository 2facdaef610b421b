"""ix-sso: OpenID Connect single sign-on for InsurX applications.

This package provides:
- Authorization code login with single-use CSRF state
- Token refresh, introspection and revocation against Keycloak realms
- User provisioning and account linking from IdP claims
- IdP role to local role mapping
- Retry with backoff, error classification and redacted structured logging
- Configurable environment prefixes
"""

from importlib.metadata import PackageNotFoundError, version

from .config import SSOSettings
from .exceptions import (
    AuthenticationError,
    ConfigurationError,
    FailureReason,
    IdPConnectionError,
    ProvisioningError,
    SSOError,
    TokenError,
    TokenExpiredError,
)
from .hooks import FailedLoginTracker, LifecycleEvent, LifecycleHooks
from .models import (
    AuthProvider,
    IdentityClaims,
    IntrospectionResult,
    Role,
    SsoIdentity,
    TokenSet,
    User,
)
from .providers import BaseIdentityProvider, KeycloakTransport
from .repositories import (
    InMemoryRoleStore,
    InMemoryUserStore,
    PostgresRoleStore,
    PostgresUserStore,
    RoleStore,
    UserStore,
)
from .services import (
    ACCESS_TOKEN_SESSION_KEY,
    STATE_SESSION_KEY,
    AuthenticatedSession,
    LoginFailure,
    LoginResult,
    LoginState,
    RoleMapper,
    SSOAuthenticator,
    TokenLifecycleManager,
    UserProvisioningService,
)
from .utils.crypto import TokenCipher
from .utils.logging import configure_logging, get_logger
from .utils.retry import RetryExecutor

# Version is read from package metadata (pyproject.toml)
try:
    __version__ = version("ix-sso")
except PackageNotFoundError:
    # Package is not installed, fallback for development
    __version__ = "0.0.0+dev"

__all__ = [
    # Configuration
    "SSOSettings",
    # Exceptions
    "SSOError",
    "ConfigurationError",
    "IdPConnectionError",
    "AuthenticationError",
    "TokenError",
    "TokenExpiredError",
    "ProvisioningError",
    "FailureReason",
    # Models
    "TokenSet",
    "IntrospectionResult",
    "IdentityClaims",
    "AuthProvider",
    "SsoIdentity",
    "User",
    "Role",
    # Providers
    "BaseIdentityProvider",
    "KeycloakTransport",
    # Stores
    "UserStore",
    "RoleStore",
    "InMemoryUserStore",
    "InMemoryRoleStore",
    "PostgresUserStore",
    "PostgresRoleStore",
    # Services
    "TokenLifecycleManager",
    "LoginState",
    "LoginResult",
    "STATE_SESSION_KEY",
    "RoleMapper",
    "UserProvisioningService",
    "SSOAuthenticator",
    "AuthenticatedSession",
    "LoginFailure",
    "ACCESS_TOKEN_SESSION_KEY",
    # Hooks
    "LifecycleEvent",
    "LifecycleHooks",
    "FailedLoginTracker",
    # Utilities
    "RetryExecutor",
    "TokenCipher",
    "configure_logging",
    "get_logger",
]
