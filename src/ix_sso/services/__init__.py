"""SSO services."""

from .authenticator import (
    ACCESS_TOKEN_SESSION_KEY,
    ID_TOKEN_SESSION_KEY,
    AuthenticatedSession,
    LoginFailure,
    SSOAuthenticator,
)
from .provisioning import UserProvisioningService
from .role_mapping import RoleMapper
from .token_manager import (
    STATE_SESSION_KEY,
    LoginResult,
    LoginState,
    TokenLifecycleManager,
)

__all__ = [
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
    "ID_TOKEN_SESSION_KEY",
]
