"""SSO models."""

from .claims import IdentityClaims
from .token import IntrospectionResult, TokenSet, compute_expiry
from .user import AuthProvider, Role, SsoIdentity, User

__all__ = [
    # Token models
    "TokenSet",
    "IntrospectionResult",
    "compute_expiry",
    # Claims
    "IdentityClaims",
    # User models
    "AuthProvider",
    "SsoIdentity",
    "User",
    "Role",
]
