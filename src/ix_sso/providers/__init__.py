"""Identity provider transports."""

from .base import BaseIdentityProvider
from .keycloak import KeycloakTransport

__all__ = [
    "BaseIdentityProvider",
    "KeycloakTransport",
]
