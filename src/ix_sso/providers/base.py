"""Base identity provider interface."""

from abc import ABC, abstractmethod
from typing import Any

from ..config import SSOSettings
from ..models import IntrospectionResult, TokenSet


class BaseIdentityProvider(ABC):
    """
    Base interface for OpenID Connect identity provider transports.

    Implementations translate requests into the provider's endpoint calls and
    parse the JSON responses. They never interpret the business meaning of
    claims.
    """

    def __init__(self, settings: SSOSettings):
        """
        Initialize the identity provider.

        Args:
            settings: SSO settings
        """
        self.settings = settings

    @abstractmethod
    def authorization_url(
        self,
        state: str,
        scopes: list[str],
        redirect_uri: str | None = None,
    ) -> str:
        """Build the authorize endpoint URL for an authorization code request."""

    @abstractmethod
    async def exchange_code(
        self,
        code: str,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
    ) -> TokenSet:
        """
        Exchange an authorization code for tokens.

        Raises:
            AuthenticationError: If the provider rejects the code
            IdPConnectionError: On network-level failure
        """

    @abstractmethod
    async def refresh(self, refresh_token: str, client_id: str, client_secret: str) -> TokenSet:
        """
        Mint new tokens from a refresh token.

        Raises:
            AuthenticationError: If the provider rejects the refresh token
            IdPConnectionError: On network-level failure
        """

    @abstractmethod
    async def fetch_user_info(self, access_token: str) -> dict[str, Any]:
        """Fetch the userinfo claims for an access token."""

    @abstractmethod
    async def introspect(
        self,
        token: str,
        client_id: str,
        client_secret: str,
    ) -> IntrospectionResult:
        """Check whether a token is active."""

    @abstractmethod
    async def revoke(self, refresh_token: str, client_id: str, client_secret: str) -> bool:
        """
        End the provider-side session.

        Returns:
            True on success, False on any non-success status (never raises
            for a status code)
        """

    @abstractmethod
    def logout_url(
        self,
        post_logout_redirect_uri: str,
        client_id: str,
        id_token_hint: str | None = None,
    ) -> str:
        """Build the RP-initiated logout URL."""
