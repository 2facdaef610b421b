"""Keycloak OpenID Connect transport.

Wraps the realm's standard endpoints:
1. Authorization endpoint - browser redirect for the authorization code flow
2. Token endpoint - authorization_code and refresh_token grants
3. Userinfo endpoint - claims for an access token
4. Introspection endpoint (RFC 7662) - token validity
5. Logout endpoint - refresh token revocation and RP-initiated logout

All endpoints derive from ``{base_url}/realms/{realm}/protocol/openid-connect``.
"""

from typing import Any
from urllib.parse import urlencode

import httpx

from ..config import SSOSettings
from ..exceptions import AuthenticationError, IdPConnectionError, TokenError
from ..models import IntrospectionResult, TokenSet
from ..utils.logging import get_logger
from .base import BaseIdentityProvider


class KeycloakTransport(BaseIdentityProvider):
    """
    HTTP transport for a Keycloak realm.

    Example usage:
        settings = SSOSettings.with_prefix("IX_DS_SSO_")
        transport = KeycloakTransport(settings)

        # Exchange code for tokens (after callback)
        tokens = await transport.exchange_code(
            code, settings.client_id, settings.client_secret, settings.redirect_uri
        )

        # Get user info
        claims = await transport.fetch_user_info(tokens.access_token)
    """

    def __init__(
        self,
        settings: SSOSettings,
        http_transport: httpx.AsyncBaseTransport | None = None,
        logger=None,
    ):
        """
        Initialize the Keycloak transport.

        Args:
            settings: SSO settings
            http_transport: Optional httpx transport (e.g. httpx.MockTransport in tests)
            logger: Optional logger instance
        """
        super().__init__(settings)
        self.base_url = settings.base_url.rstrip("/")
        self.realm = settings.realm
        self.logger = logger or get_logger(__name__)
        self._http_transport = http_transport

        self.timeout = httpx.Timeout(settings.timeout.request, connect=settings.timeout.connect)

        # Keycloak endpoints
        self.realm_url = f"{self.base_url}/realms/{self.realm}"
        oidc_base = f"{self.realm_url}/protocol/openid-connect"
        self.authorization_endpoint = f"{oidc_base}/auth"
        self.token_endpoint = f"{oidc_base}/token"
        self.userinfo_endpoint = f"{oidc_base}/userinfo"
        self.introspection_endpoint = f"{oidc_base}/token/introspect"
        self.logout_endpoint = f"{oidc_base}/logout"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._http_transport)

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """
        Send one request, translating network failures.

        Raises:
            IdPConnectionError: On timeout or any other transport failure
        """
        headers = {"Accept": "application/json", **kwargs.pop("headers", {})}
        try:
            async with self._client() as client:
                return await client.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            self.logger.warning("Identity provider request timed out", endpoint=url)
            raise IdPConnectionError.timeout() from e
        except httpx.TransportError as e:
            self.logger.warning(
                "Identity provider unreachable",
                endpoint=url,
                error=e.__class__.__name__,
            )
            raise IdPConnectionError.unreachable() from e

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    @staticmethod
    def _require_json(response: httpx.Response, what: str) -> dict[str, Any]:
        """Parse a successful response body, rejecting anything but a JSON object."""
        try:
            body = response.json()
        except ValueError as e:
            raise AuthenticationError(f"{what} response is not valid JSON", 502) from e
        if not isinstance(body, dict):
            raise AuthenticationError(f"{what} response is not a JSON object", 502)
        return body

    @classmethod
    def _error_message(cls, response: httpx.Response, default: str) -> str:
        body = cls._json(response)
        return body.get("error_description") or body.get("error") or default

    @classmethod
    def _raise_for_status(
        cls,
        response: httpx.Response,
        default: str,
        error_class: type[AuthenticationError] | type[TokenError] = AuthenticationError,
    ) -> None:
        """
        Raise for any non-200 response.

        OAuth error bodies are definitive rejections. A 5xx without one is an
        outage and is raised as a retryable IdPConnectionError.
        """
        if response.status_code == 200:
            return

        body = cls._json(response)
        if response.status_code >= 500 and "error" not in body:
            raise IdPConnectionError(
                f"Identity provider returned server error {response.status_code}",
                response.status_code,
            )

        raise error_class(cls._error_message(response, default), response.status_code)

    # ==================== AUTHORIZATION ====================

    def authorization_url(
        self,
        state: str,
        scopes: list[str],
        redirect_uri: str | None = None,
    ) -> str:
        """
        Get the authorization URL for user login.

        Args:
            state: CSRF state generated for this attempt
            scopes: OAuth scopes to request
            redirect_uri: Callback URL (default from settings)

        Returns:
            Fully formed authorize endpoint URL with response_type=code
        """
        params = {
            "client_id": self.settings.client_id,
            "response_type": "code",
            "redirect_uri": redirect_uri or self.settings.redirect_uri,
            "scope": " ".join(scopes),
            "state": state,
        }
        return f"{self.authorization_endpoint}?{urlencode(params)}"

    # ==================== TOKEN ENDPOINT ====================

    async def _request_tokens(self, data: dict[str, str]) -> TokenSet:
        response = await self._send(
            "POST",
            self.token_endpoint,
            data=data,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )

        self._raise_for_status(response, "Token request failed")

        body = self._require_json(response, "Token")
        if "access_token" not in body or "expires_in" not in body:
            raise AuthenticationError("Token response is missing access_token or expires_in", 502)

        return TokenSet.from_response(body)

    async def exchange_code(
        self,
        code: str,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
    ) -> TokenSet:
        """
        Exchange authorization code for tokens.

        Args:
            code: Authorization code from the callback
            client_id: OAuth client ID
            client_secret: OAuth client secret
            redirect_uri: Redirect URI used in the authorization request

        Returns:
            TokenSet with absolute expiry

        Raises:
            AuthenticationError: If the provider returns a non-200 status
            IdPConnectionError: On network-level failure
        """
        return await self._request_tokens(
            {
                "grant_type": "authorization_code",
                "code": code,
                "client_id": client_id,
                "client_secret": client_secret,
                "redirect_uri": redirect_uri,
            }
        )

    async def refresh(self, refresh_token: str, client_id: str, client_secret: str) -> TokenSet:
        """
        Refresh access token using refresh token.

        Raises:
            AuthenticationError: If the provider rejects the refresh token
            IdPConnectionError: On network-level failure
        """
        return await self._request_tokens(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": client_id,
                "client_secret": client_secret,
            }
        )

    # ==================== USERINFO ====================

    async def fetch_user_info(self, access_token: str) -> dict[str, Any]:
        """
        Get user information for an access token.

        Raises:
            AuthenticationError: If the provider rejects the token
            IdPConnectionError: On network-level failure
        """
        response = await self._send(
            "GET",
            self.userinfo_endpoint,
            headers={"Authorization": f"Bearer {access_token}"},
        )

        self._raise_for_status(response, "Failed to retrieve user info")

        return self._require_json(response, "Userinfo")

    # ==================== INTROSPECTION ====================

    async def introspect(
        self,
        token: str,
        client_id: str,
        client_secret: str,
    ) -> IntrospectionResult:
        """
        Introspect a token to check if it's valid.

        Raises:
            TokenError: If the introspection request is rejected
            IdPConnectionError: On network-level failure
        """
        response = await self._send(
            "POST",
            self.introspection_endpoint,
            data={
                "token": token,
                "client_id": client_id,
                "client_secret": client_secret,
            },
        )

        self._raise_for_status(response, "Token introspection failed", TokenError)

        body = self._json(response)
        if "active" not in body:
            raise TokenError("Introspection response is missing 'active'", 502)
        return IntrospectionResult(**body)

    # ==================== LOGOUT ====================

    async def revoke(self, refresh_token: str, client_id: str, client_secret: str) -> bool:
        """
        Logout from the realm by revoking the refresh token.

        Returns:
            True for 200/204, False for any other status

        Raises:
            IdPConnectionError: On network-level failure
        """
        response = await self._send(
            "POST",
            self.logout_endpoint,
            data={
                "refresh_token": refresh_token,
                "client_id": client_id,
                "client_secret": client_secret,
            },
        )

        if response.status_code in (200, 204):
            return True

        # The IdP session may already be gone; local logout must not depend on it
        self.logger.warning(
            "Identity provider logout response was not successful",
            status_code=response.status_code,
            error=self._error_message(response, ""),
        )
        return False

    def logout_url(
        self,
        post_logout_redirect_uri: str,
        client_id: str,
        id_token_hint: str | None = None,
    ) -> str:
        """
        Get the RP-initiated logout URL.

        Args:
            post_logout_redirect_uri: Where to send the browser afterwards
            client_id: OAuth client ID
            id_token_hint: Optional ID token of the session being ended

        Returns:
            Logout endpoint URL with query parameters
        """
        params = {
            "client_id": client_id,
            "post_logout_redirect_uri": post_logout_redirect_uri,
        }
        if id_token_hint:
            params["id_token_hint"] = id_token_hint
        return f"{self.logout_endpoint}?{urlencode(params)}"
