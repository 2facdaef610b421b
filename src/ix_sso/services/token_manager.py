"""OAuth2 authorization code flow and token lifecycle.

Login state machine:

    INIT -> AWAITING_CALLBACK -> EXCHANGING -> FETCHING_USER_INFO -> COMPLETED
                              \\-> FAILED (csrf | idp_denied | missing_code |
                                          connection | authentication)

The CSRF state is single-use: it is removed from the session before any other
check, so neither a failed nor a successful callback can be replayed.
"""

import hmac
import secrets
from collections.abc import Iterable, MutableMapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import ValidationError

from ..config import SSOSettings
from ..exceptions import (
    AuthenticationError,
    FailureReason,
    IdPConnectionError,
    TokenError,
)
from ..models import IdentityClaims, TokenSet
from ..models.token import compute_expiry
from ..providers.base import BaseIdentityProvider
from ..providers.keycloak import KeycloakTransport
from ..utils.cache import TokenBoundCache
from ..utils.errors import classify_exception, handle_error
from ..utils.jwt import ROLE_CLAIM_KEYS, extract_role_claims, get_token_expiry
from ..utils.logging import get_logger
from ..utils.retry import RetryExecutor

STATE_SESSION_KEY = "sso_state"

DEFAULT_SCOPES = ("openid", "profile", "email")

__all__ = [
    "DEFAULT_SCOPES",
    "STATE_SESSION_KEY",
    "LoginResult",
    "LoginState",
    "TokenLifecycleManager",
    "compute_expiry",
    "generate_state",
]


class LoginState(str, Enum):
    INIT = "init"
    AWAITING_CALLBACK = "awaiting_callback"
    EXCHANGING = "exchanging"
    FETCHING_USER_INFO = "fetching_user_info"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class LoginResult:
    """Outcome of a completed authorization code login."""

    tokens: TokenSet
    claims: IdentityClaims
    raw_claims: dict[str, Any] = field(default_factory=dict)
    state: LoginState = LoginState.COMPLETED


def generate_state() -> str:
    """Random CSRF state (48 bytes of entropy, 64 url-safe characters)."""
    return secrets.token_urlsafe(48)


class TokenLifecycleManager:
    """
    Authorization code exchange, refresh, validation and revocation.

    Example usage:
        manager = TokenLifecycleManager(settings, logger=logger)

        # Login redirect
        url, state = manager.build_authorization_url(session=request.session)

        # Callback
        result = await manager.complete_login(dict(request.query_params), request.session)

        # Later
        tokens = await manager.refresh_tokens(refresh_token)
        still_valid = await manager.validate(tokens.access_token)
    """

    def __init__(
        self,
        settings: SSOSettings,
        transport: BaseIdentityProvider | None = None,
        executor: RetryExecutor | None = None,
        cache: TokenBoundCache | None = None,
        logger=None,
    ):
        """
        Initialize the token lifecycle manager.

        Args:
            settings: SSO settings (validated on construction)
            transport: Identity provider transport (default: KeycloakTransport)
            executor: Retry executor for transport calls (default: from settings)
            cache: User info cache (default: from settings when cache_tokens is on)
            logger: Optional logger instance

        Raises:
            ConfigurationError: If required settings are missing or malformed
        """
        settings.ensure_valid()
        self.settings = settings
        self.logger = logger or get_logger(__name__)
        self.transport = transport or KeycloakTransport(settings, logger=self.logger)
        self.executor = executor or RetryExecutor.from_settings(settings, logger=self.logger)

        if cache is None and settings.cache_tokens and settings.cache_ttl > 0:
            cache = TokenBoundCache(settings.cache_ttl)
        self.cache = cache

    @property
    def is_enabled(self) -> bool:
        return self.settings.enabled

    # ==================== LOGIN ====================

    def build_authorization_url(
        self,
        scopes: Iterable[str] = DEFAULT_SCOPES,
        session: MutableMapping[str, Any] | None = None,
    ) -> tuple[str, str]:
        """
        Start a login: generate CSRF state and build the authorize URL.

        Args:
            scopes: OAuth scopes to request
            session: Caller session; when given the state is stored in it
                under STATE_SESSION_KEY (replacing any pending state)

        Returns:
            Tuple of (authorization URL, state)
        """
        state = generate_state()
        if session is not None:
            session[STATE_SESSION_KEY] = state

        url = self.transport.authorization_url(state, list(scopes))
        self.logger.debug("Login started", login_state=LoginState.AWAITING_CALLBACK.value)
        return url, state

    async def complete_login(
        self,
        query_params: MutableMapping[str, Any] | dict[str, Any],
        session: MutableMapping[str, Any],
    ) -> LoginResult:
        """
        Handle the IdP callback.

        Steps, strictly in order: consume the session state, compare it with
        the returned state, check for an IdP error, require a code, exchange
        the code, fetch user info.

        Args:
            query_params: Callback query parameters (state, code, error, ...)
            session: Caller session holding the pending state

        Returns:
            LoginResult with tokens and claims

        Raises:
            AuthenticationError: CSRF mismatch, IdP error or missing code
                (reason set), or the IdP rejected the exchange
            IdPConnectionError: IdP unreachable after retries
        """
        session_state = session.pop(STATE_SESSION_KEY, None)
        received_state = query_params.get("state")

        if not _states_match(received_state, session_state):
            self._log_failure(FailureReason.CSRF, state_present=bool(session_state))
            raise AuthenticationError("invalid state", 403, reason=FailureReason.CSRF)

        if query_params.get("error"):
            description = query_params.get("error_description") or query_params["error"]
            self._log_failure(FailureReason.IDP_DENIED, idp_error=query_params["error"])
            raise AuthenticationError(description, 401, reason=FailureReason.IDP_DENIED)

        code = query_params.get("code")
        if not code:
            self._log_failure(FailureReason.MISSING_CODE)
            raise AuthenticationError(
                "Authorization code is missing from the callback",
                400,
                reason=FailureReason.MISSING_CODE,
            )

        login_state = LoginState.EXCHANGING
        try:
            tokens = await self.executor.run(
                self.transport.exchange_code,
                code,
                self.settings.client_id,
                self.settings.client_secret,
                self.settings.redirect_uri,
            )

            login_state = LoginState.FETCHING_USER_INFO
            raw_claims = await self.get_user_info(tokens.access_token, tokens.expires_at)
            try:
                claims = IdentityClaims.model_validate(raw_claims)
            except ValidationError as e:
                raise AuthenticationError("Userinfo response has malformed claims", 502) from e
        except Exception as e:
            error = classify_exception(e)
            if isinstance(error, AuthenticationError) and error.reason is None:
                error.reason = FailureReason.AUTHENTICATION
            reason = (
                FailureReason.CONNECTION
                if isinstance(error, IdPConnectionError)
                else FailureReason.AUTHENTICATION
            )
            self._log_failure(reason, failed_in=login_state.value, error=error.message)
            if error is e:
                raise
            raise error from e

        self.logger.info(
            "Login completed",
            login_state=LoginState.COMPLETED.value,
            **claims.to_log_context(),
        )
        return LoginResult(tokens=tokens, claims=claims, raw_claims=raw_claims)

    def _log_failure(self, reason: FailureReason, **data) -> None:
        self.logger.warning(
            "Login failed",
            login_state=LoginState.FAILED.value,
            reason=reason.value,
            **data,
        )

    # ==================== USER INFO ====================

    async def get_user_info(
        self,
        access_token: str,
        expires_at: datetime | None = None,
    ) -> dict[str, Any]:
        """
        Userinfo claims for an access token, cached until the token expires.

        Role claims missing from the userinfo response are taken from the
        access token itself.

        Args:
            access_token: Bearer access token
            expires_at: Token expiry; caps the cache entry lifetime. Defaults
                to the token's ``exp`` claim; without either nothing is cached.

        Returns:
            Claims dict
        """
        if self.cache is not None:
            cached = self.cache.get(access_token)
            if cached is not None:
                self.logger.debug("User info served from cache")
                return dict(cached)

        user_info = await self.executor.run(self.transport.fetch_user_info, access_token)

        if not any(key in user_info for key in ROLE_CLAIM_KEYS):
            user_info = {**user_info, **extract_role_claims(access_token)}

        if self.cache is not None:
            token_expires_at = (
                expires_at.timestamp() if expires_at else get_token_expiry(access_token)
            )
            if token_expires_at is not None:
                self.cache.set(access_token, dict(user_info), token_expires_at)

        return user_info

    async def get_user_roles(self, access_token: str) -> list[str]:
        """All IdP roles for an access token. Empty on any failure."""
        try:
            raw_claims = await self.get_user_info(access_token)
            claims = IdentityClaims.model_validate(raw_claims)
        except Exception as e:
            handle_error(e, "failed to read user roles", self.logger, self.settings)
            return []
        return claims.idp_roles(self.settings.client_id)

    # ==================== TOKENS ====================

    async def refresh_tokens(self, refresh_token: str) -> TokenSet:
        """
        Exchange a refresh token for a new token set.

        Raises:
            TokenError: "refresh failed", with the underlying error as cause
        """
        try:
            tokens = await self.executor.run(
                self.transport.refresh,
                refresh_token,
                self.settings.client_id,
                self.settings.client_secret,
            )
        except Exception as e:
            handle_error(e, "token refresh failed", self.logger, self.settings)
            raise TokenError.refresh_failed() from e

        self.logger.info("Access token refreshed", expires_at=tokens.expires_at.isoformat())
        return tokens

    async def validate(self, access_token: str) -> bool:
        """
        Check whether an access token is active via introspection.

        Returns False on any error. When allow_access_on_validation_error is
        enabled, an unreachable IdP yields True instead.
        """
        try:
            result = await self.executor.run(
                self.transport.introspect,
                access_token,
                self.settings.client_id,
                self.settings.client_secret,
            )
        except Exception as e:
            error = classify_exception(e)
            if self.settings.allow_access_on_validation_error and isinstance(
                error, IdPConnectionError
            ):
                self.logger.warning(
                    "Token validation unavailable, allowing access",
                    error=error.message,
                )
                return True
            handle_error(e, "token validation failed", self.logger, self.settings)
            return False

        return result.active

    async def revoke_session(self, refresh_token: str | None) -> bool:
        """
        End the IdP session for a refresh token. Never raises.

        Returns:
            True when the IdP confirmed the logout
        """
        if not refresh_token:
            return False

        try:
            revoked = await self.executor.run(
                self.transport.revoke,
                refresh_token,
                self.settings.client_id,
                self.settings.client_secret,
            )
        except Exception as e:
            handle_error(
                classify_exception(e), "session revocation failed", self.logger, self.settings
            )
            return False

        if revoked:
            self.logger.info("Identity provider session revoked")
        return revoked

    def build_logout_redirect_url(
        self,
        post_logout_redirect_uri: str | None = None,
        id_token_hint: str | None = None,
    ) -> str:
        """RP-initiated logout URL; redirect defaults to the configured logout URI."""
        redirect = (
            post_logout_redirect_uri
            or self.settings.post_logout_redirect_uri
            or self.settings.redirect_uri
        )
        return self.transport.logout_url(redirect, self.settings.client_id, id_token_hint)


def _states_match(received: Any, expected: Any) -> bool:
    if not received or not expected:
        return False
    if not isinstance(received, str) or not isinstance(expected, str):
        return False
    return hmac.compare_digest(received.encode("utf-8"), expected.encode("utf-8"))
