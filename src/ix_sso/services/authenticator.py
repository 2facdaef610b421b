"""Login, callback, refresh and logout orchestration.

``SSOAuthenticator`` bundles what a web controller has to do around the
token lifecycle: reconcile the user, persist the encrypted refresh token,
keep the session in sync and fire lifecycle hooks. It is framework agnostic;
the session is any mutable mapping.
"""

from collections.abc import Iterable, MutableMapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ..config import SSOSettings
from ..exceptions import (
    AuthenticationError,
    ConfigurationError,
    IdPConnectionError,
    ProvisioningError,
    TokenError,
    TokenExpiredError,
)
from ..hooks import LifecycleEvent, LifecycleHooks
from ..models import IdentityClaims, TokenSet, User
from ..providers.base import BaseIdentityProvider
from ..repositories.base import RoleStore, UserStore
from ..utils.crypto import TokenCipher
from ..utils.errors import (
    classify_exception,
    get_user_message,
    handle_error,
    should_fallback_to_local_auth,
)
from ..utils.logging import get_logger, redact
from .provisioning import UserProvisioningService
from .role_mapping import RoleMapper
from .token_manager import STATE_SESSION_KEY, TokenLifecycleManager

ACCESS_TOKEN_SESSION_KEY = "sso_access_token"
ID_TOKEN_SESSION_KEY = "sso_id_token"

FALLBACK_MESSAGES = {
    "unavailable": (
        "Single sign-on is currently unavailable. You can sign in with your local account."
    ),
    "local": "You can sign in with your local account instead.",
}


@dataclass
class AuthenticatedSession:
    """Result of a successful SSO callback."""

    user: User
    tokens: TokenSet
    claims: IdentityClaims


@dataclass
class LoginFailure:
    """What to show the user after a failed SSO attempt."""

    message: str
    kind: str
    allow_local_login: bool
    status_code: int
    notice: str | None = None


def _failure_kind(error: Exception) -> str:
    if isinstance(error, IdPConnectionError):
        return "connection"
    if isinstance(error, AuthenticationError):
        return "authentication"
    if isinstance(error, TokenError):
        return "token"
    if isinstance(error, ProvisioningError):
        return "provisioning"
    if isinstance(error, ConfigurationError):
        return "configuration"
    return "unknown"


class SSOAuthenticator:
    """
    Facade over token lifecycle, provisioning and hooks.

    Example usage:
        authenticator = SSOAuthenticator.from_settings(
            settings, user_store=users, role_store=roles, logger=logger
        )

        # GET /auth/sso/login
        url = authenticator.begin_login(request.session)

        # GET /auth/sso/callback
        try:
            result = await authenticator.handle_callback(
                request.session, dict(request.query_params), ip_address=request.client.host
            )
        except SSOError as e:
            failure = authenticator.failure_response(e)

        # POST /auth/logout
        logout_url = await authenticator.logout(user, request.session)
    """

    def __init__(
        self,
        settings: SSOSettings,
        token_manager: TokenLifecycleManager,
        provisioning: UserProvisioningService,
        cipher: TokenCipher | None = None,
        hooks: LifecycleHooks | None = None,
        logger=None,
    ):
        """
        Initialize the authenticator.

        Args:
            settings: SSO settings
            token_manager: Token lifecycle manager
            provisioning: User provisioning service (its user store is used
                to persist token state)
            cipher: Refresh token cipher (default: from token_encryption_key)
            hooks: Lifecycle hooks (default: logging hooks)
            logger: Optional logger instance

        Raises:
            ConfigurationError: If no cipher is given and the encryption key
                is missing or malformed
        """
        self.settings = settings
        self.token_manager = token_manager
        self.provisioning = provisioning
        self.cipher = cipher or TokenCipher.from_settings(settings)
        self.logger = logger or get_logger(__name__)
        self.hooks = hooks or LifecycleHooks.with_defaults(logger=self.logger)

    @classmethod
    def from_settings(
        cls,
        settings: SSOSettings,
        user_store: UserStore,
        role_store: RoleStore,
        transport: BaseIdentityProvider | None = None,
        hooks: LifecycleHooks | None = None,
        logger=None,
    ) -> "SSOAuthenticator":
        """Wire every component from one settings object."""
        token_manager = TokenLifecycleManager(settings, transport=transport, logger=logger)
        role_mapper = RoleMapper.from_settings(settings, role_store, logger=logger)
        provisioning = UserProvisioningService.from_settings(
            settings, user_store, role_mapper, logger=logger
        )
        return cls(settings, token_manager, provisioning, hooks=hooks, logger=logger)

    @property
    def user_store(self) -> UserStore:
        return self.provisioning.user_store

    def _ensure_enabled(self) -> None:
        if not self.settings.enabled:
            raise ConfigurationError("SSO is disabled", 503)

    # ==================== LOGIN ====================

    def begin_login(
        self,
        session: MutableMapping[str, Any],
        scopes: Iterable[str] | None = None,
    ) -> str:
        """
        Start a login and return the IdP authorization URL.

        Raises:
            ConfigurationError: If SSO is disabled
        """
        self._ensure_enabled()
        url, _ = self.token_manager.build_authorization_url(
            scopes or self.settings.scopes, session=session
        )
        return url

    async def handle_callback(
        self,
        session: MutableMapping[str, Any],
        query_params: MutableMapping[str, Any] | dict[str, Any],
        ip_address: str | None = None,
    ) -> AuthenticatedSession:
        """
        Complete a login from the IdP callback.

        Args:
            session: Caller session (holds the pending CSRF state)
            query_params: Callback query parameters
            ip_address: Client address, passed to LOGIN_FAILED hooks

        Returns:
            AuthenticatedSession with the reconciled user and tokens

        Raises:
            SSOError: Classified failure; LOGIN_FAILED hooks have already run
        """
        try:
            self._ensure_enabled()
            result = await self.token_manager.complete_login(query_params, session)
            user = await self.provisioning.find_or_create_user(result.claims)

            self._store_tokens(user, result.tokens)
            user = await self.user_store.save(user)
        except Exception as e:
            error = classify_exception(e)
            handle_error(
                error,
                "SSO callback failed",
                self.logger,
                self.settings,
                request_params=sorted(query_params),
            )
            await self.hooks.emit(
                LifecycleEvent.LOGIN_FAILED,
                {
                    "exception_type": error.__class__.__name__,
                    "message": error.message,
                    "status_code": error.status_code,
                    "reason": getattr(getattr(error, "reason", None), "value", None),
                    "query_params": redact(
                        dict(query_params), self.settings.logging.sensitive_keys
                    ),
                    "ip_address": ip_address,
                },
            )
            if error is e:
                raise
            raise error from e

        self._update_session(session, result.tokens)

        await self.hooks.emit(
            LifecycleEvent.LOGIN_SUCCEEDED,
            {
                "user_id": str(user.id),
                "email": user.email,
                **result.claims.to_log_context(),
            },
        )
        return AuthenticatedSession(user=user, tokens=result.tokens, claims=result.claims)

    def _store_tokens(self, user: User, tokens: TokenSet) -> None:
        if tokens.refresh_token:
            user.sso.set_refresh_token(tokens.refresh_token, self.cipher)
        user.sso.set_token_expiry(tokens.expires_at)

    @staticmethod
    def _update_session(session: MutableMapping[str, Any] | None, tokens: TokenSet) -> None:
        if session is None:
            return
        session[ACCESS_TOKEN_SESSION_KEY] = tokens.access_token
        if tokens.id_token:
            session[ID_TOKEN_SESSION_KEY] = tokens.id_token

    # ==================== REFRESH ====================

    async def refresh_user_session(
        self,
        user: User,
        session: MutableMapping[str, Any] | None = None,
        now: datetime | None = None,
    ) -> TokenSet | None:
        """
        Refresh the user's tokens when they are inside the grace period.

        Returns:
            The new TokenSet, or None when no refresh was needed

        Raises:
            TokenExpiredError: If the stored refresh token is missing or the
                IdP rejected it; the user's SSO tokens are cleared first
        """
        grace = self.settings.token_refresh_grace_period
        if not user.sso.is_sso_user() or not user.sso.is_token_expiring_soon(grace, now):
            return None

        expired_at = user.sso.token_expires_at.isoformat() if user.sso.token_expires_at else None
        refresh_token = user.sso.get_refresh_token(self.cipher)
        if not refresh_token:
            await self._drop_tokens(user, session)
            raise TokenExpiredError.refresh_token()

        try:
            tokens = await self.token_manager.refresh_tokens(refresh_token)
        except TokenError as e:
            await self._drop_tokens(user, session)
            raise TokenExpiredError.with_details("Access", expired_at) from e

        self._store_tokens(user, tokens)
        await self.user_store.save(user)
        self._update_session(session, tokens)

        await self.hooks.emit(
            LifecycleEvent.TOKEN_REFRESHED,
            {
                "user_id": str(user.id),
                "expires_at": tokens.expires_at.isoformat() if tokens.expires_at else None,
            },
        )
        return tokens

    async def _drop_tokens(self, user: User, session: MutableMapping[str, Any] | None) -> None:
        user.sso.clear_tokens()
        await self.user_store.save(user)
        if session is not None:
            session.pop(ACCESS_TOKEN_SESSION_KEY, None)
            session.pop(ID_TOKEN_SESSION_KEY, None)
        self.logger.info("Cleared SSO tokens after failed refresh", user_id=str(user.id))

    # ==================== LOGOUT ====================

    async def logout(
        self,
        user: User,
        session: MutableMapping[str, Any] | None = None,
        post_logout_redirect_uri: str | None = None,
    ) -> str | None:
        """
        Log a user out locally and, for SSO users, at the IdP.

        IdP revocation is best effort; local state is cleared either way.

        Returns:
            IdP logout URL to redirect the browser to, or None for local users
        """
        session = session if session is not None else {}
        id_token = session.get(ID_TOKEN_SESSION_KEY)
        logout_url = None
        revoked = False

        try:
            if user.sso.is_sso_user() and self.settings.enabled:
                refresh_token = user.sso.get_refresh_token(self.cipher)
                if refresh_token:
                    revoked = await self.token_manager.revoke_session(refresh_token)

                user.sso.clear_tokens()
                await self.user_store.save(user)

                logout_url = self.token_manager.build_logout_redirect_url(
                    post_logout_redirect_uri, id_token
                )
        finally:
            for key in (ACCESS_TOKEN_SESSION_KEY, ID_TOKEN_SESSION_KEY, STATE_SESSION_KEY):
                session.pop(key, None)

        await self.hooks.emit(
            LifecycleEvent.LOGOUT_SUCCEEDED,
            {
                "user_id": str(user.id),
                "email": user.email,
                "idp_session_revoked": revoked,
            },
        )
        return logout_url

    # ==================== FAILURE HANDLING ====================

    def failure_response(self, exc: BaseException) -> LoginFailure:
        """
        Decide what to tell the user after a failed SSO attempt.

        Local login is offered when both allow_local_auth and
        fallback_on_error are enabled.
        """
        error = classify_exception(exc)
        kind = _failure_kind(error)
        show_details = self.settings.debug or self.settings.error_handling.show_details
        allow_local = should_fallback_to_local_auth(self.settings)

        notice = None
        if allow_local:
            notice = FALLBACK_MESSAGES["unavailable" if kind == "connection" else "local"]

        return LoginFailure(
            message=get_user_message(error, show_details),
            kind=kind,
            allow_local_login=allow_local,
            status_code=error.status_code,
            notice=notice,
        )
