"""Reconciliation of IdP identities with local user accounts.

Lookup order on every login:
1. By IdP subject (external_id)
2. By email, linking a local account to the IdP subject
3. Create a new account (when auto-provisioning is enabled)
"""

import secrets
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from ..config import SSOSettings
from ..exceptions import ConfigurationError, ProvisioningError, SSOError
from ..models import AuthProvider, IdentityClaims, User
from ..repositories.base import UserStore
from ..utils.errors import classify_exception, handle_error
from ..utils.logging import get_logger
from .role_mapping import RoleMapper

# Local password logins never match this; "!" is not a valid hash prefix
UNUSABLE_PASSWORD_PREFIX = "!"


def make_unusable_password() -> str:
    return UNUSABLE_PASSWORD_PREFIX + secrets.token_urlsafe(32)


class UserProvisioningService:
    """
    Find, link or create the local user for a set of IdP claims.

    Example usage:
        service = UserProvisioningService.from_settings(
            settings, user_store=users, role_mapper=mapper, logger=logger
        )
        user = await service.find_or_create_user(claims)
    """

    def __init__(
        self,
        user_store: UserStore,
        role_mapper: RoleMapper,
        client_id: str | None = None,
        auto_provision: bool = True,
        sync_user_data: bool = True,
        logger=None,
    ):
        """
        Initialize the provisioning service.

        Args:
            user_store: User persistence
            role_mapper: Role mapper used for role sync
            client_id: OAuth client whose client roles are read first
            auto_provision: Create accounts for unknown identities
            sync_user_data: Update profile fields and roles on every login
            logger: Optional logger instance
        """
        self.user_store = user_store
        self.role_mapper = role_mapper
        self.client_id = client_id
        self._auto_provision = auto_provision
        self._sync_user_data = sync_user_data
        self.logger = logger or get_logger(__name__)

    @classmethod
    def from_settings(
        cls,
        settings: SSOSettings,
        user_store: UserStore,
        role_mapper: RoleMapper,
        logger=None,
    ) -> "UserProvisioningService":
        return cls(
            user_store=user_store,
            role_mapper=role_mapper,
            client_id=settings.client_id or None,
            auto_provision=settings.auto_provision_users,
            sync_user_data=settings.sync_user_data,
            logger=logger,
        )

    # ==================== SWITCHES ====================

    def is_auto_provision_enabled(self) -> bool:
        return self._auto_provision

    def set_auto_provision_enabled(self, enabled: bool) -> None:
        self._auto_provision = enabled

    def is_sync_user_data_enabled(self) -> bool:
        return self._sync_user_data

    def set_sync_user_data_enabled(self, enabled: bool) -> None:
        self._sync_user_data = enabled

    # ==================== RECONCILIATION ====================

    async def find_or_create_user(self, claims: IdentityClaims | dict[str, Any]) -> User:
        """
        Resolve the local user for an authentication event.

        Args:
            claims: Identity claims (model or raw userinfo dict)

        Returns:
            The found, linked or created user

        Raises:
            ProvisioningError: If the subject is missing, the email belongs to
                an account of another provider or subject, or the user is
                unknown and auto-provisioning is disabled
        """
        claims = _as_claims(claims)
        if not claims.subject:
            raise ProvisioningError.missing_required_field("sub")

        async with self.user_store.transaction():
            user = await self.user_store.find_by_external_id(claims.subject)
            if user:
                self.logger.debug("Found user by external id", user_id=str(user.id))
                if self._sync_user_data:
                    return await self.update_user(user, claims)
                return await self._touch_last_login(user)

            if claims.email:
                user = await self.user_store.find_by_email(claims.email)
                if user:
                    self._ensure_linkable(user, claims)
                    user.sso.link(claims.subject)
                    self.logger.info(
                        "Linked existing account to identity provider",
                        user_id=str(user.id),
                        **claims.to_log_context(),
                    )
                    if self._sync_user_data:
                        return await self.update_user(user, claims)
                    return await self._touch_last_login(user)

            if not self._auto_provision:
                self.logger.warning(
                    "Unknown user and auto-provisioning is disabled",
                    **claims.to_log_context(),
                )
                raise ProvisioningError("auto-provisioning disabled", 403)

            return await self.provision_user(claims)

    def _ensure_linkable(self, user: User, claims: IdentityClaims) -> None:
        provider = user.sso.auth_provider
        bound_elsewhere = (
            provider == AuthProvider.SSO.value
            and user.sso.external_id
            and user.sso.external_id != claims.subject
        )
        if not user.sso.is_local_user() and (provider != AuthProvider.SSO.value or bound_elsewhere):
            self.logger.warning(
                "Email already belongs to an account of another provider",
                user_id=str(user.id),
                auth_provider=provider,
                **claims.to_log_context(),
            )
            raise ProvisioningError.duplicate_user(claims.email)

    async def provision_user(self, claims: IdentityClaims | dict[str, Any]) -> User:
        """
        Create a new SSO user from claims.

        Raises:
            ProvisioningError: If subject or email is missing, or the store
                rejects the new user
        """
        claims = _as_claims(claims)
        if not claims.subject:
            raise ProvisioningError.missing_required_field("sub")
        if not claims.email:
            raise ProvisioningError.missing_required_field("email")

        fields = {
            "email": claims.email,
            "display_name": self.extract_display_name(claims)
            or self.generate_name_from_email(claims.email),
            "password_hash": make_unusable_password(),
            "external_id": claims.subject,
            "auth_provider": AuthProvider.SSO.value,
        }

        async with self.user_store.transaction():
            try:
                user = await self.user_store.create(fields)
                user.last_login = _utcnow()
                user = await self.user_store.save(user)
            except SSOError:
                raise
            except Exception as e:
                raise ProvisioningError.creation_failed(claims.email, str(e)) from e

            self.logger.info(
                "Provisioned new user",
                user_id=str(user.id),
                **claims.to_log_context(),
            )

            await self._sync_roles(user, claims)

        return user

    async def update_user(self, user: User, claims: IdentityClaims | dict[str, Any]) -> User:
        """
        Apply claim drift (email, display name) and role changes to a user.

        Also binds the account to the claim subject and records the login.
        """
        claims = _as_claims(claims)
        changes: dict[str, Any] = {}

        if claims.email and claims.email != user.email:
            changes["email"] = (user.email, claims.email)
            user.email = claims.email

        display_name = self.extract_display_name(claims)
        if display_name and display_name != user.display_name:
            changes["display_name"] = (user.display_name, display_name)
            user.display_name = display_name

        if claims.subject and (
            user.sso.external_id != claims.subject or not user.sso.is_sso_user()
        ):
            user.sso.link(claims.subject)
        user.last_login = _utcnow()

        async with self.user_store.transaction():
            try:
                user = await self.user_store.save(user)
            except SSOError:
                raise
            except Exception as e:
                raise ProvisioningError.update_failed(user.email, str(e)) from e

            if changes:
                self.logger.info(
                    "Updated user from identity provider",
                    user_id=str(user.id),
                    changed_fields=sorted(changes),
                )

            await self._sync_roles(user, claims)

        return user

    sync_user_data = update_user

    async def _touch_last_login(self, user: User) -> User:
        user.last_login = _utcnow()
        return await self.user_store.save(user)

    async def _sync_roles(self, user: User, claims: IdentityClaims) -> None:
        """Role sync that never aborts the login; failures are logged."""
        try:
            await self.role_mapper.sync_roles(user, self.extract_roles(claims))
        except Exception as e:
            error = classify_exception(e)
            if not isinstance(error, (ConfigurationError, ProvisioningError)):
                error = ProvisioningError.role_mapping_failed(user.email, error.message)
                error.__cause__ = e
            handle_error(error, "role synchronisation failed", self.logger, user_id=str(user.id))

    # ==================== CLAIM HELPERS ====================

    def extract_roles(self, claims: IdentityClaims | dict[str, Any]) -> list[str]:
        """Realm, client and direct roles from the claims, de-duplicated."""
        return _as_claims(claims).idp_roles(self.client_id)

    @staticmethod
    def extract_display_name(claims: IdentityClaims | dict[str, Any]) -> str | None:
        """
        Display name by priority: name, given + family name, preferred username.

        Returns:
            The name, or None when the claims carry none of these
        """
        claims = _as_claims(claims)
        if claims.name and claims.name.strip():
            return claims.name.strip()

        parts = [part.strip() for part in (claims.given_name, claims.family_name) if part]
        full_name = " ".join(part for part in parts if part)
        if full_name:
            return full_name

        if claims.preferred_username and claims.preferred_username.strip():
            return claims.preferred_username.strip()

        return None

    @staticmethod
    def generate_name_from_email(email: str) -> str:
        """
        Readable name from an email local part.

        Examples:
            >>> UserProvisioningService.generate_name_from_email("john.doe@example.com")
            'John Doe'
        """
        local_part = email.split("@", 1)[0]
        for separator in (".", "_", "-"):
            local_part = local_part.replace(separator, " ")
        return " ".join(word[:1].upper() + word[1:] for word in local_part.split())


def _as_claims(claims: IdentityClaims | dict[str, Any]) -> IdentityClaims:
    if isinstance(claims, IdentityClaims):
        return claims
    try:
        return IdentityClaims.model_validate(claims)
    except ValidationError as e:
        fields = sorted({".".join(str(part) for part in err["loc"]) for err in e.errors()})
        raise ProvisioningError.invalid_user_data(
            f"malformed claims: {', '.join(fields) or 'payload'}"
        ) from e


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)
