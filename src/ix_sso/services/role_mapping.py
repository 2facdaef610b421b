"""Translation of identity provider roles into local roles."""

from collections.abc import Iterable

from ..config import SSOSettings
from ..exceptions import ConfigurationError
from ..models import Role, User
from ..repositories.base import RoleStore
from ..utils.logging import get_logger


def _normalize(mapping: dict[str, str | list[str]]) -> dict[str, list[str]]:
    return {
        idp_role: [local] if isinstance(local, str) else list(local)
        for idp_role, local in mapping.items()
    }


class RoleMapper:
    """
    Maps IdP role names to local role names and synchronises assignments.

    Matching is exact and case-sensitive. One IdP role may map to several
    local roles. IdP roles without a mapping are ignored, and when nothing
    maps the configured default role is used.

    Example usage:
        mapper = RoleMapper.from_settings(settings, role_store, logger=logger)

        mapper.map_to_local_roles(["sales", "unknown"])   # {"broker", "viewer"}
        await mapper.sync_roles(user, claims.idp_roles(settings.client_id))
    """

    def __init__(
        self,
        role_mapping: dict[str, str | list[str]],
        default_role: str,
        role_store: RoleStore,
        sync_enabled: bool = True,
        logger=None,
    ):
        self._mapping = _normalize(role_mapping)
        self._default_role = default_role
        self.role_store = role_store
        self._sync_enabled = sync_enabled
        self.logger = logger or get_logger(__name__)

    @classmethod
    def from_settings(
        cls, settings: SSOSettings, role_store: RoleStore, logger=None
    ) -> "RoleMapper":
        return cls(
            role_mapping=settings.role_mapping,
            default_role=settings.default_role,
            role_store=role_store,
            sync_enabled=settings.enable_role_mapping,
            logger=logger,
        )

    # ==================== CONFIGURATION ====================

    @property
    def role_mapping(self) -> dict[str, list[str]]:
        return {idp_role: list(local) for idp_role, local in self._mapping.items()}

    def reload_mapping(self, mapping: dict[str, str | list[str]]) -> None:
        """Replace the mapping table. Takes effect for the next lookup."""
        self._mapping = _normalize(mapping)
        self.logger.info("Role mapping reloaded", idp_roles=sorted(self._mapping))

    set_role_mapping = reload_mapping

    def get_role_mapping(self) -> dict[str, list[str]]:
        return self.role_mapping

    @property
    def default_role(self) -> str:
        return self._default_role

    @default_role.setter
    def default_role(self, value: str) -> None:
        self._default_role = value

    def get_default_role(self) -> str:
        return self._default_role

    def set_default_role(self, value: str) -> None:
        self._default_role = value

    def is_sync_enabled(self) -> bool:
        return self._sync_enabled

    def set_sync_enabled(self, enabled: bool) -> None:
        self._sync_enabled = enabled

    # ==================== MAPPING ====================

    def ordered_local_roles(self, idp_roles: Iterable[str]) -> list[str]:
        """
        Mapped local roles in input order, without duplicates.

        Falls back to ``[default_role]`` when no IdP role maps.
        """
        mapping = self._mapping
        local_roles: list[str] = []
        for idp_role in idp_roles:
            for local_role in mapping.get(idp_role, ()):
                if local_role not in local_roles:
                    local_roles.append(local_role)

        if not local_roles:
            return [self._default_role]
        return local_roles

    def map_to_local_roles(self, idp_roles: Iterable[str]) -> set[str]:
        """Set of local role names for the given IdP roles (never empty)."""
        return set(self.ordered_local_roles(idp_roles))

    def primary_role(self, idp_roles: Iterable[str]) -> str:
        """First local role of the first IdP role that maps, else the default role."""
        return self.ordered_local_roles(idp_roles)[0]

    async def get_roles_by_names(self, names: Iterable[str]) -> list[Role]:
        """
        Look up local roles by name, preserving the order of ``names``.

        Names that do not exist in the role store are left out.
        """
        names = list(dict.fromkeys(names))
        if not names:
            return []
        found = {role.name: role for role in await self.role_store.find_roles_by_names(names)}
        return [found[name] for name in names if name in found]

    # ==================== SYNC ====================

    async def sync_roles(self, user: User, idp_roles: Iterable[str]) -> list[Role]:
        """
        Replace the user's local roles with the ones mapped from ``idp_roles``.

        Assignments are replaced, not merged: roles granted locally but absent
        from the mapping result are removed. The first resolved role becomes
        the primary role.

        Args:
            user: User whose roles are synchronised
            idp_roles: Role names from the IdP claims

        Returns:
            Roles now assigned to the user (empty when sync is disabled)

        Raises:
            ConfigurationError: If no mapped role exists and the default role
                is missing from the role store
        """
        if not self._sync_enabled:
            self.logger.debug("Role sync disabled, skipping", user_id=str(user.id))
            return []

        idp_roles = list(idp_roles)
        wanted = self.ordered_local_roles(idp_roles)

        async with self.role_store.transaction():
            roles = await self.get_roles_by_names(wanted)

            missing = [name for name in wanted if name not in {role.name for role in roles}]
            if missing:
                self.logger.warning(
                    "Mapped roles do not exist locally and were skipped",
                    user_id=str(user.id),
                    missing_roles=missing,
                )

            if not roles:
                default = await self.role_store.find_role_by_name(self._default_role)
                if default is None:
                    self.logger.critical(
                        "Default role does not exist",
                        default_role=self._default_role,
                        user_id=str(user.id),
                    )
                    raise ConfigurationError.invalid(
                        "default_role", f"role '{self._default_role}' does not exist"
                    )
                roles = [default]

            await self.role_store.replace_all_roles(user, [role.id for role in roles])
            await self.role_store.assign_primary_role(user, roles[0].id)

        self.logger.info(
            "Roles synchronised",
            user_id=str(user.id),
            idp_roles=idp_roles,
            local_roles=[role.name for role in roles],
            primary_role=roles[0].name,
        )
        return roles
