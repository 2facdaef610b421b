"""In-memory stores for development and tests.

Transactions snapshot the store state on entry and restore it when the block
raises, so partial reconciliation never becomes visible. Nested transactions
snapshot again, which gives savepoint semantics.
"""

import copy
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from ..models import Role, SsoIdentity, User

_SSO_FIELDS = ("external_id", "auth_provider", "encrypted_refresh_token", "token_expires_at")


class InMemoryTransactionMixin:
    """Snapshot-and-restore transactions spanning every linked store."""

    _linked: list[Any]

    def _snapshot(self) -> dict:
        raise NotImplementedError

    def _restore(self, snapshot: dict) -> None:
        raise NotImplementedError

    def link(self, other: "InMemoryTransactionMixin") -> None:
        """Make transactions on either store cover both."""
        if other not in self._linked:
            self._linked.append(other)
        if self not in other._linked:
            other._linked.append(self)

    @asynccontextmanager
    async def transaction(self):
        stores = [self, *self._linked]
        snapshots = [store._snapshot() for store in stores]
        try:
            yield self
        except BaseException:
            for store, snapshot in zip(stores, snapshots):
                store._restore(snapshot)
            raise


class InMemoryUserStore(InMemoryTransactionMixin):
    """
    Dict-backed user store.

    Example usage:
        roles = InMemoryRoleStore([Role(name="viewer"), Role(name="admin")])
        users = InMemoryUserStore(role_store=roles)
    """

    def __init__(
        self,
        users: list[User] | None = None,
        role_store: "InMemoryRoleStore | None" = None,
    ):
        self.users: dict[UUID, User] = {user.id: user for user in users or []}
        self._linked = []
        if role_store is not None:
            self.link(role_store)

    def _snapshot(self) -> dict:
        return {"users": copy.deepcopy(self.users)}

    def _restore(self, snapshot: dict) -> None:
        self.users = snapshot["users"]

    async def find_by_external_id(self, external_id: str) -> User | None:
        for user in self.users.values():
            if user.sso.external_id == external_id and user.is_active:
                return user.model_copy(deep=True)
        return None

    async def find_by_email(self, email: str) -> User | None:
        lowered = email.lower()
        for user in self.users.values():
            if user.email.lower() == lowered and user.is_active:
                return user.model_copy(deep=True)
        return None

    async def create(self, fields: dict[str, Any]) -> User:
        fields = dict(fields)
        sso_fields = {key: fields.pop(key) for key in _SSO_FIELDS if key in fields}
        if sso_fields:
            fields["sso"] = SsoIdentity(**sso_fields)

        if "display_name" not in fields and "name" in fields:
            fields["display_name"] = fields.pop("name")

        now = datetime.now(timezone.utc)
        user = User(**fields, created_at=now, updated_at=now)
        self.users[user.id] = user
        return user.model_copy(deep=True)

    async def save(self, user: User) -> User:
        user.updated_at = datetime.now(timezone.utc)
        self.users[user.id] = user.model_copy(deep=True)
        return user


class InMemoryRoleStore(InMemoryTransactionMixin):
    """Dict-backed role store. Assignments are written to the user store when linked."""

    def __init__(self, roles: list[Role] | None = None):
        self.roles: dict[UUID, Role] = {role.id: role for role in roles or []}
        self.assignments: dict[UUID, list[UUID]] = {}
        self.primary_roles: dict[UUID, UUID] = {}
        self._linked = []

    def _snapshot(self) -> dict:
        return {
            "assignments": copy.deepcopy(self.assignments),
            "primary_roles": dict(self.primary_roles),
        }

    def _restore(self, snapshot: dict) -> None:
        self.assignments = snapshot["assignments"]
        self.primary_roles = snapshot["primary_roles"]

    def add_role(self, name: str, description: str | None = None) -> Role:
        role = Role(name=name, description=description)
        self.roles[role.id] = role
        return role

    async def find_roles_by_names(self, names: list[str]) -> list[Role]:
        wanted = set(names)
        return [role for role in self.roles.values() if role.name in wanted]

    async def find_role_by_name(self, name: str) -> Role | None:
        for role in self.roles.values():
            if role.name == name:
                return role
        return None

    def _require(self, role_id: UUID) -> None:
        if role_id not in self.roles:
            raise LookupError(f"Role {role_id} does not exist")

    def _write_through(self, user: User) -> None:
        for store in self._linked:
            if isinstance(store, InMemoryUserStore) and user.id in store.users:
                stored = store.users[user.id]
                stored.role_id = user.role_id
                stored.role_ids = list(user.role_ids)

    async def assign_primary_role(self, user: User, role_id: UUID) -> None:
        self._require(role_id)
        self.primary_roles[user.id] = role_id
        assigned = self.assignments.setdefault(user.id, [])
        if role_id not in assigned:
            assigned.append(role_id)
        user.role_id = role_id
        if role_id not in user.role_ids:
            user.role_ids.append(role_id)
        self._write_through(user)

    async def replace_all_roles(self, user: User, role_ids: list[UUID]) -> None:
        for role_id in role_ids:
            self._require(role_id)
        self.assignments[user.id] = list(dict.fromkeys(role_ids))
        user.role_ids = list(self.assignments[user.id])
        self._write_through(user)

    def role_names_for(self, user_id: UUID) -> list[str]:
        return [self.roles[role_id].name for role_id in self.assignments.get(user_id, [])]
