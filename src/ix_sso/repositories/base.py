"""Store contracts consumed by the provisioning and role mapping services.

Both stores expose a reentrant ``transaction()`` async context manager. A
nested ``transaction()`` call must behave like a savepoint: a failure inside
it rolls back only the inner work and re-raises.
"""

from contextlib import AbstractAsyncContextManager
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from ..models import Role, User


@runtime_checkable
class UserStore(Protocol):
    """User persistence used by :class:`~ix_sso.services.UserProvisioningService`."""

    async def find_by_external_id(self, external_id: str) -> User | None: ...

    async def find_by_email(self, email: str) -> User | None: ...

    async def create(self, fields: dict[str, Any]) -> User: ...

    async def save(self, user: User) -> User: ...

    def transaction(self) -> AbstractAsyncContextManager[Any]: ...


@runtime_checkable
class RoleStore(Protocol):
    """Role lookup and assignment used by :class:`~ix_sso.services.RoleMapper`."""

    async def find_roles_by_names(self, names: list[str]) -> list[Role]: ...

    async def find_role_by_name(self, name: str) -> Role | None: ...

    async def assign_primary_role(self, user: User, role_id: UUID) -> None: ...

    async def replace_all_roles(self, user: User, role_ids: list[UUID]) -> None: ...

    def transaction(self) -> AbstractAsyncContextManager[Any]: ...
