"""User and role stores."""

from .base import RoleStore, UserStore
from .memory import InMemoryRoleStore, InMemoryUserStore
from .postgres import PostgresRoleStore, PostgresUserStore

__all__ = [
    "UserStore",
    "RoleStore",
    "InMemoryUserStore",
    "InMemoryRoleStore",
    "PostgresUserStore",
    "PostgresRoleStore",
]
