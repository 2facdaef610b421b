"""PostgreSQL user and role stores.

Works with any asyncpg-compatible pool (``pool.acquire()`` yielding a
connection with ``fetchrow``/``fetch``/``execute``/``transaction``).

Expected columns on ``{schema}.users`` in addition to the usual account
fields (id, email, name, password_hash, role_id, is_active, last_login,
created_at, updated_at):

    external_id              VARCHAR(255) UNIQUE NULL
    auth_provider            VARCHAR(50)  NOT NULL DEFAULT 'local'
    encrypted_refresh_token  TEXT NULL
    token_expires_at         TIMESTAMPTZ NULL

Role assignments live in ``{schema}.user_roles`` (user_id, role_id).
"""

from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

from ..models import Role, SsoIdentity, User

USERS_COLUMNS = {
    "external_id": "VARCHAR(255) UNIQUE NULL",
    "auth_provider": "VARCHAR(50) NOT NULL DEFAULT 'local'",
    "encrypted_refresh_token": "TEXT NULL",
    "token_expires_at": "TIMESTAMPTZ NULL",
}

# Connection bound to the running transaction, shared by both stores
_current_connection: ContextVar[Any | None] = ContextVar("ix_sso_pg_connection", default=None)


class _PostgresStore:
    def __init__(self, db_pool, schema: str = "public", logger=None):
        """
        Initialize the store.

        Args:
            db_pool: Database connection pool (asyncpg-compatible)
            schema: Database schema for auth tables (default: "public")
            logger: Optional logger instance
        """
        self.db = db_pool
        self.schema = schema
        self.logger = logger

    @asynccontextmanager
    async def _connection(self):
        conn = _current_connection.get()
        if conn is not None:
            yield conn
            return
        async with self.db.acquire() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self):
        """
        Run a block in a database transaction.

        Nested calls reuse the outer connection and open a savepoint.
        """
        conn = _current_connection.get()
        if conn is not None:
            async with conn.transaction():
                yield conn
            return

        async with self.db.acquire() as conn:
            token = _current_connection.set(conn)
            try:
                async with conn.transaction():
                    yield conn
            finally:
                _current_connection.reset(token)


class PostgresUserStore(_PostgresStore):
    """
    User store backed by ``{schema}.users``.

    Example usage:
        users = PostgresUserStore(pool, schema="auth")
        roles = PostgresRoleStore(pool, schema="auth")

        async with users.transaction():
            user = await users.find_by_external_id(subject)
    """

    def _select(self, where: str) -> str:
        return f"""
            SELECT u.*,
                   ARRAY(
                       SELECT ur.role_id FROM {self.schema}.user_roles ur
                       WHERE ur.user_id = u.id
                   ) AS role_ids
            FROM {self.schema}.users u
            WHERE {where} AND u.is_active = true
        """

    @staticmethod
    def _to_user(row) -> User:
        data = dict(row)
        sso = SsoIdentity(
            external_id=data.pop("external_id", None),
            auth_provider=data.pop("auth_provider", None) or "local",
            encrypted_refresh_token=data.pop("encrypted_refresh_token", None),
            token_expires_at=data.pop("token_expires_at", None),
        )
        return User(
            id=data["id"],
            email=data["email"],
            display_name=data.get("name") or data["email"],
            password_hash=data.get("password_hash"),
            role_id=data.get("role_id"),
            role_ids=list(data.get("role_ids") or []),
            sso=sso,
            is_active=data.get("is_active", True),
            last_login=data.get("last_login"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )

    # ==================== LOOKUPS ====================

    async def find_by_external_id(self, external_id: str) -> User | None:
        query = self._select("u.external_id = $1")

        async with self._connection() as conn:
            row = await conn.fetchrow(query, external_id)
            if row:
                return self._to_user(row)
            return None

    async def find_by_email(self, email: str) -> User | None:
        query = self._select("lower(u.email) = lower($1)")

        async with self._connection() as conn:
            row = await conn.fetchrow(query, email)
            if row:
                return self._to_user(row)
            return None

    # ==================== WRITES ====================

    async def create(self, fields: dict[str, Any]) -> User:
        """
        Insert a new user.

        Args:
            fields: Column values; ``display_name`` maps to the ``name`` column

        Returns:
            Created user with database-generated fields
        """
        query = f"""
            INSERT INTO {self.schema}.users
            (id, email, name, password_hash, role_id, external_id, auth_provider,
             encrypted_refresh_token, token_expires_at, is_active, created_at, updated_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, true, $10, $10)
            RETURNING *, ARRAY[]::uuid[] AS role_ids
        """

        now = datetime.now(timezone.utc)
        async with self._connection() as conn:
            row = await conn.fetchrow(
                query,
                fields.get("id") or uuid4(),
                fields["email"],
                fields.get("display_name") or fields.get("name"),
                fields.get("password_hash"),
                fields.get("role_id"),
                fields.get("external_id"),
                fields.get("auth_provider") or "local",
                fields.get("encrypted_refresh_token"),
                fields.get("token_expires_at"),
                now,
            )
            return self._to_user(row)

    async def save(self, user: User) -> User:
        """Persist every engine-owned field of an existing user."""
        query = f"""
            UPDATE {self.schema}.users
            SET email = $2,
                name = $3,
                password_hash = $4,
                role_id = $5,
                external_id = $6,
                auth_provider = $7,
                encrypted_refresh_token = $8,
                token_expires_at = $9,
                last_login = $10,
                updated_at = $11
            WHERE id = $1
        """

        user.updated_at = datetime.now(timezone.utc)
        async with self._connection() as conn:
            await conn.execute(
                query,
                user.id,
                user.email,
                user.display_name,
                user.password_hash,
                user.role_id,
                user.sso.external_id,
                user.sso.auth_provider,
                user.sso.encrypted_refresh_token,
                user.sso.token_expires_at,
                user.last_login,
                user.updated_at,
            )
        return user


class PostgresRoleStore(_PostgresStore):
    """Role store backed by ``{schema}.roles`` and ``{schema}.user_roles``."""

    async def find_roles_by_names(self, names: list[str]) -> list[Role]:
        query = f"""
            SELECT id, name, description FROM {self.schema}.roles
            WHERE name = ANY($1::text[])
            ORDER BY name
        """

        async with self._connection() as conn:
            rows = await conn.fetch(query, list(names))
            return [Role(**dict(row)) for row in rows]

    async def find_role_by_name(self, name: str) -> Role | None:
        query = f"""
            SELECT id, name, description FROM {self.schema}.roles
            WHERE name = $1
        """

        async with self._connection() as conn:
            row = await conn.fetchrow(query, name)
            if row:
                return Role(**dict(row))
            return None

    async def assign_primary_role(self, user: User, role_id: UUID) -> None:
        """Set ``users.role_id`` and make sure the role is also in user_roles."""
        update_query = f"""
            UPDATE {self.schema}.users
            SET role_id = $1, updated_at = $2
            WHERE id = $3
        """
        check_query = f"""
            SELECT id FROM {self.schema}.user_roles
            WHERE user_id = $1 AND role_id = $2
        """
        insert_query = f"""
            INSERT INTO {self.schema}.user_roles
            (id, user_id, role_id, assigned_at, created_at, updated_at)
            VALUES ($1, $2, $3, $4, $4, $4)
        """

        now = datetime.now(timezone.utc)
        async with self._connection() as conn:
            await conn.execute(update_query, role_id, now, user.id)
            existing = await conn.fetchval(check_query, user.id, role_id)
            if not existing:
                await conn.execute(insert_query, uuid4(), user.id, role_id, now)

        user.role_id = role_id
        if role_id not in user.role_ids:
            user.role_ids.append(role_id)

    async def replace_all_roles(self, user: User, role_ids: list[UUID]) -> None:
        """Replace the user's role assignments with exactly ``role_ids``."""
        delete_query = f"""
            DELETE FROM {self.schema}.user_roles
            WHERE user_id = $1
        """
        insert_query = f"""
            INSERT INTO {self.schema}.user_roles
            (id, user_id, role_id, assigned_at, created_at, updated_at)
            VALUES ($1, $2, $3, $4, $4, $4)
        """

        unique_ids = list(dict.fromkeys(role_ids))
        now = datetime.now(timezone.utc)
        async with self._connection() as conn:
            await conn.execute(delete_query, user.id)
            for role_id in unique_ids:
                await conn.execute(insert_query, uuid4(), user.id, role_id, now)

        user.role_ids = unique_ids
