"""Tests for the in-memory and PostgreSQL stores."""

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from ix_sso import (
    InMemoryRoleStore,
    InMemoryUserStore,
    PostgresRoleStore,
    PostgresUserStore,
    Role,
    RoleStore,
    SsoIdentity,
    User,
    UserStore,
)


def user_row(**overrides) -> dict:
    row = {
        "id": uuid4(),
        "email": "jane.doe@example.com",
        "name": "Jane Doe",
        "password_hash": "!unusable",
        "role_id": None,
        "role_ids": [],
        "external_id": "abc123",
        "auth_provider": "sso",
        "encrypted_refresh_token": None,
        "token_expires_at": None,
        "is_active": True,
        "last_login": None,
        "created_at": datetime(2026, 1, 1, tzinfo=timezone.utc),
        "updated_at": datetime(2026, 1, 1, tzinfo=timezone.utc),
    }
    row.update(overrides)
    return row


class TestProtocols:
    """Store implementations satisfy the store protocols"""

    def test_in_memory(self, user_store, role_store):
        assert isinstance(user_store, UserStore)
        assert isinstance(role_store, RoleStore)

    def test_postgres(self, mock_db_pool):
        assert isinstance(PostgresUserStore(mock_db_pool), UserStore)
        assert isinstance(PostgresRoleStore(mock_db_pool), RoleStore)


class TestInMemoryUserStore:
    """Lookups, writes and transactions"""

    @pytest.mark.asyncio
    async def test_create_maps_sso_fields(self, user_store):
        user = await user_store.create(
            {
                "email": "a@example.com",
                "name": "A",
                "external_id": "abc123",
                "auth_provider": "sso",
            }
        )

        assert user.display_name == "A"
        assert user.sso == SsoIdentity(external_id="abc123", auth_provider="sso")
        assert user.created_at is not None

    @pytest.mark.asyncio
    async def test_lookups_return_copies(self, user_store):
        created = await user_store.create({"email": "A@Example.com", "display_name": "A"})

        found = await user_store.find_by_email("a@example.com")
        found.display_name = "changed"

        assert found.id == created.id
        assert user_store.users[created.id].display_name == "A"

    @pytest.mark.asyncio
    async def test_inactive_users_are_invisible(self):
        store = InMemoryUserStore(
            [
                User(
                    email="a@example.com",
                    display_name="A",
                    is_active=False,
                    sso=SsoIdentity(external_id="abc123", auth_provider="sso"),
                )
            ]
        )

        assert await store.find_by_email("a@example.com") is None
        assert await store.find_by_external_id("abc123") is None

    @pytest.mark.asyncio
    async def test_transaction_rolls_back_linked_stores(self, user_store, role_store):
        viewer = await role_store.find_role_by_name("viewer")

        with pytest.raises(RuntimeError):
            async with user_store.transaction():
                user = await user_store.create({"email": "a@example.com", "display_name": "A"})
                await role_store.assign_primary_role(user, viewer.id)
                raise RuntimeError("abort")

        assert user_store.users == {}
        assert role_store.assignments == {}
        assert role_store.primary_roles == {}

    @pytest.mark.asyncio
    async def test_nested_transaction_is_a_savepoint(self, user_store, role_store):
        viewer = await role_store.find_role_by_name("viewer")

        async with user_store.transaction():
            user = await user_store.create({"email": "a@example.com", "display_name": "A"})
            with pytest.raises(RuntimeError):
                async with role_store.transaction():
                    await role_store.assign_primary_role(user, viewer.id)
                    raise RuntimeError("abort")

        assert user.id in user_store.users
        assert role_store.role_names_for(user.id) == []


class TestInMemoryRoleStore:
    """Assignments"""

    @pytest.mark.asyncio
    async def test_replace_then_primary(self, user_store, role_store):
        user = await user_store.create({"email": "a@example.com", "display_name": "A"})
        broker = await role_store.find_role_by_name("broker")
        viewer = await role_store.find_role_by_name("viewer")

        await role_store.replace_all_roles(user, [broker.id, viewer.id, broker.id])
        await role_store.assign_primary_role(user, broker.id)

        assert role_store.role_names_for(user.id) == ["broker", "viewer"]
        assert user.role_id == broker.id
        assert user_store.users[user.id].role_ids == [broker.id, viewer.id]

    @pytest.mark.asyncio
    async def test_unknown_role(self, role_store):
        user = User(email="a@example.com", display_name="A")

        with pytest.raises(LookupError):
            await role_store.assign_primary_role(user, uuid4())

    @pytest.mark.asyncio
    async def test_find_roles_by_names(self):
        store = InMemoryRoleStore()
        store.add_role("viewer")
        store.add_role("admin")

        roles = await store.find_roles_by_names(["admin", "missing"])

        assert [role.name for role in roles] == ["admin"]


class TestPostgresUserStore:
    """SQL issued by the user store"""

    @pytest.mark.asyncio
    async def test_find_by_external_id(self, mock_db_pool):
        conn = mock_db_pool.acquire.return_value
        row = user_row(role_ids=[uuid4()])
        conn.fetchrow.return_value = row
        store = PostgresUserStore(mock_db_pool, schema="auth")

        user = await store.find_by_external_id("abc123")

        query, external_id = conn.fetchrow.call_args.args
        assert "FROM auth.users u" in query
        assert "u.external_id = $1" in query
        assert "auth.user_roles" in query
        assert external_id == "abc123"
        assert user.display_name == "Jane Doe"
        assert user.external_id == "abc123"
        assert user.role_ids == row["role_ids"]

    @pytest.mark.asyncio
    async def test_find_by_email_is_case_insensitive(self, mock_db_pool):
        conn = mock_db_pool.acquire.return_value
        store = PostgresUserStore(mock_db_pool)

        assert await store.find_by_email("Jane.Doe@Example.com") is None

        query = conn.fetchrow.call_args.args[0]
        assert "lower(u.email) = lower($1)" in query
        assert "u.is_active = true" in query

    @pytest.mark.asyncio
    async def test_create(self, mock_db_pool):
        conn = mock_db_pool.acquire.return_value
        conn.fetchrow.return_value = user_row()
        store = PostgresUserStore(mock_db_pool)

        user = await store.create(
            {
                "email": "jane.doe@example.com",
                "display_name": "Jane Doe",
                "external_id": "abc123",
                "auth_provider": "sso",
                "password_hash": "!unusable",
            }
        )

        args = conn.fetchrow.call_args.args
        assert "INSERT INTO public.users" in args[0]
        assert args[2:4] == ("jane.doe@example.com", "Jane Doe")
        assert args[6:8] == ("abc123", "sso")
        assert user.auth_provider == "sso"

    @pytest.mark.asyncio
    async def test_save(self, mock_db_pool):
        conn = mock_db_pool.acquire.return_value
        store = PostgresUserStore(mock_db_pool)
        user = User(
            email="a@example.com",
            display_name="A",
            sso=SsoIdentity(external_id="abc123", auth_provider="sso", encrypted_refresh_token="x"),
        )

        await store.save(user)

        args = conn.execute.call_args.args
        assert "UPDATE public.users" in args[0]
        assert args[1] == user.id
        assert args[6:9] == ("abc123", "sso", "x")
        assert user.updated_at is not None


class TestPostgresTransactions:
    """Connection sharing between stores"""

    @pytest.mark.asyncio
    async def test_stores_share_the_transaction_connection(self, mock_db_pool):
        conn = mock_db_pool.acquire.return_value
        users = PostgresUserStore(mock_db_pool)
        roles = PostgresRoleStore(mock_db_pool)

        async with users.transaction():
            await users.find_by_external_id("abc123")
            async with roles.transaction():
                await roles.find_role_by_name("viewer")

        assert mock_db_pool.acquire.call_count == 1
        assert conn.transaction.call_count == 2

    @pytest.mark.asyncio
    async def test_connection_is_released_after_transaction(self, mock_db_pool):
        users = PostgresUserStore(mock_db_pool)

        async with users.transaction():
            pass
        await users.find_by_email("a@example.com")

        assert mock_db_pool.acquire.call_count == 2

    @pytest.mark.asyncio
    async def test_errors_propagate(self, mock_db_pool):
        conn = mock_db_pool.acquire.return_value
        users = PostgresUserStore(mock_db_pool)

        with pytest.raises(RuntimeError):
            async with users.transaction():
                raise RuntimeError("abort")

        exc_type = conn.transaction.return_value.__aexit__.call_args.args[0]
        assert exc_type is RuntimeError


class TestPostgresRoleStore:
    """SQL issued by the role store"""

    @pytest.mark.asyncio
    async def test_find_roles_by_names(self, mock_db_pool):
        conn = mock_db_pool.acquire.return_value
        viewer = Role(name="viewer")
        conn.fetch.return_value = [viewer.model_dump()]
        store = PostgresRoleStore(mock_db_pool)

        roles = await store.find_roles_by_names(["viewer", "missing"])

        query, names = conn.fetch.call_args.args
        assert "name = ANY($1::text[])" in query
        assert names == ["viewer", "missing"]
        assert roles == [viewer]

    @pytest.mark.asyncio
    async def test_assign_primary_role_inserts_missing_assignment(self, mock_db_pool):
        conn = mock_db_pool.acquire.return_value
        conn.fetchval.return_value = None
        store = PostgresRoleStore(mock_db_pool)
        user = User(email="a@example.com", display_name="A")
        role_id = uuid4()

        await store.assign_primary_role(user, role_id)

        queries = [call.args[0] for call in conn.execute.call_args_list]
        assert "UPDATE public.users" in queries[0]
        assert "INSERT INTO public.user_roles" in queries[1]
        assert user.role_id == role_id
        assert user.role_ids == [role_id]

    @pytest.mark.asyncio
    async def test_assign_primary_role_keeps_existing_assignment(self, mock_db_pool):
        conn = mock_db_pool.acquire.return_value
        conn.fetchval.return_value = uuid4()
        store = PostgresRoleStore(mock_db_pool)
        user = User(email="a@example.com", display_name="A")

        await store.assign_primary_role(user, uuid4())

        assert conn.execute.call_count == 1

    @pytest.mark.asyncio
    async def test_replace_all_roles(self, mock_db_pool):
        conn = mock_db_pool.acquire.return_value
        store = PostgresRoleStore(mock_db_pool)
        user = User(email="a@example.com", display_name="A")
        first, second = uuid4(), uuid4()

        await store.replace_all_roles(user, [first, second, first])

        calls = conn.execute.call_args_list
        assert "DELETE FROM public.user_roles" in calls[0].args[0]
        assert [call.args[3] for call in calls[1:]] == [first, second]
        assert user.role_ids == [first, second]
