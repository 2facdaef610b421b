"""Shared test fixtures and configuration."""

import os
import time
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import httpx
import jwt
import pytest

from ix_sso import (
    InMemoryRoleStore,
    InMemoryUserStore,
    KeycloakTransport,
    RetryExecutor,
    Role,
    RoleMapper,
    SSOSettings,
    TokenCipher,
    TokenLifecycleManager,
    UserProvisioningService,
)
from ix_sso.hooks import LifecycleHooks

FERNET_KEY = TokenCipher.generate_key()

ROLE_MAPPING = {
    "realm-admin": "admin",
    "sales": ["broker", "viewer"],
    "managers": "manager",
}


class KeycloakStub:
    """
    Scripted Keycloak realm for httpx.MockTransport.

    Responses are queued per endpoint ("token", "userinfo", "token/introspect",
    "logout"). The last queued item is repeated once the queue runs dry.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self._queues: dict[str, list] = {}

    def add(self, endpoint: str, status: int = 200, body=None, content: bytes | None = None):
        self._queues.setdefault(endpoint, []).append(("response", status, body, content))
        return self

    def fail(self, endpoint: str, exc: Exception):
        self._queues.setdefault(endpoint, []).append(("error", exc, None, None))
        return self

    def calls(self, endpoint: str) -> list[httpx.Request]:
        return [r for r in self.requests if _endpoint(r) == endpoint]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self._queues.get(_endpoint(request))
        if not queue:
            return httpx.Response(404, json={"error": "not_found"})

        kind, first, body, content = queue.pop(0) if len(queue) > 1 else queue[0]
        if kind == "error":
            raise first
        if content is not None:
            return httpx.Response(first, content=content)
        return httpx.Response(first, json=body if body is not None else {})


def _endpoint(request: httpx.Request) -> str:
    return request.url.path.split("/protocol/openid-connect/", 1)[-1]


def make_access_token(**claims) -> str:
    """JWT carrying role claims. Its signature is never verified by the package."""
    payload = {"sub": "abc123", "exp": int(time.time()) + 300, **claims}
    return jwt.encode(payload, "test-signing-key-with-at-least-32-bytes", algorithm="HS256")


def token_response(**overrides) -> dict:
    body = {
        "access_token": make_access_token(),
        "refresh_token": "refresh-token-1",
        "id_token": "id-token-1",
        "token_type": "Bearer",
        "expires_in": 3600,
        "refresh_expires_in": 1800,
        "scope": "openid profile email",
    }
    body.update(overrides)
    return body


@pytest.fixture(autouse=True)
def reset_environment():
    """Reset environment variables after each test."""
    original_env = os.environ.copy()
    yield
    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def sso_settings() -> SSOSettings:
    """Create test SSO settings."""
    return SSOSettings(
        enabled=True,
        base_url="https://sso.example.com/",
        realm="insurx",
        client_id="ix-admin",
        client_secret="test-client-secret",
        redirect_uri="https://admin.example.com/auth/sso/callback",
        role_mapping=dict(ROLE_MAPPING),
        default_role="viewer",
        token_encryption_key=FERNET_KEY,
        error_handling={"retry_delay": 0, "max_retries": 3},
        retry={"sleep": 0},
    )


@pytest.fixture
def cipher() -> TokenCipher:
    return TokenCipher(FERNET_KEY)


@pytest.fixture
def keycloak() -> KeycloakStub:
    return KeycloakStub()


@pytest.fixture
def transport(sso_settings: SSOSettings, keycloak: KeycloakStub) -> KeycloakTransport:
    return KeycloakTransport(sso_settings, http_transport=httpx.MockTransport(keycloak.handler))


@pytest.fixture
def sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def executor(sleep: AsyncMock) -> RetryExecutor:
    return RetryExecutor(max_attempts=3, base_delay_ms=0, sleep=sleep)


@pytest.fixture
def token_manager(
    sso_settings: SSOSettings,
    transport: KeycloakTransport,
    executor: RetryExecutor,
) -> TokenLifecycleManager:
    return TokenLifecycleManager(sso_settings, transport=transport, executor=executor)


@pytest.fixture
def role_store() -> InMemoryRoleStore:
    return InMemoryRoleStore(
        [
            Role(name="viewer", description="Read-only access"),
            Role(name="admin", description="Administrator"),
            Role(name="broker", description="Broker"),
            Role(name="manager", description="Manager"),
        ]
    )


@pytest.fixture
def user_store(role_store: InMemoryRoleStore) -> InMemoryUserStore:
    return InMemoryUserStore(role_store=role_store)


@pytest.fixture
def role_mapper(sso_settings: SSOSettings, role_store: InMemoryRoleStore) -> RoleMapper:
    return RoleMapper.from_settings(sso_settings, role_store)


@pytest.fixture
def provisioning(
    sso_settings: SSOSettings,
    user_store: InMemoryUserStore,
    role_mapper: RoleMapper,
) -> UserProvisioningService:
    return UserProvisioningService.from_settings(sso_settings, user_store, role_mapper)


@pytest.fixture
def hooks() -> LifecycleHooks:
    return LifecycleHooks()


@pytest.fixture
def now() -> datetime:
    return datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def mock_db_pool():
    """Create a mock database pool."""
    pool = MagicMock()
    pool.acquire = MagicMock()

    # Create a mock connection context manager
    conn = MagicMock()
    conn.__aenter__ = AsyncMock(return_value=conn)
    conn.__aexit__ = AsyncMock(return_value=None)
    conn.fetchrow = AsyncMock(return_value=None)
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchval = AsyncMock(return_value=None)
    conn.execute = AsyncMock(return_value=None)

    transaction = MagicMock()
    transaction.__aenter__ = AsyncMock(return_value=transaction)
    transaction.__aexit__ = AsyncMock(return_value=None)
    conn.transaction = MagicMock(return_value=transaction)

    pool.acquire.return_value = conn
    return pool
