"""Pytest configuration and fixtures"""
import os

# Settings are read at import time; configure the environment first
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test.db"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["GITHUB_CLIENT_ID"] = "test-client-id"
os.environ["GITHUB_CLIENT_SECRET"] = "test-client-secret"
os.environ["GITHUB_TOKEN_ENCRYPTION_KEY"] = "test-encryption-key-0123456789abcdef"
os.environ["SERVICE_API_KEY_BCRYPT_ROUNDS"] = "4"
os.environ["BASE_URL"] = "http://testserver"

import time
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Dict, Optional, Tuple

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession

import afauth.models  # noqa: F401  registers tables on Base.metadata
from afauth.api.deps import get_oauth_client, get_store
from afauth.api.health import get_health_checker
from afauth.database import AsyncSessionLocal, Base, engine, get_db
from afauth.main import app
from afauth.models.service_registry import ServiceRegistry
from afauth.models.user import User
from afauth.services.ephemeral_store import EphemeralStore
from afauth.services.github_oauth import GitHubOAuthClient, GitHubTokenResponse, GitHubUser
from afauth.services.health_check import HealthChecker
from afauth.services.service_registry import create_service, generate_api_key
from afauth.utils.encryption import encrypt


class FakeEphemeralStore(EphemeralStore):
    """In-memory store with TTL semantics, shared by all requests in a test"""

    def __init__(self, clock=time.time):
        self._clock = clock
        self._data: Dict[str, Tuple[str, float]] = {}
        self.available = True

    def _live(self, key: str) -> Optional[str]:
        item = self._data.get(key)
        if item is None:
            return None
        value, expires_at = item
        if self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._data[key] = (value, self._clock() + ttl_seconds)

    async def get_and_delete(self, key: str) -> Optional[str]:
        value = self._live(key)
        self._data.pop(key, None)
        return value

    async def ping(self) -> bool:
        return self.available

    async def close(self) -> None:
        self._data.clear()

    def keys(self):
        return [key for key in list(self._data) if self._live(key) is not None]


class StubGitHubClient(GitHubOAuthClient):
    """GitHub client returning canned responses and counting refresh calls"""

    def __init__(self):
        super().__init__(http_client=httpx.AsyncClient())
        self.token_response = GitHubTokenResponse(
            access_token="gho_exchanged",
            refresh_token="ghr_exchanged",
            expires_in=28800,
        )
        self.user = GitHubUser(id=424242, login="octocat", email="octocat@example.com", name="Octo Cat")
        self.refresh_response = GitHubTokenResponse(
            access_token="gho_refreshed",
            refresh_token="ghr_refreshed",
            expires_in=28800,
        )
        self.refresh_error: Optional[Exception] = None
        self.refresh_calls = 0
        self.exchanged_codes = []

    async def exchange_code_for_token(self, code: str) -> GitHubTokenResponse:
        self.exchanged_codes.append(code)
        return self.token_response

    async def get_github_user(self, access_token: str) -> GitHubUser:
        return self.user

    async def refresh_access_token(self, refresh_token: str) -> GitHubTokenResponse:
        self.refresh_calls += 1
        if self.refresh_error is not None:
            raise self.refresh_error
        return self.refresh_response


@pytest.fixture(scope="function")
async def db() -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database for each test"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session = AsyncSessionLocal()
    try:
        yield session
    finally:
        await session.close()
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def store() -> FakeEphemeralStore:
    return FakeEphemeralStore()


@pytest.fixture
def github() -> StubGitHubClient:
    return StubGitHubClient()


@pytest.fixture
def health_checker() -> HealthChecker:
    return HealthChecker()


@pytest.fixture(scope="function")
async def client(
    db: AsyncSession,
    store: FakeEphemeralStore,
    github: StubGitHubClient,
    health_checker: HealthChecker,
) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Create test client with database session and collaborator overrides"""

    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_oauth_client] = lambda: github
    app.dependency_overrides[get_health_checker] = lambda: health_checker
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db: AsyncSession):
    """Factory persisting a user with encrypted GitHub tokens"""

    async def _make_user(
        github_user_id: int = 1001,
        is_whitelisted: bool = True,
        access_token: Optional[str] = "gho_stored",
        refresh_token: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> User:
        user = User(
            github_user_id=github_user_id,
            github_access_token=encrypt(access_token),
            github_refresh_token=encrypt(refresh_token),
            github_token_expires_at=expires_at,
            is_whitelisted=is_whitelisted,
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)
        return user

    return _make_user


@pytest.fixture
async def service(db: AsyncSession) -> Tuple[ServiceRegistry, str]:
    """A registered active service and its plain API key"""
    api_key = generate_api_key()
    registered = await create_service(db, "test-service", api_key, allowed_scopes=["github:token:read"])
    return registered, api_key


@pytest.fixture
def service_headers(service) -> dict:
    registered, api_key = service
    return {"Authorization": f"Bearer {registered.service_identifier}:{api_key}"}


def utc_in(**kwargs) -> datetime:
    return datetime.now(timezone.utc) + timedelta(**kwargs)
