"""
Centralized Test Configuration.

In-memory SQLite shared by the app and the tests, an in-memory Redis stand-in
for token revocation, and a recording fake in place of the Expo client.
"""

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import Pool, StaticPool

from fitsocial.app.main import app
from fitsocial.app.db.session import get_db, get_session_factory, Base
from fitsocial.app.core.dependencies import get_push_provider
from fitsocial.app.core.jwt import create_access_token
from fitsocial.app.core.security import get_password_hash
from fitsocial.app.models.user import User
from fitsocial.app.models.notification_preference import NotificationPreference
from fitsocial.app.models.push_token import PushToken
from fitsocial.app.services.push_provider import PushTicket
import fitsocial.app.core.token_revocation as token_revocation_module

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


class MockRedis:
    """The subset of redis.asyncio used by token revocation."""

    def __init__(self):
        self.store = {}
        self.available = True

    def _check(self):
        if not self.available:
            raise ConnectionError("redis unavailable")

    async def ping(self):
        self._check()
        return True

    async def setex(self, key, ttl, value):
        self._check()
        self.store[key] = value
        return True

    async def exists(self, key):
        self._check()
        return 1 if key in self.store else 0

    async def flushdb(self):
        self.store = {}


class FakePushProvider:
    """
    Records every batch and answers with one ticket per message.

    ``tickets_for`` maps a device token to the ticket returned for it;
    ``error`` makes the next sends raise.
    """

    def __init__(self):
        self.calls = []
        self.tickets_for = {}
        self.error = None

    @property
    def messages(self):
        return [m for batch in self.calls for m in batch]

    async def send(self, messages):
        self.calls.append(list(messages))
        if self.error is not None:
            raise self.error
        return [
            self.tickets_for.get(m.to, PushTicket(status="ok", id=f"ticket-{i}"))
            for i, m in enumerate(messages)
        ]


mock_redis = MockRedis()


@pytest.fixture(scope="session", autouse=True)
def apply_overrides():
    """Patch the module-level Redis client and the DB dependencies once per session."""
    original_client = token_revocation_module.redis_client
    token_revocation_module.redis_client = mock_redis

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: TestingSessionLocal
    yield

    app.dependency_overrides = {}
    token_revocation_module.redis_client = original_client


@pytest.fixture(autouse=True)
async def setup_database():
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    mock_redis.available = True
    await mock_redis.flushdb()

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def redis_mock():
    return mock_redis


@pytest.fixture
def push_provider():
    """Fresh fake provider wired into the app for one test."""
    provider = FakePushProvider()
    app.dependency_overrides[get_push_provider] = lambda: provider
    yield provider
    app.dependency_overrides.pop(get_push_provider, None)


@pytest.fixture
async def client(push_provider):
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def session_factory():
    return TestingSessionLocal


# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def make_user():
    """Factory: persist a user with default preferences and return it."""
    counter = {"n": 0}

    async def _make_user(username=None, full_name=None, password="password123", is_active=True):
        counter["n"] += 1
        username = username or f"athlete{counter['n']}"
        async with TestingSessionLocal() as session:
            user = User(
                email=f"{username}@example.com",
                username=username,
                full_name=full_name,
                hashed_password=get_password_hash(password),
                is_active=is_active,
            )
            session.add(user)
            await session.flush()
            session.add(NotificationPreference(user_id=user.id))
            await session.commit()
            await session.refresh(user)
            return user

    return _make_user


@pytest.fixture
def add_token():
    """Factory: register a device token row directly."""

    async def _add_token(user_id, token, is_active=True, platform="ios"):
        async with TestingSessionLocal() as session:
            row = PushToken(user_id=user_id, token=token, is_active=is_active, platform=platform)
            session.add(row)
            await session.commit()
            return row.id

    return _add_token


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user.id, user.username)}"}


async def fetch_user(user_id):
    async with TestingSessionLocal() as session:
        return await session.get(User, user_id)
