"""Shared pytest fixtures for the workout API test suite.

Provides:
- A per-test SQLite database file (no PostgreSQL needed for tests)
- An in-memory Redis double with a controllable clock, and one that is down
- Service instances wired to both
- FastAPI app + httpx.AsyncClient
- Seeded data: a user with a free subscription and its default key
"""

import fnmatch
import os
import uuid
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Override settings BEFORE any app imports
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("API_KEY_BCRYPT_ROUNDS", "4")
os.environ.setdefault("CLEANUP_ON_STARTUP", "false")
os.environ.setdefault("RAZORPAY_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("RAZORPAY_PLAN_ID_PRO", "plan_pro_test")
os.environ.setdefault("RAZORPAY_PLAN_ID_ENTERPRISE", "plan_enterprise_test")

from workout_api.core.cache import CacheService  # noqa: E402
from workout_api.core.database import Base  # noqa: E402
from workout_api.core.tasks import drain_pending  # noqa: E402
from workout_api.main import create_app  # noqa: E402
from workout_api.models.user import User  # noqa: E402
from workout_api.services.api_keys import ApiKeyService, IssuedKey  # noqa: E402
from workout_api.services.rate_limiter import RateLimiter  # noqa: E402
from workout_api.services.subscriptions import SubscriptionService  # noqa: E402
from workout_api.services.usage_logger import UsageLogger  # noqa: E402
from workout_api.services.workouts import WorkoutService  # noqa: E402

import workout_api.models.api_usage  # noqa: E402,F401
import workout_api.models.rate_limit  # noqa: E402,F401
import workout_api.models.workout  # noqa: E402,F401


# ---------------------------------------------------------------------------
# Redis doubles
# ---------------------------------------------------------------------------

class InMemoryRedis:
    """The subset of redis.asyncio.Redis the cache layer uses, with a fake clock."""

    def __init__(self) -> None:
        self.now = 1_000_000.0
        self._data: dict[str, str] = {}
        self._expires: dict[str, float] = {}

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def _purge(self, key: str) -> None:
        expires = self._expires.get(key)
        if expires is not None and expires <= self.now:
            self._data.pop(key, None)
            self._expires.pop(key, None)

    async def get(self, key: str) -> str | None:
        self._purge(key)
        return self._data.get(key)

    async def set(self, key: str, value: Any, ex: int | None = None) -> bool:
        self._data[key] = str(value)
        if ex is not None:
            self._expires[key] = self.now + ex
        else:
            self._expires.pop(key, None)
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            self._purge(key)
            if self._data.pop(key, None) is not None:
                removed += 1
            self._expires.pop(key, None)
        return removed

    async def keys(self, pattern: str) -> list[str]:
        for key in list(self._data):
            self._purge(key)
        return [key for key in self._data if fnmatch.fnmatchcase(key, pattern)]

    async def incr(self, key: str) -> int:
        self._purge(key)
        value = int(self._data.get(key, "0")) + 1
        self._data[key] = str(value)
        return value

    async def expire(self, key: str, seconds: int) -> bool:
        self._purge(key)
        if key not in self._data:
            return False
        self._expires[key] = self.now + seconds
        return True

    async def ttl(self, key: str) -> int:
        self._purge(key)
        if key not in self._data:
            return -2
        expires = self._expires.get(key)
        if expires is None:
            return -1
        return max(0, int(expires - self.now))

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        return None


class BrokenRedis:
    """Every call fails the way an unreachable Redis does."""

    def __getattr__(self, name: str) -> Any:
        async def fail(*args: Any, **kwargs: Any) -> Any:
            raise RedisConnectionError("Connection refused")

        return fail


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """A fresh SQLite file per test; separate connections per session."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await drain_pending()
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


# ---------------------------------------------------------------------------
# Cache + services
# ---------------------------------------------------------------------------

@pytest.fixture
def fake_redis() -> InMemoryRedis:
    return InMemoryRedis()


@pytest.fixture
def broken_redis() -> BrokenRedis:
    return BrokenRedis()


@pytest.fixture
def cache(fake_redis) -> CacheService:
    return CacheService(fake_redis)


@pytest.fixture
def api_keys(session_factory, cache) -> ApiKeyService:
    return ApiKeyService(session_factory, cache)


@pytest.fixture
def usage_logger(session_factory, cache) -> UsageLogger:
    return UsageLogger(session_factory, cache)


@pytest.fixture
def rate_limiter(session_factory, cache, usage_logger) -> RateLimiter:
    return RateLimiter(cache, session_factory, usage_logger, fallback="open")


@pytest.fixture
def subscriptions(session_factory, api_keys) -> SubscriptionService:
    return SubscriptionService(session_factory, api_keys)


@pytest.fixture
def workouts(session_factory, cache) -> WorkoutService:
    return WorkoutService(session_factory, cache)


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def user(session_factory) -> User:
    async with session_factory() as session:
        row = User(email=f"athlete-{uuid.uuid4().hex[:8]}@example.com")
        session.add(row)
        await session.commit()
    return row


@pytest_asyncio.fixture
async def free_key(subscriptions, user) -> IssuedKey:
    """The default key of a fresh free-tier user."""
    _, issued = await subscriptions.create_free_subscription(user.id)
    return issued


# ---------------------------------------------------------------------------
# App / HTTP client fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def app(session_factory, fake_redis):
    return create_app(session_factory=session_factory, redis=fake_redis)


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def bearer(raw_key: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {raw_key}"}


@pytest.fixture
def auth_headers(free_key) -> dict[str, str]:
    return bearer(free_key.raw_key)
