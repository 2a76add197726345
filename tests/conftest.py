"""
Pytest configuration and fixtures.

Every test gets its own SQLite file so concurrent sessions really contend
for the write lock, the same way separate API workers would.
"""
import os
import uuid
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, Optional

# Settings are cached on first use, so configure them before any import
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("DB_RETRY_INITIAL_DELAY", "0")
os.environ.setdefault("PLATFORM_FEE_PERCENT", "20")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from creator_platform.core.cache import TTLCache
from creator_platform.database.connection import create_engine_for_url, get_db, make_session_factory
from creator_platform.database.models import Account, Base, CreatorProfile, Media
from creator_platform.integrations.webhook_handler import WebhookHandler
from creator_platform.monitoring.health import HealthCheck


class FakeRedis:
    """The subset of redis.asyncio.Redis the platform uses, kept in a dict."""

    def __init__(self) -> None:
        self.store: Dict[str, Any] = {}

    async def set(
        self, key: str, value: Any, nx: bool = False, ex: Optional[int] = None
    ) -> Optional[bool]:
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
        return removed

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        return None


class UnavailableRedis(FakeRedis):
    """A Redis that refuses every command."""

    async def set(self, *args: Any, **kwargs: Any) -> Optional[bool]:
        raise RedisConnectionError("Connection refused")

    async def delete(self, *keys: str) -> int:
        raise RedisConnectionError("Connection refused")

    async def ping(self) -> bool:
        raise RedisConnectionError("Connection refused")


@pytest_asyncio.fixture
async def engine(tmp_path: Any) -> AsyncGenerator[AsyncEngine, Any]:
    """Fresh file-backed SQLite database with all tables."""
    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test database."""
    return make_session_factory(engine)


@pytest_asyncio.fixture
async def db(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, Any]:
    """Create test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def make_account(db: AsyncSession) -> Callable[..., Awaitable[Account]]:
    """Factory for committed accounts."""

    async def _make(role: str = "subscriber", **fields: Any) -> Account:
        fields.setdefault("email", f"{role}-{uuid.uuid4().hex[:10]}@example.com")
        account = Account(role=role, **fields)
        db.add(account)
        await db.commit()
        return account

    return _make


@pytest.fixture
def make_profile(
    db: AsyncSession, make_account: Callable[..., Awaitable[Account]]
) -> Callable[..., Awaitable[CreatorProfile]]:
    """Factory for committed creator profiles (approved unless told otherwise)."""

    async def _make(
        status: str = "approved",
        price_cents: int = 1999,
        stage_name: Optional[str] = None,
        **fields: Any,
    ) -> CreatorProfile:
        owner = await make_account(role="creator")
        suffix = uuid.uuid4().hex[:8]
        profile = CreatorProfile(
            account_id=owner.id,
            stage_name=stage_name or f"Creator {suffix}",
            slug=f"creator-{suffix}",
            status=status,
            subscription_price_cents=price_cents,
            **fields,
        )
        db.add(profile)
        await db.commit()
        return profile

    return _make


@pytest.fixture
def make_media(db: AsyncSession) -> Callable[..., Awaitable[Media]]:
    """Factory for committed media items (approved PPV at 500 cents by default)."""

    async def _make(
        profile: CreatorProfile,
        is_ppv: bool = True,
        price_cents: Optional[int] = 500,
        moderation_status: str = "approved",
        **fields: Any,
    ) -> Media:
        fields.setdefault("type", "photo")
        fields.setdefault("url", f"https://cdn.example.com/{uuid.uuid4().hex}.jpg")
        media = Media(
            profile_id=profile.id,
            is_ppv=is_ppv,
            price_cents=price_cents,
            moderation_status=moderation_status,
            **fields,
        )
        db.add(media)
        await db.commit()
        return media

    return _make


@pytest.fixture
def fake_redis() -> FakeRedis:
    """In-memory Redis stand-in."""
    return FakeRedis()


@pytest.fixture
def unavailable_redis() -> UnavailableRedis:
    """Redis stand-in that is always down."""
    return UnavailableRedis()


@pytest.fixture
def cache() -> TTLCache:
    """Per-test listing cache."""
    return TTLCache(default_ttl=60)


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    fake_redis: FakeRedis,
    cache: TTLCache,
) -> AsyncGenerator[AsyncClient, Any]:
    """HTTP client against the app, wired to the test database."""
    from creator_platform.api.main import app

    async def override_get_db() -> AsyncGenerator[AsyncSession, Any]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.state.cache = cache
    app.state.webhook_handler = WebhookHandler(redis_client=fake_redis)
    app.state.health_check = HealthCheck(
        session_factory=session_factory, redis_client=fake_redis
    )

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
