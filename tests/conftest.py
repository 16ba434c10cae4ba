"""Shared test fixtures."""

from __future__ import annotations

import fnmatch
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession

from agora.auth.jwt import create_access_token
from agora.auth.password import hash_password
from agora.auth.rbac import assign, seed_rules
from agora.cache import Cache
from agora.config import get_settings
from agora.config_store import DEFAULTS
from agora.database import close_db, get_engine, get_session, init_db
from agora.db.base import Base
from agora.db.models import (
    ROLE_ADMIN,
    ROLE_MEMBER,
    ROLE_MODERATOR,
    STATUS_ACTIVE,
    Category,
    Config,
    Forum,
    User,
)
from agora.redis_client import set_redis
from agora.session_store import SessionStore


class FakePipeline:
    def __init__(self, redis: FakeRedis) -> None:
        self._redis = redis
        self._calls: list[tuple[str, tuple[Any, ...]]] = []

    def incr(self, key: str) -> FakePipeline:
        self._calls.append(("incr", (key,)))
        return self

    def expire(self, key: str, seconds: int) -> FakePipeline:
        self._calls.append(("expire", (key, seconds)))
        return self

    async def execute(self) -> list[Any]:
        return [await getattr(self._redis, name)(*args) for name, args in self._calls]


class FakeRedis:
    """In-memory stand-in for the redis.asyncio calls the app makes.

    Expiry is recorded but never enforced.
    """

    def __init__(self) -> None:
        self.strings: dict[str, str] = {}
        self.hashes: dict[str, dict[str, str]] = {}
        self.ttls: dict[str, int] = {}

    async def get(self, key: str) -> str | None:
        return self.strings.get(key)

    async def set(self, key: str, value: Any, ex: int | None = None, nx: bool = False) -> bool | None:
        if nx and key in self.strings:
            return None
        self.strings[key] = str(value)
        if ex:
            self.ttls[key] = ex
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            removed += int(self.strings.pop(key, None) is not None)
            removed += int(self.hashes.pop(key, None) is not None)
            self.ttls.pop(key, None)
        return removed

    async def hget(self, key: str, field: str) -> str | None:
        return self.hashes.get(key, {}).get(field)

    async def hset(
        self,
        key: str,
        field: str | None = None,
        value: Any = None,
        mapping: dict[str, Any] | None = None,
    ) -> int:
        bucket = self.hashes.setdefault(key, {})
        items = dict(mapping or {})
        if field is not None:
            items[field] = value
        added = len([f for f in items if f not in bucket])
        bucket.update({f: str(v) for f, v in items.items()})
        return added

    async def hdel(self, key: str, *fields: str) -> int:
        bucket = self.hashes.get(key, {})
        return sum(int(bucket.pop(f, None) is not None) for f in fields)

    async def hgetall(self, key: str) -> dict[str, str]:
        return dict(self.hashes.get(key, {}))

    async def hexists(self, key: str, field: str) -> bool:
        return field in self.hashes.get(key, {})

    async def expire(self, key: str, seconds: int) -> bool:
        self.ttls[key] = seconds
        return True

    async def incr(self, key: str) -> int:
        value = int(self.strings.get(key, "0")) + 1
        self.strings[key] = str(value)
        return value

    def pipeline(self) -> FakePipeline:
        return FakePipeline(self)

    async def ping(self) -> bool:
        return True

    async def keys(self, pattern: str = "*") -> list[str]:
        return [k for k in [*self.strings, *self.hashes] if fnmatch.fnmatch(k, pattern)]

    async def flushdb(self) -> None:
        self.strings.clear()
        self.hashes.clear()
        self.ttls.clear()

    async def aclose(self) -> None:
        return None


@pytest.fixture
def fake_redis() -> FakeRedis:
    """Plug an in-memory Redis into the shared client slot."""
    fake = FakeRedis()
    set_redis(fake)
    yield fake
    set_redis(None)


@pytest.fixture
def cache(fake_redis: FakeRedis) -> Cache:
    return Cache(fake_redis)


@pytest.fixture
def session_store(fake_redis: FakeRedis) -> SessionStore:
    return SessionStore(fake_redis, "test-session")


@pytest_asyncio.fixture
async def database(tmp_path) -> AsyncGenerator[None, None]:
    """Empty SQLite database file, no tables."""
    get_settings.cache_clear()
    await init_db(f"sqlite+aiosqlite:///{tmp_path / 'agora.db'}")
    yield
    await close_db()


@pytest_asyncio.fixture
async def schema(database: None) -> None:
    """All forum tables, no rows."""
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@pytest_asyncio.fixture
async def db_session(database: None) -> AsyncGenerator[AsyncSession, None]:
    """Direct database session for setup and assertions."""
    sessions = get_session()
    session = await sessions.__anext__()
    yield session
    await sessions.aclose()


@pytest_asyncio.fixture
async def installed(schema: None, db_session: AsyncSession) -> AsyncSession:
    """Schema plus the seed rows an installation leaves behind."""
    values = dict(DEFAULTS, version=get_settings().app_version)
    await db_session.execute(insert(Config), [{"name": k, "value": v} for k, v in values.items()])
    await seed_rules(db_session)
    await db_session.commit()
    return db_session


UserFactory = Callable[..., Awaitable[User]]


@pytest.fixture
def make_user(db_session: AsyncSession) -> UserFactory:
    """Create an active account holding the given RBAC role."""

    async def _make(
        username: str,
        *,
        role: str = "member",
        email: str | None = None,
        status: int = STATUS_ACTIVE,
        password: str = "SecureP@ss1",
    ) -> User:
        level = {"admin": ROLE_ADMIN, "moderator": ROLE_MODERATOR}.get(role, ROLE_MEMBER)
        user = User(
            username=username,
            email=email or f"{username}@example.com",
            status=status,
            role=level,
            password_hash=hash_password(password),
        )
        db_session.add(user)
        await db_session.flush()
        await assign(db_session, role, user.id)
        await db_session.commit()
        return user

    return _make


@pytest.fixture
def make_forum(db_session: AsyncSession) -> Callable[..., Awaitable[Forum]]:
    """Create a forum inside a fresh category."""
    counter = {"n": 0}

    async def _make(*, visible: bool = True, category_visible: bool = True, name: str = "General") -> Forum:
        counter["n"] += 1
        category = Category(name=f"Category {counter['n']}", slug=f"category-{counter['n']}", visible=category_visible)
        db_session.add(category)
        await db_session.flush()
        forum = Forum(
            category_id=category.id,
            name=name,
            slug=f"{name.lower()}-{counter['n']}",
            visible=visible,
        )
        db_session.add(forum)
        await db_session.commit()
        return forum

    return _make


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.username)}"}


@pytest.fixture
def headers_for() -> Callable[[User], dict[str, str]]:
    return auth_headers


@pytest_asyncio.fixture
async def client(fake_redis: FakeRedis, database: None) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against a fresh app; lifespan is skipped, test storage is pre-wired."""
    from agora.main import create_app

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
