"""
Conftest
"""

import os

# Settings are read at import time
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-that-is-at-least-32-characters")
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DB_AUTO_CREATE"] = "false"
os.environ.pop("SUPADATA_API_KEY", None)
os.environ.pop("GLADIA_API_KEY", None)

from typing import AsyncGenerator  # noqa: E402

import pytest  # noqa: E402
from fakeredis import FakeAsyncRedis  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from app.core.config import settings  # noqa: E402
from app.infra.db import get_db  # noqa: E402
from app.infra.hot_cache import HotCache  # noqa: E402
from app.main import app  # noqa: E402
from app.models.base import Base  # noqa: E402
from app.services.transcripts.factory import build_resolver  # noqa: E402
from app.services.transcripts.resolver import Caller  # noqa: E402
from app.services.transcripts.strategies import Strategy  # noqa: E402
from tests.fakes import BrokenRedis, FakeCaptionClient, FakeClock  # noqa: E402


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def test_engine(tmp_path):
    # File database so concurrent background sessions get their own connections
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, expire_on_commit=False)


@pytest.fixture
async def redis_client():
    client = FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def hot_cache(redis_client) -> HotCache:
    return HotCache(redis_client)


@pytest.fixture
def broken_cache() -> HotCache:
    return HotCache(BrokenRedis())


@pytest.fixture
def caller() -> Caller:
    return Caller(identity="203.0.113.7")


@pytest.fixture
def make_resolver(hot_cache, session_factory, clock):
    def _make(strategies=None, ai_client=None, **overrides):
        test_settings = settings.model_copy(update=overrides)
        if strategies is None:
            strategies = [Strategy(FakeCaptionClient())]
        return build_resolver(
            test_settings,
            hot_cache,
            session_factory,
            http=None,
            strategies=strategies,
            ai_client=ai_client,
            clock=clock,
            monotonic=clock,
            sleep=clock.sleep,
        )

    return _make


@pytest.fixture
async def client(make_resolver, session_factory) -> AsyncGenerator[AsyncClient, None]:
    resolver = make_resolver()

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.state.resolver = resolver

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c

    await resolver.background.drain()
    app.dependency_overrides.clear()
    app.state.resolver = None
