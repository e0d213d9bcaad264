from __future__ import annotations

import os

# settings are read once at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("AUTH_JWKS_URL", "http://auth.test/.well-known/jwks.json")
os.environ.setdefault("ENABLE_SCHEDULER", "false")
os.environ.setdefault("RL_MAX_REQS", "1000")

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis
from fastapi import Header, HTTPException
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pawpals.core import nats as bus
from pawpals.core.identity import MemberIdentity
from pawpals.core.redis import get_redis, set_redis_client
from pawpals.db import make_engine
from pawpals.deps import get_claims, get_db
from pawpals.main import app
from pawpals.models import Base, Dog, Garden


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
    original = get_redis()
    client = FakeRedis(decode_responses=True)
    set_redis_client(client)
    try:
        yield client
    finally:
        set_redis_client(original)
        await client.flushall()


@pytest.fixture(autouse=True)
def published(monkeypatch):
    """Captures visit events instead of talking to NATS."""
    events: list[tuple[str, dict]] = []

    async def _publish(event: str, evt: dict):
        events.append((event, evt))

    monkeypatch.setattr(bus, "publish_visit_event", _publish)
    return events


@pytest_asyncio.fixture
async def engine(tmp_path):
    eng = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'visits.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield eng
    finally:
        await eng.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


class Seeder:
    def __init__(self, session_maker):
        self._sm = session_maker

    async def garden(self, **kw) -> Garden:
        kw.setdefault("name", "Park HaYarkon")
        kw.setdefault("city", "Tel Aviv")
        kw.setdefault("max_dogs", 10)
        async with self._sm() as s:
            g = Garden(**kw)
            s.add(g)
            await s.commit()
            return g

    async def dog(self, owner_id: str, **kw) -> Dog:
        kw.setdefault("name", "Rex")
        async with self._sm() as s:
            d = Dog(owner_id=owner_id, **kw)
            s.add(d)
            await s.commit()
            return d


@pytest.fixture
def seed(session_maker):
    return Seeder(session_maker)


@pytest.fixture
def alice() -> MemberIdentity:
    return MemberIdentity(user_id="user-alice")


@pytest.fixture
def bob() -> MemberIdentity:
    return MemberIdentity(user_id="user-bob")


@pytest.fixture
def as_user():
    """Request headers the overridden claims dependency turns into an identity."""
    def _headers(user_id: str, role: str = "user") -> dict[str, str]:
        return {"X-Test-User": user_id, "X-Test-Role": role}
    return _headers


@pytest_asyncio.fixture
async def api_client(session_maker):
    async def _get_db():
        async with session_maker() as session:
            yield session

    async def _claims(x_test_user: str | None = Header(default=None), x_test_role: str | None = Header(default=None)):
        if not x_test_user:
            raise HTTPException(status_code=401, detail="Missing token")
        return {"sub": x_test_user, "role": x_test_role or "user"}

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_claims] = _claims
    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(transport=transport, base_url="http://testserver") as client:
            yield client
    finally:
        app.dependency_overrides.clear()
