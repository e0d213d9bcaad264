from __future__ import annotations
from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from .core.config import get_settings
from .models import Base

settings = get_settings()

def make_engine(url: str):
    if url.startswith("sqlite") and (":memory:" in url or url.endswith("://")):
        # one shared connection so the in-memory database survives across sessions
        return create_async_engine(
            url, echo=False, future=True,
            connect_args={"check_same_thread": False}, poolclass=StaticPool,
        )
    return create_async_engine(url, echo=False, future=True, pool_pre_ping=True)

engine = make_engine(settings.database_url)
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

async def init_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        yield session
