"""Shared fixtures: throwaway SQLite databases for store and service tests."""

import os

# Must be set before backend.config is imported anywhere.
os.environ.setdefault("EXAM_SRS_DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from collections.abc import AsyncGenerator  # noqa: E402
from pathlib import Path  # noqa: E402

import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402

from backend.database import make_engine  # noqa: E402
from backend.models import Base  # noqa: E402


async def _make_factory(url: str) -> tuple:
    engine = make_engine(url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine, async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Sessions over a fresh in-memory database (one shared connection)."""
    engine, factory = await _make_factory("sqlite+aiosqlite:///:memory:")
    yield factory
    await engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path: Path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Sessions over a temp-file database, so concurrent sessions get separate connections."""
    engine, factory = await _make_factory(f"sqlite+aiosqlite:///{tmp_path / 'srs.db'}")
    yield factory
    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
