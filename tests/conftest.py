"""Shared fixtures: isolated data directories and an in-memory database."""
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import clipper_studio.models  # noqa: F401
from clipper_studio.config import settings
from clipper_studio.db.database import Base, enable_sqlite_foreign_keys


@pytest.fixture(autouse=True)
def data_dirs(tmp_path, monkeypatch):
    projects_dir = tmp_path / "projects"
    scratch_dir = tmp_path / "scratch"
    projects_dir.mkdir()
    scratch_dir.mkdir()
    monkeypatch.setattr(settings, "projects_dir", projects_dir)
    monkeypatch.setattr(settings, "scratch_dir", scratch_dir)
    return tmp_path


@pytest_asyncio.fixture
async def session_maker():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine.sync_engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session
