"""Shared test fixtures and configuration."""
import os

# Settings are read once per process; these must be in place before any
# clickgate module is imported.
os.environ.setdefault("SECRET_KEY", "test-secret-key-with-at-least-32-characters")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./clickgate-test.db")
os.environ.setdefault("ALLOWED_ORIGINS", "http://localhost:3000")

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402

from clickgate.application.auth_rate_limit import auth_rate_limiter  # noqa: E402
from clickgate.database import build_engine  # noqa: E402
from clickgate.models import Base  # noqa: E402


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _reset_rate_limit():
    auth_rate_limiter.clear()
    yield
    auth_rate_limiter.clear()


@pytest.fixture
async def session_factory(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'clickgate.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def session(session_factory):
    async with session_factory() as db_session:
        yield db_session
