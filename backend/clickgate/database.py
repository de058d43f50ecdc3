from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import settings


def _engine_options() -> dict[str, Any]:
    options: dict[str, Any] = {"echo": settings.debug, "future": True}
    if not settings.is_sqlite:
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_recycle=settings.db_pool_recycle,
            pool_pre_ping=settings.db_pool_pre_ping,
        )
    return options


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(database_url: str, **options: Any) -> AsyncEngine:
    """Create an async engine; SQLite engines get foreign key enforcement."""
    built = create_async_engine(database_url, **options)
    if database_url.startswith("sqlite"):
        event.listen(built.sync_engine, "connect", _enable_sqlite_foreign_keys)
    return built


engine = build_engine(settings.database_url, **_engine_options())

# ORM objects stay usable after commit and are NOT refreshed from the database.
# Services that reuse an object after commit must re-query or call
# `await session.refresh(obj)`.
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session
