"""Async SQLAlchemy engine and session factory.

Learn: SQLAlchemy 2.0 async mode — create_async_engine for connection pooling,
async_sessionmaker for per-command database access. Every inbound listing
command opens its own session, so a slow write for one client never holds a
session another client needs.
"""

from fastapi import Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from marketsync.config import settings
from marketsync.db.models import Base


def _engine_kwargs(database_url: str) -> dict:
    # SQLite pools are managed by the dialect; only server databases get a sized pool.
    if database_url.startswith("sqlite"):
        return {}
    return {"pool_size": 5, "max_overflow": 15, "pool_pre_ping": True}


# echo=True in debug to see SQL queries.
engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    **_engine_kwargs(settings.database_url),
)


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory — each command gets its own session."""
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_db(bind: AsyncEngine = engine) -> None:
    """Create the listings table if it does not exist yet.

    There are no migrations: the schema is a single table and create_all is
    idempotent. Failure here is a startup failure and is left to propagate.
    """
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def ping(bind: AsyncEngine = engine) -> None:
    """Round-trip a trivial query; raises if the database is unreachable."""
    async with bind.connect() as conn:
        await conn.execute(text("SELECT 1"))


async def get_db(request: Request) -> AsyncSession:
    """FastAPI dependency — yields a session per request, auto-closes.

    Uses the factory the app was built with (see create_app), so tests can
    point the whole app at their own database.
    """
    async with request.app.state.session_factory() as session:
        try:
            yield session
        finally:
            await session.close()
