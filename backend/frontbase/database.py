"""
Database connection setup.

The engine (connection pool) and session factory are created once by the
application lifespan and stored on app.state; nothing here is a module
level singleton, so tests and background workers can each bring their own.
"""

from fastapi import Request
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)


def create_engine(database_url: str, **kwargs) -> AsyncEngine:
    """Create the async engine, enabling foreign keys on SQLite."""
    engine = create_async_engine(database_url, **kwargs)
    if engine.dialect.name == "sqlite":
        # SQLite ignores ON DELETE CASCADE unless this pragma is on.
        @event.listens_for(engine.sync_engine, "connect")
        def _enable_foreign_keys(dbapi_connection, _record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False keeps objects usable after commit (lazy loads
    # don't work with async sessions).
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db(request: Request):
    """
    FastAPI dependency that provides a database session to route handlers.

    The session is closed automatically after the handler returns.
    """
    async with request.app.state.session_factory() as session:
        yield session
