"""
Database setup and session management.

The engine and session factory are built explicitly and handed to each
component; nothing here opens a connection at import time.
"""

from typing import Tuple

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from dosepush.config.settings import Settings
from dosepush.domain.schedule import Base
from dosepush.domain.subscription import PushSubscription  # noqa: F401 - needed for table creation
from dosepush.domain.dispatch import DispatchRecord  # noqa: F401 - needed for table creation


def create_engine_for(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine, with SQLite-specific connection handling."""
    if not database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=echo, pool_pre_ping=True)

    kwargs = {"connect_args": {"check_same_thread": False, "timeout": 15}}
    if ":memory:" in database_url:
        # One shared connection, otherwise every session sees an empty database
        kwargs["poolclass"] = StaticPool
    return create_async_engine(database_url, echo=echo, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Session factory passed into the registry, ledger and resolver."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


def build_database(settings: Settings) -> Tuple[AsyncEngine, async_sessionmaker]:
    """Engine and session factory for the configured database."""
    engine = create_engine_for(settings.database_url, echo=settings.debug)
    return engine, create_session_factory(engine)


async def init_database(engine: AsyncEngine) -> None:
    """Initialize database and create tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
