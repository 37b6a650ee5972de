"""
Data Services — Database Engine Management
============================================

What:  Async SQLAlchemy engine, session factory, table creation and disposal.
How:   Creates an async engine for the configured SQLite file (aiosqlite
       driver) and a session factory shared by the data store.
Who:   Used by DataStore for queries; init_models/dispose_engine are wired
       into the ASGI lifespan by the entry point.
When:  Engine is created at module import; sessions are created per operation.

Notes:
    SQLite serializes writers itself; concurrent inserts during seeding each
    open their own session and wait on the database lock. No explicit
    transactions or row locks are used anywhere.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from data_services.config import settings


# ── Engine Configuration ──────────────────────────────────────────────────
engine = create_async_engine(
    settings.database_url,
    # Echo SQL queries in DEBUG mode for development visibility
    echo=settings.log_level == "DEBUG",
)

# ── Session Factory ───────────────────────────────────────────────────────
# expire_on_commit=False: rows stay readable after the session commits
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """
    Base class holding the shared metadata for every table.

    The sampleData table is declared as a Core Table on this metadata
    (see data_services.models.sample_data) because it has no primary key.
    """
    pass


# ── Lifecycle Helpers ─────────────────────────────────────────────────────
async def init_models(bind: AsyncEngine = engine) -> None:
    """
    What:  Creates every table registered on Base.metadata if it is absent.
    When:  ASGI lifespan startup, before the first request is served.
    """
    # Import so the table is registered on the metadata
    from data_services.models import sample_data  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine(bind: AsyncEngine = engine) -> None:
    """
    What:  Gracefully closes all connections in the pool.
    When:  Called during application shutdown (lifespan handler).
    """
    await bind.dispose()
