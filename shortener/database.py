"""PostgreSQL engine, session factory and schema bootstrap.

Connection Budget
=================
::
    redirect burst ──► resolver owners ─┐
                                        ├─► SqlDatastore bulkhead ──► engine pool
    flush tick ──────► upserts ─────────┘   (DATASTORE_MAX_CONCURRENCY)  (DB_POOL_SIZE
                                                                          + DB_MAX_OVERFLOW)

Only lock owners and flush ticks reach this layer; followers and cache hits
never open a session. The bulkhead in ``SqlDatastore`` is sized below the
pool, so a stampede queues on the semaphore instead of on pool checkout.

How to Use
===========
**On startup**::
    engine = create_engine(settings)
    await init_db(engine)
    datastore = SqlDatastore(create_session_factory(engine), settings.DATASTORE_MAX_CONCURRENCY)

**On shutdown**::
    await engine.dispose()

Key Behaviours
===============
- ``init_db`` creates missing tables only; it never migrates existing ones.
- Sessions do not expire attributes on commit, so returned records stay
  readable after the session closes.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from shortener.config import Settings

__all__ = ["Base", "create_engine", "create_session_factory", "init_db"]


class Base(DeclarativeBase):
    pass


def create_engine(settings: Settings) -> AsyncEngine:
    return create_async_engine(
        settings.DATABASE_URL,
        echo=False,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=True,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    # Import registers the tables on Base.metadata.
    import shortener.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
