"""Engine and session plumbing for the relational record store.

One ``AsyncEngine`` is built per process from ``Settings`` and shared by the
request path, the background click recorder and the maintenance sweep.

Session Ownership
=================
::
    HTTP request      ── get_db()            one session per request, closed after it
    click recorder    ── async_session()     own session, opened after the response
    maintenance sweep ── async_session()     own session per sweep pass

Key Behaviours
===============
- Pool sizing comes from ``DB_POOL_SIZE`` / ``DB_MAX_OVERFLOW``; SQLite URLs
  (used by the test suite) skip the queue pool arguments they do not accept.
- ``expire_on_commit`` is off so committed links can still be serialized.
- ``init_db`` creates missing tables; it does not migrate existing ones.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from shortlinks.config import Settings, get_settings

__all__ = ["Base", "async_session", "build_engine", "close_db", "engine", "get_db", "init_db"]


def build_engine(settings: Settings) -> AsyncEngine:
    url = make_url(settings.DATABASE_URL)
    options: dict = {"echo": settings.DB_ECHO}
    if url.get_backend_name() != "sqlite":
        options.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_pre_ping=True,
        )
    return create_async_engine(url, **options)


engine = build_engine(get_settings())

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session() as session:
        yield session


async def init_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()
