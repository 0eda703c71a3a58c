"""Shared pytest fixtures for engine, store, cache and API tests."""

import logging
from collections.abc import AsyncGenerator
from types import SimpleNamespace

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from shortlinks.config import Settings
from shortlinks.database import Base, get_db
from shortlinks.dependencies import get_click_recorder, get_link_service, get_service_manager
from shortlinks.link_service import ClickRecorder, LinkService
from shortlinks.main import app
from tests.fakes import OTHER_OWNER_ID, OWNER_ID, InMemoryLinkCache, InMemoryLinkStore, fixed_factory

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        BASE_URL="http://sho.rt",
        FRONTEND_URL="http://app.sho.rt",
        SHORT_CODE_LENGTH=8,
        SHORT_CODE_MAX_ATTEMPTS=10,
        CACHE_TTL_SECONDS=86400,
        DEFAULT_PAGE_SIZE=10,
        MAX_PAGE_SIZE=100,
    )


@pytest.fixture
def logger() -> logging.Logger:
    return logging.getLogger("shortlinks.tests")


@pytest.fixture
def journal() -> list[str]:
    return []


@pytest.fixture
def store(journal: list[str]) -> InMemoryLinkStore:
    store = InMemoryLinkStore(journal)
    store.add_user(OWNER_ID)
    store.add_user(OTHER_OWNER_ID)
    return store


@pytest.fixture
def cache(journal: list[str]) -> InMemoryLinkCache:
    return InMemoryLinkCache(journal)


@pytest.fixture
def service(store, cache, settings, logger) -> LinkService:
    return LinkService(store, cache, settings, logger=logger)


@pytest_asyncio.fixture
async def client(service: LinkService, settings: Settings, logger) -> AsyncGenerator[AsyncClient, None]:
    manager = SimpleNamespace(settings=settings, logger=logger, cache_writer=None)

    async def override_get_db() -> AsyncGenerator[None, None]:
        yield None

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_service_manager] = lambda: manager
    app.dependency_overrides[get_link_service] = lambda: service
    app.dependency_overrides[get_click_recorder] = lambda: ClickRecorder(lambda: fixed_factory(service), logger=logger)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    # StaticPool keeps the single in-memory database alive across connections.
    engine = create_async_engine(TEST_DATABASE_URL, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()
