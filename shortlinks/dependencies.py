"""Dependency injection with a singleton service manager.

This module wires the per-request database session and the shared Redis
client and logger into ``LinkService`` instances, and resolves the calling
owner from the authentication header set upstream.
"""

import logging
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Optional

import redis.asyncio as redis
from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from shortlinks.cache import RedisLinkCache, close_redis, get_redis
from shortlinks.config import get_settings
from shortlinks.database import async_session, get_db
from shortlinks.errors import UnauthorizedError
from shortlinks.link_service import ClickRecorder, LinkService
from shortlinks.repository import SQLLinkStore

__all__ = [
    "RequestContext",
    "ServiceManager",
    "get_click_recorder",
    "get_current_owner",
    "get_link_service",
    "get_request_context",
    "get_service_manager",
]


# ============================================================================
# SINGLETON SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Singleton holder for resources shared across requests.

    Settings, the application logger and the Redis client are created once at
    startup; only the database session is per request.
    """

    _instance: Optional["ServiceManager"] = None
    _initialized: bool = False

    def __new__(cls) -> "ServiceManager":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def initialize(self) -> None:
        if not self._initialized:
            self.settings = get_settings()
            self.logger = self._setup_logger()
            self.cache_writer = await get_redis()
            self._initialized = True

    def _setup_logger(self) -> logging.Logger:
        logger = logging.getLogger("shortlinks")
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
            logger.setLevel(self.settings.LOG_LEVEL.upper())
        return logger

    @asynccontextmanager
    async def open_link_service(self):
        """Yield a ``LinkService`` bound to a fresh session of its own."""
        async with async_session() as session:
            yield LinkService(
                store=SQLLinkStore(session),
                cache=RedisLinkCache(self.cache_writer),
                settings=self.settings,
                logger=self.logger,
            )

    async def cleanup(self) -> None:
        if self._initialized:
            await close_redis()
        self._initialized = False


_service_manager = ServiceManager()


# ============================================================================
# REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request view over the shared resources.

    Attributes:
        database: Async database session (the only per-request resource)
        service_manager: Singleton holding settings, logger and Redis client
        request_id: Unique identifier for this request
        user_agent: Client user agent string
        client_ip: Client IP address
        start_time: Request start timestamp
    """

    database: AsyncSession
    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    user_agent: Optional[str] = None
    client_ip: Optional[str] = None
    referrer: Optional[str] = None
    start_time: float = field(default_factory=lambda: time.time())

    @property
    def cache_writer(self) -> redis.Redis:
        return self.service_manager.cache_writer

    @property
    def settings(self):
        return self.service_manager.settings

    @property
    def logger(self) -> logging.LoggerAdapter:
        return logging.LoggerAdapter(
            self.service_manager.logger,
            {
                "request_id": self.request_id,
                "client_ip": self.client_ip,
                "user_agent": self.user_agent,
            },
        )

    def get_duration(self) -> float:
        """Request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


async def get_service_manager() -> ServiceManager:
    if not _service_manager._initialized:
        await _service_manager.initialize()
    return _service_manager


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None


async def get_request_context(
    request: Request,
    db: AsyncSession = Depends(get_db),
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    return RequestContext(
        database=db,
        service_manager=manager,
        request_id=request.headers.get("x-request-id") or str(uuid.uuid4()),
        user_agent=request.headers.get("user-agent"),
        client_ip=_client_ip(request),
        referrer=request.headers.get("referer"),
    )


def get_link_service(ctx: RequestContext = Depends(get_request_context)) -> LinkService:
    return LinkService.from_context(ctx)


def get_click_recorder(manager: ServiceManager = Depends(get_service_manager)) -> ClickRecorder:
    return ClickRecorder(manager.open_link_service, logger=manager.logger)


async def get_current_owner(x_user_id: Optional[str] = Header(None, alias="X-User-ID")) -> int:
    """Owner identity asserted by the upstream authentication layer."""
    if not x_user_id:
        raise UnauthorizedError("Authentication required")
    try:
        owner_id = int(x_user_id)
    except ValueError as exc:
        raise UnauthorizedError("Invalid user identity", details=x_user_id) from exc
    if owner_id <= 0:
        raise UnauthorizedError("Invalid user identity", details=x_user_id)
    return owner_id
