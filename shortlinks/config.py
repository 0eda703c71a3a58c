"""Configuration management for the short-link service.

This module provides centralized configuration management using Pydantic BaseSettings
with environment variable support and caching for performance.

Flow Diagram — get_settings()
=============================
::
    ┌─────────────┐
    │  Call get_  │
    │  settings() │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Check cache  │
    │ (lru_cache)  │
    └──────┬──────┘
    HIT?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Create  │  │ Return  │
│ Settings│  │ cached  │
│ instance│  │ value   │
└─────────┘  └─────────┘

How to Use
===========
**Step 1 — Import**::
    from shortlinks.config import get_settings

**Step 2 — Get settings**::
    settings = get_settings()
    ttl = settings.CACHE_TTL_SECONDS

Key Behaviours
===============
- Settings are cached after first access.
- Environment variables (or a local ``.env``) override defaults.
- Code generation, cache TTL and quota defaults all live here so the
  engine never hardcodes them.

Classes:
    Settings:  Pydantic model for all configuration values.

"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "shortlinks"
    APP_ENV: str = "development"
    BASE_URL: str = "http://localhost:8080"
    FRONTEND_URL: str = "http://localhost:3000"
    LOG_LEVEL: str = "INFO"

    # PostgreSQL
    DATABASE_URL: str = "postgresql+asyncpg://shortlinks:shortlinks@db:5432/shortlinks"
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    DB_ECHO: bool = False

    # Redis
    REDIS_URL: str = "redis://redis:6379/0"

    # Short code allocation
    SHORT_CODE_LENGTH: int = 8
    SHORT_CODE_MAX_ATTEMPTS: int = 10
    CUSTOM_CODE_MIN_LENGTH: int = 3
    CUSTOM_CODE_MAX_LENGTH: int = 20

    # Cache
    CACHE_TTL_SECONDS: int = 24 * 3600

    # Owner quota
    DEFAULT_LINK_LIMIT: int = 50

    # Listing / stats
    DEFAULT_PAGE_SIZE: int = 10
    MAX_PAGE_SIZE: int = 100
    RECENT_CLICKS_LIMIT: int = 10

    # Background maintenance sweep
    CLEANUP_INTERVAL_SECONDS: int = 24 * 3600
    CLICK_RETENTION_DAYS: int = 0  # 0 keeps click history forever

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
