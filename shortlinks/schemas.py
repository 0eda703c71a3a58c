"""Pydantic schemas for request/response validation in the short-link API.

Schemas only check shape and types. Semantic validation (URL normalization,
custom-code format, expiry in the future, quota) is the engine's job so that
every entry point gets the same ``ValidationError`` behaviour.

Schema Hierarchy
=================
::
    LinkCreate (Input)
    ├─ url: str
    ├─ custom_code: str | None
    └─ expires_at: datetime | None   ("" accepted as null)

    LinkUpdate (Input, partial)
    ├─ original_url: str | None
    ├─ is_active: bool | None
    └─ expires_at: datetime | None   (explicit null clears the expiry)

    LinkResponse (Output)
    ├─ id, short_code, original_url, short_url
    ├─ user_id, is_active, click_count
    └─ created_at, updated_at, expires_at

    LinkCreateResponse / LinkListResponse / LinkStatsResponse (Output)
    HealthResponse / ErrorResponse (Output)

Classes:
    LinkCreate:  Input schema for link creation.
    LinkUpdate:  Input schema for owner updates.
    LinkResponse:  Output schema for one link.
    LinkCreateResponse:  Output schema returned by POST.
    LinkListResponse:  Paginated listing.
    ClickEventResponse:  One recorded click.
    LinkStatsResponse:  Link plus click totals and recent clicks.
    HealthResponse:  Output schema for health checks.
    ErrorResponse:  Error envelope.
"""

import datetime

from pydantic import BaseModel, Field, field_validator

from shortlinks.enums import CacheStatus, HealthStatus

__all__ = [
    "ClickEventResponse",
    "ErrorDetail",
    "ErrorResponse",
    "HealthResponse",
    "LinkCreate",
    "LinkCreateResponse",
    "LinkListResponse",
    "LinkResponse",
    "LinkStatsResponse",
    "LinkUpdate",
]


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


class LinkCreate(BaseModel):
    url: str = Field(..., description="Target URL; a missing scheme defaults to https")
    custom_code: str | None = Field(None, description="Optional vanity code, 3-20 chars of [A-Za-z0-9-]")
    expires_at: datetime.datetime | None = None

    @field_validator("custom_code", "expires_at", mode="before")
    @classmethod
    def empty_string_is_null(cls, v):
        return _blank_to_none(v)


class LinkUpdate(BaseModel):
    original_url: str | None = None
    is_active: bool | None = None
    expires_at: datetime.datetime | None = None

    @field_validator("original_url", "expires_at", mode="before")
    @classmethod
    def empty_string_is_null(cls, v):
        return _blank_to_none(v)

    @property
    def clears_expiry(self) -> bool:
        return "expires_at" in self.model_fields_set and self.expires_at is None


class LinkResponse(BaseModel):
    id: int
    short_code: str
    original_url: str
    short_url: str
    user_id: int
    is_active: bool
    click_count: int
    created_at: datetime.datetime
    updated_at: datetime.datetime
    expires_at: datetime.datetime | None = None

    @classmethod
    def from_link(cls, link, base_url: str) -> "LinkResponse":
        return cls(
            id=link.id,
            short_code=link.code,
            original_url=link.target,
            short_url=f"{base_url}/{link.code}",
            user_id=link.owner_id,
            is_active=link.is_active,
            click_count=link.click_count,
            created_at=link.created_at,
            updated_at=link.updated_at,
            expires_at=link.expires_at,
        )


class LinkCreateResponse(BaseModel):
    id: int
    short_code: str
    original_url: str
    short_url: str
    is_active: bool
    created_at: datetime.datetime
    expires_at: datetime.datetime | None = None

    @classmethod
    def from_link(cls, link, base_url: str) -> "LinkCreateResponse":
        return cls(
            id=link.id,
            short_code=link.code,
            original_url=link.target,
            short_url=f"{base_url}/{link.code}",
            is_active=link.is_active,
            created_at=link.created_at,
            expires_at=link.expires_at,
        )


class LinkListResponse(BaseModel):
    urls: list[LinkResponse]
    total: int
    limit: int
    offset: int


class ClickEventResponse(BaseModel):
    id: int
    clicked_at: datetime.datetime
    ip_address: str | None = None
    user_agent: str | None = None
    referrer: str | None = None
    country: str | None = None
    city: str | None = None

    model_config = {"from_attributes": True}


class LinkStatsResponse(BaseModel):
    url: LinkResponse
    total_clicks: int
    cached_clicks: int
    cache_status: CacheStatus
    recent_clicks: list[ClickEventResponse]


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus


class ErrorDetail(BaseModel):
    code: str
    message: str
    details: str | None = None


class ErrorResponse(BaseModel):
    error: ErrorDetail
