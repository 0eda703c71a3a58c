"""SQLAlchemy ORM models for the short-link service.

This module defines the database schema using SQLAlchemy declarative models
with the indexes the allocation and redirect paths depend on.

Data Model Layout
=================
::
    users table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ email (VARCHAR(255) UNIQUE)
    ├─ link_count (INTEGER DEFAULT 0)
    └─ link_limit (INTEGER)

    short_links table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ code (VARCHAR(20) UNIQUE, INDEXED)
    ├─ target (TEXT NOT NULL)
    ├─ owner_id (FK users.id, INDEXED)
    ├─ is_active (BOOLEAN DEFAULT TRUE)
    ├─ expires_at (TIMESTAMPTZ NULL)
    ├─ click_count (INTEGER DEFAULT 0)
    ├─ creator_ip / creator_user_agent
    ├─ created_at (TIMESTAMPTZ)
    └─ updated_at (TIMESTAMPTZ, ON UPDATE)

    click_events table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ link_id (FK short_links.id ON DELETE CASCADE)
    ├─ clicked_at (TIMESTAMPTZ)
    ├─ ip_address / user_agent / referrer
    ├─ country / city (optional, filled by upstream geo lookup)
    └─ INDEX (link_id, clicked_at)

How to Use
===========
**Step 1 — Import**::
    from shortlinks.models import ShortLink

**Step 2 — Check servability**::
    if link.state() is LinkState.SERVABLE:
        ...

Key Behaviours
===============
- ``code`` is unique across all owners; the unique index is the final
  arbiter when two creates race on the same code.
- ``click_count`` only ever moves through ``click_count + 1`` updates.
- ``is_active`` and ``expires_at`` are independent; either one makes a link
  unservable.

Classes:
    User:  Owner reference carrying the link quota.
    ShortLink:  Short code to target mapping.
    ClickEvent:  Append-only click record.
"""

import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from shortlinks.config import get_settings
from shortlinks.database import Base
from shortlinks.enums import LinkState
from shortlinks.urls import to_utc, utcnow

__all__ = ["ClickEvent", "ShortLink", "User"]


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    link_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    link_limit: Mapped[int] = mapped_column(
        Integer, default=lambda: get_settings().DEFAULT_LINK_LIMIT, nullable=False
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, links={self.link_count}/{self.link_limit})>"


class ShortLink(Base):
    __tablename__ = "short_links"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(20), unique=True, index=True, nullable=False)
    target: Mapped[str] = mapped_column(Text, nullable=False)
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    expires_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), index=True, nullable=True)
    click_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    creator_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    creator_user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )

    def is_expired(self, now: datetime.datetime | None = None) -> bool:
        expires_at = to_utc(self.expires_at)
        if expires_at is None:
            return False
        return (now or utcnow()) > expires_at

    def state(self, now: datetime.datetime | None = None) -> LinkState:
        # Expiry wins over deactivation so callers see the more specific reason.
        if self.is_expired(now):
            return LinkState.EXPIRED
        if not self.is_active:
            return LinkState.INACTIVE
        return LinkState.SERVABLE

    def __repr__(self) -> str:
        return f"<ShortLink(id={self.id}, code='{self.code}', active={self.is_active}, clicks={self.click_count})>"


class ClickEvent(Base):
    __tablename__ = "click_events"
    __table_args__ = (Index("ix_click_events_link_id_clicked_at", "link_id", "clicked_at"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    link_id: Mapped[int] = mapped_column(ForeignKey("short_links.id", ondelete="CASCADE"), nullable=False)
    clicked_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    referrer: Mapped[str | None] = mapped_column(Text, nullable=True)
    country: Mapped[str | None] = mapped_column(String(2), nullable=True)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return f"<ClickEvent(id={self.id}, link_id={self.link_id}, clicked_at={self.clicked_at})>"
