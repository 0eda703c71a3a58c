"""Persistent record store for short links, click events and owner quotas.

The store is the source of truth for every state-sensitive decision. Each
public method is one unit of work: it commits on success, rolls back on
failure and re-raises any SQLAlchemy failure as ``StoreError`` so that the
engine stays free of driver-specific exception types.

Store Operations
================
::
    exists / get / is_owner / quota      ── reads
    insert            ── INSERT link  + users.link_count + 1     (one txn)
    update            ── UPDATE target / is_active / expires_at
    delete            ── DELETE clicks + link + users.link_count - 1 (one txn)
    record_click      ── INSERT click + click_count = click_count + 1 (one txn)
    delete_expired_inactive / purge_clicks_before   ── maintenance sweep

Key Behaviours
===============
- A unique-index violation on ``code`` surfaces as ``DuplicateCodeError``;
  any other integrity failure surfaces as plain ``StoreError``.
- Counter updates are expressed as SQL arithmetic, never read-modify-write,
  so concurrent clicks on one row serialize on the row lock.
- ``link_count`` never drops below zero.
"""

import datetime
from dataclasses import dataclass

from sqlalchemy import case, delete, exists, func, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shortlinks.errors import DuplicateCodeError, StoreError
from shortlinks.models import ClickEvent, ShortLink, User

__all__ = ["Quota", "SQLLinkStore"]


@dataclass(frozen=True)
class Quota:
    count: int
    limit: int

    @property
    def exhausted(self) -> bool:
        return self.count >= self.limit


class SQLLinkStore:
    """Record store backed by an async SQLAlchemy session."""

    def __init__(self, session: AsyncSession) -> None:
        self._db = session

    async def ping(self) -> None:
        try:
            await self._db.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            raise StoreError(f"database ping failed: {exc}") from exc

    async def exists(self, code: str) -> bool:
        try:
            result = await self._db.execute(select(exists().where(ShortLink.code == code)))
            return bool(result.scalar())
        except SQLAlchemyError as exc:
            raise StoreError(f"failed to check existence of {code!r}: {exc}") from exc

    async def get(self, code: str) -> ShortLink | None:
        try:
            result = await self._db.execute(select(ShortLink).where(ShortLink.code == code))
            return result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise StoreError(f"failed to load {code!r}: {exc}") from exc

    async def is_owner(self, code: str, owner_id: int) -> bool:
        try:
            result = await self._db.execute(
                select(exists().where(ShortLink.code == code, ShortLink.owner_id == owner_id))
            )
            return bool(result.scalar())
        except SQLAlchemyError as exc:
            raise StoreError(f"failed to check ownership of {code!r}: {exc}") from exc

    async def quota(self, owner_id: int) -> Quota | None:
        try:
            result = await self._db.execute(select(User.link_count, User.link_limit).where(User.id == owner_id))
            row = result.one_or_none()
        except SQLAlchemyError as exc:
            raise StoreError(f"failed to load quota for owner {owner_id}: {exc}") from exc
        if row is None:
            return None
        return Quota(count=row.link_count, limit=row.link_limit)

    async def insert(self, link: ShortLink) -> ShortLink:
        try:
            self._db.add(link)
            await self._db.execute(
                update(User).where(User.id == link.owner_id).values(link_count=User.link_count + 1)
            )
            await self._db.commit()
        except IntegrityError as exc:
            await self._db.rollback()
            if await self.exists(link.code):
                raise DuplicateCodeError(link.code) from exc
            raise StoreError(f"failed to insert {link.code!r}: {exc}") from exc
        except SQLAlchemyError as exc:
            await self._db.rollback()
            raise StoreError(f"failed to insert {link.code!r}: {exc}") from exc
        await self._db.refresh(link)
        return link

    async def update(self, link: ShortLink) -> ShortLink:
        try:
            await self._db.execute(
                update(ShortLink)
                .where(ShortLink.code == link.code)
                .values(
                    target=link.target,
                    is_active=link.is_active,
                    expires_at=link.expires_at,
                    updated_at=link.updated_at,
                )
            )
            await self._db.commit()
            await self._db.refresh(link)
        except SQLAlchemyError as exc:
            await self._db.rollback()
            raise StoreError(f"failed to update {link.code!r}: {exc}") from exc
        return link

    async def delete(self, code: str, owner_id: int) -> bool:
        try:
            result = await self._db.execute(
                select(ShortLink.id).where(ShortLink.code == code, ShortLink.owner_id == owner_id)
            )
            link_id = result.scalar_one_or_none()
            if link_id is None:
                return False
            await self._db.execute(delete(ClickEvent).where(ClickEvent.link_id == link_id))
            await self._db.execute(delete(ShortLink).where(ShortLink.id == link_id))
            await self._decrement_link_counts({owner_id: 1})
            await self._db.commit()
        except SQLAlchemyError as exc:
            await self._db.rollback()
            raise StoreError(f"failed to delete {code!r}: {exc}") from exc
        return True

    async def list_by_owner(self, owner_id: int, limit: int, offset: int) -> tuple[list[ShortLink], int]:
        try:
            total = await self._db.scalar(
                select(func.count()).select_from(ShortLink).where(ShortLink.owner_id == owner_id)
            )
            result = await self._db.execute(
                select(ShortLink)
                .where(ShortLink.owner_id == owner_id)
                .order_by(ShortLink.created_at.desc(), ShortLink.id.desc())
                .limit(limit)
                .offset(offset)
            )
            return list(result.scalars().all()), int(total or 0)
        except SQLAlchemyError as exc:
            raise StoreError(f"failed to list links for owner {owner_id}: {exc}") from exc

    async def record_click(self, link: ShortLink, event: ClickEvent) -> None:
        try:
            event.link_id = link.id
            self._db.add(event)
            await self._db.execute(
                update(ShortLink).where(ShortLink.id == link.id).values(click_count=ShortLink.click_count + 1)
            )
            await self._db.commit()
        except SQLAlchemyError as exc:
            await self._db.rollback()
            raise StoreError(f"failed to record click for {link.code!r}: {exc}") from exc

    async def recent_clicks(self, link_id: int, limit: int) -> list[ClickEvent]:
        try:
            result = await self._db.execute(
                select(ClickEvent)
                .where(ClickEvent.link_id == link_id)
                .order_by(ClickEvent.clicked_at.desc(), ClickEvent.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as exc:
            raise StoreError(f"failed to load clicks for link {link_id}: {exc}") from exc

    async def delete_expired_inactive(self, now: datetime.datetime) -> list[str]:
        """Remove links that are both past their expiry and deactivated."""
        try:
            result = await self._db.execute(
                select(ShortLink.id, ShortLink.code, ShortLink.owner_id).where(
                    ShortLink.expires_at.is_not(None),
                    ShortLink.expires_at < now,
                    ShortLink.is_active.is_(False),
                )
            )
            rows = result.all()
            if not rows:
                return []

            link_ids = [row.id for row in rows]
            per_owner: dict[int, int] = {}
            for row in rows:
                per_owner[row.owner_id] = per_owner.get(row.owner_id, 0) + 1

            await self._db.execute(delete(ClickEvent).where(ClickEvent.link_id.in_(link_ids)))
            await self._db.execute(delete(ShortLink).where(ShortLink.id.in_(link_ids)))
            await self._decrement_link_counts(per_owner)
            await self._db.commit()
        except SQLAlchemyError as exc:
            await self._db.rollback()
            raise StoreError(f"failed to delete expired links: {exc}") from exc
        return [row.code for row in rows]

    async def purge_clicks_before(self, cutoff: datetime.datetime) -> int:
        try:
            result = await self._db.execute(delete(ClickEvent).where(ClickEvent.clicked_at < cutoff))
            await self._db.commit()
        except SQLAlchemyError as exc:
            await self._db.rollback()
            raise StoreError(f"failed to purge click events: {exc}") from exc
        return result.rowcount or 0

    async def _decrement_link_counts(self, per_owner: dict[int, int]) -> None:
        for owner_id, removed in per_owner.items():
            await self._db.execute(
                update(User)
                .where(User.id == owner_id)
                .values(
                    link_count=case(
                        (User.link_count > removed, User.link_count - removed),
                        else_=0,
                    )
                )
            )
