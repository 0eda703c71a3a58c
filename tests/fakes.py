"""In-memory doubles for the record store and the link cache.

Both doubles honour the same contracts as ``SQLLinkStore`` and
``RedisLinkCache`` and append every mutating call to a shared ``journal`` so
tests can assert on the relative order of store and cache operations.
"""

import datetime
import itertools
from contextlib import asynccontextmanager

from shortlinks.errors import CacheError, DuplicateCodeError, StoreError
from shortlinks.repository import Quota
from shortlinks.urls import utcnow

OWNER_ID = 1
OTHER_OWNER_ID = 2


class InMemoryLinkStore:
    def __init__(self, journal: list[str] | None = None) -> None:
        self.links = {}
        self.clicks = []
        self.users: dict[int, list[int]] = {}
        self.journal = journal if journal is not None else []
        self.fail_on: set[str] = set()
        # Codes that look free to exists() but collide at insert time, as if a
        # concurrent create won the race.
        self.race_codes: set[str] = set()
        self.insert_calls = 0
        self._link_ids = itertools.count(1)
        self._click_ids = itertools.count(1)

    def add_user(self, owner_id: int, limit: int = 50, count: int = 0) -> None:
        self.users[owner_id] = [count, limit]

    def _check(self, op: str) -> None:
        if op in self.fail_on:
            raise StoreError(f"{op} unavailable")

    async def ping(self) -> None:
        self._check("ping")

    async def exists(self, code):
        self._check("exists")
        return code in self.links

    async def get(self, code):
        self._check("get")
        return self.links.get(code)

    async def is_owner(self, code, owner_id):
        self._check("is_owner")
        link = self.links.get(code)
        return link is not None and link.owner_id == owner_id

    async def quota(self, owner_id):
        self._check("quota")
        if owner_id not in self.users:
            return None
        count, limit = self.users[owner_id]
        return Quota(count=count, limit=limit)

    async def insert(self, link):
        self._check("insert")
        self.insert_calls += 1
        if link.code in self.links or link.code in self.race_codes:
            raise DuplicateCodeError(link.code)
        link.id = next(self._link_ids)
        self.links[link.code] = link
        self.users[link.owner_id][0] += 1
        self.journal.append(f"store.insert:{link.code}")
        return link

    async def update(self, link):
        self._check("update")
        self.links[link.code] = link
        self.journal.append(f"store.update:{link.code}")
        return link

    async def delete(self, code, owner_id):
        self._check("delete")
        link = self.links.get(code)
        if link is None or link.owner_id != owner_id:
            return False
        del self.links[code]
        self.clicks = [c for c in self.clicks if c.link_id != link.id]
        self.users[owner_id][0] = max(self.users[owner_id][0] - 1, 0)
        self.journal.append(f"store.delete:{code}")
        return True

    async def list_by_owner(self, owner_id, limit, offset):
        self._check("list_by_owner")
        owned = [link for link in self.links.values() if link.owner_id == owner_id]
        owned.sort(key=lambda link: (link.created_at, link.id), reverse=True)
        return owned[offset : offset + limit], len(owned)

    async def record_click(self, link, event):
        self._check("record_click")
        event.id = next(self._click_ids)
        event.link_id = link.id
        self.clicks.append(event)
        link.click_count += 1
        self.journal.append(f"store.record_click:{link.code}")

    async def recent_clicks(self, link_id, limit):
        self._check("recent_clicks")
        events = [c for c in self.clicks if c.link_id == link_id]
        events.sort(key=lambda c: (c.clicked_at, c.id), reverse=True)
        return events[:limit]

    async def delete_expired_inactive(self, now):
        self._check("delete_expired_inactive")
        doomed = [
            link
            for link in self.links.values()
            if link.expires_at is not None and link.expires_at < now and not link.is_active
        ]
        for link in doomed:
            await self.delete(link.code, link.owner_id)
        return [link.code for link in doomed]

    async def purge_clicks_before(self, cutoff):
        self._check("purge_clicks_before")
        before = len(self.clicks)
        self.clicks = [c for c in self.clicks if c.clicked_at >= cutoff]
        return before - len(self.clicks)


class InMemoryLinkCache:
    def __init__(self, journal: list[str] | None = None) -> None:
        self.entries: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.counts: dict[str, int] = {}
        self.journal = journal if journal is not None else []
        self.fail_on: set[str] = set()

    def _check(self, op: str) -> None:
        if op in self.fail_on:
            raise CacheError(f"{op} unavailable")

    async def ping(self) -> None:
        self._check("ping")

    async def set(self, code, target, ttl):
        self._check("set")
        self.entries[code] = target
        self.ttls[code] = ttl
        self.journal.append(f"cache.set:{code}")

    async def get(self, code):
        self._check("get")
        return self.entries.get(code)

    async def delete(self, code):
        self._check("delete")
        self.entries.pop(code, None)
        self.ttls.pop(code, None)
        self.journal.append(f"cache.delete:{code}")

    async def incr_count(self, code):
        self._check("incr_count")
        self.counts[code] = self.counts.get(code, 0) + 1
        return self.counts[code]

    async def get_count(self, code):
        self._check("get_count")
        return self.counts.get(code, 0)

    async def forget_count(self, code):
        self._check("forget_count")
        self.counts.pop(code, None)


class ScriptedGenerator:
    """Code generator that replays a fixed sequence and counts draws."""

    def __init__(self, codes) -> None:
        self._codes = iter(codes)
        self.draws = 0

    def generate(self) -> str:
        self.draws += 1
        return next(self._codes)


class ManualClock:
    """Stands in for ``utcnow``; time only moves when a test advances it."""

    def __init__(self, start: datetime.datetime | None = None) -> None:
        self.now = start or utcnow()

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now += datetime.timedelta(**delta)


@asynccontextmanager
async def fixed_factory(value):
    yield value
