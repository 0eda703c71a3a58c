"""Short-link engine: allocation, store-first resolution and cache coherence.

This module owns every decision about whether a code may be created, whether
a link may be served, and what the cache must look like afterwards.

Architecture Overview
==================
::
    ┌──────────────────────────────────────────────────────────┐
    │                      LinkService                         │
    │  ┌───────────────┐  ┌───────────────┐  ┌──────────────┐  │
    │  │ CodeGenerator │  │  Validation   │  │ Cache upkeep │  │
    │  │ (nanoid)      │  │ (urls, codes) │  │ (best effort)│  │
    │  └───────────────┘  └───────────────┘  └──────────────┘  │
    └──────────────────────────────────────────────────────────┘
                │                                   │
                ▼                                   ▼
    ┌───────────────────────┐           ┌───────────────────────┐
    │   SQLLinkStore        │           │   RedisLinkCache      │
    │   (source of truth)   │           │   (disposable copy)   │
    └───────────────────────┘           └───────────────────────┘

Link Creation Flow
-----------------
::
    ┌─────────────┐
    │ create_link │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Normalize + │  ValidationError
    │ validate    │─────────────────▶
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Quota check │  ValidationError (no insert)
    └──────┬──────┘─────────────────▶
           ▼
    ┌─────────────┐   custom taken → AlreadyExistsError
    │ Pick code   │   N draws exhausted → InternalError
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ INSERT      │   unique violation → retry draw / AlreadyExistsError
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Cache SET   │   failure logged, swallowed
    └─────────────┘

Redirect Resolution Flow
---------------------------
::
    ┌─────────────┐
    │  get_link   │
    └──────┬──────┘
           ▼
    ┌─────────────┐   missing → NotFoundError
    │ Store read  │
    └──────┬──────┘
           ▼
    ┌─────────────┐   expired  → DEL url:{code}, ExpiredError
    │ State check │   inactive → DEL url:{code}, InactiveError
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Cache SET   │   refresh, best effort
    └─────────────┘

Key Behaviours
===============
- State decisions always come from the store; the cache never answers
  "is this link servable".
- Cache writes and evictions never fail a call; store failures always do.
- Random codes use optimistic allocation with a bounded number of draws; the
  unique index settles races between concurrent creates.
- The quota check and the count increment are separate steps, so concurrent
  creates by one owner may overshoot the limit slightly.
"""

import datetime
import logging
import time
from collections.abc import Callable
from contextlib import contextmanager
from dataclasses import dataclass, field

from prometheus_client import Counter, Histogram

from shortlinks.cache import RedisLinkCache
from shortlinks.config import Settings
from shortlinks.enums import CacheStatus, HealthStatus, LinkState, RequestStatus
from shortlinks.errors import (
    AlreadyExistsError,
    AppError,
    CacheError,
    DuplicateCodeError,
    ExpiredError,
    ForbiddenError,
    InactiveError,
    InternalError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from shortlinks.models import ClickEvent, ShortLink
from shortlinks.repository import SQLLinkStore
from shortlinks.schemas import LinkUpdate
from shortlinks.shortcode import CodeGenerator, validate_custom_code
from shortlinks.urls import ensure_future, normalize_target, to_utc, utcnow

__all__ = ["ClickRecorder", "LinkPage", "LinkService", "LinkStats"]


# ============================================================================
# PROMETHEUS METRICS
# ============================================================================

LINK_OPERATIONS_TOTAL = Counter(
    "shortlinks_operations_total",
    "Engine operations by outcome",
    ["operation", "status"],
)
LINK_OPERATION_DURATION = Histogram(
    "shortlinks_operation_duration_seconds",
    "Time spent in engine operations",
    ["operation"],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
)
CODE_GENERATION_ATTEMPTS = Histogram(
    "shortlinks_code_generation_attempts",
    "Random code draws needed per created link",
    buckets=[1, 2, 3, 5, 10],
)
CACHE_FAILURES_TOTAL = Counter(
    "shortlinks_cache_failures_total",
    "Swallowed cache failures",
    ["operation"],
)
CLICKS_RECORDED_TOTAL = Counter(
    "shortlinks_clicks_recorded_total",
    "Click events persisted",
)
CLICK_RECORD_FAILURES_TOTAL = Counter(
    "shortlinks_click_record_failures_total",
    "Background click recordings that did not persist",
)


def _status_for(exc: AppError) -> RequestStatus:
    if isinstance(exc, ValidationError):
        return RequestStatus.VALIDATION_ERROR
    if isinstance(exc, NotFoundError):
        return RequestStatus.NOT_FOUND
    if isinstance(exc, (ExpiredError, InactiveError)):
        return RequestStatus.NOT_SERVABLE
    if isinstance(exc, AlreadyExistsError):
        return RequestStatus.CONFLICT
    return RequestStatus.ERROR


@dataclass(frozen=True)
class LinkPage:
    """One page of an owner's links with the bounds actually applied."""

    links: list[ShortLink]
    total: int
    limit: int
    offset: int


@dataclass
class LinkStats:
    link: ShortLink
    total_clicks: int
    cached_clicks: int
    cache_status: CacheStatus
    recent_clicks: list[ClickEvent] = field(default_factory=list)


# ============================================================================
# CORE SERVICE CLASS
# ============================================================================


class LinkService:
    """Engine for link creation, resolution, mutation and click recording.

    Collaborators are passed in explicitly; nothing here is process-global.
    ``clock`` supplies "now" for every expiry decision and timestamp.

    Example:
        >>> service = LinkService(SQLLinkStore(session), RedisLinkCache(client), settings)
        >>> link = await service.create_link("example.com", owner_id=1)
        >>> link.target
        'https://example.com'
    """

    def __init__(
        self,
        store: SQLLinkStore,
        cache: RedisLinkCache,
        settings: Settings,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
        generator: CodeGenerator | None = None,
        clock: Callable[[], datetime.datetime] = utcnow,
    ) -> None:
        self._store = store
        self._cache = cache
        self._settings = settings
        self._logger = logger or logging.getLogger("shortlinks")
        self._generator = generator or CodeGenerator(settings.SHORT_CODE_LENGTH)
        self._clock = clock

    @classmethod
    def from_context(cls, ctx) -> "LinkService":
        """Build a request-scoped service from a ``RequestContext``."""
        return cls(
            store=SQLLinkStore(ctx.database),
            cache=RedisLinkCache(ctx.cache_writer),
            settings=ctx.settings,
            logger=ctx.logger,
        )

    @property
    def settings(self) -> Settings:
        return self._settings

    # ========================================================================
    # PUBLIC API METHODS
    # ========================================================================

    async def create_link(
        self,
        target: str,
        owner_id: int,
        custom_code: str | None = None,
        expires_at=None,
        client_ip: str | None = None,
        user_agent: str | None = None,
    ) -> ShortLink:
        """Allocate a code for ``target`` on behalf of ``owner_id``.

        Raises:
            ValidationError: malformed target/code, past expiry, unknown owner
                or quota exhausted.
            AlreadyExistsError: the custom code is taken.
            InternalError: no free random code within the attempt bound, or
                the store failed.
        """
        with self._operation("create"):
            now = self._clock()
            target = normalize_target(target)
            expires_at = ensure_future(expires_at, now)
            if custom_code:
                custom_code = validate_custom_code(
                    custom_code,
                    self._settings.CUSTOM_CODE_MIN_LENGTH,
                    self._settings.CUSTOM_CODE_MAX_LENGTH,
                )

            await self._enforce_quota(owner_id)

            def build(code: str) -> ShortLink:
                return ShortLink(
                    code=code,
                    target=target,
                    owner_id=owner_id,
                    is_active=True,
                    expires_at=expires_at,
                    click_count=0,
                    creator_ip=client_ip,
                    creator_user_agent=user_agent,
                    created_at=now,
                    updated_at=now,
                )

            if custom_code:
                link = await self._insert_custom(custom_code, build)
            else:
                link = await self._insert_generated(build)

            await self._cache_set(link)
            self._logger.info(f"Link created: {link.code} -> {link.target} (owner={owner_id})")
            return link

    async def get_link(self, code: str) -> ShortLink:
        """Resolve ``code`` against the store and enforce servability."""
        with self._operation("get"):
            if not code:
                raise ValidationError("Short code is required")

            link = await self._store.get(code)
            if link is None:
                raise NotFoundError("URL not found")

            state = link.state(self._clock())
            if state is LinkState.EXPIRED:
                await self._cache_evict(code)
                raise ExpiredError("URL has expired")
            if state is LinkState.INACTIVE:
                await self._cache_evict(code)
                raise InactiveError("URL is not active")

            await self._cache_set(link)
            return link

    async def get_owned_link(self, code: str, owner_id: int) -> ShortLink:
        with self._operation("get_owned"):
            await self._require_owner(code, owner_id)
            return await self.get_link(code)

    async def list_links(self, owner_id: int, limit: int, offset: int) -> LinkPage:
        """Newest-first page of the owner's links.

        A non-positive ``limit`` falls back to the default page size, a larger
        one is capped, and a negative ``offset`` starts from the top. The
        returned page carries the bounds that were applied.
        """
        with self._operation("list"):
            if limit <= 0:
                limit = self._settings.DEFAULT_PAGE_SIZE
            limit = min(limit, self._settings.MAX_PAGE_SIZE)
            offset = max(offset, 0)
            links, total = await self._store.list_by_owner(owner_id, limit, offset)
            return LinkPage(links=links, total=total, limit=limit, offset=offset)

    async def update_link(self, code: str, owner_id: int, patch: LinkUpdate) -> ShortLink:
        """Apply the fields present in ``patch`` and keep the cache coherent.

        A change in servability (activity flip, expiry set, moved or cleared)
        evicts the cache entry; a target-only change rewrites it.
        """
        with self._operation("update"):
            await self._require_owner(code, owner_id)

            now = self._clock()
            new_target = normalize_target(patch.original_url) if patch.original_url is not None else None
            new_expiry = ensure_future(patch.expires_at, now) if patch.expires_at is not None else None

            link = await self._store.get(code)
            if link is None:
                raise NotFoundError("URL not found")

            status_changed = False
            if new_target is not None:
                link.target = new_target
            if patch.is_active is not None:
                if patch.is_active != link.is_active:
                    status_changed = True
                link.is_active = patch.is_active
            if new_expiry is not None:
                if to_utc(link.expires_at) != new_expiry:
                    status_changed = True
                link.expires_at = new_expiry
            elif patch.clears_expiry:
                if link.expires_at is not None:
                    status_changed = True
                link.expires_at = None
            link.updated_at = now

            link = await self._store.update(link)

            if status_changed or link.state(now) is not LinkState.SERVABLE:
                await self._cache_evict(code)
            else:
                await self._cache_set(link)

            self._logger.info(f"Link updated: {code} (status_changed={status_changed})")
            return link

    async def delete_link(self, code: str, owner_id: int) -> None:
        with self._operation("delete"):
            await self._require_owner(code, owner_id)

            # Evict before the row disappears so a concurrent reader cannot
            # repopulate the cache from a record that is about to go away.
            await self._cache_evict(code)

            if not await self._store.delete(code, owner_id):
                raise NotFoundError("URL not found")

            try:
                await self._cache.forget_count(code)
            except CacheError as exc:
                CACHE_FAILURES_TOTAL.labels(operation="forget_count").inc()
                self._logger.error(f"Failed to drop cached click counter for {code}: {exc}")

            self._logger.info(f"Link deleted: {code} (owner={owner_id})")

    async def record_click(
        self,
        code: str,
        ip: str | None,
        user_agent: str | None,
        referrer: str | None,
        country: str | None = None,
        city: str | None = None,
    ) -> None:
        """Persist one click for a link that is still servable."""
        with self._operation("record_click"):
            link = await self.get_link(code)

            event = ClickEvent(
                clicked_at=self._clock(),
                ip_address=ip,
                user_agent=user_agent,
                referrer=referrer or None,
                country=country,
                city=city,
            )
            await self._store.record_click(link, event)
            CLICKS_RECORDED_TOTAL.inc()

            try:
                await self._cache.incr_count(code)
            except CacheError as exc:
                CACHE_FAILURES_TOTAL.labels(operation="incr_count").inc()
                self._logger.error(f"Failed to increment cached click counter for {code}: {exc}")

    async def get_link_stats(self, code: str, owner_id: int) -> LinkStats:
        with self._operation("stats"):
            await self._require_owner(code, owner_id)
            link = await self.get_link(code)
            recent = await self._store.recent_clicks(link.id, self._settings.RECENT_CLICKS_LIMIT)

            cached_clicks = 0
            cache_status = CacheStatus.MISS
            try:
                cached_clicks = await self._cache.get_count(code)
                if await self._cache.get(code) is not None:
                    cache_status = CacheStatus.HIT
            except CacheError as exc:
                CACHE_FAILURES_TOTAL.labels(operation="stats").inc()
                self._logger.error(f"Failed to read cache state for {code}: {exc}")

            return LinkStats(
                link=link,
                total_clicks=link.click_count,
                cached_clicks=cached_clicks,
                cache_status=cache_status,
                recent_clicks=recent,
            )

    async def health(self) -> tuple[HealthStatus, HealthStatus]:
        database = HealthStatus.HEALTHY
        cache = HealthStatus.HEALTHY
        try:
            await self._store.ping()
        except StoreError as exc:
            self._logger.error(f"Database health check failed: {exc}")
            database = HealthStatus.UNHEALTHY
        try:
            await self._cache.ping()
        except CacheError as exc:
            self._logger.error(f"Cache health check failed: {exc}")
            cache = HealthStatus.UNHEALTHY
        return database, cache

    # ========================================================================
    # PRIVATE HELPER METHODS
    # ========================================================================

    @contextmanager
    def _operation(self, name: str):
        """Time an operation, label its outcome and translate store failures."""
        start_time = time.perf_counter()
        status = RequestStatus.SUCCESS
        try:
            yield
        except AppError as exc:
            status = _status_for(exc)
            if isinstance(exc, (ValidationError, NotFoundError, AlreadyExistsError)):
                self._logger.warning(f"{name} rejected: {exc}")
            raise
        except StoreError as exc:
            status = RequestStatus.ERROR
            self._logger.error(f"{name} failed in record store: {exc}")
            raise InternalError("Record store failure", details=str(exc)) from exc
        except Exception:
            status = RequestStatus.ERROR
            raise
        finally:
            LINK_OPERATION_DURATION.labels(operation=name).observe(time.perf_counter() - start_time)
            LINK_OPERATIONS_TOTAL.labels(operation=name, status=status).inc()

    async def _enforce_quota(self, owner_id: int) -> None:
        quota = await self._store.quota(owner_id)
        if quota is None:
            raise ValidationError(f"Unknown owner {owner_id}")
        if quota.exhausted:
            raise ValidationError(f"Link limit exceeded. You can create maximum {quota.limit} links")

    async def _insert_custom(self, code: str, build) -> ShortLink:
        if await self._store.exists(code):
            raise AlreadyExistsError("Custom short code already exists")
        try:
            return await self._store.insert(build(code))
        except DuplicateCodeError as exc:
            raise AlreadyExistsError("Custom short code already exists") from exc

    async def _insert_generated(self, build) -> ShortLink:
        max_attempts = self._settings.SHORT_CODE_MAX_ATTEMPTS
        for attempt in range(1, max_attempts + 1):
            candidate = self._generator.generate()
            if await self._store.exists(candidate):
                self._logger.debug(f"Generated code {candidate} already taken (attempt {attempt})")
                continue
            try:
                link = await self._store.insert(build(candidate))
            except DuplicateCodeError:
                self._logger.warning(f"Lost insert race for generated code {candidate} (attempt {attempt})")
                continue
            CODE_GENERATION_ATTEMPTS.observe(attempt)
            return link

        CODE_GENERATION_ATTEMPTS.observe(max_attempts)
        raise InternalError(
            "Failed to generate short code",
            details=f"no free code after {max_attempts} attempts",
        )

    async def _require_owner(self, code: str, owner_id: int) -> None:
        if not code:
            raise ValidationError("Short code is required")
        if await self._store.is_owner(code, owner_id):
            return
        if await self._store.exists(code):
            raise ForbiddenError()
        raise NotFoundError("URL not found")

    async def _cache_set(self, link: ShortLink) -> None:
        try:
            await self._cache.set(link.code, link.target, self._settings.CACHE_TTL_SECONDS)
        except CacheError as exc:
            CACHE_FAILURES_TOTAL.labels(operation="set").inc()
            self._logger.error(f"Failed to cache URL {link.code}: {exc}")

    async def _cache_evict(self, code: str) -> None:
        try:
            await self._cache.delete(code)
        except CacheError as exc:
            CACHE_FAILURES_TOTAL.labels(operation="delete").inc()
            self._logger.error(f"Failed to delete URL {code} from cache: {exc}")


# ============================================================================
# BACKGROUND CLICK RECORDING
# ============================================================================


class ClickRecorder:
    """Records clicks after the redirect response has been chosen.

    ``service_factory`` is an async context manager factory yielding a
    ``LinkService`` with its own session, so recording never touches the
    request-scoped session that is closed once the response is sent.
    """

    def __init__(self, service_factory, logger: logging.Logger | logging.LoggerAdapter | None = None) -> None:
        self._service_factory = service_factory
        self._logger = logger or logging.getLogger("shortlinks")

    async def __call__(self, code: str, ip: str | None, user_agent: str | None, referrer: str | None) -> None:
        try:
            async with self._service_factory() as service:
                await service.record_click(code, ip, user_agent, referrer)
        except AppError as exc:
            CLICK_RECORD_FAILURES_TOTAL.inc()
            self._logger.warning(f"Click for {code} not recorded: {exc}")
        except Exception:
            CLICK_RECORD_FAILURES_TOTAL.inc()
            self._logger.exception(f"Click for {code} not recorded")
