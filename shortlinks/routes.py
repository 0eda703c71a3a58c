"""FastAPI route definitions for the short-link REST API and public redirects.

API Endpoint Overview
=====================
::
    GET    /health
        └─ HealthResponse (200)

    POST   /api/v1/urls
        ├─ LinkCreate (request body)
        └─ LinkCreateResponse (201) or 400/409/500

    GET    /api/v1/urls?limit=&offset=
        └─ LinkListResponse (200)

    GET    /api/v1/urls/{code}
    PATCH  /api/v1/urls/{code}        (PUT accepted as an alias)
    DELETE /api/v1/urls/{code}
    GET    /api/v1/urls/{code}/stats

    GET    /{code}
        ├─ 301 to the target, click recorded in the background
        └─ 302 to {FRONTEND_URL}/error/{expired|inactive|not-found|server-error}

Every ``/api`` route requires the ``X-User-ID`` header set by the upstream
authentication layer. API errors render as
``{"error": {"code": ..., "message": ..., "details": ...}}``.

Redirect Flow Diagram
=====================
::
    ┌─────────────┐
    │ GET /{code} │
    └──────┬──────┘
           ▼
    ┌─────────────┐   AppError
    │  get_link   │──────────────▶ 302 themed error page
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ schedule    │
    │ ClickRecorder│
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ 301 target  │
    └─────────────┘
"""

from urllib.parse import quote

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse

from shortlinks.dependencies import (
    RequestContext,
    get_click_recorder,
    get_current_owner,
    get_link_service,
    get_request_context,
)
from shortlinks.enums import ErrorCode, HealthStatus
from shortlinks.errors import AppError, ExpiredError, InactiveError, NotFoundError
from shortlinks.link_service import ClickRecorder, LinkService
from shortlinks.schemas import (
    ClickEventResponse,
    ErrorResponse,
    HealthResponse,
    LinkCreate,
    LinkCreateResponse,
    LinkListResponse,
    LinkResponse,
    LinkStatsResponse,
    LinkUpdate,
)

__all__ = ["app_error_handler", "error_page_url", "request_validation_handler", "router"]

router = APIRouter(
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    }
)


# ============================================================================
# ERROR RENDERING
# ============================================================================


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg')}" for err in exc.errors()
    )
    body = {"error": {"code": ErrorCode.VALIDATION.value, "message": "Invalid request", "details": details}}
    return JSONResponse(status_code=400, content=body)


def error_page_url(frontend_url: str, code: str, exc: Exception) -> str:
    if isinstance(exc, ExpiredError):
        page = "expired"
    elif isinstance(exc, InactiveError):
        page = "inactive"
    elif isinstance(exc, NotFoundError):
        page = "not-found"
    else:
        page = "server-error"
    return f"{frontend_url.rstrip('/')}/error/{page}?code={quote(code, safe='')}"


# ============================================================================
# HEALTH
# ============================================================================


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> HealthResponse:
    db_status, cache_status = await service.health()
    status = (
        HealthStatus.HEALTHY
        if db_status is HealthStatus.HEALTHY and cache_status is HealthStatus.HEALTHY
        else HealthStatus.UNHEALTHY
    )
    ctx.logger.debug(f"Health check completed: {status.value}")
    return HealthResponse(status=status, database=db_status, cache=cache_status)


# ============================================================================
# OWNER API
# ============================================================================


@router.post("/api/v1/urls", response_model=LinkCreateResponse, status_code=201, tags=["urls"])
async def create_url(
    payload: LinkCreate,
    ctx: RequestContext = Depends(get_request_context),
    owner_id: int = Depends(get_current_owner),
    service: LinkService = Depends(get_link_service),
) -> LinkCreateResponse:
    link = await service.create_link(
        payload.url,
        owner_id,
        custom_code=payload.custom_code,
        expires_at=payload.expires_at,
        client_ip=ctx.client_ip,
        user_agent=ctx.user_agent,
    )
    ctx.logger.info(f"Short URL created: {link.code} in {ctx.get_duration():.1f}ms")
    return LinkCreateResponse.from_link(link, ctx.settings.BASE_URL)


@router.get("/api/v1/urls", response_model=LinkListResponse, tags=["urls"])
async def list_urls(
    limit: int = Query(0, description="Page size; 0 selects the configured default"),
    offset: int = Query(0),
    ctx: RequestContext = Depends(get_request_context),
    owner_id: int = Depends(get_current_owner),
    service: LinkService = Depends(get_link_service),
) -> LinkListResponse:
    page = await service.list_links(owner_id, limit, offset)
    return LinkListResponse(
        urls=[LinkResponse.from_link(link, ctx.settings.BASE_URL) for link in page.links],
        total=page.total,
        limit=page.limit,
        offset=page.offset,
    )


@router.get("/api/v1/urls/{code}", response_model=LinkResponse, tags=["urls"])
async def get_url(
    code: str,
    ctx: RequestContext = Depends(get_request_context),
    owner_id: int = Depends(get_current_owner),
    service: LinkService = Depends(get_link_service),
) -> LinkResponse:
    link = await service.get_owned_link(code, owner_id)
    return LinkResponse.from_link(link, ctx.settings.BASE_URL)


@router.api_route("/api/v1/urls/{code}", methods=["PATCH", "PUT"], response_model=LinkResponse, tags=["urls"])
async def update_url(
    code: str,
    payload: LinkUpdate,
    ctx: RequestContext = Depends(get_request_context),
    owner_id: int = Depends(get_current_owner),
    service: LinkService = Depends(get_link_service),
) -> LinkResponse:
    link = await service.update_link(code, owner_id, payload)
    return LinkResponse.from_link(link, ctx.settings.BASE_URL)


@router.delete("/api/v1/urls/{code}", tags=["urls"])
async def delete_url(
    code: str,
    owner_id: int = Depends(get_current_owner),
    service: LinkService = Depends(get_link_service),
) -> dict[str, str]:
    await service.delete_link(code, owner_id)
    return {"message": "URL deleted successfully"}


@router.get("/api/v1/urls/{code}/stats", response_model=LinkStatsResponse, tags=["urls"])
async def get_url_stats(
    code: str,
    ctx: RequestContext = Depends(get_request_context),
    owner_id: int = Depends(get_current_owner),
    service: LinkService = Depends(get_link_service),
) -> LinkStatsResponse:
    stats = await service.get_link_stats(code, owner_id)
    return LinkStatsResponse(
        url=LinkResponse.from_link(stats.link, ctx.settings.BASE_URL),
        total_clicks=stats.total_clicks,
        cached_clicks=stats.cached_clicks,
        cache_status=stats.cache_status,
        recent_clicks=[ClickEventResponse.model_validate(click) for click in stats.recent_clicks],
    )


# ============================================================================
# PUBLIC REDIRECT
# ============================================================================


@router.get("/{code}", tags=["redirect"])
async def redirect_to_url(
    code: str,
    background_tasks: BackgroundTasks,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
    recorder: ClickRecorder = Depends(get_click_recorder),
) -> RedirectResponse:
    try:
        link = await service.get_link(code)
    except AppError as exc:
        ctx.logger.warning(f"Redirect failed for {code}: {exc}")
        return RedirectResponse(error_page_url(ctx.settings.FRONTEND_URL, code, exc), status_code=302)
    except Exception as exc:
        ctx.logger.exception(f"Redirect crashed for {code}")
        return RedirectResponse(error_page_url(ctx.settings.FRONTEND_URL, code, exc), status_code=302)

    background_tasks.add_task(recorder, code, ctx.client_ip, ctx.user_agent, ctx.referrer)
    ctx.logger.info(f"Redirect: {code} -> {link.target} in {ctx.get_duration():.1f}ms")
    return RedirectResponse(link.target, status_code=301)
