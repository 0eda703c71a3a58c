"""HTTP API and public redirect behaviour tests."""

import datetime

import pytest
from httpx import AsyncClient

from shortlinks.urls import utcnow
from tests.fakes import OTHER_OWNER_ID, OWNER_ID

OWNER = {"X-User-ID": str(OWNER_ID)}
OTHER = {"X-User-ID": str(OTHER_OWNER_ID)}


async def create(client: AsyncClient, url: str = "https://www.python.org", **extra) -> dict:
    response = await client.post("/api/v1/urls", json={"url": url, **extra}, headers=OWNER)
    assert response.status_code == 201, response.text
    return response.json()


# ============================================================================
# HEALTH
# ============================================================================


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient) -> None:
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "database": "healthy", "cache": "healthy"}


@pytest.mark.asyncio
async def test_health_check_degraded(client: AsyncClient, cache) -> None:
    cache.fail_on.add("ping")
    response = await client.get("/health")
    assert response.json() == {"status": "unhealthy", "database": "healthy", "cache": "unhealthy"}


# ============================================================================
# CREATE / READ
# ============================================================================


@pytest.mark.asyncio
async def test_create_short_url(client: AsyncClient) -> None:
    data = await create(client, "example.com")

    assert data["original_url"] == "https://example.com"
    assert data["short_url"] == f"http://sho.rt/{data['short_code']}"
    assert data["is_active"] is True
    assert data["expires_at"] is None
    assert len(data["short_code"]) == 8


@pytest.mark.asyncio
async def test_create_with_custom_code_and_expiry(client: AsyncClient) -> None:
    expires_at = (utcnow() + datetime.timedelta(days=1)).isoformat()
    data = await create(client, custom_code="guide", expires_at=expires_at)

    assert data["short_code"] == "guide"
    assert data["expires_at"] is not None


@pytest.mark.asyncio
async def test_create_treats_empty_optional_fields_as_absent(client: AsyncClient) -> None:
    data = await create(client, custom_code="", expires_at="")
    assert len(data["short_code"]) == 8
    assert data["expires_at"] is None


@pytest.mark.asyncio
async def test_create_duplicate_custom_code(client: AsyncClient) -> None:
    await create(client, custom_code="taken")
    response = await client.post(
        "/api/v1/urls", json={"url": "https://other.example", "custom_code": "taken"}, headers=OWNER
    )

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "ALREADY_EXISTS"


@pytest.mark.asyncio
async def test_create_invalid_url(client: AsyncClient) -> None:
    response = await client.post("/api/v1/urls", json={"url": "ftp://example.com"}, headers=OWNER)

    assert response.status_code == 400
    body = response.json()
    assert body["error"]["code"] == "VALIDATION_ERROR"
    assert body["error"]["message"] == "Invalid URL format"


@pytest.mark.asyncio
@pytest.mark.parametrize("code", ["health", "metrics", "docs", "redoc"])
async def test_create_rejects_reserved_custom_code(client: AsyncClient, code: str) -> None:
    response = await client.post(
        "/api/v1/urls", json={"url": "https://example.com", "custom_code": code}, headers=OWNER
    )

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_create_malformed_body(client: AsyncClient) -> None:
    response = await client.post("/api/v1/urls", json={"custom_code": "abc"}, headers=OWNER)
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_create_over_quota(client: AsyncClient, store) -> None:
    store.add_user(OWNER_ID, limit=1, count=1)
    response = await client.post("/api/v1/urls", json={"url": "https://example.com"}, headers=OWNER)

    assert response.status_code == 400
    assert "maximum 1 links" in response.json()["error"]["message"]


@pytest.mark.asyncio
@pytest.mark.parametrize("headers", [{}, {"X-User-ID": "abc"}, {"X-User-ID": "0"}])
async def test_api_requires_owner_identity(client: AsyncClient, headers) -> None:
    response = await client.post("/api/v1/urls", json={"url": "https://example.com"}, headers=headers)
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "UNAUTHORIZED"


@pytest.mark.asyncio
async def test_list_urls(client: AsyncClient) -> None:
    for name in ("a", "b", "c"):
        await create(client, f"https://{name}.example")

    response = await client.get("/api/v1/urls", params={"limit": 2, "offset": 0}, headers=OWNER)

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 3
    assert body["limit"] == 2
    assert body["offset"] == 0
    assert [u["original_url"] for u in body["urls"]] == ["https://c.example", "https://b.example"]

    other = await client.get("/api/v1/urls", headers=OTHER)
    assert other.json()["total"] == 0


@pytest.mark.asyncio
async def test_list_urls_clamps_pagination(client: AsyncClient) -> None:
    response = await client.get("/api/v1/urls", params={"limit": 0, "offset": -3}, headers=OWNER)
    assert response.json()["limit"] == 10
    assert response.json()["offset"] == 0


@pytest.mark.asyncio
async def test_get_own_url(client: AsyncClient) -> None:
    await create(client, custom_code="mine")

    response = await client.get("/api/v1/urls/mine", headers=OWNER)
    assert response.status_code == 200
    assert response.json()["user_id"] == OWNER_ID

    response = await client.get("/api/v1/urls/mine", headers=OTHER)
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"


# ============================================================================
# UPDATE / DELETE / STATS
# ============================================================================


@pytest.mark.asyncio
async def test_patch_deactivates(client: AsyncClient, cache) -> None:
    await create(client, custom_code="pause")

    response = await client.patch("/api/v1/urls/pause", json={"is_active": False}, headers=OWNER)

    assert response.status_code == 200
    assert response.json()["is_active"] is False
    assert "pause" not in cache.entries


@pytest.mark.asyncio
async def test_put_is_accepted_for_updates(client: AsyncClient) -> None:
    await create(client, custom_code="moving")
    response = await client.put("/api/v1/urls/moving", json={"original_url": "new.example"}, headers=OWNER)
    assert response.json()["original_url"] == "https://new.example"


@pytest.mark.asyncio
async def test_update_by_other_owner_is_not_found(client: AsyncClient) -> None:
    await create(client, custom_code="mine")
    response = await client.patch("/api/v1/urls/mine", json={"is_active": False}, headers=OTHER)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_delete_url(client: AsyncClient) -> None:
    await create(client, custom_code="gone")

    response = await client.delete("/api/v1/urls/gone", headers=OWNER)
    assert response.status_code == 200
    assert response.json() == {"message": "URL deleted successfully"}

    response = await client.get("/gone", follow_redirects=False)
    assert response.headers["location"] == "http://app.sho.rt/error/not-found?code=gone"


@pytest.mark.asyncio
async def test_stats_after_redirects(client: AsyncClient) -> None:
    await create(client, custom_code="hot")
    for _ in range(3):
        await client.get("/hot", headers={"Referer": "https://ref.example"}, follow_redirects=False)

    response = await client.get("/api/v1/urls/hot/stats", headers=OWNER)

    assert response.status_code == 200
    body = response.json()
    assert body["total_clicks"] == 3
    assert body["cached_clicks"] == 3
    assert body["cache_status"] == "hit"
    assert body["url"]["click_count"] == 3
    assert len(body["recent_clicks"]) == 3
    assert body["recent_clicks"][0]["referrer"] == "https://ref.example"


# ============================================================================
# REDIRECT
# ============================================================================


@pytest.mark.asyncio
async def test_redirect_valid_code(client: AsyncClient, store) -> None:
    await create(client, "https://www.github.com", custom_code="ghub")

    response = await client.get(
        "/ghub", headers={"X-Forwarded-For": "203.0.113.9, 10.0.0.1"}, follow_redirects=False
    )

    assert response.status_code == 301
    assert response.headers["location"] == "https://www.github.com"
    assert store.clicks[0].ip_address == "203.0.113.9"


@pytest.mark.asyncio
async def test_redirect_unknown_code(client: AsyncClient) -> None:
    response = await client.get("/nonexistent", follow_redirects=False)
    assert response.status_code == 302
    assert response.headers["location"] == "http://app.sho.rt/error/not-found?code=nonexistent"


@pytest.mark.asyncio
async def test_redirect_inactive_code(client: AsyncClient, store) -> None:
    await create(client, custom_code="off")
    store.links["off"].is_active = False

    response = await client.get("/off", follow_redirects=False)

    assert response.status_code == 302
    assert response.headers["location"] == "http://app.sho.rt/error/inactive?code=off"
    assert store.clicks == []


@pytest.mark.asyncio
async def test_redirect_expired_code(client: AsyncClient, store) -> None:
    await create(client, custom_code="old")
    store.links["old"].expires_at = utcnow() - datetime.timedelta(minutes=1)

    response = await client.get("/old", follow_redirects=False)

    assert response.status_code == 302
    assert response.headers["location"] == "http://app.sho.rt/error/expired?code=old"


@pytest.mark.asyncio
async def test_redirect_store_outage(client: AsyncClient, store) -> None:
    store.fail_on.add("get")
    response = await client.get("/anything", follow_redirects=False)
    assert response.status_code == 302
    assert response.headers["location"] == "http://app.sho.rt/error/server-error?code=anything"


@pytest.mark.asyncio
async def test_redirect_survives_cache_outage(client: AsyncClient, cache) -> None:
    await create(client, custom_code="live")
    cache.fail_on.update({"set", "delete", "incr_count"})

    response = await client.get("/live", follow_redirects=False)

    assert response.status_code == 301
