import logging

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_request_id_in_response(client: AsyncClient):
    """All responses include X-Request-ID header."""
    response = await client.get("/health")
    assert response.status_code == 200
    # UUID format: 8-4-4-4-12
    assert len(response.headers["X-Request-ID"]) == 36


@pytest.mark.asyncio
async def test_incoming_request_id_is_reused(client: AsyncClient):
    response = await client.get("/health", headers={"X-Request-ID": "screen-req-1"})
    assert response.headers["X-Request-ID"] == "screen-req-1"


@pytest.mark.asyncio
async def test_404_returns_structured_json(client: AsyncClient):
    """Non-existent endpoint returns structured JSON error with request_id."""
    response = await client.get("/nonexistent", headers={"X-Request-ID": "abc"})
    assert response.status_code == 404
    data = response.json()
    assert data["error"] is True
    assert data["status_code"] == 404
    assert data["request_id"] == "abc"


@pytest.mark.asyncio
async def test_access_log_includes_screen(client: AsyncClient, caplog):
    with caplog.at_level(logging.INFO, logger="potok.access"):
        await client.get("/coach/settings", headers={"X-Coach-Screen": "Today"})
    assert "path=/coach/settings status=200" in caplog.text
    assert "screen=Today" in caplog.text


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    data = (await client.get("/health")).json()
    assert data["status"] == "ok"
    assert data["app"] == "Potok Coach"
