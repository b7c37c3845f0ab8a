"""Tests for health endpoints."""

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient) -> None:
    """Test health check endpoint."""
    response = await client.get("/api/v1/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert "version" in data


@pytest.mark.asyncio
async def test_detailed_health_without_redis(client: AsyncClient) -> None:
    """Test Redis is not probed when the queue channel is in memory."""
    response = await client.get("/api/v1/health/detailed")
    assert response.status_code == 200
    data = response.json()
    assert data["database"] == "healthy"
    assert data["queue_channel"] == "memory"
    assert data["redis"] == "not_used"
    assert data["status"] == "healthy"


@pytest.mark.asyncio
async def test_ping(client: AsyncClient) -> None:
    """Test ping endpoint."""
    response = await client.get("/api/v1/ping")
    assert response.status_code == 200
    assert response.json() == {"message": "pong"}


@pytest.mark.asyncio
async def test_unknown_route_uses_error_shape(client: AsyncClient) -> None:
    """Test HTTP errors share the application error body."""
    response = await client.get("/api/v1/nowhere")
    assert response.status_code == 404
    assert response.json()["error"] == "HTTPException"
    assert response.json()["path"].endswith("/api/v1/nowhere")
