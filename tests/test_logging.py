"""Tests for request and caller log context."""

import pytest
import structlog
from fastapi.security import HTTPAuthorizationCredentials
from httpx import AsyncClient

from app.core.security import create_actor_token
from app.dependencies import get_current_actor


@pytest.mark.asyncio
async def test_request_id_echoed(client: AsyncClient) -> None:
    """Test a caller's request id comes back unchanged."""
    response = await client.get("/api/v1/ping", headers={"X-Request-ID": "desk-7-req-42"})

    assert response.headers["X-Request-ID"] == "desk-7-req-42"
    assert float(response.headers["X-Process-Time"]) >= 0


@pytest.mark.asyncio
async def test_request_id_generated(client: AsyncClient) -> None:
    """Test each request without an id gets a fresh one."""
    first = await client.get("/api/v1/ping")
    second = await client.get("/api/v1/ping")

    assert len(first.headers["X-Request-ID"]) == 32
    assert first.headers["X-Request-ID"] != second.headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_authenticated_actor_bound_to_log_context(staff, facility_id) -> None:
    """Test log lines after authentication carry the caller."""
    structlog.contextvars.clear_contextvars()
    credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials=create_actor_token(staff))

    try:
        actor = await get_current_actor(credentials)
        context = structlog.contextvars.get_contextvars()
    finally:
        structlog.contextvars.clear_contextvars()

    assert actor.actor_id == staff.actor_id
    assert context["actor_id"] == str(staff.actor_id)
    assert context["actor_role"] == "staff"
    assert context["actor_facility_id"] == str(facility_id)
