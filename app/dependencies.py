"""FastAPI dependencies."""

from typing import Annotated

from fastapi import Depends, HTTPException, Query, WebSocket, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.queue_channel import QueueChannel, get_queue_channel
from app.core.security import actor_from_claims, decode_access_token
from app.database import get_db
from app.middleware.logging import bind_actor
from app.schemas.actors import ActorContext
from app.services.queue_projector import QueueProjector

# Security
security = HTTPBearer(auto_error=False)


def _actor_from_token(token: str | None) -> ActorContext | None:
    if not token:
        return None
    payload = decode_access_token(token)
    if payload is None:
        return None
    return actor_from_claims(payload)


async def get_current_actor(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> ActorContext:
    """
    Build the caller's actor context from the bearer token.

    Args:
        credentials: Bearer token credentials

    Returns:
        Actor context (id, role and facility)

    Raises:
        HTTPException: If the token is missing, invalid or expired
    """
    actor = _actor_from_token(credentials.credentials if credentials else None)
    if actor is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    bind_actor(str(actor.actor_id), actor.role.value, str(actor.facility_id) if actor.facility_id else None)
    return actor


async def get_websocket_actor(
    websocket: WebSocket,
    token: Annotated[str | None, Query()] = None,
) -> ActorContext | None:
    """
    Actor for a WebSocket handshake.

    Browsers cannot set headers on WebSocket connections, so the token may
    also come as the ``token`` query parameter.
    """
    if token is None:
        header = websocket.headers.get("authorization", "")
        scheme, _, credentials = header.partition(" ")
        if scheme.lower() == "bearer":
            token = credentials
    return _actor_from_token(token)


def get_queue_projector(
    channel: Annotated[QueueChannel, Depends(get_queue_channel)],
) -> QueueProjector:
    """Queue projector over the configured channel."""
    return QueueProjector(channel)


# Type aliases for dependency injection
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
CurrentActor = Annotated[ActorContext, Depends(get_current_actor)]
WebSocketActor = Annotated[ActorContext | None, Depends(get_websocket_actor)]
Projector = Annotated[QueueProjector, Depends(get_queue_projector)]
