"""JWT helpers for the identity provider's access tokens."""

from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from jose import JWTError, jwt

from app.config import settings
from app.schemas.actors import ActorContext, ActorRole


def create_access_token(
    data: dict[str, Any],
    expires_delta: timedelta | None = None,
) -> str:
    """
    Create a JWT access token.

    Production tokens come from the identity provider; this is used by
    tooling and tests that need to act as a given actor.

    Args:
        data: Payload data to encode (``sub``, ``role`` and optional ``facility_id``)
        expires_delta: Optional expiration time delta

    Returns:
        Encoded JWT token
    """
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.now(UTC) + expires_delta
    else:
        expire = datetime.now(UTC) + timedelta(minutes=settings.access_token_expire_minutes)

    to_encode.update(
        {
            "exp": expire,
            "iat": datetime.now(UTC),
            "type": "access",
        }
    )

    return jwt.encode(
        to_encode,
        settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
    )


def create_actor_token(actor: ActorContext, expires_delta: timedelta | None = None) -> str:
    """Mint an access token carrying an actor's identity claims."""
    claims: dict[str, Any] = {"sub": str(actor.actor_id), "role": actor.role.value}
    if actor.facility_id is not None:
        claims["facility_id"] = str(actor.facility_id)
    return create_access_token(claims, expires_delta)


def decode_access_token(token: str) -> dict[str, Any] | None:
    """
    Decode and validate a JWT access token.

    Args:
        token: JWT token to decode

    Returns:
        Decoded payload or None if invalid
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )

        # Verify token type
        if payload.get("type") != "access":
            return None

        return payload
    except JWTError:
        return None


def actor_from_claims(payload: dict[str, Any]) -> ActorContext | None:
    """
    Build the actor context from decoded token claims.

    Returns:
        Actor context, or None when a claim is missing or malformed
    """
    try:
        facility_claim = payload.get("facility_id")
        return ActorContext(
            actor_id=UUID(str(payload["sub"])),
            role=ActorRole(payload["role"]),
            facility_id=UUID(str(facility_claim)) if facility_claim else None,
        )
    except (KeyError, ValueError):
        return None
