"""Shared API dependencies."""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from app.config import settings
from app.logging import actor_id_var
from app.services.session import (
    ActorSession,
    ActorSessionRegistry,
    build_default_registry,
)

security = HTTPBearer()


async def get_current_actor_id(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> str:
    """Resolve the actor id from an access token issued by the auth provider."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(
            credentials.credentials,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            options={"verify_aud": settings.jwt_audience is not None},
        )
    except JWTError:
        raise credentials_exception

    actor_id: str | None = payload.get("sub")
    if not actor_id:
        raise credentials_exception
    actor_id_var.set(actor_id)
    return actor_id


@lru_cache()
def get_session_registry() -> ActorSessionRegistry:
    """Process-wide registry of per-actor settings sessions."""
    return build_default_registry()


async def get_actor_session(
    actor_id: Annotated[str, Depends(get_current_actor_id)],
    registry: Annotated[ActorSessionRegistry, Depends(get_session_registry)],
) -> ActorSession:
    """Open (or reuse) the session for the current actor.

    The first request for an actor triggers the actor-change readiness refresh.
    """
    return await registry.open(actor_id)
