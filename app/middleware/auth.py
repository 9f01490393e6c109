from datetime import datetime, timedelta, timezone
from typing import Optional

import redis.asyncio as aioredis
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.database import get_db
from app.exceptions import NotFoundError
from app.redis_client import get_redis
from app.services.actor import Actor
from app.services.driver_registry import DriverRegistry

settings = get_settings()
bearer_scheme = HTTPBearer(auto_error=False)

ROLES = {"passenger", "driver"}


def create_access_token(data: dict) -> str:
    """Sign a JWT with the configured secret (HS256). Adds `exp` unless given."""
    claims = dict(data)
    claims.setdefault(
        "exp", datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)
    )
    return jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    """Validate a JWT and return its payload; `sub` and a known `role` are required."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not payload.get("sub") or payload.get("role") not in ROLES:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")
    return payload


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> dict:
    """Decode and validate the JWT Bearer token."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return decode_token(credentials.credentials)


async def resolve_actor(payload: dict, db: AsyncSession, redis: aioredis.Redis) -> Actor:
    """Build the Actor context; drivers get their Driver.id resolved from the user id."""
    user_id, role = payload["sub"], payload["role"]
    driver_id = None
    if role == "driver":
        registry = DriverRegistry(db, redis)
        try:
            driver_id = (await registry.get_by_user(user_id)).id
        except NotFoundError:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Driver profile not registered")
    return Actor(user_id=user_id, role=role, driver_id=driver_id)


async def get_current_actor(
    token_data: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> Actor:
    return await resolve_actor(token_data, db, redis)


async def get_current_passenger(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_passenger:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Passenger role required")
    return actor


async def get_current_driver(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_driver:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Driver role required")
    return actor


async def get_driver_user(token_data: dict = Depends(get_current_user)) -> str:
    """Driver user id without requiring an existing profile (onboarding)."""
    if token_data["role"] != "driver":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Driver role required")
    return token_data["sub"]
