import redis.asyncio as aioredis
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.redis_client import get_redis
from app.services.driver_registry import DriverRegistry
from app.services.lifecycle import RideCoordinator
from app.services.location_relay import LocationRelay
from app.services.trips import TripService


async def get_coordinator(
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> RideCoordinator:
    return RideCoordinator(db, redis)


async def get_registry(
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> DriverRegistry:
    return DriverRegistry(db, redis)


async def get_relay(
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> LocationRelay:
    return LocationRelay(db, redis)


async def get_trip_service(
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> TripService:
    return TripService(db, redis)
