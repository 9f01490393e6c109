"""
Location relay.

Keeps exactly one Location row per driver (last writer wins, no history) and
pushes every accepted sample to subscribers:
  - `driver:{id}:location` always
  - `ride:{id}` while the driver has an active ride, so the passenger's
    ride feed receives the counterpart position
"""
import logging
from contextlib import aclosing
from datetime import datetime, timezone
from typing import AsyncIterator

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.events import EventBus, LocationMessage, driver_location_channel, ride_channel
from app.exceptions import NotFoundError, ValidationError
from app.models.driver import Driver
from app.models.location import Location
from app.redis_client import geo_add_driver
from app.services.retry import with_retry
from app.services.rides_repository import RideRepository, TERMINAL_STATUSES

logger = logging.getLogger(__name__)


def location_message(location: Location) -> LocationMessage:
    return LocationMessage(
        driver_id=location.driver_id,
        lat=location.lat,
        lng=location.lng,
        heading=location.heading,
        speed=location.speed,
        updated_at=location.updated_at.isoformat(),
    )


class LocationRelay:
    def __init__(self, db: AsyncSession, redis: aioredis.Redis):
        self.db = db
        self.redis = redis
        self.bus = EventBus(redis)

    async def report_position(
        self,
        driver_id: str,
        lat: float,
        lng: float,
        heading: float = 0.0,
        speed: float = 0.0,
    ) -> Location:
        if not (-90 <= lat <= 90 and -180 <= lng <= 180):
            raise ValidationError("Coordinates out of range", {"lat": lat, "lng": lng})

        driver = await self.db.get(Driver, driver_id)
        if driver is None:
            raise NotFoundError("Driver not found", {"driver_id": driver_id})
        active = await RideRepository(self.db).driver_active(driver_id)
        if not driver.online_status and active is None:
            raise ValidationError("Driver must be online or on an active ride to report a position")

        location = await self.store(driver_id, lat, lng, heading, speed)
        if driver.online_status:
            await geo_add_driver(self.redis, driver_id, lat, lng)
        await self.publish(location, ride_id=active.id if active else None)
        return location

    async def store(
        self,
        driver_id: str,
        lat: float,
        lng: float,
        heading: float = 0.0,
        speed: float = 0.0,
    ) -> Location:
        """Replace the driver's Location row without any availability check or fan-out."""
        if not (-90 <= lat <= 90 and -180 <= lng <= 180):
            raise ValidationError("Coordinates out of range", {"lat": lat, "lng": lng})
        values = {
            "driver_id": driver_id,
            "lat": lat,
            "lng": lng,
            "heading": heading or 0.0,
            "speed": speed or 0.0,
            "updated_at": datetime.now(timezone.utc),
        }
        await with_retry(lambda: self._upsert(values), operation_name=f"location upsert driver={driver_id}")
        return await self.db.get(Location, driver_id, populate_existing=True)

    async def _upsert(self, values: dict) -> None:
        insert = pg_insert if self.db.get_bind().dialect.name == "postgresql" else sqlite_insert
        stmt = insert(Location).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[Location.driver_id],
            set_={k: stmt.excluded[k] for k in ("lat", "lng", "heading", "speed", "updated_at")},
        )
        try:
            await self.db.execute(stmt)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

    async def publish(self, location: Location, ride_id: str | None = None) -> None:
        """Push a raw sample. Samples are superseded by the next report, so loss is only logged."""
        message = location_message(location)
        try:
            await self.bus.publish(driver_location_channel(location.driver_id), message)
            if ride_id:
                await self.bus.publish(ride_channel(ride_id), message)
        except RedisError as exc:
            logger.warning("Position of driver=%s not relayed: %s", location.driver_id, exc)

    async def latest(self, driver_id: str) -> Location | None:
        return await self.db.get(Location, driver_id)

    async def subscribe(self, driver_id: str) -> AsyncIterator[LocationMessage]:
        """Non-terminating stream of one driver's raw samples."""
        async with aclosing(self.bus.subscribe(driver_location_channel(driver_id))) as messages:
            async for message in messages:
                if message.get("type") == "location":
                    yield LocationMessage.model_validate(message)

    async def follow_ride(self, ride_id: str) -> AsyncIterator[dict]:
        """
        Status events and counterpart positions for one ride. Ends right after
        the terminal status event, which tears the Redis subscription down.
        """
        async with aclosing(self.bus.subscribe(ride_channel(ride_id))) as messages:
            async for message in messages:
                yield message
                if message.get("type") == "ride_status" and message.get("status") in TERMINAL_STATUSES:
                    return
