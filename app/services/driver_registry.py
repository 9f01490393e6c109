"""
Driver registry: profiles, online status, trip counters, ratings and earnings.
"""
import logging
from datetime import datetime, timedelta, timezone

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.events import DriverStatusMessage, EventBus, driver_channel
from app.exceptions import NotFoundError, ValidationError
from app.models.driver import Driver
from app.models.trip import Trip
from app.redis_client import geo_add_driver, geo_remove_driver, geo_nearby_drivers
from app.services.geo import Coordinates
from app.services.location_relay import LocationRelay

logger = logging.getLogger(__name__)
settings = get_settings()


class DriverRegistry:
    def __init__(self, db: AsyncSession, redis: aioredis.Redis):
        self.db = db
        self.redis = redis

    async def register(
        self,
        user_id: str,
        name: str,
        car_model: str = "Not set",
        car_color: str = "Not set",
        plate: str = "Not set",
    ) -> Driver:
        """Create the driver profile bound to `user_id`, or update its vehicle details."""
        result = await self.db.execute(select(Driver).where(Driver.user_id == user_id))
        driver = result.scalar_one_or_none()
        if driver is None:
            driver = Driver(user_id=user_id, online_status=False, rating=5.0, total_trips=0)
            self.db.add(driver)
        driver.name = name
        driver.car_model = car_model
        driver.car_color = car_color
        driver.plate = plate
        await self.db.commit()
        await self.db.refresh(driver)
        return driver

    async def get(self, driver_id: str) -> Driver:
        driver = await self.db.get(Driver, driver_id)
        if driver is None:
            raise NotFoundError("Driver not found", {"driver_id": driver_id})
        return driver

    async def get_by_user(self, user_id: str) -> Driver:
        result = await self.db.execute(select(Driver).where(Driver.user_id == user_id))
        driver = result.scalar_one_or_none()
        if driver is None:
            raise NotFoundError("No driver profile for this user", {"user_id": user_id})
        return driver

    async def set_online(self, driver_id: str, online: bool, position: Coordinates | None = None) -> Driver:
        """
        Toggle availability. Going online needs a known position: `position`
        when given (stored first), else the last reported one. The position is
        republished immediately and the driver goes back into the GEO index.
        """
        driver = await self.get(driver_id)
        relay = LocationRelay(self.db, self.redis)
        location = None
        if online:
            if position is not None:
                await relay.store(driver_id, position.latitude, position.longitude)
            location = await relay.latest(driver_id)
            if location is None:
                raise ValidationError("A current position is required to go online", {"driver_id": driver_id})

        driver.online_status = online
        await self.db.commit()
        await self.db.refresh(driver)

        if location is not None:
            await geo_add_driver(self.redis, driver_id, location.lat, location.lng)
            await relay.publish(location)
        else:
            await geo_remove_driver(self.redis, driver_id)
        await self._publish_status(driver)

        logger.info("Driver %s is now %s", driver_id, "online" if online else "offline")
        return driver

    async def _publish_status(self, driver: Driver) -> None:
        message = DriverStatusMessage(
            driver_id=driver.id,
            online=driver.online_status,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
        try:
            await EventBus(self.redis).publish(driver_channel(driver.id), message)
        except RedisError as exc:
            logger.warning("Availability of driver=%s not published: %s", driver.id, exc)

    async def list_online(self) -> list[Driver]:
        result = await self.db.execute(
            select(Driver).where(Driver.online_status.is_(True)).order_by(Driver.created_at)
        )
        return list(result.scalars().all())

    async def count_online_near(self, lat: float, lng: float, radius_km: float | None = None) -> int:
        nearby = await geo_nearby_drivers(
            self.redis, lat, lng, radius_km=radius_km or settings.nearby_radius_km
        )
        return len(nearby)

    async def record_trip_completion(self, driver_id: str) -> None:
        """
        total_trips += 1 inside the caller's transaction. Only the coordinator
        calls this, after the Trip's one-time active -> completed update hit a row.
        """
        await self.db.execute(
            update(Driver)
            .where(Driver.id == driver_id)
            .values(total_trips=Driver.total_trips + 1)
        )

    async def apply_rating(self, driver_id: str, value: int) -> None:
        """Fold a new rating into the running average (caller commits)."""
        await self.db.execute(
            update(Driver)
            .where(Driver.id == driver_id)
            .values(
                rating=(Driver.rating * Driver.rating_count + value) / (Driver.rating_count + 1),
                rating_count=Driver.rating_count + 1,
            )
        )

    async def earnings_summary(self, driver_id: str, now: datetime | None = None) -> dict:
        """Sum of completed trip prices per period."""
        await self.get(driver_id)
        now = now or datetime.now(timezone.utc)
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        periods = {
            "today": day_start,
            "this_week": day_start - timedelta(days=day_start.weekday()),
            "this_month": day_start.replace(day=1),
            "all_time": None,
        }

        summary: dict = {"driver_id": driver_id}
        for name, since in periods.items():
            stmt = select(func.coalesce(func.sum(Trip.price), 0), func.count(Trip.id)).where(
                Trip.driver_id == driver_id,
                Trip.status == "completed",
            )
            if since is not None:
                stmt = stmt.where(Trip.end_time >= since)
            total, count = (await self.db.execute(stmt)).one()
            summary[name] = round(float(total or 0), 2)
            if since is None:
                summary["completed_trips"] = count
        return summary
