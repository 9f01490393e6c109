"""
Trip history and post-ride ratings.
"""
import logging

import redis.asyncio as aioredis
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import ConflictError, NotFoundError, ValidationError
from app.models.rating import Rating
from app.models.trip import Trip
from app.services.actor import Actor
from app.services.driver_registry import DriverRegistry

logger = logging.getLogger(__name__)


class TripService:
    def __init__(self, db: AsyncSession, redis: aioredis.Redis):
        self.db = db
        self.registry = DriverRegistry(db, redis)

    async def list_for(self, actor: Actor, limit: int = 50) -> list[Trip]:
        stmt = select(Trip)
        if actor.is_driver:
            stmt = stmt.where(Trip.driver_id == actor.driver_id)
        else:
            stmt = stmt.where(Trip.passenger_id == actor.user_id)
        result = await self.db.execute(stmt.order_by(Trip.start_time.desc()).limit(limit))
        return list(result.scalars().all())

    async def get(self, trip_id: str, actor: Actor) -> Trip:
        trip = await self.db.get(Trip, trip_id)
        if trip is None or not (
            (actor.is_passenger and trip.passenger_id == actor.user_id)
            or (actor.is_driver and trip.driver_id == actor.driver_id)
        ):
            raise NotFoundError("Trip not found", {"trip_id": trip_id})
        return trip

    async def rate_trip(self, trip_id: str, actor: Actor, rating: int, comment: str | None = None) -> Rating:
        """Passenger rates the driver of a completed trip, once."""
        if not 1 <= rating <= 5:
            raise ValidationError("Rating must be between 1 and 5", {"rating": rating})
        if not actor.is_passenger:
            raise ValidationError("Only passengers can rate trips")
        trip = await self.get(trip_id, actor)
        if trip.status != "completed":
            raise ConflictError("Trip is not yet completed", {"trip_id": trip_id, "status": trip.status})

        record = Rating(
            trip_id=trip.id,
            rater_id=actor.user_id,
            rated_id=trip.driver_id,
            rating=rating,
            comment=comment,
        )
        self.db.add(record)
        try:
            await self.db.flush()
            await self.registry.apply_rating(trip.driver_id, rating)
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError("Trip already rated", {"trip_id": trip_id})
        await self.db.refresh(record)
        logger.info("Trip %s rated %d by passenger=%s", trip_id, rating, actor.user_id)
        return record
