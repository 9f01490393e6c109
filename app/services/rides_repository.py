"""
Ride repository: status-indexed reads over `ride_requests`.

All writes that change status live in the lifecycle coordinator so that every
transition goes through a conditional update.
"""
from datetime import datetime

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import NotFoundError
from app.models.ride import RideRequest

PASSENGER_ACTIVE_STATUSES = ("pending", "accepted", "driver_arrived", "in_progress")
DRIVER_ACTIVE_STATUSES = ("accepted", "driver_arrived", "in_progress")
TERMINAL_STATUSES = ("completed", "cancelled", "rejected")


class RideRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, ride_id: str, *, refresh: bool = False) -> RideRequest:
        ride = await self.db.get(RideRequest, ride_id, populate_existing=refresh)
        if ride is None:
            raise NotFoundError("Ride not found", {"ride_id": ride_id})
        return ride

    async def list_pending(self, exclude: set[str] | None = None) -> list[RideRequest]:
        """All pending requests, newest first."""
        stmt = select(RideRequest).where(RideRequest.status == "pending")
        if exclude:
            stmt = stmt.where(RideRequest.id.not_in(exclude))
        result = await self.db.execute(stmt.order_by(RideRequest.created_at.desc()))
        return list(result.scalars().all())

    async def pending_older_than(self, cutoff: datetime) -> list[str]:
        result = await self.db.execute(
            select(RideRequest.id).where(
                RideRequest.status == "pending",
                RideRequest.created_at < cutoff,
            )
        )
        return list(result.scalars().all())

    async def passenger_active(self, passenger_id: str) -> RideRequest | None:
        """The passenger's current ride: most recent non-terminal request."""
        result = await self.db.execute(
            select(RideRequest)
            .where(
                RideRequest.passenger_id == passenger_id,
                RideRequest.status.in_(PASSENGER_ACTIVE_STATUSES),
            )
            .order_by(RideRequest.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def driver_active(self, driver_id: str) -> RideRequest | None:
        result = await self.db.execute(
            select(RideRequest)
            .where(
                RideRequest.driver_id == driver_id,
                RideRequest.status.in_(DRIVER_ACTIVE_STATUSES),
            )
            .order_by(RideRequest.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def history(
        self,
        passenger_id: str | None = None,
        driver_id: str | None = None,
        limit: int = 50,
    ) -> list[RideRequest]:
        """Terminal rides where the actor was passenger or assigned driver."""
        owners = []
        if passenger_id:
            owners.append(RideRequest.passenger_id == passenger_id)
        if driver_id:
            owners.append(RideRequest.driver_id == driver_id)
        if not owners:
            return []
        result = await self.db.execute(
            select(RideRequest)
            .where(or_(*owners), RideRequest.status.in_(TERMINAL_STATUSES))
            .order_by(RideRequest.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
