"""
Ride lifecycle coordinator.

    pending -> accepted -> driver_arrived -> in_progress -> completed
    pending -> rejected
    any non-terminal -> cancelled

Every status write is a conditional UPDATE guarded by the status the caller
believes is current; the affected-row count decides whether the transition
happened. That makes the pending -> accepted claim race-safe (exactly one
driver wins) and turns stale retries into IllegalTransitionError instead of
double side effects. The coordinator never retries on its own.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal

import redis.asyncio as aioredis
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.events import EventBus
from app.exceptions import (
    ConflictError,
    IllegalTransitionError,
    NotFoundError,
    RideServiceError,
    ValidationError,
)
from app.models.ride import RideRequest
from app.models.trip import Trip
from app.redis_client import dismiss_ride, dismissed_rides
from app.services.actor import Actor
from app.services.dispatch import DispatchNotifier
from app.services.driver_registry import DriverRegistry
from app.services.geo import Coordinates, distance_km
from app.services.pricing import suggested_price, to_money, trip_price
from app.services.rides_repository import RideRepository, TERMINAL_STATUSES

logger = logging.getLogger(__name__)
settings = get_settings()

VALID_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"accepted", "rejected", "cancelled"}),
    "accepted": frozenset({"driver_arrived", "cancelled"}),
    "driver_arrived": frozenset({"in_progress", "cancelled"}),
    "in_progress": frozenset({"completed", "cancelled"}),
    "completed": frozenset(),
    "rejected": frozenset(),
    "cancelled": frozenset(),
}

# Statuses the assigned driver reaches through advance_status
ADVANCE_STATUSES = frozenset({"driver_arrived", "in_progress", "completed"})


def is_valid_transition(current: str, next_status: str) -> bool:
    return next_status in VALID_TRANSITIONS.get(current, frozenset())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RideCoordinator:
    def __init__(
        self,
        db: AsyncSession,
        redis: aioredis.Redis,
        notifier: DispatchNotifier | None = None,
    ):
        self.db = db
        self.redis = redis
        self.rides = RideRepository(db)
        self.registry = DriverRegistry(db, redis)
        self.notifier = notifier or DispatchNotifier(EventBus(redis))

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def create_request(
        self,
        actor: Actor,
        pickup: Coordinates | None,
        destination: Coordinates | None,
        pickup_address: str,
        dest_address: str,
        passenger_price: float | Decimal | None = None,
    ) -> RideRequest:
        """Create a pending request. Distance and suggested price are fixed here."""
        if not actor.is_passenger:
            raise ValidationError("Only passengers can request rides")
        if pickup is None:
            raise ValidationError("Pickup location is required")
        if destination is None or not (dest_address or "").strip():
            raise ValidationError("Destination is required")
        if passenger_price is not None and passenger_price <= 0:
            raise ValidationError("Offered price must be positive", {"passenger_price": str(passenger_price)})

        existing = await self.rides.passenger_active(actor.user_id)
        if existing is not None:
            raise ConflictError(
                "Passenger already has an active ride",
                {"ride_id": existing.id, "status": existing.status},
            )

        distance = distance_km(pickup, destination)
        ride = RideRequest(
            passenger_id=actor.user_id,
            pickup_lat=pickup.latitude,
            pickup_lng=pickup.longitude,
            pickup_address=(pickup_address or "").strip(),
            dest_lat=destination.latitude,
            dest_lng=destination.longitude,
            dest_address=dest_address.strip(),
            distance=distance,
            suggested_price=suggested_price(distance),
            passenger_price=to_money(float(passenger_price)) if passenger_price is not None else None,
            status="pending",
        )
        self.db.add(ride)
        await self.db.commit()
        await self.db.refresh(ride)
        logger.info("Ride %s created by passenger=%s (%.2f km)", ride.id, ride.passenger_id, distance)

        online = await self.registry.list_online()
        await self.notifier.publish_new_request(ride, [driver.id for driver in online])
        return ride

    async def accept_request(self, ride_id: str, driver_id: str) -> RideRequest:
        """Exclusive claim: UPDATE ... WHERE status='pending'. Losers get ConflictError."""
        await self.registry.get(driver_id)
        current = await self.rides.driver_active(driver_id)
        if current is not None:
            raise ConflictError("Driver already has an active ride", {"ride_id": current.id})

        claimed = await self._transition(ride_id, "pending", "accepted", driver_id=driver_id)
        if not claimed:
            ride = await self.rides.get(ride_id, refresh=True)
            logger.info("Driver %s lost the claim on ride %s (%s)", driver_id, ride_id, ride.status)
            raise ConflictError("Ride no longer available", {"ride_id": ride_id, "status": ride.status})

        await self.db.commit()
        ride = await self.rides.get(ride_id, refresh=True)
        logger.info("Ride %s accepted by driver=%s", ride_id, driver_id)
        await self.notifier.publish_status_change(ride)
        return ride

    async def reject_request(self, ride_id: str, driver_id: str) -> RideRequest:
        """
        A driver's pass on a pending request. Takes the request out of
        circulation for everyone (status=cancelled); use dismiss_request to
        hide it from a single driver only.
        """
        await self.registry.get(driver_id)
        if not await self._transition(ride_id, "pending", "cancelled"):
            ride = await self.rides.get(ride_id, refresh=True)
            raise IllegalTransitionError(ride.status, "cancelled")

        await self.db.commit()
        ride = await self.rides.get(ride_id, refresh=True)
        logger.info("Ride %s rejected by driver=%s", ride_id, driver_id)
        await self.notifier.publish_status_change(ride)
        return ride

    async def dismiss_request(self, ride_id: str, driver_id: str) -> None:
        """Hide a pending request from one driver's list, leaving it open for others."""
        await self.registry.get(driver_id)
        await self.rides.get(ride_id)
        await dismiss_ride(self.redis, driver_id, ride_id, settings.dismissal_ttl_seconds)

    async def advance_status(self, ride_id: str, next_status: str, actor_driver_id: str) -> RideRequest:
        ride = await self.rides.get(ride_id, refresh=True)
        if ride.driver_id != actor_driver_id:
            raise NotFoundError("Ride not found", {"ride_id": ride_id})
        current = ride.status
        if next_status not in ADVANCE_STATUSES or not is_valid_transition(current, next_status):
            raise IllegalTransitionError(current, next_status)

        now = _utcnow()
        try:
            if not await self._transition(ride_id, current, next_status, assigned_to=actor_driver_id, now=now):
                fresh = await self.rides.get(ride_id, refresh=True)
                raise IllegalTransitionError(fresh.status, next_status)

            if next_status == "in_progress":
                self.db.add(
                    Trip(
                        ride_request_id=ride.id,
                        driver_id=actor_driver_id,
                        passenger_id=ride.passenger_id,
                        distance=ride.distance,
                        price=trip_price(ride.passenger_price, ride.suggested_price),
                        status="active",
                        start_time=now,
                    )
                )
            elif next_status == "completed":
                closed = await self.db.execute(
                    update(Trip)
                    .where(Trip.ride_request_id == ride_id, Trip.status == "active")
                    .values(status="completed", end_time=now)
                    .execution_options(synchronize_session=False)
                )
                # total_trips is gated on the trip's one-time completion
                if closed.rowcount == 1:
                    await self.registry.record_trip_completion(actor_driver_id)
                else:
                    logger.warning("Ride %s completed without an active trip", ride_id)

            await self.db.commit()
        except RideServiceError:
            raise
        except Exception:
            await self.db.rollback()
            raise

        ride = await self.rides.get(ride_id, refresh=True)
        logger.info("Ride %s: %s -> %s", ride_id, current, next_status)
        await self.notifier.publish_status_change(ride)
        return ride

    async def cancel_request(self, ride_id: str, actor: Actor) -> RideRequest:
        """Cancel from any non-terminal status. Only the passenger or the assigned driver may."""
        ride = await self.rides.get(ride_id, refresh=True)
        owns = (actor.is_passenger and ride.passenger_id == actor.user_id) or (
            actor.is_driver and ride.driver_id is not None and ride.driver_id == actor.driver_id
        )
        if not owns:
            raise NotFoundError("Ride not found", {"ride_id": ride_id})

        current = ride.status
        if not is_valid_transition(current, "cancelled"):
            raise IllegalTransitionError(current, "cancelled")
        if not await self._transition(ride_id, current, "cancelled"):
            fresh = await self.rides.get(ride_id, refresh=True)
            raise IllegalTransitionError(fresh.status, "cancelled")

        await self.db.commit()
        ride = await self.rides.get(ride_id, refresh=True)
        logger.info("Ride %s cancelled by %s=%s (was %s)", ride_id, actor.role, actor.user_id, current)
        await self.notifier.publish_status_change(ride)
        return ride

    async def expire_stale_requests(self, cutoff: datetime) -> list[str]:
        """Move pending requests created before `cutoff` to rejected."""
        expired = []
        for ride_id in await self.rides.pending_older_than(cutoff):
            if await self._transition(ride_id, "pending", "rejected"):
                await self.db.commit()
                expired.append(ride_id)
                await self.notifier.publish_status_change(await self.rides.get(ride_id, refresh=True))
        if expired:
            logger.info("Expired %d unaccepted ride requests", len(expired))
        return expired

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_ride(self, ride_id: str, actor: Actor) -> RideRequest:
        """Visible to its passenger, its assigned driver, and any driver while pending."""
        ride = await self.rides.get(ride_id)
        visible = (
            (actor.is_passenger and ride.passenger_id == actor.user_id)
            or (actor.is_driver and (ride.status == "pending" or ride.driver_id == actor.driver_id))
        )
        if not visible:
            raise NotFoundError("Ride not found", {"ride_id": ride_id})
        return ride

    async def pending_for_driver(self, driver_id: str) -> list[RideRequest]:
        """Pending requests newest first, minus the ones this driver dismissed."""
        return await self.rides.list_pending(exclude=await dismissed_rides(self.redis, driver_id))

    async def active_ride(self, actor: Actor) -> RideRequest | None:
        if actor.is_driver:
            return await self.rides.driver_active(actor.driver_id) if actor.driver_id else None
        return await self.rides.passenger_active(actor.user_id)

    async def history(self, actor: Actor, limit: int = 50) -> list[RideRequest]:
        if actor.is_driver:
            return await self.rides.history(driver_id=actor.driver_id, limit=limit)
        return await self.rides.history(passenger_id=actor.user_id, limit=limit)

    # ------------------------------------------------------------------

    async def _transition(
        self,
        ride_id: str,
        expected: str,
        new_status: str,
        driver_id: str | None = None,
        assigned_to: str | None = None,
        now: datetime | None = None,
    ) -> bool:
        """
        Conditional status write inside the current transaction. Returns False
        (after rolling back) when no row matched the expected status.
        """
        if expected in TERMINAL_STATUSES:
            return False
        values: dict = {"status": new_status, "updated_at": now or _utcnow()}
        if driver_id is not None:
            values["driver_id"] = driver_id

        stmt = update(RideRequest).where(RideRequest.id == ride_id, RideRequest.status == expected)
        if assigned_to is not None:
            stmt = stmt.where(RideRequest.driver_id == assigned_to)
        result = await self.db.execute(
            stmt.values(**values).execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            return False
        return True
