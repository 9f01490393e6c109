"""
Dispatch notifier.

Push path:
  1. A new pending request is published on `rides:pending` and on the offers
     channel of every driver that is online at that moment.
  2. Every status change is published on the ride channel and on the
     channels of its passenger and (once assigned) driver.
  3. Online drivers consume `driver_feed`; passengers follow `passenger:{id}`.

Publishing happens after the database commit. If Redis is unavailable the
failure is logged and the reconciliation sweep (every ~2s) republishes the
pending set, so delivery is at-least-once and eventually consistent.
"""
import logging
from contextlib import aclosing
from datetime import datetime, timezone
from typing import AsyncIterator

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from app.events import (
    EventBus,
    PENDING_CHANNEL,
    PendingRequestMessage,
    PendingSnapshotMessage,
    RideStatusMessage,
    driver_channel,
    driver_offers_channel,
    passenger_channel,
    ride_channel,
)
from app.models.ride import RideRequest
from app.redis_client import dismissed_rides

logger = logging.getLogger(__name__)


def _iso(value: datetime | None) -> str:
    return (value or datetime.now(timezone.utc)).isoformat()


def status_message(ride: RideRequest) -> RideStatusMessage:
    return RideStatusMessage(
        ride_id=ride.id,
        status=ride.status,
        passenger_id=ride.passenger_id,
        driver_id=ride.driver_id,
        updated_at=_iso(ride.updated_at),
    )


def offer_message(ride: RideRequest) -> PendingRequestMessage:
    return PendingRequestMessage(
        ride_id=ride.id,
        pickup=(ride.pickup_lat, ride.pickup_lng),
        destination=(ride.dest_lat, ride.dest_lng),
        pickup_address=ride.pickup_address,
        dest_address=ride.dest_address,
        distance=ride.distance,
        suggested_price=float(ride.suggested_price),
        passenger_price=float(ride.passenger_price) if ride.passenger_price is not None else None,
        created_at=_iso(ride.created_at),
    )


class DispatchNotifier:
    def __init__(self, bus: EventBus):
        self.bus = bus

    async def publish_new_request(self, ride: RideRequest, online_driver_ids: list[str]) -> int:
        """Fan a new pending request out to all online drivers. Returns drivers offered."""
        message = offer_message(ride)
        try:
            await self.bus.publish(PENDING_CHANNEL, message)
            for driver_id in online_driver_ids:
                await self.bus.publish(driver_offers_channel(driver_id), message)
        except RedisError as exc:
            logger.error("Dispatch of ride=%s failed, leaving it to the sweep: %s", ride.id, exc)
            return 0
        logger.info("Dispatched ride=%s to %d online drivers", ride.id, len(online_driver_ids))
        return len(online_driver_ids)

    async def publish_status_change(self, ride: RideRequest) -> None:
        message = status_message(ride)
        channels = [ride_channel(ride.id), passenger_channel(ride.passenger_id)]
        if ride.driver_id:
            channels.append(driver_channel(ride.driver_id))
        # Leaving `pending` changes the set every online driver is looking at
        if ride.status != "pending":
            channels.append(PENDING_CHANNEL)
        try:
            for channel in channels:
                await self.bus.publish(channel, message)
        except RedisError as exc:
            logger.error("Status event for ride=%s (%s) not delivered: %s", ride.id, ride.status, exc)

    async def publish_pending_snapshot(self, ride_ids: list[str]) -> None:
        await self.bus.publish(
            PENDING_CHANNEL,
            PendingSnapshotMessage(ride_ids=ride_ids, timestamp=_iso(None)),
        )


async def driver_feed(bus: EventBus, redis: aioredis.Redis, driver_id: str) -> AsyncIterator[dict]:
    """
    Push feed of one online driver:
      - offers addressed to it on `driver:{id}:offers`
      - status events of rides assigned to it on `driver:{id}`
      - from `rides:pending`, only pending-set changes (snapshots and rides
        leaving pending); new requests there are already covered by the offers
    Rides the driver dismissed are filtered out. The feed ends right after the
    driver goes offline.
    """
    offers = driver_offers_channel(driver_id)
    own = driver_channel(driver_id)
    async with aclosing(bus.listen(PENDING_CHANNEL, offers, own)) as messages:
        async for channel, message in messages:
            kind = message.get("type")
            if channel == PENDING_CHANNEL:
                if kind == "pending_request":
                    continue
                if kind == "ride_status" and message.get("driver_id") == driver_id:
                    continue  # delivered on the driver's own channel
            if kind == "pending_request":
                if message.get("ride_id") in await dismissed_rides(redis, driver_id):
                    continue
            elif kind == "pending_snapshot":
                dismissed = await dismissed_rides(redis, driver_id)
                message = {**message, "ride_ids": [r for r in message["ride_ids"] if r not in dismissed]}
            yield message
            if kind == "driver_status" and not message.get("online"):
                return
