"""Pub/sub channel definitions, message schemas and the Redis-backed event bus.

Channels are keyed by resource:
  rides:pending              – new pending requests and periodic pending-set snapshots
  ride:{id}                  – status changes and counterpart positions for one ride
  passenger:{id}             – status changes of any ride owned by the passenger
  driver:{id}                – status changes of rides assigned to the driver, and its
                               own online/offline toggles
  driver:{id}:offers         – new pending requests pushed to an online driver
  driver:{id}:location       – raw position samples reported by the driver

Delivery is at-least-once: the reconciliation sweep republishes the pending set,
and clients resync through the REST queries.
"""
import json
import logging
from contextlib import aclosing
from typing import AsyncIterator, Literal

import redis.asyncio as aioredis
from pydantic import BaseModel

logger = logging.getLogger(__name__)

PENDING_CHANNEL = "rides:pending"


def ride_channel(ride_id: str) -> str:
    return f"ride:{ride_id}"


def passenger_channel(passenger_id: str) -> str:
    return f"passenger:{passenger_id}"


def driver_channel(driver_id: str) -> str:
    return f"driver:{driver_id}"


def driver_offers_channel(driver_id: str) -> str:
    return f"driver:{driver_id}:offers"


def driver_location_channel(driver_id: str) -> str:
    return f"driver:{driver_id}:location"


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

class RideStatusMessage(BaseModel):
    type: Literal["ride_status"] = "ride_status"
    ride_id: str
    status: str
    passenger_id: str
    driver_id: str | None
    updated_at: str


class PendingRequestMessage(BaseModel):
    """A new pending request offered to online drivers."""

    type: Literal["pending_request"] = "pending_request"
    ride_id: str
    pickup: tuple[float, float]
    destination: tuple[float, float]
    pickup_address: str
    dest_address: str
    distance: float
    suggested_price: float
    passenger_price: float | None
    created_at: str


class PendingSnapshotMessage(BaseModel):
    type: Literal["pending_snapshot"] = "pending_snapshot"
    ride_ids: list[str]
    timestamp: str


class DriverStatusMessage(BaseModel):
    """Published on `driver:{id}` when the driver toggles availability."""

    type: Literal["driver_status"] = "driver_status"
    driver_id: str
    online: bool
    timestamp: str


class LocationMessage(BaseModel):
    type: Literal["location"] = "location"
    driver_id: str
    lat: float
    lng: float
    heading: float
    speed: float
    updated_at: str


# ---------------------------------------------------------------------------
# Bus
# ---------------------------------------------------------------------------

class EventBus:
    """Thin publish/subscribe wrapper over Redis pub/sub, owned by the service layer."""

    def __init__(self, redis: aioredis.Redis):
        self.redis = redis

    async def publish(self, channel: str, message: BaseModel) -> int:
        """Publish a message; returns the number of receivers Redis reported."""
        receivers = await self.redis.publish(channel, message.model_dump_json())
        logger.debug("Published %s on %s (%s receivers)", message.type, channel, receivers)
        return receivers

    async def listen(self, *channels: str) -> AsyncIterator[tuple[str, dict]]:
        """
        Lazy, non-terminating stream of `(channel, decoded message)` from
        `channels`. The Redis subscription is released when the consumer stops
        iterating or the surrounding task is cancelled.
        """
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(*channels)
        try:
            async for message in pubsub.listen():
                if message["type"] != "message":
                    continue
                try:
                    yield message["channel"], json.loads(message["data"])
                except json.JSONDecodeError:
                    logger.warning("Invalid JSON on %s: %s", message.get("channel"), message["data"])
        finally:
            await pubsub.unsubscribe(*channels)
            await pubsub.aclose()

    async def subscribe(self, *channels: str) -> AsyncIterator[dict]:
        """Same as `listen`, without the channel name."""
        async with aclosing(self.listen(*channels)) as messages:
            async for _, message in messages:
                yield message
