"""
Push channels over WebSocket:
  /v1/stream/pending          – online drivers: offers, pending-set changes and
                                their own ride events; ends when they go offline
  /v1/stream/passenger        – passengers: status events of all their rides
  /v1/stream/rides/{ride_id}  – ride status events and counterpart positions;
                                closed by the server once the ride is terminal
Auth is the same JWT as the REST API, passed as ?token=. Database sessions are
only held while authenticating and building the initial snapshot.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import AsyncIterator

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database import get_session_factory
from app.events import EventBus, PendingSnapshotMessage, passenger_channel
from app.exceptions import RideServiceError
from app.middleware.auth import decode_token, resolve_actor
from app.redis_client import get_redis
from app.services.actor import Actor
from app.services.dispatch import driver_feed, status_message
from app.services.lifecycle import RideCoordinator
from app.services.location_relay import LocationRelay, location_message
from app.services.rides_repository import TERMINAL_STATUSES

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/stream", tags=["Stream"])

POLICY_VIOLATION = 1008


async def _authenticate(websocket: WebSocket, db: AsyncSession, redis: aioredis.Redis) -> Actor | None:
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=POLICY_VIOLATION)
        return None
    try:
        return await resolve_actor(decode_token(token), db, redis)
    except HTTPException:
        await websocket.close(code=POLICY_VIOLATION)
        return None


async def _pump(websocket: WebSocket, messages: AsyncIterator[dict]) -> None:
    async for message in messages:
        await websocket.send_json(message)


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass


async def _serve(websocket: WebSocket, messages: AsyncIterator[dict]) -> None:
    """Forward `messages` until the stream ends or the client goes away, then tear both down."""
    forward = asyncio.create_task(_pump(websocket, messages))
    listen = asyncio.create_task(_wait_for_disconnect(websocket))
    done, pending = await asyncio.wait({forward, listen}, return_when=asyncio.FIRST_COMPLETED)
    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)
    await messages.aclose()
    for task in done:
        if task.exception() and not isinstance(task.exception(), WebSocketDisconnect):
            logger.error("Stream closed with error: %s", task.exception())
    if websocket.application_state == WebSocketState.CONNECTED:
        await websocket.close()


@router.websocket("/pending")
async def pending_stream(
    websocket: WebSocket,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    redis: aioredis.Redis = Depends(get_redis),
):
    await websocket.accept()
    async with session_factory() as db:
        actor = await _authenticate(websocket, db, redis)
        if actor is None:
            return
        if not actor.is_driver:
            await websocket.close(code=POLICY_VIOLATION)
            return
        coordinator = RideCoordinator(db, redis)
        driver = await coordinator.registry.get(actor.driver_id)
        if not driver.online_status:
            await websocket.close(code=POLICY_VIOLATION)
            return
        pending = await coordinator.pending_for_driver(actor.driver_id)

    snapshot = PendingSnapshotMessage(
        ride_ids=[ride.id for ride in pending],
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
    await websocket.send_json(snapshot.model_dump())
    await _serve(websocket, driver_feed(EventBus(redis), redis, actor.driver_id))


@router.websocket("/passenger")
async def passenger_stream(
    websocket: WebSocket,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    redis: aioredis.Redis = Depends(get_redis),
):
    await websocket.accept()
    async with session_factory() as db:
        actor = await _authenticate(websocket, db, redis)
        if actor is None:
            return
        if not actor.is_passenger:
            await websocket.close(code=POLICY_VIOLATION)
            return
        active = await RideCoordinator(db, redis).active_ride(actor)

    if active is not None:
        await websocket.send_json(status_message(active).model_dump())
    await _serve(websocket, EventBus(redis).subscribe(passenger_channel(actor.user_id)))


@router.websocket("/rides/{ride_id}")
async def ride_stream(
    websocket: WebSocket,
    ride_id: str,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    redis: aioredis.Redis = Depends(get_redis),
):
    await websocket.accept()
    async with session_factory() as db:
        actor = await _authenticate(websocket, db, redis)
        if actor is None:
            return
        try:
            ride = await RideCoordinator(db, redis).get_ride(ride_id, actor)
        except RideServiceError:
            await websocket.close(code=POLICY_VIOLATION)
            return
        relay = LocationRelay(db, redis)
        location = await relay.latest(ride.driver_id) if ride.driver_id else None

    await websocket.send_json(status_message(ride).model_dump())
    if ride.status in TERMINAL_STATUSES:
        await websocket.close()
        return
    if location is not None:
        await websocket.send_json(location_message(location).model_dump())

    await _serve(websocket, relay.follow_ride(ride_id))
