"""
Rides router — create / query / accept / reject / dismiss / cancel / advance ride requests
"""
import logging

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, Header, Query, status

from app.dependencies import get_coordinator, get_registry, get_relay
from app.middleware.auth import (
    get_current_actor, get_current_driver, get_current_passenger, get_current_user,
)
from app.middleware.idempotency import check_idempotency, store_idempotency_result
from app.models.ride import RideRequest
from app.redis_client import get_redis
from app.schemas.schemas import (
    AdvanceStatusRequest, DriverBrief, FareEstimateResponse,
    RideCreateRequest, RideDetailResponse, RideResponse,
)
from app.services.actor import Actor
from app.services.driver_registry import DriverRegistry
from app.services.geo import Coordinates, distance_km
from app.services.lifecycle import RideCoordinator
from app.services.location_relay import LocationRelay
from app.services.pricing import estimate, eta_minutes

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/rides", tags=["Rides"])


def _coords(lat: float | None, lng: float | None) -> Coordinates | None:
    if lat is None or lng is None:
        return None
    return Coordinates(lat, lng)


@router.get("/estimate", response_model=FareEstimateResponse)
async def estimate_fare(
    pickup_lat: float = Query(..., ge=-90, le=90),
    pickup_lng: float = Query(..., ge=-180, le=180),
    dest_lat: float = Query(..., ge=-90, le=90),
    dest_lng: float = Query(..., ge=-180, le=180),
    registry: DriverRegistry = Depends(get_registry),
    _user: dict = Depends(get_current_user),
):
    """Distance, suggested price and ETA before committing to a request."""
    distance = distance_km(Coordinates(pickup_lat, pickup_lng), Coordinates(dest_lat, dest_lng))
    nearby = await registry.count_online_near(pickup_lat, pickup_lng)
    return FareEstimateResponse(**estimate(distance), drivers_nearby=nearby)


@router.post("", status_code=status.HTTP_201_CREATED, response_model=RideResponse)
async def create_ride(
    payload: RideCreateRequest,
    actor: Actor = Depends(get_current_passenger),
    coordinator: RideCoordinator = Depends(get_coordinator),
    redis: aioredis.Redis = Depends(get_redis),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    # 1. Idempotency check
    cached = await check_idempotency(redis, actor.user_id, idempotency_key)
    if cached:
        return cached

    # 2. Create + dispatch
    ride = await coordinator.create_request(
        actor,
        pickup=_coords(payload.pickup_lat, payload.pickup_lng),
        destination=_coords(payload.dest_lat, payload.dest_lng),
        pickup_address=payload.pickup_address,
        dest_address=payload.dest_address,
        passenger_price=payload.passenger_price,
    )
    response = RideResponse.model_validate(ride)

    # 3. Store idempotency result
    if idempotency_key:
        await store_idempotency_result(
            redis, actor.user_id, idempotency_key, 201, response.model_dump(mode="json")
        )
    return response


@router.get("/active", response_model=RideDetailResponse | None)
async def get_active_ride(
    actor: Actor = Depends(get_current_actor),
    coordinator: RideCoordinator = Depends(get_coordinator),
    relay: LocationRelay = Depends(get_relay),
):
    """The caller's current ride (passenger: pending..in_progress; driver: accepted..in_progress)."""
    ride = await coordinator.active_ride(actor)
    if ride is None:
        return None
    return await _detail(ride, coordinator, relay)


@router.get("/pending", response_model=list[RideResponse])
async def list_pending_rides(
    actor: Actor = Depends(get_current_driver),
    coordinator: RideCoordinator = Depends(get_coordinator),
):
    """Pending requests newest first. Offline drivers see none."""
    driver = await coordinator.registry.get(actor.driver_id)
    if not driver.online_status:
        return []
    return [RideResponse.model_validate(r) for r in await coordinator.pending_for_driver(actor.driver_id)]


@router.get("/history", response_model=list[RideResponse])
async def ride_history(
    limit: int = Query(50, ge=1, le=200),
    actor: Actor = Depends(get_current_actor),
    coordinator: RideCoordinator = Depends(get_coordinator),
):
    return [RideResponse.model_validate(r) for r in await coordinator.history(actor, limit=limit)]


@router.get("/{ride_id}", response_model=RideDetailResponse)
async def get_ride(
    ride_id: str,
    actor: Actor = Depends(get_current_actor),
    coordinator: RideCoordinator = Depends(get_coordinator),
    relay: LocationRelay = Depends(get_relay),
):
    ride = await coordinator.get_ride(ride_id, actor)
    return await _detail(ride, coordinator, relay)


@router.post("/{ride_id}/accept", response_model=RideResponse)
async def accept_ride(
    ride_id: str,
    actor: Actor = Depends(get_current_driver),
    coordinator: RideCoordinator = Depends(get_coordinator),
):
    """Exclusive claim of a pending request. 409 when another driver got it first."""
    return RideResponse.model_validate(await coordinator.accept_request(ride_id, actor.driver_id))


@router.post("/{ride_id}/reject", response_model=RideResponse)
async def reject_ride(
    ride_id: str,
    actor: Actor = Depends(get_current_driver),
    coordinator: RideCoordinator = Depends(get_coordinator),
):
    return RideResponse.model_validate(await coordinator.reject_request(ride_id, actor.driver_id))


@router.post("/{ride_id}/dismiss", status_code=status.HTTP_204_NO_CONTENT)
async def dismiss_ride(
    ride_id: str,
    actor: Actor = Depends(get_current_driver),
    coordinator: RideCoordinator = Depends(get_coordinator),
):
    """Hide a pending request from this driver only."""
    await coordinator.dismiss_request(ride_id, actor.driver_id)


@router.post("/{ride_id}/cancel", response_model=RideResponse)
async def cancel_ride(
    ride_id: str,
    actor: Actor = Depends(get_current_actor),
    coordinator: RideCoordinator = Depends(get_coordinator),
):
    return RideResponse.model_validate(await coordinator.cancel_request(ride_id, actor))


@router.post("/{ride_id}/status", response_model=RideResponse)
async def advance_ride_status(
    ride_id: str,
    payload: AdvanceStatusRequest,
    actor: Actor = Depends(get_current_driver),
    coordinator: RideCoordinator = Depends(get_coordinator),
):
    ride = await coordinator.advance_status(ride_id, payload.status.value, actor.driver_id)
    return RideResponse.model_validate(ride)


async def _detail(ride: RideRequest, coordinator: RideCoordinator, relay: LocationRelay) -> RideDetailResponse:
    """Attach driver card and ETA (driver -> pickup, or driver -> destination once underway)."""
    detail = RideDetailResponse.model_validate(ride)
    if ride.driver_id:
        driver = await coordinator.registry.get(ride.driver_id)
        detail.driver = DriverBrief.model_validate(driver)
        location = await relay.latest(ride.driver_id)
        if location is not None:
            here = Coordinates(location.lat, location.lng)
            target = (
                Coordinates(ride.dest_lat, ride.dest_lng)
                if ride.status == "in_progress"
                else Coordinates(ride.pickup_lat, ride.pickup_lng)
            )
            detail.eta_minutes = round(eta_minutes(distance_km(here, target)), 1)
    return detail
