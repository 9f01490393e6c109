"""
Drivers router — POST /v1/drivers (register profile), GET /v1/drivers/me,
                 PATCH /v1/drivers/me/status, POST /v1/drivers/me/location,
                 GET /v1/drivers/me/earnings, GET /v1/drivers/online
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from app.dependencies import get_registry, get_relay
from app.middleware.auth import get_current_driver, get_current_user, get_driver_user
from app.schemas.schemas import (
    DriverCreateRequest, DriverResponse, EarningsResponse,
    LocationResponse, LocationUpdateRequest, OnlineDriversResponse, OnlineStatusRequest,
)
from app.services.actor import Actor
from app.services.driver_registry import DriverRegistry
from app.services.geo import Coordinates
from app.services.location_relay import LocationRelay

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/drivers", tags=["Drivers"])


@router.post("", status_code=status.HTTP_201_CREATED, response_model=DriverResponse)
async def register_driver(
    payload: DriverCreateRequest,
    user_id: str = Depends(get_driver_user),
    registry: DriverRegistry = Depends(get_registry),
):
    """Create (or update) the driver profile bound to the caller's identity."""
    driver = await registry.register(
        user_id,
        name=payload.name,
        car_model=payload.car_model,
        car_color=payload.car_color,
        plate=payload.plate,
    )
    return DriverResponse.model_validate(driver)


@router.get("/me", response_model=DriverResponse)
async def get_me(
    actor: Actor = Depends(get_current_driver),
    registry: DriverRegistry = Depends(get_registry),
):
    return DriverResponse.model_validate(await registry.get(actor.driver_id))


@router.patch("/me/status", response_model=DriverResponse)
async def update_online_status(
    payload: OnlineStatusRequest,
    actor: Actor = Depends(get_current_driver),
    registry: DriverRegistry = Depends(get_registry),
):
    """Toggle online/offline. Going online needs a position, in the body or reported earlier."""
    position = None
    if payload.lat is not None and payload.lng is not None:
        position = Coordinates(payload.lat, payload.lng)
    driver = await registry.set_online(actor.driver_id, payload.online, position=position)
    return DriverResponse.model_validate(driver)


@router.post("/me/location", response_model=LocationResponse)
async def report_location(
    payload: LocationUpdateRequest,
    actor: Actor = Depends(get_current_driver),
    relay: LocationRelay = Depends(get_relay),
):
    """
    High-frequency endpoint (every 2-5s per driver).
    Replaces the driver's single Location row and relays the sample.
    """
    location = await relay.report_position(
        actor.driver_id,
        payload.lat,
        payload.lng,
        heading=payload.heading or 0.0,
        speed=payload.speed or 0.0,
    )
    return LocationResponse.model_validate(location)


@router.get("/me/earnings", response_model=EarningsResponse)
async def get_earnings(
    actor: Actor = Depends(get_current_driver),
    registry: DriverRegistry = Depends(get_registry),
):
    return EarningsResponse(**await registry.earnings_summary(actor.driver_id))


@router.get("/online", response_model=OnlineDriversResponse)
async def online_drivers(
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lng: Optional[float] = Query(None, ge=-180, le=180),
    _user: dict = Depends(get_current_user),
    registry: DriverRegistry = Depends(get_registry),
):
    """How many drivers are online, and how many of them are near (lat, lng) when given."""
    online = await registry.list_online()
    nearby = None
    if lat is not None and lng is not None:
        nearby = await registry.count_online_near(lat, lng)
    return OnlineDriversResponse(count=len(online), nearby=nearby)
