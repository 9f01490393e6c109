"""
Trips router — GET /v1/trips, GET /v1/trips/{id}, POST /v1/trips/{id}/rating
"""
import logging

from fastapi import APIRouter, Depends, Query, status

from app.dependencies import get_trip_service
from app.middleware.auth import get_current_actor, get_current_passenger
from app.schemas.schemas import RatingRequest, RatingResponse, TripResponse
from app.services.actor import Actor
from app.services.trips import TripService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/trips", tags=["Trips"])


@router.get("", response_model=list[TripResponse])
async def list_trips(
    limit: int = Query(50, ge=1, le=200),
    actor: Actor = Depends(get_current_actor),
    trips: TripService = Depends(get_trip_service),
):
    return [TripResponse.model_validate(t) for t in await trips.list_for(actor, limit=limit)]


@router.get("/{trip_id}", response_model=TripResponse)
async def get_trip(
    trip_id: str,
    actor: Actor = Depends(get_current_actor),
    trips: TripService = Depends(get_trip_service),
):
    return TripResponse.model_validate(await trips.get(trip_id, actor))


@router.post("/{trip_id}/rating", status_code=status.HTTP_201_CREATED, response_model=RatingResponse)
async def rate_trip(
    trip_id: str,
    payload: RatingRequest,
    actor: Actor = Depends(get_current_passenger),
    trips: TripService = Depends(get_trip_service),
):
    """Rate the driver of a completed trip. One rating per passenger per trip."""
    rating = await trips.rate_trip(trip_id, actor, payload.rating, payload.comment)
    return RatingResponse.model_validate(rating)
