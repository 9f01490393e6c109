from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, field_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class RideStatusEnum(str, Enum):
    pending = "pending"
    accepted = "accepted"
    rejected = "rejected"
    driver_arrived = "driver_arrived"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"


class AdvanceStatusEnum(str, Enum):
    driver_arrived = "driver_arrived"
    in_progress = "in_progress"
    completed = "completed"


class TripStatusEnum(str, Enum):
    active = "active"
    completed = "completed"


# ---------------------------------------------------------------------------
# Ride schemas
# ---------------------------------------------------------------------------

class RideCreateRequest(BaseModel):
    pickup_lat: Optional[float] = Field(None, ge=-90, le=90)
    pickup_lng: Optional[float] = Field(None, ge=-180, le=180)
    pickup_address: str = Field("", max_length=500)
    dest_lat: Optional[float] = Field(None, ge=-90, le=90)
    dest_lng: Optional[float] = Field(None, ge=-180, le=180)
    dest_address: str = Field("", max_length=500)
    passenger_price: Optional[float] = Field(None, gt=0)


class FareEstimateResponse(BaseModel):
    distance_km: float
    suggested_price: float
    eta_minutes: float
    drivers_nearby: int


class DriverBrief(BaseModel):
    id: str
    name: str
    car_model: str
    car_color: str
    plate: str
    rating: float

    model_config = {"from_attributes": True}


class RideResponse(BaseModel):
    id: str
    passenger_id: str
    driver_id: Optional[str] = None
    pickup_lat: float
    pickup_lng: float
    pickup_address: str
    dest_lat: float
    dest_lng: float
    dest_address: str
    distance: float
    suggested_price: float
    passenger_price: Optional[float] = None
    driver_price: Optional[float] = None
    status: RideStatusEnum
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class RideDetailResponse(RideResponse):
    driver: Optional[DriverBrief] = None
    eta_minutes: Optional[float] = None


class AdvanceStatusRequest(BaseModel):
    status: AdvanceStatusEnum


# ---------------------------------------------------------------------------
# Driver schemas
# ---------------------------------------------------------------------------

class DriverCreateRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=255)
    car_model: str = Field("Not set", max_length=100)
    car_color: str = Field("Not set", max_length=50)
    plate: str = Field("Not set", max_length=20)


class DriverResponse(BaseModel):
    id: str
    user_id: str
    name: str
    car_model: str
    car_color: str
    plate: str
    online_status: bool
    rating: float
    total_trips: int
    created_at: datetime

    model_config = {"from_attributes": True}


class OnlineStatusRequest(BaseModel):
    online: bool
    # Current position; required to go online unless one was reported before
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)


class LocationUpdateRequest(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    heading: Optional[float] = Field(0.0, ge=0, le=360)
    speed: Optional[float] = Field(0.0, ge=0)


class LocationResponse(BaseModel):
    driver_id: str
    lat: float
    lng: float
    heading: float
    speed: float
    updated_at: datetime

    model_config = {"from_attributes": True}


class EarningsResponse(BaseModel):
    driver_id: str
    today: float
    this_week: float
    this_month: float
    all_time: float
    completed_trips: int


class OnlineDriversResponse(BaseModel):
    count: int
    nearby: Optional[int] = None


# ---------------------------------------------------------------------------
# Trip schemas
# ---------------------------------------------------------------------------

class TripResponse(BaseModel):
    id: str
    ride_request_id: str
    driver_id: str
    passenger_id: str
    distance: float
    price: float
    status: TripStatusEnum
    start_time: datetime
    end_time: Optional[datetime] = None

    model_config = {"from_attributes": True}


class RatingRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=1000)

    @field_validator("comment")
    @classmethod
    def blank_comment_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v


class RatingResponse(BaseModel):
    id: str
    trip_id: str
    rated_id: str
    rating: int
    comment: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}
