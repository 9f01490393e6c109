from app.models.driver import Driver
from app.models.location import Location
from app.models.ride import RideRequest
from app.models.trip import Trip
from app.models.rating import Rating

__all__ = ["Driver", "Location", "RideRequest", "Trip", "Rating"]
