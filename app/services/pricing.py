"""
Fare and ETA calculation.
"""
from decimal import Decimal, ROUND_HALF_UP

from app.config import get_settings

settings = get_settings()


def to_money(value: float) -> Decimal:
    return Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def suggested_price(distance_km: float) -> Decimal:
    """base + rate * distance, rounded to cents."""
    if distance_km < 0:
        raise ValueError("distance must be non-negative")
    return to_money(settings.base_fare + settings.price_per_km * distance_km)


def eta_minutes(distance_km: float) -> float:
    """Travel time at the configured average city speed."""
    return distance_km / settings.average_speed_kmh * 60


def trip_price(passenger_price: Decimal | None, suggested: Decimal) -> Decimal:
    """Price snapshotted onto a Trip: the passenger's offer wins when present."""
    return passenger_price if passenger_price is not None else suggested


def estimate(distance_km: float) -> dict:
    """Used by the estimate endpoint before a request is created."""
    return {
        "distance_km": round(distance_km, 3),
        "suggested_price": float(suggested_price(distance_km)),
        "eta_minutes": round(eta_minutes(distance_km), 1),
    }
