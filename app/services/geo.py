"""
Pure geographic helpers: great-circle distance, linear interpolation and the
marker-smoothing path used by map clients.
"""
import asyncio
from dataclasses import dataclass
from math import radians, sin, cos, sqrt, atan2
from typing import AsyncIterator, Iterator

from app.config import get_settings

settings = get_settings()

EARTH_RADIUS_KM = 6371.0


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float


def distance_km(a: Coordinates, b: Coordinates) -> float:
    """Haversine distance in km between two points."""
    phi1, phi2 = radians(a.latitude), radians(b.latitude)
    dphi = radians(b.latitude - a.latitude)
    dlambda = radians(b.longitude - a.longitude)
    h = sin(dphi / 2) ** 2 + cos(phi1) * cos(phi2) * sin(dlambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * atan2(sqrt(h), sqrt(1 - h))


def interpolate(start: Coordinates, end: Coordinates, fraction: float) -> Coordinates:
    """Straight-line interpolation of latitude and longitude independently."""
    return Coordinates(
        latitude=start.latitude + (end.latitude - start.latitude) * fraction,
        longitude=start.longitude + (end.longitude - start.longitude) * fraction,
    )


def smoothing_path(start: Coordinates, end: Coordinates, steps: int = 20) -> Iterator[Coordinates]:
    """
    Intermediate marker positions between two consecutive raw samples.
    Yields `steps` points at fractions 1/steps .. 1, ending exactly on `end`.
    """
    if steps < 1:
        raise ValueError("steps must be >= 1")
    for step in range(1, steps):
        yield interpolate(start, end, step / steps)
    yield end


async def animate_marker(
    start: Coordinates | None,
    end: Coordinates,
    steps: int | None = None,
    interval: float | None = None,
) -> AsyncIterator[Coordinates]:
    """
    Fixed-rate tick over `smoothing_path` (SMOOTHING_STEPS points every
    SMOOTHING_INTERVAL_MS by default). With no previous position the marker
    jumps straight to `end`.
    """
    if steps is None:
        steps = settings.smoothing_steps
    if interval is None:
        interval = settings.smoothing_interval_ms / 1000
    if start is None:
        yield end
        return
    for point in smoothing_path(start, end, steps):
        await asyncio.sleep(interval)
        yield point
