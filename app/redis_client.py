import redis.asyncio as aioredis
from app.config import get_settings

settings = get_settings()

_redis_pool: aioredis.Redis | None = None

ONLINE_GEO_KEY = "drivers:geo:online"


async def get_redis() -> aioredis.Redis:
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = aioredis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=100,
        )
    return _redis_pool


async def close_redis() -> None:
    global _redis_pool
    if _redis_pool:
        await _redis_pool.aclose()
        _redis_pool = None


# ---------------------------------------------------------------------------
# GEO helpers
# ---------------------------------------------------------------------------

async def geo_add_driver(redis: aioredis.Redis, driver_id: str, lat: float, lng: float) -> None:
    """Add / update an online driver's position in the geospatial index."""
    await redis.geoadd(ONLINE_GEO_KEY, [lng, lat, driver_id])


async def geo_remove_driver(redis: aioredis.Redis, driver_id: str) -> None:
    await redis.zrem(ONLINE_GEO_KEY, driver_id)


async def geo_nearby_drivers(
    redis: aioredis.Redis,
    lat: float,
    lng: float,
    radius_km: float,
) -> list[str]:
    """Return online driver IDs within `radius_km`, nearest first."""
    results = await redis.geosearch(
        ONLINE_GEO_KEY,
        longitude=lng,
        latitude=lat,
        radius=radius_km,
        unit="km",
        sort="ASC",
    )
    return results  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Per-driver dismissals
# ---------------------------------------------------------------------------

def _dismissed_key(driver_id: str) -> str:
    return f"driver:{driver_id}:dismissed"


async def dismiss_ride(redis: aioredis.Redis, driver_id: str, ride_id: str, ttl: int) -> None:
    key = _dismissed_key(driver_id)
    await redis.sadd(key, ride_id)
    await redis.expire(key, ttl)


async def dismissed_rides(redis: aioredis.Redis, driver_id: str) -> set[str]:
    return set(await redis.smembers(_dismissed_key(driver_id)))


async def cache_set(redis: aioredis.Redis, key: str, value: str, ttl: int) -> None:
    await redis.setex(key, ttl, value)


async def cache_get(redis: aioredis.Redis, key: str) -> str | None:
    return await redis.get(key)
