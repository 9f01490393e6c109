"""
Shared fixtures.

Database: a file-backed SQLite per test (aiosqlite) so that separate sessions
really contend for the same rows. Redis: AsyncMock with just enough state for
dismissals and the GEO index.
"""
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.database import Base
import app.models  # noqa: F401  (registers tables on Base.metadata)
from app.services.actor import Actor
from app.services.driver_registry import DriverRegistry
from app.services.geo import Coordinates

PICKUP = Coordinates(34.02, -6.83)
DESTINATION = Coordinates(34.05, -6.90)
NEAR_PICKUP = Coordinates(34.021, -6.831)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'rides.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def redis():
    """AsyncMock Redis: publish counts receivers, sets and GEO members are kept in dicts."""
    sets: dict[str, set] = {}
    geo: dict[str, tuple[float, float]] = {}
    mock = AsyncMock()

    async def sadd(key, *members):
        sets.setdefault(key, set()).update(members)
        return len(members)

    async def smembers(key):
        return set(sets.get(key, set()))

    async def geoadd(key, values):
        lng, lat, member = values
        geo[member] = (lat, lng)
        return 1

    async def zrem(key, *members):
        for member in members:
            geo.pop(member, None)
        return len(members)

    async def geosearch(key, **kwargs):
        return list(geo)

    mock.publish = AsyncMock(return_value=1)
    mock.sadd = AsyncMock(side_effect=sadd)
    mock.smembers = AsyncMock(side_effect=smembers)
    mock.geoadd = AsyncMock(side_effect=geoadd)
    mock.zrem = AsyncMock(side_effect=zrem)
    mock.geosearch = AsyncMock(side_effect=geosearch)
    mock.get = AsyncMock(return_value=None)
    mock.setex = AsyncMock(return_value=True)
    mock.expire = AsyncMock(return_value=True)
    mock.geo = geo
    return mock


def make_pubsub(messages: list) -> MagicMock:
    """
    A PubSub stand-in whose listen() replays `messages` as Redis would deliver
    them. Items are payload dicts, or `(channel, payload)` pairs.
    """
    pubsub = MagicMock()
    pubsub.subscribe = AsyncMock()
    pubsub.unsubscribe = AsyncMock()
    pubsub.aclose = AsyncMock()

    async def listen():
        yield {"type": "subscribe", "channel": "x", "data": 1}
        for item in messages:
            channel, payload = item if isinstance(item, tuple) else ("x", item)
            yield {"type": "message", "channel": channel, "data": json.dumps(payload)}

    pubsub.listen = listen
    return pubsub


@pytest.fixture
def passenger():
    return Actor(user_id="passenger-001", role="passenger")


@pytest.fixture
def make_driver(db, redis):
    async def _make(user_id: str, online: bool = True):
        registry = DriverRegistry(db, redis)
        driver = await registry.register(user_id, name=f"Driver {user_id}", car_model="Dacia Logan", plate="12345-A-6")
        if online:
            driver = await registry.set_online(driver.id, True, position=NEAR_PICKUP)
        return driver

    return _make


def driver_actor(driver) -> Actor:
    return Actor(user_id=driver.user_id, role="driver", driver_id=driver.id)
