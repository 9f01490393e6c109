"""
Reconciliation sweep: the periodic consistency task that backs up the push path.

Each tick (default every 2s):
  1. Optionally move pending requests older than PENDING_EXPIRY_SECONDS to `rejected`
  2. Republish the current pending set on `rides:pending`

Subscribers that missed a push resync from the snapshot, which gives
at-least-once delivery even when Redis publishes were dropped.
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import get_settings
from app.events import EventBus
from app.services.dispatch import DispatchNotifier
from app.services.lifecycle import RideCoordinator
from app.services.rides_repository import RideRepository

logger = logging.getLogger(__name__)
settings = get_settings()


class ReconciliationSweep:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        redis: aioredis.Redis,
        interval: float | None = None,
        pending_expiry_seconds: int | None = None,
    ):
        self.session_factory = session_factory
        self.redis = redis
        self.notifier = DispatchNotifier(EventBus(redis))
        self.interval = interval if interval is not None else settings.reconcile_interval_seconds
        self.pending_expiry_seconds = (
            pending_expiry_seconds
            if pending_expiry_seconds is not None
            else settings.pending_expiry_seconds
        )
        self.task: asyncio.Task | None = None

    async def start(self) -> None:
        self.task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
            self.task = None

    async def _run(self) -> None:
        while True:
            try:
                await self.run_once()
            except RedisError as exc:
                logger.warning("Reconciliation sweep could not publish: %s", exc)
            except Exception as exc:
                logger.error("Reconciliation sweep failed: %s", exc, exc_info=True)
            await asyncio.sleep(self.interval)

    async def run_once(self) -> list[str]:
        """One sweep. Returns the pending ride ids that were republished."""
        async with self.session_factory() as db:
            if self.pending_expiry_seconds > 0:
                cutoff = datetime.now(timezone.utc) - timedelta(seconds=self.pending_expiry_seconds)
                coordinator = RideCoordinator(db, self.redis, notifier=self.notifier)
                await coordinator.expire_stale_requests(cutoff)
            pending = await RideRepository(db).list_pending()

        ride_ids = [ride.id for ride in pending]
        await self.notifier.publish_pending_snapshot(ride_ids)
        return ride_ids
