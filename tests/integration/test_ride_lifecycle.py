"""
Integration tests for the full ride lifecycle.
Runs the coordinator against SQLite (aiosqlite) with a mocked Redis.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from conftest import DESTINATION, PICKUP, driver_actor
from app.exceptions import ConflictError, IllegalTransitionError, NotFoundError, ValidationError
from app.models.driver import Driver
from app.models.trip import Trip
from app.services.actor import Actor
from app.services.lifecycle import RideCoordinator
from app.services.pricing import suggested_price


async def _request(coordinator, passenger, price=None):
    return await coordinator.create_request(
        passenger, PICKUP, DESTINATION, "Agdal, Rabat", "Hassan Tower, Rabat", passenger_price=price
    )


async def _drive_to(coordinator, ride, driver, statuses):
    for status in statuses:
        ride = await coordinator.advance_status(ride.id, status, driver.id)
    return ride


@pytest.mark.asyncio
class TestCreateRequest:
    async def test_creates_pending_with_server_side_distance_and_price(self, db, redis, passenger):
        ride = await _request(RideCoordinator(db, redis), passenger)
        assert ride.status == "pending"
        assert ride.driver_id is None
        assert ride.distance == pytest.approx(7.26, abs=0.05)
        assert ride.suggested_price == suggested_price(ride.distance)
        assert ride.passenger_price is None

    async def test_keeps_passenger_offer(self, db, redis, passenger):
        ride = await _request(RideCoordinator(db, redis), passenger, price=9)
        assert ride.passenger_price == Decimal("9.00")

    async def test_offered_to_every_online_driver(self, db, redis, passenger, make_driver):
        first = await make_driver("driver-001")
        second = await make_driver("driver-002")
        await make_driver("driver-003", online=False)
        redis.publish.reset_mock()

        ride = await _request(RideCoordinator(db, redis), passenger)

        channels = [c.args[0] for c in redis.publish.await_args_list]
        assert channels[0] == "rides:pending"
        assert sorted(channels[1:]) == sorted([f"driver:{first.id}:offers", f"driver:{second.id}:offers"])
        assert ride.id in redis.publish.await_args_list[0].args[1]

    @pytest.mark.parametrize(
        "pickup,destination,dest_address,price",
        [
            (None, DESTINATION, "Hassan Tower", None),
            (PICKUP, None, "Hassan Tower", None),
            (PICKUP, DESTINATION, "   ", None),
            (PICKUP, DESTINATION, "Hassan Tower", 0),
            (PICKUP, DESTINATION, "Hassan Tower", -4),
        ],
    )
    async def test_invalid_input_writes_nothing(self, db, redis, passenger, pickup, destination, dest_address, price):
        coordinator = RideCoordinator(db, redis)
        with pytest.raises(ValidationError):
            await coordinator.create_request(passenger, pickup, destination, "", dest_address, passenger_price=price)
        assert await coordinator.rides.list_pending() == []
        redis.publish.assert_not_awaited()

    async def test_drivers_cannot_request(self, db, redis, make_driver):
        driver = await make_driver("driver-001")
        with pytest.raises(ValidationError):
            await _request(RideCoordinator(db, redis), driver_actor(driver))

    async def test_one_active_ride_per_passenger(self, db, redis, passenger):
        coordinator = RideCoordinator(db, redis)
        first = await _request(coordinator, passenger)
        with pytest.raises(ConflictError) as exc:
            await _request(coordinator, passenger)
        assert exc.value.details["ride_id"] == first.id


@pytest.mark.asyncio
class TestFullLifecycle:
    async def test_request_to_completion(self, db, redis, passenger, make_driver):
        driver = await make_driver("driver-001")
        coordinator = RideCoordinator(db, redis)

        ride = await _request(coordinator, passenger, price=9)
        ride = await coordinator.accept_request(ride.id, driver.id)
        assert (ride.status, ride.driver_id) == ("accepted", driver.id)
        assert await coordinator.pending_for_driver(driver.id) == []

        ride = await coordinator.advance_status(ride.id, "driver_arrived", driver.id)
        assert ride.status == "driver_arrived"
        assert (await db.execute(select(Trip))).scalars().all() == []

        ride = await coordinator.advance_status(ride.id, "in_progress", driver.id)
        trip = (await db.execute(select(Trip))).scalar_one()
        assert trip.status == "active"
        assert trip.ride_request_id == ride.id
        assert trip.price == Decimal("9.00")
        assert trip.start_time is not None

        ride = await coordinator.advance_status(ride.id, "completed", driver.id)
        assert ride.status == "completed"
        await db.refresh(trip)
        await db.refresh(driver)
        assert trip.status == "completed"
        assert trip.end_time is not None
        assert driver.total_trips == 1

        assert await coordinator.active_ride(passenger) is None
        assert [r.id for r in await coordinator.history(passenger)] == [ride.id]
        assert [r.id for r in await coordinator.history(driver_actor(driver))] == [ride.id]

    async def test_trip_price_falls_back_to_suggested(self, db, redis, passenger, make_driver):
        driver = await make_driver("driver-001")
        coordinator = RideCoordinator(db, redis)
        ride = await _request(coordinator, passenger)
        await coordinator.accept_request(ride.id, driver.id)
        await _drive_to(coordinator, ride, driver, ["driver_arrived", "in_progress"])
        trip = (await db.execute(select(Trip))).scalar_one()
        assert trip.price == ride.suggested_price

    async def test_every_transition_is_published(self, db, redis, passenger, make_driver):
        driver = await make_driver("driver-001")
        coordinator = RideCoordinator(db, redis)
        ride = await _request(coordinator, passenger)
        redis.publish.reset_mock()

        await coordinator.accept_request(ride.id, driver.id)

        channels = {c.args[0] for c in redis.publish.await_args_list}
        assert channels == {
            f"ride:{ride.id}",
            f"passenger:{passenger.user_id}",
            f"driver:{driver.id}",
            "rides:pending",
        }
        assert all('"status":"accepted"' in c.args[1] for c in redis.publish.await_args_list)

    async def test_completing_twice_counts_once(self, db, redis, passenger, make_driver):
        driver = await make_driver("driver-001")
        coordinator = RideCoordinator(db, redis)
        ride = await _request(coordinator, passenger)
        await coordinator.accept_request(ride.id, driver.id)
        await _drive_to(coordinator, ride, driver, ["driver_arrived", "in_progress", "completed"])

        with pytest.raises(IllegalTransitionError) as exc:
            await coordinator.advance_status(ride.id, "completed", driver.id)
        assert exc.value.current == "completed"
        await db.refresh(driver)
        assert driver.total_trips == 1


@pytest.mark.asyncio
class TestExclusiveClaim:
    async def test_second_accept_conflicts(self, db, redis, passenger, make_driver):
        first = await make_driver("driver-001")
        second = await make_driver("driver-002")
        coordinator = RideCoordinator(db, redis)
        ride = await _request(coordinator, passenger)

        first_id, ride_id = first.id, ride.id

        await coordinator.accept_request(ride_id, first_id)
        with pytest.raises(ConflictError):
            await coordinator.accept_request(ride_id, second.id)
        # the failed claim rolled the session back, which expires loaded objects
        ride = await coordinator.rides.get(ride_id, refresh=True)
        assert ride.driver_id == first_id

    async def test_concurrent_accepts_have_one_winner(self, db, redis, session_factory, passenger, make_driver):
        drivers = [await make_driver(f"driver-00{i}") for i in range(1, 4)]
        ride = await _request(RideCoordinator(db, redis), passenger)

        sessions = [session_factory() for _ in drivers]
        try:
            results = await asyncio.gather(
                *(
                    RideCoordinator(session, redis).accept_request(ride.id, driver.id)
                    for session, driver in zip(sessions, drivers)
                ),
                return_exceptions=True,
            )
        finally:
            for session in sessions:
                await session.close()

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert len(losers) == 2
        assert all(isinstance(e, ConflictError) for e in losers)

        async with session_factory() as fresh:
            stored = await RideCoordinator(fresh, redis).rides.get(ride.id)
            assert stored.status == "accepted"
            assert stored.driver_id == winners[0].driver_id

    async def test_driver_with_active_ride_cannot_accept_another(self, db, redis, make_driver):
        driver = await make_driver("driver-001")
        coordinator = RideCoordinator(db, redis)
        first = await _request(coordinator, Actor("passenger-001", "passenger"))
        second = await _request(coordinator, Actor("passenger-002", "passenger"))
        await coordinator.accept_request(first.id, driver.id)
        with pytest.raises(ConflictError):
            await coordinator.accept_request(second.id, driver.id)

    async def test_accept_unknown_ride(self, db, redis, make_driver):
        driver = await make_driver("driver-001")
        with pytest.raises(NotFoundError):
            await RideCoordinator(db, redis).accept_request("missing", driver.id)

    async def test_accept_unknown_driver(self, db, redis, passenger):
        coordinator = RideCoordinator(db, redis)
        ride = await _request(coordinator, passenger)
        with pytest.raises(NotFoundError):
            await coordinator.accept_request(ride.id, "ghost-driver")


@pytest.mark.asyncio
class TestIllegalTransitions:
    async def test_cannot_skip_arrival(self, db, redis, passenger, make_driver):
        driver = await make_driver("driver-001")
        coordinator = RideCoordinator(db, redis)
        ride = await _request(coordinator, passenger)
        await coordinator.accept_request(ride.id, driver.id)
        with pytest.raises(IllegalTransitionError):
            await coordinator.advance_status(ride.id, "in_progress", driver.id)
        ride = await coordinator.rides.get(ride.id, refresh=True)
        assert ride.status == "accepted"

    async def test_advance_cannot_target_accept_or_cancel(self, db, redis, passenger, make_driver):
        driver = await make_driver("driver-001")
        coordinator = RideCoordinator(db, redis)
        ride = await _request(coordinator, passenger)
        await coordinator.accept_request(ride.id, driver.id)
        for target in ("accepted", "cancelled", "pending"):
            with pytest.raises(IllegalTransitionError):
                await coordinator.advance_status(ride.id, target, driver.id)

    async def test_only_assigned_driver_advances(self, db, redis, passenger, make_driver):
        driver = await make_driver("driver-001")
        other = await make_driver("driver-002")
        coordinator = RideCoordinator(db, redis)
        ride = await _request(coordinator, passenger)
        await coordinator.accept_request(ride.id, driver.id)
        with pytest.raises(NotFoundError):
            await coordinator.advance_status(ride.id, "driver_arrived", other.id)

    async def test_other_driver_learns_nothing_about_the_ride(self, db, redis, passenger, make_driver):
        driver = await make_driver("driver-001")
        other = await make_driver("driver-002")
        coordinator = RideCoordinator(db, redis)
        ride = await _request(coordinator, passenger)
        await coordinator.accept_request(ride.id, driver.id)
        # an illegal target from a stranger is still reported as not found
        for target in ("completed", "in_progress", "accepted"):
            with pytest.raises(NotFoundError):
                await coordinator.advance_status(ride.id, target, other.id)

    async def test_terminal_rides_cannot_be_cancelled(self, db, redis, passenger, make_driver):
        driver = await make_driver("driver-001")
        coordinator = RideCoordinator(db, redis)
        ride = await _request(coordinator, passenger)
        await coordinator.accept_request(ride.id, driver.id)
        await _drive_to(coordinator, ride, driver, ["driver_arrived", "in_progress", "completed"])
        with pytest.raises(IllegalTransitionError):
            await coordinator.cancel_request(ride.id, passenger)


@pytest.mark.asyncio
class TestRejectAndDismiss:
    async def test_reject_takes_request_out_for_everyone(self, db, redis, passenger, make_driver):
        driver = await make_driver("driver-001")
        other = await make_driver("driver-002")
        coordinator = RideCoordinator(db, redis)
        ride = await _request(coordinator, passenger)

        ride = await coordinator.reject_request(ride.id, driver.id)

        assert ride.status == "cancelled"
        assert ride.driver_id is None
        assert await coordinator.pending_for_driver(other.id) == []
        with pytest.raises(ConflictError):
            await coordinator.accept_request(ride.id, other.id)

    async def test_reject_after_accept_is_illegal(self, db, redis, passenger, make_driver):
        driver = await make_driver("driver-001")
        other = await make_driver("driver-002")
        coordinator = RideCoordinator(db, redis)
        ride = await _request(coordinator, passenger)
        await coordinator.accept_request(ride.id, driver.id)
        with pytest.raises(IllegalTransitionError):
            await coordinator.reject_request(ride.id, other.id)

    async def test_dismiss_hides_for_one_driver_only(self, db, redis, passenger, make_driver):
        driver = await make_driver("driver-001")
        other = await make_driver("driver-002")
        coordinator = RideCoordinator(db, redis)
        ride = await _request(coordinator, passenger)

        await coordinator.dismiss_request(ride.id, driver.id)

        assert await coordinator.pending_for_driver(driver.id) == []
        assert [r.id for r in await coordinator.pending_for_driver(other.id)] == [ride.id]
        ride = await coordinator.rides.get(ride.id, refresh=True)
        assert ride.status == "pending"

    async def test_pending_is_newest_first(self, db, redis, make_driver):
        driver = await make_driver("driver-001")
        coordinator = RideCoordinator(db, redis)
        older = await _request(coordinator, Actor("passenger-001", "passenger"))
        newer = await _request(coordinator, Actor("passenger-002", "passenger"))
        assert [r.id for r in await coordinator.pending_for_driver(driver.id)] == [newer.id, older.id]


@pytest.mark.asyncio
class TestCancel:
    async def test_passenger_cancels_pending(self, db, redis, passenger):
        coordinator = RideCoordinator(db, redis)
        ride = await _request(coordinator, passenger)
        ride = await coordinator.cancel_request(ride.id, passenger)
        assert ride.status == "cancelled"
        # and may request again
        await _request(coordinator, passenger)

    async def test_assigned_driver_cancels_in_progress(self, db, redis, passenger, make_driver):
        driver = await make_driver("driver-001")
        coordinator = RideCoordinator(db, redis)
        ride = await _request(coordinator, passenger)
        await coordinator.accept_request(ride.id, driver.id)
        await _drive_to(coordinator, ride, driver, ["driver_arrived", "in_progress"])
        ride = await coordinator.cancel_request(ride.id, driver_actor(driver))
        assert ride.status == "cancelled"
        assert await coordinator.active_ride(driver_actor(driver)) is None

    async def test_strangers_cannot_cancel(self, db, redis, passenger, make_driver):
        driver = await make_driver("driver-001")
        coordinator = RideCoordinator(db, redis)
        ride = await _request(coordinator, passenger)
        with pytest.raises(NotFoundError):
            await coordinator.cancel_request(ride.id, Actor("passenger-999", "passenger"))
        # unassigned drivers do not own a pending ride either
        with pytest.raises(NotFoundError):
            await coordinator.cancel_request(ride.id, driver_actor(driver))


@pytest.mark.asyncio
class TestVisibility:
    async def test_pending_visible_to_any_driver(self, db, redis, passenger, make_driver):
        driver = await make_driver("driver-001")
        coordinator = RideCoordinator(db, redis)
        ride = await _request(coordinator, passenger)
        assert (await coordinator.get_ride(ride.id, driver_actor(driver))).id == ride.id

    async def test_assigned_ride_hidden_from_other_drivers(self, db, redis, passenger, make_driver):
        driver = await make_driver("driver-001")
        other = await make_driver("driver-002")
        coordinator = RideCoordinator(db, redis)
        ride = await _request(coordinator, passenger)
        await coordinator.accept_request(ride.id, driver.id)
        with pytest.raises(NotFoundError):
            await coordinator.get_ride(ride.id, driver_actor(other))
        with pytest.raises(NotFoundError):
            await coordinator.get_ride(ride.id, Actor("passenger-999", "passenger"))


@pytest.mark.asyncio
class TestExpiry:
    async def test_stale_pending_requests_are_rejected(self, db, redis, passenger):
        coordinator = RideCoordinator(db, redis)
        ride = await _request(coordinator, passenger)

        assert await coordinator.expire_stale_requests(datetime.now(timezone.utc) - timedelta(minutes=5)) == []
        expired = await coordinator.expire_stale_requests(datetime.now(timezone.utc) + timedelta(seconds=1))

        assert expired == [ride.id]
        ride = await coordinator.rides.get(ride.id, refresh=True)
        assert ride.status == "rejected"

    async def test_accepted_requests_never_expire(self, db, redis, passenger, make_driver):
        driver = await make_driver("driver-001")
        coordinator = RideCoordinator(db, redis)
        ride = await _request(coordinator, passenger)
        await coordinator.accept_request(ride.id, driver.id)
        assert await coordinator.expire_stale_requests(datetime.now(timezone.utc) + timedelta(seconds=1)) == []


@pytest.mark.asyncio
class TestDriverCounters:
    async def test_total_trips_counts_completed_rides_only(self, db, redis, make_driver):
        driver = await make_driver("driver-001")
        coordinator = RideCoordinator(db, redis)

        for i in range(2):
            ride = await _request(coordinator, Actor(f"passenger-00{i}", "passenger"))
            await coordinator.accept_request(ride.id, driver.id)
            await _drive_to(coordinator, ride, driver, ["driver_arrived", "in_progress", "completed"])

        cancelled = await _request(coordinator, Actor("passenger-009", "passenger"))
        await coordinator.accept_request(cancelled.id, driver.id)
        await _drive_to(coordinator, cancelled, driver, ["driver_arrived", "in_progress"])
        await coordinator.cancel_request(cancelled.id, driver_actor(driver))

        stored = (await db.execute(select(Driver).execution_options(populate_existing=True))).scalar_one()
        assert stored.total_trips == 2
