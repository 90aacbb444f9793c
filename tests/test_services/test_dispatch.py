"""Tests for the dispatch engine: offers and the acceptance race."""

import asyncio
from uuid import uuid4

import pytest

from ride_dispatch.core import DispatchCore
from ride_dispatch.errors import (
    AlreadyTakenError,
    DriverUnavailableError,
    InvalidStateError,
    NotFoundError,
    OfferExpiredError,
    ValidationError,
)
from ride_dispatch.models.driver import Driver, Location, VehicleClass
from ride_dispatch.models.ride import CancelledBy, FareTerms, Place, RideStatus
from ride_dispatch.models.user import User, UserRole
from ride_dispatch.services.dispatch import DispatchEngine


@pytest.mark.asyncio
async def test_request_ride_offers_nearest_drivers(
    core: DispatchCore,
    connect,
    nearby_drivers: list[Driver],
    requester: User,
    pickup: Place,
    drop: Place,
    fare: FareTerms,
) -> None:
    """Test that every candidate gets an offer ranked by distance."""
    sessions = {d.user_id: connect(d.user_id, UserRole.DRIVER) for d in nearby_drivers}
    rider = connect(requester.id)

    result = await core.engine.request_ride(requester.id, pickup, drop, fare, distance_km=8.2)

    assert result.candidates_notified == 3
    assert result.ride.status == RideStatus.REQUESTED
    assert result.ride.driver_id is None
    assert [offer.priority for offer in result.ride.offers] == [1, 2, 3]
    assert [offer.driver_id for offer in result.ride.offers] == [d.id for d in nearby_drivers]

    for priority, driver in enumerate(nearby_drivers, start=1):
        offers = sessions[driver.user_id].events("new_ride_request")
        assert len(offers) == 1
        assert offers[0]["ride_id"] == result.ride.ride_id
        assert offers[0]["priority"] == priority
        assert offers[0]["fare"] == 125
        assert offers[0]["expires_in_s"] == 30
        assert len(sessions[driver.user_id].events("ride_request_broadcast")) == 1

    requested = rider.events("ride_requested")
    assert len(requested) == 1
    assert requested[0]["candidates_notified"] == 3
    assert requested[0]["otp"] == result.ride.otp
    assert rider.events("new_ride_request") == []

    stored = await core.lifecycle.get_ride(result.ride.ride_id)
    assert len(stored.offers) == 3


@pytest.mark.asyncio
async def test_request_ride_without_candidates(
    core: DispatchCore,
    connect,
    add_driver,
    requester: User,
    pickup: Place,
    drop: Place,
    fare: FareTerms,
) -> None:
    """Test that a ride with nobody nearby is still created and left requested."""
    await add_driver("driver-far-away", 17.60, 78.486)
    bystander = connect("driver-far-away", UserRole.DRIVER)
    rider = connect(requester.id)

    result = await core.engine.request_ride(requester.id, pickup, drop, fare)

    assert result.candidates_notified == 0
    assert result.ride.offers == []
    assert result.ride.status == RideStatus.REQUESTED
    assert bystander.sent == []
    assert rider.events("ride_requested")[0]["candidates_notified"] == 0


@pytest.mark.asyncio
async def test_request_ride_filters_vehicle_class(
    core: DispatchCore,
    add_driver,
    requester: User,
    pickup: Place,
    drop: Place,
    fare: FareTerms,
) -> None:
    bike = await add_driver("driver-bike", 17.386, 78.486, vehicle_class=VehicleClass.BIKE)
    await add_driver("driver-auto", 17.386, 78.487)

    result = await core.engine.request_ride(requester.id, pickup, drop, fare, vehicle_class="bike")

    assert [offer.driver_id for offer in result.ride.offers] == [bike.id]


@pytest.mark.asyncio
async def test_request_ride_fans_out_to_limit(
    core: DispatchCore,
    add_driver,
    requester: User,
    pickup: Place,
    drop: Place,
    fare: FareTerms,
) -> None:
    for i in range(12):
        await add_driver(f"driver-{i:02d}", 17.386 + i * 0.001, 78.486)

    result = await core.engine.request_ride(requester.id, pickup, drop, fare)

    assert result.candidates_notified == 10


@pytest.mark.asyncio
async def test_request_ride_rejects_bad_input(
    core: DispatchCore,
    requester: User,
    pickup: Place,
    drop: Place,
    fare: FareTerms,
) -> None:
    with pytest.raises(ValidationError):
        await core.engine.request_ride(
            requester.id,
            {"address": "Nowhere", "location": {"lat": 123.0, "lng": 78.4}},
            drop,
            fare,
        )

    with pytest.raises(ValidationError):
        await core.engine.request_ride(requester.id, pickup, drop, {"base_fare": 20})

    with pytest.raises(ValidationError):
        await core.engine.request_ride(requester.id, pickup, drop, fare, vehicle_class="boat")

    with pytest.raises(ValidationError) as exc_info:
        await core.engine.request_ride(requester.id, pickup, drop, fare, distance_km=-3)
    assert exc_info.value.details["problems"] == ["distance_km: Input should be greater than or equal to 0"]

    with pytest.raises(ValidationError):
        await core.engine.request_ride(requester.id, pickup, drop, fare, duration_min=-1)

    assert await core.lifecycle.list_ride_history(requester.id) == []


@pytest.mark.asyncio
async def test_second_ranked_driver_wins(
    core: DispatchCore,
    connect,
    nearby_drivers: list[Driver],
    requester: User,
    pickup: Place,
    drop: Place,
    fare: FareTerms,
) -> None:
    """Test that whichever candidate accepts first gets the ride, regardless of rank."""
    near, mid, far = nearby_drivers
    sessions = {d.user_id: connect(d.user_id, UserRole.DRIVER) for d in nearby_drivers}
    rider = connect(requester.id)

    requested = await core.engine.request_ride(requester.id, pickup, drop, fare)
    result = await core.engine.accept_offer(mid.id, requested.ride.ride_id)

    assert result.ride.status == RideStatus.ACCEPTED
    assert result.ride.driver_id == mid.id
    assert result.driver.is_available is False
    assert result.driver.current_ride == result.ride.id

    accepted = rider.events("ride_accepted")
    assert len(accepted) == 1
    assert accepted[0]["driver"]["id"] == str(mid.id)
    assert accepted[0]["otp"] == requested.ride.otp

    confirmed = sessions[mid.user_id].events("ride_accept_confirmed")
    assert len(confirmed) == 1
    assert confirmed[0]["requester_name"] == requester.name
    assert confirmed[0]["requester_phone"] == requester.phone
    assert sessions[mid.user_id].events("ride_taken") == []

    for loser in (near, far):
        taken = sessions[loser.user_id].events("ride_taken")
        assert len(taken) == 1
        assert taken[0]["ride_id"] == requested.ride.ride_id

    with pytest.raises(AlreadyTakenError):
        await core.engine.accept_offer(near.id, requested.ride.ride_id)

    stored = await core.lifecycle.get_ride(requested.ride.ride_id)
    assert stored.driver_id == mid.id
    assert (await core.store.get_driver(near.id)).is_available is True


@pytest.mark.asyncio
async def test_concurrent_acceptance_has_single_winner(
    core: DispatchCore,
    add_driver,
    requester: User,
    pickup: Place,
    drop: Place,
    fare: FareTerms,
) -> None:
    """Test that simultaneous acceptances assign exactly one driver."""
    drivers = [await add_driver(f"driver-{i}", 17.386 + i * 0.001, 78.486) for i in range(6)]
    requested = await core.engine.request_ride(requester.id, pickup, drop, fare)

    outcomes = await asyncio.gather(
        *(core.engine.accept_offer(d.id, requested.ride.ride_id) for d in drivers),
        return_exceptions=True,
    )

    winners = [o for o in outcomes if not isinstance(o, Exception)]
    losers = [o for o in outcomes if isinstance(o, Exception)]
    assert len(winners) == 1
    assert len(losers) == 5
    assert all(isinstance(e, AlreadyTakenError) for e in losers)

    winner_id = winners[0].driver.id
    stored = await core.lifecycle.get_ride(requested.ride.ride_id)
    assert stored.driver_id == winner_id

    for driver in drivers:
        current = await core.store.get_driver(driver.id)
        if driver.id == winner_id:
            assert current.current_ride == stored.id
            assert current.is_available is False
        else:
            assert current.current_ride is None
            assert current.is_available is True


@pytest.mark.asyncio
async def test_busy_driver_cannot_accept_second_ride(
    core: DispatchCore,
    nearby_drivers: list[Driver],
    requester: User,
    pickup: Place,
    drop: Place,
    fare: FareTerms,
) -> None:
    driver = nearby_drivers[0]
    first = await core.engine.request_ride(requester.id, pickup, drop, fare)
    second = await core.engine.request_ride(requester.id, pickup, drop, fare)

    await core.engine.accept_offer(driver.id, first.ride.ride_id)

    with pytest.raises(DriverUnavailableError):
        await core.engine.accept_offer(driver.id, second.ride.ride_id)

    assert (await core.lifecycle.get_ride(second.ride.ride_id)).driver_id is None


@pytest.mark.asyncio
async def test_accept_unknown_ride_or_driver(
    core: DispatchCore,
    nearby_drivers: list[Driver],
    requester: User,
    pickup: Place,
    drop: Place,
    fare: FareTerms,
) -> None:
    requested = await core.engine.request_ride(requester.id, pickup, drop, fare)

    with pytest.raises(NotFoundError):
        await core.engine.accept_offer(nearby_drivers[0].id, "RIDE-missing")

    with pytest.raises(NotFoundError):
        await core.engine.accept_offer(uuid4(), requested.ride.ride_id)


@pytest.mark.asyncio
async def test_accept_cancelled_ride(
    core: DispatchCore,
    nearby_drivers: list[Driver],
    requester: User,
    pickup: Place,
    drop: Place,
    fare: FareTerms,
) -> None:
    requested = await core.engine.request_ride(requester.id, pickup, drop, fare)
    await core.lifecycle.cancel_ride(requested.ride.ride_id, CancelledBy.REQUESTER)

    with pytest.raises(InvalidStateError):
        await core.engine.accept_offer(nearby_drivers[0].id, requested.ride.ride_id)


@pytest.mark.asyncio
async def test_accept_after_offer_window(
    core: DispatchCore,
    clock,
    nearby_drivers: list[Driver],
    requester: User,
    pickup: Place,
    drop: Place,
    fare: FareTerms,
) -> None:
    """Test that acceptances after the offer window are refused."""
    requested = await core.engine.request_ride(requester.id, pickup, drop, fare)
    clock.advance(31)

    with pytest.raises(OfferExpiredError):
        await core.engine.accept_offer(nearby_drivers[0].id, requested.ride.ride_id)

    stored = await core.lifecycle.get_ride(requested.ride.ride_id)
    assert stored.status == RideStatus.REQUESTED
    assert stored.driver_id is None


@pytest.mark.asyncio
async def test_offer_window_can_be_disabled(
    core: DispatchCore,
    settings,
    clock,
    nearby_drivers: list[Driver],
    requester: User,
    pickup: Place,
    drop: Place,
    fare: FareTerms,
) -> None:
    engine = DispatchEngine(
        core.store,
        core.bus,
        settings.model_copy(update={"enforce_offer_expiry": False}),
        clock=clock,
    )
    requested = await engine.request_ride(requester.id, pickup, drop, fare)
    clock.advance(600)

    result = await engine.accept_offer(nearby_drivers[0].id, requested.ride.ride_id)

    assert result.ride.status == RideStatus.ACCEPTED


@pytest.mark.asyncio
async def test_query_nearby_drivers(core: DispatchCore, nearby_drivers: list[Driver]) -> None:
    drivers = await core.engine.query_nearby_drivers({"lat": 17.385, "lng": 78.486}, radius_m=1000)

    assert [d.user_id for d in drivers] == ["driver-near", "driver-mid"]

    with pytest.raises(ValidationError):
        await core.engine.query_nearby_drivers(Location(lat=17.385, lng=78.486), radius_m=0)


@pytest.mark.asyncio
async def test_get_driver(core: DispatchCore, nearby_drivers: list[Driver]) -> None:
    near = nearby_drivers[0]

    driver = await core.engine.get_driver(near.id)

    assert driver.user_id == "driver-near"
    with pytest.raises(NotFoundError):
        await core.engine.get_driver(uuid4())


@pytest.mark.asyncio
async def test_driver_offline_receives_no_offers(
    core: DispatchCore,
    nearby_drivers: list[Driver],
    requester: User,
    pickup: Place,
    drop: Place,
    fare: FareTerms,
) -> None:
    near = nearby_drivers[0]
    updated = await core.engine.set_driver_online(near.id, False)
    assert updated.is_online is False

    requested = await core.engine.request_ride(requester.id, pickup, drop, fare)
    assert near.id not in [offer.driver_id for offer in requested.ride.offers]

    await core.engine.set_driver_online(near.id, True)
    again = await core.engine.request_ride(requester.id, pickup, drop, fare)
    assert again.ride.offers[0].driver_id == near.id
