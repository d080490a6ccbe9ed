"""
Background worker tests.

The auto-dispatch cycle runs against SQLite rides and an in-memory driver
roster with a mocked Redis; config sync runs with stub repositories (zone
rows carry a PostGIS column SQLite cannot create).
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock

import pytest

from ride_engine.domain.enums import BookingType, RideStatus, VehicleType
from ride_engine.domain.geometry import Circle, LatLng
from ride_engine.domain.pricing import FareRuleBook
from ride_engine.domain.zones import Zone, ZoneIndex
from ride_engine.engine import build_engine
from ride_engine.infrastructure.memory_roster import InMemoryDriverRepository
from ride_engine.infrastructure.models import RideModel
from ride_engine.infrastructure.repositories import RideRepository
from ride_engine.workers import auto_dispatch, config_sync
from tests.conftest import HOSUR, make_driver, sedan_metered_rule

CITY = Zone(id="hosur-central", name="Hosur Central", shape=Circle(HOSUR, 5000))


def engine_with(*drivers):
    return build_engine(
        repository=InMemoryDriverRepository(drivers),
        zones=ZoneIndex([CITY]),
        fare_rules=FareRuleBook([sedan_metered_rule()]),
    )


def free_lock() -> AsyncMock:
    redis = AsyncMock()
    redis.set = AsyncMock(return_value=True)
    redis.eval = AsyncMock(return_value=1)
    return redis


def ride(ride_id: str, lat: float = 12.1290, lng: float = 77.8310) -> RideModel:
    return RideModel(
        id=ride_id,
        pickup_lat=lat,
        pickup_lng=lng,
        dropoff_lat=12.1600,
        dropoff_lng=77.8500,
        booking_type=BookingType.REGULAR,
        vehicle_type=VehicleType.SEDAN,
        distance_km=5.0,
        duration_min=15.0,
    )


class TestAutoDispatchCycle:
    @pytest.mark.asyncio
    async def test_assigns_due_ride(self, session_factory):
        engine = engine_with(make_driver("d1", location_updated_at=None))
        async with session_factory() as session:
            session.add(ride("r1"))
            await session.commit()

        assigned = await auto_dispatch.run_dispatch_cycle(
            engine, redis=free_lock(), session_factory=session_factory
        )

        assert assigned == 1
        async with session_factory() as session:
            row = await RideRepository(session).get_by_id("r1")
        assert row.status == RideStatus.ACCEPTED
        assert row.driver_id == "d1"
        assert row.quoted_fare is not None
        assert (await engine.availability.get("d1")).active_ride_ids == frozenset({"r1"})

    @pytest.mark.asyncio
    async def test_one_driver_two_rides(self, session_factory):
        engine = engine_with(make_driver("d1", location_updated_at=None))
        async with session_factory() as session:
            session.add_all([ride("r1"), ride("r2")])
            await session.commit()

        assigned = await auto_dispatch.run_dispatch_cycle(
            engine, redis=free_lock(), session_factory=session_factory
        )

        assert assigned == 1
        async with session_factory() as session:
            rows = [await RideRepository(session).get_by_id(i) for i in ("r1", "r2")]
        assert sorted(r.status for r in rows) == sorted(
            [RideStatus.ACCEPTED, RideStatus.REQUESTED]
        )

    @pytest.mark.asyncio
    async def test_out_of_area_ride_left_requested(self, session_factory):
        engine = engine_with(make_driver("d1", location_updated_at=None))
        async with session_factory() as session:
            session.add(ride("r1", lat=12.1800, lng=77.9000))
            await session.commit()

        assigned = await auto_dispatch.run_dispatch_cycle(
            engine, redis=free_lock(), session_factory=session_factory
        )

        assert assigned == 0
        async with session_factory() as session:
            row = await RideRepository(session).get_by_id("r1")
        assert row.status == RideStatus.REQUESTED

    @pytest.mark.asyncio
    async def test_skips_cycle_when_lock_held(self, session_factory):
        redis = AsyncMock()
        redis.set = AsyncMock(return_value=None)
        session_factory_spy = AsyncMock()

        assigned = await auto_dispatch.run_dispatch_cycle(
            engine_with(), redis=redis, session_factory=session_factory_spy
        )

        assert assigned == 0
        session_factory_spy.assert_not_called()
        redis.eval.assert_not_called()

    @pytest.mark.asyncio
    async def test_lock_released_after_cycle(self, session_factory):
        redis = free_lock()
        await auto_dispatch.run_dispatch_cycle(
            engine_with(), redis=redis, session_factory=session_factory
        )
        redis.eval.assert_awaited_once()


class _StubZoneRepository:
    zones: list = []

    def __init__(self, session):
        pass

    async def list_all(self):
        return list(self.zones)


class _StubFareRuleRepository:
    rules: list = []

    def __init__(self, session):
        pass

    async def list_active(self):
        return list(self.rules)


@asynccontextmanager
async def _no_session():
    yield None


class TestConfigSync:
    @pytest.mark.asyncio
    async def test_swaps_both_snapshots(self, monkeypatch):
        monkeypatch.setattr(_StubZoneRepository, "zones", [CITY])
        monkeypatch.setattr(_StubFareRuleRepository, "rules", [sedan_metered_rule()])
        monkeypatch.setattr(config_sync, "ZoneRepository", _StubZoneRepository)
        monkeypatch.setattr(config_sync, "FareRuleRepository", _StubFareRuleRepository)
        engine = build_engine(repository=InMemoryDriverRepository())

        counts = await config_sync.run_config_sync(engine, session_factory=_no_session)

        assert counts == (1, 1)
        assert engine.zones.lookup(LatLng(12.1290, 77.8310)).zone_ids == ("hosur-central",)
        assert engine.fare_rules.get(BookingType.REGULAR, VehicleType.SEDAN)

    @pytest.mark.asyncio
    async def test_failed_load_keeps_previous_snapshot(self, monkeypatch):
        class _Broken(_StubZoneRepository):
            async def list_all(self):
                raise RuntimeError("database unavailable")

        monkeypatch.setattr(config_sync, "ZoneRepository", _Broken)
        monkeypatch.setattr(config_sync, "FareRuleRepository", _StubFareRuleRepository)
        engine = engine_with()
        version = engine.zones.version

        with pytest.raises(RuntimeError):
            await config_sync.run_config_sync(engine, session_factory=_no_session)

        assert engine.zones.version == version
        assert engine.zones.get("hosur-central") == CITY
