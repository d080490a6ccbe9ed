"""
Shared test fixtures.

Domain objects are built in memory.  Repository tests use a file-backed
SQLite database (via aiosqlite) so they run without Docker / PostgreSQL /
Redis; only the PostGIS-free tables (drivers, ride_claims, rides) are
created there.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ride_engine.domain.entities import Driver, TripRequest
from ride_engine.domain.enums import (
    BookingType,
    DriverStatus,
    PricingModel,
    VehicleType,
)
from ride_engine.domain.geometry import Circle, LatLng
from ride_engine.domain.pricing import FareRule, MeteredRates
from ride_engine.domain.zones import Zone
from ride_engine.infrastructure.database import Base
from ride_engine.infrastructure.models import (
    DriverModel,
    FareRuleModel,
    RideClaimModel,
    RideModel,
)

# Hosur bus stand
HOSUR = LatLng(12.1266, 77.8308)
NEAR_HOSUR = LatLng(12.1290, 77.8310)
FAR_AWAY = LatLng(12.1800, 77.9000)

# Mid-day, outside every default peak and night window
NOON = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def make_trip(**overrides) -> TripRequest:
    fields = dict(
        pickup=NEAR_HOSUR,
        dropoff=LatLng(12.1600, 77.8500),
        booking_type=BookingType.REGULAR,
        vehicle_type=VehicleType.SEDAN,
        requested_at=NOON,
        distance_km=5.0,
        duration_min=15.0,
    )
    fields.update(overrides)
    return TripRequest(**fields)


def make_driver(driver_id: str, location: LatLng = HOSUR, **overrides) -> Driver:
    fields = dict(
        id=driver_id,
        status=DriverStatus.ONLINE,
        is_verified=True,
        location=location,
        location_updated_at=NOON,
        rating=4.5,
        vehicle_type=VehicleType.SEDAN,
    )
    fields.update(overrides)
    return Driver(**fields)


def sedan_metered_rule(**overrides) -> FareRule:
    metered = dict(
        base_fare=Decimal("70"),
        per_km_rate=Decimal("16"),
        per_minute_rate=Decimal("3"),
        minimum_fare=Decimal("100"),
        cancellation_fee=Decimal("35"),
    )
    metered.update(overrides)
    return FareRule(
        booking_type=BookingType.REGULAR,
        vehicle_type=VehicleType.SEDAN,
        pricing_model=PricingModel.METERED,
        metered=MeteredRates(**metered),
    )


@pytest.fixture
def hosur_zone() -> Zone:
    return Zone(id="hosur-central", name="Hosur Central", shape=Circle(HOSUR, 5000))


@pytest.fixture
def sedan_rule() -> FareRule:
    return sedan_metered_rule()


# ── SQLite ────────────────────────────────────────────────────────────

SQLITE_TABLES = [
    DriverModel.__table__,
    RideClaimModel.__table__,
    RideModel.__table__,
    FareRuleModel.__table__,
]


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Create the SQLite-compatible tables, yield a session factory, dispose."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(lambda sync: Base.metadata.create_all(sync, tables=SQLITE_TABLES))

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()
