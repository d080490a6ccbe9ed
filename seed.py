"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 3 service zones around Hosur (city circle, bus-stand polygon, airport)
  - the fare matrix: 5 booking types x 6 vehicle classes
  - 12 verified drivers near Hosur bus stand, most of them online
  - 3 requested rides for the auto-dispatch worker to pick up
"""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import text

from ride_engine.domain.entities import Driver
from ride_engine.domain.enums import (
    BookingType,
    DriverStatus,
    PlatformFeeKind,
    PricingModel,
    VehicleType,
)
from ride_engine.domain.geometry import Circle, LatLng, Polygon
from ride_engine.domain.pricing import (
    FareRule,
    HourlyRates,
    MeteredRates,
    PlatformFee,
    SlabRates,
)
from ride_engine.domain.zones import Zone
from ride_engine.infrastructure.database import async_session_factory, engine
from ride_engine.infrastructure.models import RideModel
from ride_engine.infrastructure.repositories import (
    FareRuleRepository,
    SqlDriverRepository,
    ZoneRepository,
)

# Hosur bus stand (approx)
HOSUR_LAT, HOSUR_LNG = 12.1266, 77.8308


ZONES = [
    Zone(
        id="hosur-central",
        name="Hosur Central",
        shape=Circle(LatLng(HOSUR_LAT, HOSUR_LNG), 5000),
        base_fare=Decimal("50"),
        per_km_rate=Decimal("12"),
    ),
    Zone(
        id="hosur-bus-stand",
        name="Hosur Bus Stand",
        shape=Polygon((
            LatLng(12.1240, 77.8280),
            LatLng(12.1240, 77.8340),
            LatLng(12.1295, 77.8340),
            LatLng(12.1295, 77.8280),
        )),
        surge_multiplier=Decimal("1.2"),
    ),
    Zone(
        id="kia-airport",
        name="Kempegowda International Airport",
        shape=Circle(LatLng(13.1986, 77.7066), 4000),
    ),
]

# base, per_km, per_min, hourly, cancellation, slab_10km, slab_step, extra_km, allowance
VEHICLE_RATES = {
    VehicleType.HATCHBACK:    (60, 14, 2, 220, 30, 450, 240, 16, 350),
    VehicleType.HATCHBACK_AC: (65, 15, 2, 240, 30, 480, 255, 17, 350),
    VehicleType.SEDAN:        (70, 16, 3, 250, 35, 525, 275, 18, 400),
    VehicleType.SEDAN_AC:     (80, 18, 3, 280, 40, 560, 295, 19, 400),
    VehicleType.SUV:          (100, 20, 3, 350, 50, 650, 330, 20, 450),
    VehicleType.SUV_AC:       (110, 22, 4, 380, 50, 700, 350, 21, 500),
}

BOOKING_MULTIPLIER = {
    BookingType.REGULAR: Decimal("1.0"),
    BookingType.OUTSTATION: Decimal("1.4"),
    BookingType.AIRPORT: Decimal("1.6"),
}

# Late-night charge on metered fares, percent
NIGHT_PERCENT = {
    BookingType.REGULAR: Decimal("30"),
    BookingType.OUTSTATION: Decimal("20"),
    BookingType.AIRPORT: Decimal("25"),
}

AIRPORT_FEE = Decimal("150")

PLATFORM_FEE = {
    BookingType.REGULAR: Decimal("25"),
    BookingType.RENTAL: Decimal("50"),
    BookingType.OUTSTATION: Decimal("100"),
    BookingType.OUTSTATION_SLAB: Decimal("100"),
    BookingType.AIRPORT: Decimal("75"),
}


def fare_matrix() -> list[FareRule]:
    rules: list[FareRule] = []
    for vehicle, rates in VEHICLE_RATES.items():
        base, per_km, per_min, hourly, cancel, slab_10, step, extra_km, allowance = (
            Decimal(r) for r in rates
        )
        for booking, factor in BOOKING_MULTIPLIER.items():
            rules.append(FareRule(
                booking_type=booking,
                vehicle_type=vehicle,
                pricing_model=PricingModel.METERED,
                metered=MeteredRates(
                    base_fare=base * factor,
                    per_km_rate=per_km * factor,
                    per_minute_rate=per_min,
                    minimum_fare=base * factor,
                    cancellation_fee=cancel,
                    night_charge_percent=NIGHT_PERCENT[booking],
                ),
                platform_fee=PlatformFee(PlatformFeeKind.FIXED, PLATFORM_FEE[booking]),
                peak_hour_multiplier=(
                    Decimal("1.5") if booking == BookingType.AIRPORT else Decimal("1.25")
                ),
                airport_fee=AIRPORT_FEE if booking == BookingType.AIRPORT else Decimal("0"),
            ))
        rules.append(FareRule(
            booking_type=BookingType.RENTAL,
            vehicle_type=vehicle,
            pricing_model=PricingModel.HOURLY,
            hourly=HourlyRates(hourly_rate=hourly, minimum_hours=4),
            platform_fee=PlatformFee(PlatformFeeKind.FIXED, PLATFORM_FEE[BookingType.RENTAL]),
        ))
        rules.append(FareRule(
            booking_type=BookingType.OUTSTATION_SLAB,
            vehicle_type=vehicle,
            pricing_model=PricingModel.SLAB,
            slab=SlabRates(
                slabs=tuple(
                    (Decimal(km), slab_10 + step * i)
                    for i, km in enumerate(range(10, 160, 10))
                ),
                extra_km_rate=extra_km,
                driver_allowance_per_day=allowance,
                night_charge_percent=Decimal("20"),
            ),
            platform_fee=PlatformFee(
                PlatformFeeKind.FIXED, PLATFORM_FEE[BookingType.OUTSTATION_SLAB]
            ),
        ))
    return rules


def drivers(now: datetime) -> list[Driver]:
    vehicles = list(VehicleType)
    result = []
    for i in range(12):
        result.append(Driver(
            id=f"driver-{i + 1:02d}",
            status=DriverStatus.OFFLINE if i % 5 == 4 else DriverStatus.ONLINE,
            is_verified=True,
            location=LatLng(HOSUR_LAT + 0.002 * (i - 6), HOSUR_LNG + 0.0015 * (i % 4)),
            location_updated_at=now,
            rating=round(4.2 + 0.07 * (i % 10), 2),
            vehicle_type=vehicles[i % len(vehicles)],
        ))
    return result


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM zones"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        # ── Zones ─────────────────────────────────────────────────────
        zone_repo = ZoneRepository(session)
        for zone in ZONES:
            await zone_repo.save(zone)
        print(f"  Created {len(ZONES)} zones")

        # ── Fare matrix ───────────────────────────────────────────────
        fare_repo = FareRuleRepository(session)
        rules = fare_matrix()
        for rule in rules:
            await fare_repo.upsert(rule)
        print(f"  Created {len(rules)} fare rules")

        # ── Rides ─────────────────────────────────────────────────────
        now = datetime.now(timezone.utc)
        rides = [
            RideModel(
                id=str(uuid.uuid4()),
                pickup_lat=12.1270, pickup_lng=77.8310,
                dropoff_lat=12.1500, dropoff_lng=77.8600,
                booking_type=BookingType.REGULAR,
                vehicle_type=VehicleType.SEDAN,
            ),
            RideModel(
                id=str(uuid.uuid4()),
                pickup_lat=12.1250, pickup_lng=77.8300,
                dropoff_lat=13.1986, dropoff_lng=77.7066,
                booking_type=BookingType.AIRPORT,
                vehicle_type=VehicleType.SUV,
                distance_km=42.0,
                scheduled_time=now + timedelta(minutes=20),
            ),
            RideModel(
                id=str(uuid.uuid4()),
                pickup_lat=12.1280, pickup_lng=77.8320,
                dropoff_lat=12.1280, dropoff_lng=77.8320,
                booking_type=BookingType.RENTAL,
                vehicle_type=VehicleType.HATCHBACK,
                rental_hours=6,
                scheduled_time=now + timedelta(hours=5),
            ),
        ]
        session.add_all(rides)
        await session.commit()
        print(f"  Created {len(rides)} rides")

    # ── Drivers (own transactions) ────────────────────────────────────
    roster = SqlDriverRepository(async_session_factory)
    seeded = drivers(datetime.now(timezone.utc))
    for driver in seeded:
        await roster.add(driver)
    print(f"  Created {len(seeded)} drivers")

    print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
