"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

``ZoneRepository``, ``FareRuleRepository`` and ``RideRepository`` receive an
``AsyncSession`` (unit-of-work) and translate between ORM rows and the
domain's immutable values.  ``SqlDriverRepository`` implements the
``DriverRepository`` port and owns its own short transactions, because a
claim must commit (or fail) on its own.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Optional

from geoalchemy2.elements import WKTElement
from geoalchemy2.functions import ST_MakePoint, ST_SetSRID
from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .models import DriverModel, FareRuleModel, RideClaimModel, RideModel, ZoneModel
from ride_engine.domain.availability import DriverRepository
from ride_engine.domain.entities import Driver, TripRequest
from ride_engine.domain.enums import BookingType, DriverStatus, RideStatus, VehicleType
from ride_engine.domain.errors import NoFareConfigured, UnknownDriver, UnknownZone
from ride_engine.domain.geometry import Circle, LatLng, Polygon
from ride_engine.domain.pricing import (
    FareRule,
    HourlyRates,
    MeteredRates,
    PlatformFee,
    SlabRates,
    to_decimal,
)
from ride_engine.domain.zones import Zone

logger = logging.getLogger(__name__)

KM_PER_DEGREE_LAT = 111.32


def _dec(value) -> Optional[Decimal]:
    return None if value is None else to_decimal(value)


# ── Zones ─────────────────────────────────────────────────────────────


def zone_from_row(row: ZoneModel) -> Zone:
    if row.shape_type == "circle":
        shape = Circle(LatLng(row.center_lat, row.center_lng), row.radius_m)
    else:
        shape = Polygon(tuple(LatLng(lat, lng) for lat, lng in row.vertices))
    return Zone(
        id=row.id,
        name=row.name,
        shape=shape,
        is_active=row.is_active,
        base_fare=_dec(row.base_fare),
        per_km_rate=_dec(row.per_km_rate),
        surge_multiplier=to_decimal(row.surge_multiplier),
    )


def _apply_zone(row: ZoneModel, zone: Zone) -> None:
    row.name = zone.name
    row.is_active = zone.is_active
    row.base_fare = zone.base_fare
    row.per_km_rate = zone.per_km_rate
    row.surge_multiplier = zone.surge_multiplier
    shape = zone.shape
    if isinstance(shape, Circle):
        row.shape_type = "circle"
        row.center_lat, row.center_lng = shape.center.lat, shape.center.lng
        row.radius_m = shape.radius_m
        row.vertices = None
        row.footprint = ST_SetSRID(ST_MakePoint(shape.center.lng, shape.center.lat), 4326)
    else:
        row.shape_type = "polygon"
        row.center_lat = row.center_lng = row.radius_m = None
        row.vertices = [[v.lat, v.lng] for v in shape.vertices]
        ring = list(shape.vertices) + [shape.vertices[0]]
        coords = ", ".join(f"{v.lng} {v.lat}" for v in ring)
        row.footprint = WKTElement(f"POLYGON(({coords}))", srid=4326)


class ZoneRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_all(self) -> list[Zone]:
        result = await self.session.execute(select(ZoneModel).order_by(ZoneModel.id))
        return [zone_from_row(row) for row in result.scalars().all()]

    async def save(self, zone: Zone) -> Zone:
        row = await self.session.get(ZoneModel, zone.id)
        if row is None:
            row = ZoneModel(id=zone.id)
            self.session.add(row)
        _apply_zone(row, zone)
        await self.session.flush()
        return zone

    async def set_active(self, zone_id: str, is_active: bool) -> None:
        result = await self.session.execute(
            update(ZoneModel)
            .where(ZoneModel.id == zone_id)
            .values(is_active=is_active)
        )
        if result.rowcount == 0:
            raise UnknownZone(zone_id)

    async def delete(self, zone_id: str) -> None:
        result = await self.session.execute(
            delete(ZoneModel).where(ZoneModel.id == zone_id)
        )
        if result.rowcount == 0:
            raise UnknownZone(zone_id)


# ── Fare rules ────────────────────────────────────────────────────────


def fare_rule_from_row(row: FareRuleModel) -> FareRule:
    metered = hourly = slab = None
    if row.base_fare is not None:
        metered = MeteredRates(
            base_fare=to_decimal(row.base_fare),
            per_km_rate=to_decimal(row.per_km_rate or 0),
            per_minute_rate=to_decimal(row.per_minute_rate or 0),
            minimum_fare=to_decimal(row.minimum_fare or 0),
            cancellation_fee=to_decimal(row.cancellation_fee or 0),
            night_charge_percent=to_decimal(row.night_charge_percent or 0),
        )
    if row.hourly_rate is not None:
        hourly = HourlyRates(
            hourly_rate=to_decimal(row.hourly_rate),
            minimum_hours=row.minimum_hours,
        )
    if row.slabs:
        slab = SlabRates(
            slabs=tuple((to_decimal(b), to_decimal(f)) for b, f in row.slabs),
            extra_km_rate=to_decimal(row.extra_km_rate or 0),
            driver_allowance_per_day=to_decimal(row.driver_allowance_per_day or 0),
            night_charge_percent=to_decimal(row.night_charge_percent or 0),
            toll_included=bool(row.toll_included),
        )
    return FareRule(
        booking_type=row.booking_type,
        vehicle_type=row.vehicle_type,
        pricing_model=row.pricing_model,
        metered=metered,
        hourly=hourly,
        slab=slab,
        platform_fee=PlatformFee(
            kind=row.platform_fee_kind, amount=to_decimal(row.platform_fee_amount)
        ),
        peak_hour_multiplier=to_decimal(row.peak_hour_multiplier),
        airport_fee=to_decimal(row.airport_fee or 0),
    )


def _apply_fare_rule(row: FareRuleModel, rule: FareRule) -> None:
    row.pricing_model = rule.pricing_model
    m, h, s = rule.metered, rule.hourly, rule.slab
    row.base_fare = m.base_fare if m else None
    row.per_km_rate = m.per_km_rate if m else None
    row.per_minute_rate = m.per_minute_rate if m else None
    row.minimum_fare = m.minimum_fare if m else None
    row.cancellation_fee = m.cancellation_fee if m else None
    row.hourly_rate = h.hourly_rate if h else None
    row.minimum_hours = h.minimum_hours if h else None
    row.slabs = [[str(b), str(f)] for b, f in s.slabs] if s else None
    row.extra_km_rate = s.extra_km_rate if s else None
    row.driver_allowance_per_day = s.driver_allowance_per_day if s else None
    surcharged = m or s
    row.night_charge_percent = surcharged.night_charge_percent if surcharged else None
    row.toll_included = s.toll_included if s else False
    row.platform_fee_kind = rule.platform_fee.kind
    row.platform_fee_amount = rule.platform_fee.amount
    row.peak_hour_multiplier = rule.peak_hour_multiplier
    row.airport_fee = rule.airport_fee
    row.is_active = True


class FareRuleRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_active(self) -> list[FareRule]:
        result = await self.session.execute(
            select(FareRuleModel).where(FareRuleModel.is_active.is_(True))
        )
        return [fare_rule_from_row(row) for row in result.scalars().all()]

    async def upsert(self, rule: FareRule) -> FareRule:
        result = await self.session.execute(
            select(FareRuleModel).where(
                FareRuleModel.booking_type == rule.booking_type,
                FareRuleModel.vehicle_type == rule.vehicle_type,
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            row = FareRuleModel(
                booking_type=rule.booking_type, vehicle_type=rule.vehicle_type
            )
            self.session.add(row)
        _apply_fare_rule(row, rule)
        await self.session.flush()
        return rule

    async def delete(self, booking_type: BookingType, vehicle_type: VehicleType) -> None:
        result = await self.session.execute(
            delete(FareRuleModel).where(
                FareRuleModel.booking_type == booking_type,
                FareRuleModel.vehicle_type == vehicle_type,
            )
        )
        if result.rowcount == 0:
            raise NoFareConfigured(booking_type, vehicle_type)


# ── Rides ─────────────────────────────────────────────────────────────


def trip_from_ride(row: RideModel) -> TripRequest:
    return TripRequest(
        pickup=LatLng(row.pickup_lat, row.pickup_lng),
        dropoff=LatLng(row.dropoff_lat, row.dropoff_lng),
        booking_type=row.booking_type,
        vehicle_type=row.vehicle_type,
        requested_at=row.created_at,
        scheduled_time=row.scheduled_time,
        rental_hours=row.rental_hours,
        distance_km=row.distance_km,
        duration_min=row.duration_min,
    )


class RideRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, ride_id: str) -> Optional[RideModel]:
        return await self.session.get(RideModel, ride_id)

    async def get_dispatchable(
        self, now: datetime, lead: timedelta, limit: int = 100
    ) -> list[RideModel]:
        """Unassigned rides that are due now or start within *lead*."""
        result = await self.session.execute(
            select(RideModel)
            .where(
                RideModel.status == RideStatus.REQUESTED,
                RideModel.driver_id.is_(None),
                or_(
                    RideModel.scheduled_time.is_(None),
                    RideModel.scheduled_time <= now + lead,
                ),
            )
            .order_by(RideModel.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def mark_assigned(
        self, ride: RideModel, driver_id: str, quoted_fare: Optional[Decimal]
    ) -> None:
        ride.driver_id = driver_id
        ride.status = RideStatus.ACCEPTED
        if quoted_fare is not None:
            ride.quoted_fare = quoted_fare
        await self.session.flush()

    async def update_status(self, ride: RideModel, status: RideStatus) -> None:
        ride.status = status
        await self.session.flush()


# ── Drivers ───────────────────────────────────────────────────────────


def driver_from_row(row: DriverModel) -> Driver:
    location = None
    if row.current_lat is not None and row.current_lng is not None:
        location = LatLng(row.current_lat, row.current_lng)
    return Driver(
        id=row.id,
        status=row.status,
        is_verified=row.is_verified,
        location=location,
        location_updated_at=row.location_updated_at,
        rating=row.rating,
        vehicle_type=row.vehicle_type,
        active_ride_ids=frozenset(row.active_ride_ids or ()),
    )


def _apply_driver(row: DriverModel, driver: Driver) -> None:
    row.status = driver.status
    row.is_verified = driver.is_verified
    row.rating = driver.rating
    row.vehicle_type = driver.vehicle_type
    if driver.location is None:
        row.current_lat = row.current_lng = None
    else:
        row.current_lat, row.current_lng = driver.location.lat, driver.location.lng
    row.location_updated_at = driver.location_updated_at
    row.active_ride_ids = sorted(driver.active_ride_ids)
    row.active_ride_count = len(driver.active_ride_ids)


class SqlDriverRepository(DriverRepository):
    """Driver roster in the ``drivers`` table.

    ``claim`` is a conditional UPDATE guarded on the eligibility predicate
    (the database serialises concurrent writers on the row), followed by an
    insert into ``ride_claims`` whose primary key rejects a second claim on
    the same ride.  Either both writes commit or neither does.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
    ):
        self.session_factory = session_factory

    async def get(self, driver_id: str) -> Optional[Driver]:
        async with self.session_factory() as session:
            row = await session.get(DriverModel, driver_id)
            return driver_from_row(row) if row else None

    async def all(self) -> list[Driver]:
        async with self.session_factory() as session:
            result = await session.execute(select(DriverModel).order_by(DriverModel.id))
            return [driver_from_row(row) for row in result.scalars().all()]

    async def candidates(
        self, pickup: Optional[LatLng], radius_km: Optional[float]
    ) -> list[Driver]:
        stmt = select(DriverModel).where(
            DriverModel.status == DriverStatus.ONLINE,
            DriverModel.is_verified.is_(True),
            DriverModel.active_ride_count == 0,
        )
        if pickup is not None and radius_km is not None:
            # Bounding-box pre-filter; the exact haversine cut happens upstream
            dlat = radius_km / KM_PER_DEGREE_LAT
            cos_lat = max(math.cos(math.radians(pickup.lat)), 1e-6)
            dlng = min(radius_km / (KM_PER_DEGREE_LAT * cos_lat), 180.0)
            stmt = stmt.where(
                DriverModel.current_lat.between(pickup.lat - dlat, pickup.lat + dlat),
                DriverModel.current_lng.between(pickup.lng - dlng, pickup.lng + dlng),
            )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [driver_from_row(row) for row in result.scalars().all()]

    async def add(self, driver: Driver) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                row = await session.get(DriverModel, driver.id)
                if row is None:
                    row = DriverModel(id=driver.id)
                    session.add(row)
                _apply_driver(row, driver)

    async def update(
        self, driver_id: str, mutate: Callable[[Driver], Driver]
    ) -> Driver:
        async with self.session_factory() as session:
            async with session.begin():
                row = await self._locked_row(session, driver_id)
                updated = mutate(driver_from_row(row))
                _apply_driver(row, updated)
            return updated

    async def claim(self, driver_id: str, ride_id: str) -> bool:
        async with self.session_factory() as session:
            try:
                async with session.begin():
                    result = await session.execute(
                        update(DriverModel)
                        .where(
                            DriverModel.id == driver_id,
                            DriverModel.status == DriverStatus.ONLINE,
                            DriverModel.is_verified.is_(True),
                            DriverModel.active_ride_count == 0,
                        )
                        .values(active_ride_ids=[ride_id], active_ride_count=1)
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount != 1:
                        if await session.get(DriverModel, driver_id) is None:
                            raise UnknownDriver(driver_id)
                        return False
                    session.add(RideClaimModel(ride_id=ride_id, driver_id=driver_id))
                    await session.flush()
            except IntegrityError:
                logger.debug("Ride %s already claimed; driver %s untouched", ride_id, driver_id)
                return False
            return True

    async def release(self, driver_id: str, ride_id: str) -> Driver:
        async with self.session_factory() as session:
            async with session.begin():
                row = await self._locked_row(session, driver_id)
                updated = driver_from_row(row).without_ride(ride_id)
                _apply_driver(row, updated)
                await session.execute(
                    delete(RideClaimModel).where(
                        RideClaimModel.ride_id == ride_id,
                        RideClaimModel.driver_id == driver_id,
                    )
                )
            return updated

    async def claimed_by(self, ride_id: str) -> Optional[str]:
        async with self.session_factory() as session:
            row = await session.get(RideClaimModel, ride_id)
            return row.driver_id if row else None

    @staticmethod
    async def _locked_row(session: AsyncSession, driver_id: str) -> DriverModel:
        result = await session.execute(
            select(DriverModel).where(DriverModel.id == driver_id).with_for_update()
        )
        row = result.scalar_one_or_none()
        if row is None:
            raise UnknownDriver(driver_id)
        return row
