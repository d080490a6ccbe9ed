"""
SQLAlchemy ORM models  (maps to PostgreSQL + PostGIS).

Tables
------
* ``zones``        -- geofenced service areas (circle or polygon) + zone fares
* ``fare_rules``   -- one pricing rule per (booking_type, vehicle_type)
* ``drivers``      -- driver roster when ``driver_store=sql``
* ``ride_claims``  -- one row per claimed ride; the primary key makes a
                      second claim on the same ride fail
* ``rides``        -- ride requests picked up by the auto-dispatch worker

Indexes
-------
* **GIST** on ``zones.footprint`` for map / coverage tooling.
* **B-Tree** on ``drivers.status``, ``rides.status`` and the fare-rule pair
  for the look-ups used by dispatch and the workers.
"""

import enum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from geoalchemy2 import Geometry

from .database import Base
from ride_engine.domain.enums import (
    BookingType,
    DriverStatus,
    PlatformFeeKind,
    PricingModel,
    RideStatus,
    VehicleType,
)


def _enum(cls: type[enum.Enum]) -> Enum:
    """Persist enum *values* ("online"), not member names ("ONLINE")."""
    return Enum(
        cls,
        name=cls.__name__.lower(),
        values_callable=lambda members: [m.value for m in members],
    )


class ZoneModel(Base):
    __tablename__ = "zones"

    id = Column(String(36), primary_key=True)
    name = Column(String(120), nullable=False)
    shape_type = Column(String(10), nullable=False)  # "circle" | "polygon"

    # Circle
    center_lat = Column(Float, nullable=True)
    center_lng = Column(Float, nullable=True)
    radius_m = Column(Float, nullable=True)
    # Polygon: [[lat, lng], ...]
    vertices = Column(JSON, nullable=True)
    # Polygon outline, or the circle centre
    footprint = Column(Geometry("GEOMETRY", srid=4326), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)
    base_fare = Column(Numeric(10, 2), nullable=True)
    per_km_rate = Column(Numeric(10, 2), nullable=True)
    surge_multiplier = Column(Numeric(4, 2), default=1, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_zones_footprint", "footprint", postgresql_using="gist"),
        Index("idx_zones_active", "is_active"),
    )


class FareRuleModel(Base):
    __tablename__ = "fare_rules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_type = Column(_enum(BookingType), nullable=False)
    vehicle_type = Column(_enum(VehicleType), nullable=False)
    pricing_model = Column(_enum(PricingModel), nullable=False)

    # Metered
    base_fare = Column(Numeric(10, 2), nullable=True)
    per_km_rate = Column(Numeric(10, 2), nullable=True)
    per_minute_rate = Column(Numeric(10, 2), nullable=True)
    minimum_fare = Column(Numeric(10, 2), nullable=True)
    cancellation_fee = Column(Numeric(10, 2), nullable=True)
    # Hourly
    hourly_rate = Column(Numeric(10, 2), nullable=True)
    minimum_hours = Column(Integer, nullable=True)
    # Slab: [[boundary_km, fare], ...]
    slabs = Column(JSON, nullable=True)
    extra_km_rate = Column(Numeric(10, 2), nullable=True)
    driver_allowance_per_day = Column(Numeric(10, 2), nullable=True)
    toll_included = Column(Boolean, default=False, nullable=False)
    # Metered and slab
    night_charge_percent = Column(Numeric(5, 2), nullable=True)
    # Every model
    platform_fee_kind = Column(
        _enum(PlatformFeeKind), default=PlatformFeeKind.FIXED, nullable=False
    )
    platform_fee_amount = Column(Numeric(10, 2), default=0, nullable=False)
    peak_hour_multiplier = Column(Numeric(4, 2), default=1, nullable=False)
    airport_fee = Column(Numeric(10, 2), default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint("booking_type", "vehicle_type", name="uq_fare_rules_pair"),
    )


class DriverModel(Base):
    __tablename__ = "drivers"

    id = Column(String(36), primary_key=True)
    status = Column(_enum(DriverStatus), default=DriverStatus.OFFLINE, nullable=False)
    is_verified = Column(Boolean, default=False, nullable=False)
    rating = Column(Float, default=5.0, nullable=False)
    vehicle_type = Column(_enum(VehicleType), nullable=True)

    # Plain floats: read on every eligibility listing (avoids ST_X / ST_Y)
    current_lat = Column(Float, nullable=True)
    current_lng = Column(Float, nullable=True)
    location_updated_at = Column(DateTime(timezone=True), nullable=True)

    active_ride_ids = Column(JSON, default=list, nullable=False)
    # Compare-and-swap target for claims: 0 means "no active ride"
    active_ride_count = Column(Integer, default=0, nullable=False)

    __table_args__ = (
        Index("idx_drivers_status", "status"),
        Index("idx_drivers_eligible", "status", "is_verified", "active_ride_count"),
    )


class RideClaimModel(Base):
    __tablename__ = "ride_claims"

    ride_id = Column(String(36), primary_key=True)
    driver_id = Column(String(36), nullable=False)
    claimed_at = Column(DateTime(timezone=True), server_default=func.now())


class RideModel(Base):
    __tablename__ = "rides"

    id = Column(String(36), primary_key=True)
    pickup_lat = Column(Float, nullable=False)
    pickup_lng = Column(Float, nullable=False)
    dropoff_lat = Column(Float, nullable=False)
    dropoff_lng = Column(Float, nullable=False)
    booking_type = Column(_enum(BookingType), nullable=False)
    vehicle_type = Column(_enum(VehicleType), nullable=False)
    rental_hours = Column(Integer, nullable=True)
    distance_km = Column(Float, nullable=True)
    duration_min = Column(Float, nullable=True)
    scheduled_time = Column(DateTime(timezone=True), nullable=True)

    status = Column(_enum(RideStatus), default=RideStatus.REQUESTED, nullable=False)
    driver_id = Column(String(36), nullable=True)
    quoted_fare = Column(Numeric(10, 2), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_rides_status", "status"),
        Index("idx_rides_driver", "driver_id"),
    )
