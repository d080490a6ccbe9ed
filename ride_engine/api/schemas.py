"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field

from ride_engine.domain.availability import Candidate
from ride_engine.domain.dispatch import DispatchResult
from ride_engine.domain.entities import Driver, TripRequest
from ride_engine.domain.enums import (
    BookingType,
    DriverStatus,
    PlatformFeeKind,
    PricingModel,
    RideStatus,
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


# ── Geometry ──────────────────────────────────────────────────────────


class Point(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)

    model_config = {"from_attributes": True}

    def to_domain(self) -> LatLng:
        return LatLng(self.lat, self.lng)


class CircleShape(BaseModel):
    type: Literal["circle"] = "circle"
    center: Point
    radius_m: float

    def to_domain(self) -> Circle:
        return Circle(self.center.to_domain(), self.radius_m)


class PolygonShape(BaseModel):
    type: Literal["polygon"] = "polygon"
    vertices: list[Point]

    def to_domain(self) -> Polygon:
        return Polygon(tuple(v.to_domain() for v in self.vertices))


Shape = Annotated[Union[CircleShape, PolygonShape], Field(discriminator="type")]


def shape_from_domain(shape) -> Union[CircleShape, PolygonShape]:
    if isinstance(shape, Circle):
        return CircleShape(
            center=Point(lat=shape.center.lat, lng=shape.center.lng),
            radius_m=shape.radius_m,
        )
    return PolygonShape(vertices=[Point(lat=v.lat, lng=v.lng) for v in shape.vertices])


# ── Zones ─────────────────────────────────────────────────────────────


class ZoneLookupResponse(BaseModel):
    covered: bool
    zone_ids: list[str]


class ZoneIn(BaseModel):
    id: str = Field(..., min_length=1, max_length=36)
    name: str = Field(..., min_length=1, max_length=120)
    shape: Shape
    is_active: bool = True
    base_fare: Optional[Decimal] = None
    per_km_rate: Optional[Decimal] = None
    surge_multiplier: Decimal = Decimal("1")

    def to_domain(self) -> Zone:
        return Zone(
            id=self.id,
            name=self.name,
            shape=self.shape.to_domain(),
            is_active=self.is_active,
            base_fare=self.base_fare,
            per_km_rate=self.per_km_rate,
            surge_multiplier=self.surge_multiplier,
        )


class ZoneOut(ZoneIn):
    area_m2: float

    @classmethod
    def from_domain(cls, zone: Zone) -> ZoneOut:
        return cls(
            id=zone.id,
            name=zone.name,
            shape=shape_from_domain(zone.shape),
            is_active=zone.is_active,
            base_fare=zone.base_fare,
            per_km_rate=zone.per_km_rate,
            surge_multiplier=zone.surge_multiplier,
            area_m2=zone.area_m2,
        )


class ZoneActiveUpdate(BaseModel):
    is_active: bool


# ── Fares ─────────────────────────────────────────────────────────────


class TripIn(BaseModel):
    pickup: Point
    dropoff: Point
    booking_type: BookingType
    vehicle_type: VehicleType
    requested_at: Optional[datetime] = None
    scheduled_time: Optional[datetime] = None
    rental_hours: Optional[int] = None
    distance_km: Optional[float] = None
    duration_min: Optional[float] = None
    trip_days: int = 1
    toll_charges: Decimal = Decimal("0")

    def to_domain(self) -> TripRequest:
        return TripRequest(
            pickup=self.pickup.to_domain(),
            dropoff=self.dropoff.to_domain(),
            booking_type=self.booking_type,
            vehicle_type=self.vehicle_type,
            requested_at=self.requested_at or datetime.now(timezone.utc),
            scheduled_time=self.scheduled_time,
            rental_hours=self.rental_hours,
            distance_km=self.distance_km,
            duration_min=self.duration_min,
            trip_days=self.trip_days,
            toll_charges=self.toll_charges,
        )


class FareBreakdownOut(BaseModel):
    pricing_model: PricingModel
    base_fare: Decimal
    distance_fare: Decimal
    time_fare: Decimal
    allowance: Decimal
    night_surcharge: Decimal
    surge_multiplier: Decimal
    surge_applied: Decimal
    minimum_fare_adjustment: Decimal
    platform_fee: Decimal
    toll_charges: Decimal
    airport_fee: Decimal = Decimal("0")
    total: Decimal
    billed_hours: Optional[int] = None
    slab_km: Optional[Decimal] = None
    round_trip_km: Optional[Decimal] = None

    model_config = {"from_attributes": True}


class QuoteResponse(BaseModel):
    zone_id: str
    fare: FareBreakdownOut


class CancellationChargeRequest(BaseModel):
    booking_type: BookingType
    vehicle_type: VehicleType
    ride_status: RideStatus


class CancellationChargeResponse(BaseModel):
    amount: Decimal


class PlatformFeeSchema(BaseModel):
    kind: PlatformFeeKind = PlatformFeeKind.FIXED
    amount: Decimal = Decimal("0")

    model_config = {"from_attributes": True}


class MeteredRatesSchema(BaseModel):
    base_fare: Decimal
    per_km_rate: Decimal
    per_minute_rate: Decimal
    minimum_fare: Decimal
    cancellation_fee: Decimal = Decimal("0")
    night_charge_percent: Decimal = Decimal("0")

    model_config = {"from_attributes": True}


class HourlyRatesSchema(BaseModel):
    hourly_rate: Decimal
    minimum_hours: Optional[int] = None

    model_config = {"from_attributes": True}


class SlabRatesSchema(BaseModel):
    slabs: list[tuple[Decimal, Decimal]] = Field(
        ..., description="(boundary_km, fare) pairs, ascending by boundary."
    )
    extra_km_rate: Decimal
    driver_allowance_per_day: Decimal = Decimal("0")
    night_charge_percent: Decimal = Decimal("0")
    toll_included: bool = False

    model_config = {"from_attributes": True}


class FareRuleSchema(BaseModel):
    booking_type: BookingType
    vehicle_type: VehicleType
    pricing_model: PricingModel
    metered: Optional[MeteredRatesSchema] = None
    hourly: Optional[HourlyRatesSchema] = None
    slab: Optional[SlabRatesSchema] = None
    platform_fee: PlatformFeeSchema = Field(default_factory=PlatformFeeSchema)
    peak_hour_multiplier: Decimal = Decimal("1")
    airport_fee: Decimal = Decimal("0")

    model_config = {"from_attributes": True}

    def to_domain(self) -> FareRule:
        return FareRule(
            booking_type=self.booking_type,
            vehicle_type=self.vehicle_type,
            pricing_model=self.pricing_model,
            metered=MeteredRates(**self.metered.model_dump()) if self.metered else None,
            hourly=HourlyRates(**self.hourly.model_dump()) if self.hourly else None,
            slab=(
                SlabRates(**{**self.slab.model_dump(), "slabs": tuple(self.slab.slabs)})
                if self.slab
                else None
            ),
            platform_fee=PlatformFee(**self.platform_fee.model_dump()),
            peak_hour_multiplier=self.peak_hour_multiplier,
            airport_fee=self.airport_fee,
        )


# ── Drivers ───────────────────────────────────────────────────────────


class DriverCreate(BaseModel):
    id: str = Field(..., min_length=1, max_length=36)
    vehicle_type: Optional[VehicleType] = None
    rating: float = Field(5.0, ge=0, le=5)
    is_verified: bool = False
    location: Optional[Point] = None

    def to_domain(self) -> Driver:
        location = self.location.to_domain() if self.location else None
        return Driver(
            id=self.id,
            is_verified=self.is_verified,
            location=location,
            location_updated_at=datetime.now(timezone.utc) if location else None,
            rating=self.rating,
            vehicle_type=self.vehicle_type,
        )


class DriverOut(BaseModel):
    id: str
    status: DriverStatus
    is_verified: bool
    rating: float
    vehicle_type: Optional[VehicleType] = None
    location: Optional[Point] = None
    location_updated_at: Optional[datetime] = None
    active_ride_ids: list[str] = []

    @classmethod
    def from_domain(cls, driver: Driver) -> DriverOut:
        return cls(
            id=driver.id,
            status=driver.status,
            is_verified=driver.is_verified,
            rating=driver.rating,
            vehicle_type=driver.vehicle_type,
            location=(
                Point(lat=driver.location.lat, lng=driver.location.lng)
                if driver.location
                else None
            ),
            location_updated_at=driver.location_updated_at,
            active_ride_ids=sorted(driver.active_ride_ids),
        )


class DriverStatusUpdate(BaseModel):
    status: DriverStatus
    by_admin: bool = False


class DriverLocationUpdate(Point):
    at: Optional[datetime] = None


class DriverVerificationUpdate(BaseModel):
    is_verified: bool


class CandidateOut(BaseModel):
    driver: DriverOut
    distance_km: Optional[float] = None

    @classmethod
    def from_domain(cls, candidate: Candidate) -> CandidateOut:
        return cls(
            driver=DriverOut.from_domain(candidate.driver),
            distance_km=candidate.distance_km,
        )


# ── Dispatch / rides ──────────────────────────────────────────────────


class DispatchRequest(BaseModel):
    trip: TripIn
    ride_id: Optional[str] = Field(None, max_length=36)
    auto_assign: bool = False
    radius_km: Optional[float] = Field(None, ge=0)


class DispatchResponse(BaseModel):
    status: str
    retryable: bool
    zone_id: Optional[str] = None
    quote: Optional[FareBreakdownOut] = None
    fare_error: Optional[str] = None
    candidates: list[CandidateOut] = []
    assigned_driver_id: Optional[str] = None
    attempts: int = 0

    @classmethod
    def from_domain(cls, result: DispatchResult) -> DispatchResponse:
        return cls(
            status=result.status.value,
            retryable=result.retryable,
            zone_id=result.zone_id,
            quote=(
                FareBreakdownOut.model_validate(result.quote) if result.quote else None
            ),
            fare_error=result.fare_error,
            candidates=[CandidateOut.from_domain(c) for c in result.candidates],
            assigned_driver_id=result.assigned_driver_id,
            attempts=result.attempts,
        )


class AssignRequest(BaseModel):
    driver_id: str


class AssignResponse(BaseModel):
    ride_id: str
    driver_id: str


class RideEventRequest(BaseModel):
    driver_id: str
    status: RideStatus


class HealthResponse(BaseModel):
    status: str = "ok"
    zones_version: int
    fare_rules_version: int


class ErrorResponse(BaseModel):
    detail: str
    error: str
    retryable: bool = False
