"""
Domain entities with business logic.

Patterns used
-------------
- **State Pattern** on ``Ride`` and ``Driver``: enforce valid lifecycle
  transitions (see ``RIDE_TRANSITIONS`` / ``DRIVER_TRANSITIONS``).
- ``Driver`` is an immutable value.  Every change produces a new record
  that the repository swaps in whole, so a reader never sees a driver
  half-way through an update.
- ``TripRequest.validate`` rejects bad trip parameters before any fare or
  dispatch computation starts.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Optional

from .enums import (
    DRIVER_TRANSITIONS,
    RIDE_TRANSITIONS,
    BookingType,
    DriverStatus,
    RideStatus,
    VehicleType,
)
from .errors import InvalidInput, InvalidStateTransition
from .geometry import LatLng


# ── Trip ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TripRequest:
    pickup: LatLng
    dropoff: LatLng
    booking_type: BookingType
    vehicle_type: VehicleType
    requested_at: datetime
    scheduled_time: Optional[datetime] = None
    rental_hours: Optional[int] = None
    # Supplied by the routing collaborator when known; estimated otherwise
    distance_km: Optional[float] = None
    duration_min: Optional[float] = None
    trip_days: int = 1
    toll_charges: Decimal = Decimal("0")

    @property
    def starts_at(self) -> datetime:
        return self.scheduled_time or self.requested_at

    def validate(self) -> None:
        if not self.pickup.is_valid():
            raise InvalidInput(f"Pickup out of range: {self.pickup}")
        if not self.dropoff.is_valid():
            raise InvalidInput(f"Dropoff out of range: {self.dropoff}")
        for name in ("distance_km", "duration_min", "rental_hours"):
            value = getattr(self, name)
            if value is None:
                continue
            if not math.isfinite(value) or value < 0:
                raise InvalidInput(f"{name} must be a non-negative number, got {value}")
        if self.trip_days < 1:
            raise InvalidInput(f"trip_days must be >= 1, got {self.trip_days}")
        if not self.toll_charges.is_finite() or self.toll_charges < 0:
            raise InvalidInput(f"toll_charges must be >= 0, got {self.toll_charges}")
        if self.booking_type == BookingType.RENTAL and self.rental_hours is None:
            raise InvalidInput("rental_hours is required for rental bookings")

    def one_way_km(self) -> float:
        if self.distance_km is not None:
            return self.distance_km
        return self.pickup.distance_km(self.dropoff)


# ── Ride ──────────────────────────────────────────────────────────────


@dataclass
class Ride:
    id: str
    status: RideStatus = RideStatus.REQUESTED
    driver_id: Optional[str] = None
    quoted_fare: Optional[Decimal] = None
    created_at: Optional[datetime] = None

    def transition_to(self, new_status: RideStatus) -> None:
        """Move to *new_status* if the transition is legal, else raise."""
        allowed = RIDE_TRANSITIONS.get(self.status, set())
        if new_status not in allowed:
            raise InvalidStateTransition(
                f"Cannot transition ride from {self.status.value} to {new_status.value}"
            )
        self.status = new_status


# ── Driver ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Driver:
    id: str
    status: DriverStatus = DriverStatus.OFFLINE
    is_verified: bool = False
    location: Optional[LatLng] = None
    location_updated_at: Optional[datetime] = None
    rating: float = 5.0
    vehicle_type: Optional[VehicleType] = None
    active_ride_ids: frozenset[str] = field(default_factory=frozenset)

    def is_eligible(self) -> bool:
        return (
            self.status == DriverStatus.ONLINE
            and self.is_verified
            and not self.active_ride_ids
        )

    def transition_to(self, new_status: DriverStatus, *, by_admin: bool = False) -> Driver:
        """Return a copy in *new_status*, or raise if the move is not allowed.

        Admins may suspend from any state and are the only ones who can
        lift a suspension (back to ``offline``).
        """
        if new_status == self.status:
            return self
        if new_status == DriverStatus.SUSPENDED:
            if not by_admin:
                raise InvalidStateTransition("Only an admin can suspend a driver")
            return replace(self, status=new_status)
        if self.status == DriverStatus.SUSPENDED:
            if not by_admin or new_status != DriverStatus.OFFLINE:
                raise InvalidStateTransition(
                    "A suspended driver can only be reactivated to offline by an admin"
                )
            return replace(self, status=new_status)
        if new_status not in DRIVER_TRANSITIONS.get(self.status, set()):
            raise InvalidStateTransition(
                f"Cannot transition driver from {self.status.value} to {new_status.value}"
            )
        return replace(self, status=new_status)

    def with_ride(self, ride_id: str) -> Driver:
        return replace(self, active_ride_ids=self.active_ride_ids | {ride_id})

    def without_ride(self, ride_id: str) -> Driver:
        return replace(self, active_ride_ids=self.active_ride_ids - {ride_id})
