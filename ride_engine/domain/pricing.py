"""
Fare Engine  (Strategy Pattern)
===============================

One strategy per pricing model, selected by the fare rule configured for
the trip's ``(booking_type, vehicle_type)`` pair.

Metered  (regular / airport / per-km outstation)
------------------------------------------------
  subtotal = base_fare + distance_km x per_km_rate + duration_min x per_minute_rate
  fare     = max(subtotal x surge, minimum_fare)
  fare     = fare x (1 + night%)  + platform_fee

Hourly  (rental)
----------------
  fare = hourly_rate x max(rental_hours, minimum_hours) x surge + platform_fee

Slab  (outstation package with driver stay)
-------------------------------------------
  round_trip_km = 2 x one_way_km
  package       = fare(smallest boundary >= round_trip_km)
                  or fare(largest) + extra_km_rate x (round_trip_km - largest)
  fare          = package x (1 + night%)  + allowance x days  [+ tolls]  + platform_fee

Surge = zone surge multiplier x rule peak-hour multiplier (inside a peak
window).  Slab packages are fixed-price and never surged.  Airport rules
may add a fixed airport fee on top of any model.

Time of day
-----------
Night and peak windows are wall-clock times in the service timezone
(``SERVICE_TIMEZONE``).  Aware datetimes are converted to it; naive ones
are read as already local.

Numeric semantics
-----------------
All arithmetic is ``Decimal``.  Multipliers and percentages apply to
unrounded intermediates; every currency field is quantized exactly once,
when the ``FareBreakdown`` is built.  The calculator is pure: no I/O, no
clock, no defaults substituted for missing configuration.

Complexity: O(1) per quote (O(log s) slab selection for s slabs).
"""

from __future__ import annotations

import bisect
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, time, timezone, tzinfo
from decimal import ROUND_HALF_UP, Decimal
from types import MappingProxyType
from typing import Iterable, Mapping, Optional
from zoneinfo import ZoneInfo

from .entities import TripRequest
from .enums import (
    BookingType,
    PlatformFeeKind,
    PricingModel,
    RideStatus,
    VehicleType,
)
from .errors import InvalidFareRule, InvalidInput, NoFareConfigured
from .zones import ZoneParams

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")


def to_decimal(value) -> Decimal:
    """Convert ints / floats / strings without binary-float artefacts."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _non_negative(owner: str, **values: Decimal) -> None:
    for name, value in values.items():
        if not value.is_finite() or value < 0:
            raise InvalidFareRule(f"{owner}: {name} must be >= 0, got {value}")


# ── Rate blocks ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class PlatformFee:
    kind: PlatformFeeKind = PlatformFeeKind.FIXED
    amount: Decimal = ZERO

    def __post_init__(self) -> None:
        _non_negative("platform_fee", amount=self.amount)

    def on(self, subtotal: Decimal) -> Decimal:
        if self.kind == PlatformFeeKind.PERCENT:
            return subtotal * self.amount / HUNDRED
        return self.amount


@dataclass(frozen=True)
class MeteredRates:
    base_fare: Decimal
    per_km_rate: Decimal
    per_minute_rate: Decimal
    minimum_fare: Decimal
    cancellation_fee: Decimal = ZERO
    night_charge_percent: Decimal = ZERO

    def __post_init__(self) -> None:
        _non_negative(
            "metered",
            base_fare=self.base_fare,
            per_km_rate=self.per_km_rate,
            per_minute_rate=self.per_minute_rate,
            minimum_fare=self.minimum_fare,
            cancellation_fee=self.cancellation_fee,
            night_charge_percent=self.night_charge_percent,
        )


@dataclass(frozen=True)
class HourlyRates:
    hourly_rate: Decimal
    minimum_hours: Optional[int] = None  # falls back to the policy default

    def __post_init__(self) -> None:
        _non_negative("hourly", hourly_rate=self.hourly_rate)
        if self.minimum_hours is not None and self.minimum_hours < 0:
            raise InvalidFareRule("hourly: minimum_hours must be >= 0")


@dataclass(frozen=True)
class SlabRates:
    slabs: tuple[tuple[Decimal, Decimal], ...]  # (boundary_km, fare), ascending
    extra_km_rate: Decimal
    driver_allowance_per_day: Decimal = ZERO
    night_charge_percent: Decimal = ZERO
    toll_included: bool = False

    def __post_init__(self) -> None:
        if not self.slabs:
            raise InvalidFareRule("slab: at least one distance slab is required")
        boundaries = [b for b, _ in self.slabs]
        if any(b2 <= b1 for b1, b2 in zip(boundaries, boundaries[1:])):
            raise InvalidFareRule("slab: boundaries must be strictly increasing")
        if boundaries[0] <= 0:
            raise InvalidFareRule("slab: boundaries must be > 0")
        for boundary, fare in self.slabs:
            _non_negative(f"slab {boundary}km", fare=fare)
        _non_negative(
            "slab",
            extra_km_rate=self.extra_km_rate,
            driver_allowance_per_day=self.driver_allowance_per_day,
            night_charge_percent=self.night_charge_percent,
        )

    @property
    def boundaries(self) -> list[Decimal]:
        return [b for b, _ in self.slabs]

    def select(self, round_trip_km: Decimal) -> tuple[Decimal, Decimal, Decimal]:
        """Return ``(slab_km, slab_fare, extra_km)`` for *round_trip_km*.

        Boundaries are inclusive: exactly 80 km selects the 80 km slab.
        """
        boundaries = self.boundaries
        idx = bisect.bisect_left(boundaries, round_trip_km)
        if idx < len(boundaries):
            return boundaries[idx], self.slabs[idx][1], ZERO
        largest, fare = self.slabs[-1]
        return largest, fare, round_trip_km - largest


_MODEL_BLOCK = {
    PricingModel.METERED: "metered",
    PricingModel.HOURLY: "hourly",
    PricingModel.SLAB: "slab",
}


@dataclass(frozen=True)
class FareRule:
    booking_type: BookingType
    vehicle_type: VehicleType
    pricing_model: PricingModel
    metered: Optional[MeteredRates] = None
    hourly: Optional[HourlyRates] = None
    slab: Optional[SlabRates] = None
    platform_fee: PlatformFee = field(default_factory=PlatformFee)
    peak_hour_multiplier: Decimal = ONE
    airport_fee: Decimal = ZERO

    def __post_init__(self) -> None:
        block = _MODEL_BLOCK[self.pricing_model]
        if getattr(self, block) is None:
            raise InvalidFareRule(
                f"{self.booking_type.value}/{self.vehicle_type.value}: "
                f"{self.pricing_model.value} rule needs {block} rates"
            )
        if not self.peak_hour_multiplier.is_finite() or self.peak_hour_multiplier <= 0:
            raise InvalidFareRule("peak_hour_multiplier must be > 0")
        _non_negative("rule", airport_fee=self.airport_fee)
        if self.airport_fee and self.booking_type != BookingType.AIRPORT:
            raise InvalidFareRule(
                f"{self.booking_type.value}/{self.vehicle_type.value}: "
                "airport_fee only applies to airport bookings"
            )

    @property
    def key(self) -> tuple[BookingType, VehicleType]:
        return (self.booking_type, self.vehicle_type)


# ── Policy (configuration-derived, immutable) ─────────────────────────


@dataclass(frozen=True)
class TimeWindow:
    start: time
    end: time

    @classmethod
    def parse(cls, spec: str) -> TimeWindow:
        """``"22:00-06:00"`` -> window wrapping midnight."""
        start, end = spec.split("-")
        return cls(time.fromisoformat(start.strip()), time.fromisoformat(end.strip()))

    def contains(self, moment: time) -> bool:
        if self.start <= self.end:
            return self.start <= moment < self.end
        return moment >= self.start or moment < self.end


@dataclass(frozen=True)
class PricingPolicy:
    currency_quantum: Decimal = ONE
    rental_minimum_hours: int = 4
    average_speed_kmph: float = 25.0
    night_window: TimeWindow = TimeWindow(time(22, 0), time(6, 0))
    peak_windows: tuple[TimeWindow, ...] = ()
    tz: tzinfo = timezone.utc

    @classmethod
    def from_settings(cls, settings) -> PricingPolicy:
        return cls(
            currency_quantum=to_decimal(settings.currency_quantum),
            rental_minimum_hours=settings.rental_minimum_hours,
            average_speed_kmph=settings.average_speed_kmph,
            night_window=TimeWindow.parse(f"{settings.night_start}-{settings.night_end}"),
            peak_windows=tuple(TimeWindow.parse(w) for w in settings.peak_windows),
            tz=ZoneInfo(settings.service_timezone),
        )

    def local_time(self, moment: datetime) -> time:
        """Wall-clock time of *moment* in the service timezone."""
        if moment.tzinfo is None:
            return moment.time()
        return moment.astimezone(self.tz).time()

    def is_night(self, moment: time) -> bool:
        return self.night_window.contains(moment)

    def is_peak(self, moment: time) -> bool:
        return any(w.contains(moment) for w in self.peak_windows)


# ── Result ────────────────────────────────────────────────────────────


@dataclass
class _Draft:
    """Unrounded intermediate amounts produced by a strategy."""

    base_fare: Decimal = ZERO
    distance_fare: Decimal = ZERO
    time_fare: Decimal = ZERO
    allowance: Decimal = ZERO
    night_surcharge: Decimal = ZERO
    surge_multiplier: Decimal = ONE
    surge_applied: Decimal = ZERO
    minimum_fare_adjustment: Decimal = ZERO
    platform_fee: Decimal = ZERO
    toll_charges: Decimal = ZERO
    airport_fee: Decimal = ZERO
    total: Decimal = ZERO
    billed_hours: Optional[int] = None
    slab_km: Optional[Decimal] = None
    round_trip_km: Optional[Decimal] = None


@dataclass(frozen=True)
class FareBreakdown:
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
    airport_fee: Decimal
    total: Decimal
    billed_hours: Optional[int] = None
    slab_km: Optional[Decimal] = None
    round_trip_km: Optional[Decimal] = None


_MONEY_FIELDS = (
    "base_fare",
    "distance_fare",
    "time_fare",
    "allowance",
    "night_surcharge",
    "surge_applied",
    "minimum_fare_adjustment",
    "platform_fee",
    "toll_charges",
    "airport_fee",
    "total",
)


def _finalise(model: PricingModel, draft: _Draft, quantum: Decimal) -> FareBreakdown:
    money = {
        name: getattr(draft, name).quantize(quantum, rounding=ROUND_HALF_UP)
        for name in _MONEY_FIELDS
    }
    return FareBreakdown(
        pricing_model=model,
        surge_multiplier=draft.surge_multiplier,
        billed_hours=draft.billed_hours,
        slab_km=draft.slab_km,
        round_trip_km=draft.round_trip_km,
        **money,
    )


# ── Strategy hierarchy ────────────────────────────────────────────────


class PricingStrategy(ABC):
    @abstractmethod
    def calculate(
        self,
        trip: TripRequest,
        rule: FareRule,
        zone: ZoneParams,
        policy: PricingPolicy,
    ) -> _Draft: ...

    @staticmethod
    def surge_for(
        trip: TripRequest, rule: FareRule, zone: ZoneParams, policy: PricingPolicy
    ) -> Decimal:
        surge = zone.surge_multiplier
        if policy.is_peak(policy.local_time(trip.starts_at)):
            surge *= rule.peak_hour_multiplier
        return surge


class MeteredPricing(PricingStrategy):
    def calculate(self, trip, rule, zone, policy) -> _Draft:
        rates = rule.metered
        base = zone.base_fare if zone.base_fare is not None else rates.base_fare
        per_km = zone.per_km_rate if zone.per_km_rate is not None else rates.per_km_rate

        distance_km = to_decimal(trip.one_way_km())
        if trip.duration_min is not None:
            duration_min = to_decimal(trip.duration_min)
        else:
            duration_min = distance_km / to_decimal(policy.average_speed_kmph) * 60

        distance_fare = distance_km * per_km
        time_fare = duration_min * rates.per_minute_rate
        subtotal = base + distance_fare + time_fare

        surge = self.surge_for(trip, rule, zone, policy)
        surged = subtotal * surge
        # Clamp after surge, before the platform fee
        clamped = max(surged, rates.minimum_fare)
        night = ZERO
        if policy.is_night(policy.local_time(trip.starts_at)):
            night = clamped * rates.night_charge_percent / HUNDRED
        platform = rule.platform_fee.on(subtotal)

        return _Draft(
            base_fare=base,
            distance_fare=distance_fare,
            time_fare=time_fare,
            surge_multiplier=surge,
            surge_applied=surged - subtotal,
            minimum_fare_adjustment=clamped - surged,
            night_surcharge=night,
            platform_fee=platform,
            total=clamped + night + platform,
        )


class HourlyPricing(PricingStrategy):
    def calculate(self, trip, rule, zone, policy) -> _Draft:
        if trip.rental_hours is None:
            raise InvalidInput("rental_hours is required for hourly pricing")
        rates = rule.hourly
        minimum = (
            rates.minimum_hours
            if rates.minimum_hours is not None
            else policy.rental_minimum_hours
        )
        billed_hours = max(trip.rental_hours, minimum)

        base = rates.hourly_rate * billed_hours
        surge = self.surge_for(trip, rule, zone, policy)
        surged = base * surge
        platform = rule.platform_fee.on(base)

        return _Draft(
            base_fare=base,
            surge_multiplier=surge,
            surge_applied=surged - base,
            platform_fee=platform,
            total=surged + platform,
            billed_hours=billed_hours,
        )


class SlabPricing(PricingStrategy):
    def calculate(self, trip, rule, zone, policy) -> _Draft:
        rates = rule.slab
        round_trip_km = to_decimal(trip.one_way_km()) * 2
        slab_km, slab_fare, extra_km = rates.select(round_trip_km)

        extra_fare = extra_km * rates.extra_km_rate
        package = slab_fare + extra_fare
        night = ZERO
        if policy.is_night(policy.local_time(trip.starts_at)):
            night = package * rates.night_charge_percent / HUNDRED
        allowance = rates.driver_allowance_per_day * trip.trip_days
        tolls = trip.toll_charges if rates.toll_included else ZERO
        platform = rule.platform_fee.on(package)

        return _Draft(
            base_fare=slab_fare,
            distance_fare=extra_fare,
            allowance=allowance,
            night_surcharge=night,
            platform_fee=platform,
            toll_charges=tolls,
            total=package + night + allowance + tolls + platform,
            slab_km=slab_km,
            round_trip_km=round_trip_km,
        )


# ── Rule book (snapshot, swapped atomically) ──────────────────────────


class FareRuleBook:
    """``(booking_type, vehicle_type) -> FareRule`` with snapshot semantics."""

    def __init__(self, rules: Iterable[FareRule] = ()):
        self._write_lock = threading.Lock()
        self._rules: Mapping[tuple[BookingType, VehicleType], FareRule] = MappingProxyType({})
        self.version = 0
        self.replace_all(rules)

    def get(self, booking_type: BookingType, vehicle_type: VehicleType) -> FareRule:
        rule = self._rules.get((booking_type, vehicle_type))
        if rule is None:
            raise NoFareConfigured(booking_type, vehicle_type)
        return rule

    def rules(self) -> list[FareRule]:
        return list(self._rules.values())

    def replace_all(self, rules: Iterable[FareRule]) -> None:
        new = {r.key: r for r in rules}
        with self._write_lock:
            self._swap(new)

    def upsert(self, rule: FareRule) -> None:
        with self._write_lock:
            new = dict(self._rules)
            new[rule.key] = rule
            self._swap(new)

    def remove(self, booking_type: BookingType, vehicle_type: VehicleType) -> None:
        with self._write_lock:
            new = dict(self._rules)
            if new.pop((booking_type, vehicle_type), None) is None:
                raise NoFareConfigured(booking_type, vehicle_type)
            self._swap(new)

    def _swap(self, rules: dict) -> None:
        self._rules = MappingProxyType(rules)
        self.version += 1


# ── Engine facade ─────────────────────────────────────────────────────


class FareCalculator:
    """High-level API used by the dispatch filter and the API layer."""

    STRATEGIES: dict[PricingModel, PricingStrategy] = {
        PricingModel.METERED: MeteredPricing(),
        PricingModel.HOURLY: HourlyPricing(),
        PricingModel.SLAB: SlabPricing(),
    }

    def __init__(self, policy: Optional[PricingPolicy] = None):
        self.policy = policy or PricingPolicy()

    def quote(
        self,
        trip: TripRequest,
        rule: FareRule,
        zone: Optional[ZoneParams] = None,
    ) -> FareBreakdown:
        trip.validate()
        if rule.key != (trip.booking_type, trip.vehicle_type):
            raise InvalidInput(
                f"Rule {rule.booking_type.value}/{rule.vehicle_type.value} does not "
                f"match trip {trip.booking_type.value}/{trip.vehicle_type.value}"
            )
        strategy = self.STRATEGIES[rule.pricing_model]
        draft = strategy.calculate(trip, rule, zone or ZoneParams(), self.policy)
        if rule.airport_fee:
            draft.airport_fee = rule.airport_fee
            draft.total += rule.airport_fee
        return _finalise(rule.pricing_model, draft, self.policy.currency_quantum)

    def cancellation_charge(self, rule: FareRule, ride_status: RideStatus) -> Decimal:
        """Fee owed when a ride is cancelled in *ride_status*.

        Only metered rules carry a cancellation fee, and it is charged only
        once a driver has accepted the ride.
        """
        if rule.metered is None or ride_status not in (
            RideStatus.ACCEPTED,
            RideStatus.DRIVER_ARRIVED,
        ):
            return ZERO.quantize(self.policy.currency_quantum)
        return rule.metered.cancellation_fee.quantize(
            self.policy.currency_quantum, rounding=ROUND_HALF_UP
        )
