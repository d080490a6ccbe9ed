"""
Dispatch eligibility filter.

Pipeline for one trip request
-----------------------------
1. Validate the trip                      -> ``InvalidInput`` (terminal, raised)
2. Zone lookup on the pickup              -> ``OutOfServiceArea`` (terminal)
3. Fare quote, attached to the result     -> ``NoFareConfigured`` recorded, not gating
4. Eligible drivers around the pickup     -> ``NoDriversAvailable`` (retryable)
5. Optional auto-assign: claim candidates in rank order; a lost race
   (``AlreadyAssigned``) moves on to the next one, up to
   ``max_claim_attempts``, then ``NoDriversAvailable``.

The call is synchronous from the caller's point of view and bounded: it
never waits for a driver to free up.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from .availability import Candidate, DriverAvailabilityIndex
from .entities import TripRequest
from .enums import DispatchStatus
from .errors import AlreadyAssigned, NoFareConfigured
from .pricing import FareBreakdown, FareCalculator, FareRuleBook
from .zones import ZoneIndex

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DispatchResult:
    status: DispatchStatus
    zone_id: Optional[str] = None
    quote: Optional[FareBreakdown] = None
    fare_error: Optional[str] = None
    candidates: tuple[Candidate, ...] = field(default_factory=tuple)
    assigned_driver_id: Optional[str] = None
    attempts: int = 0

    @property
    def retryable(self) -> bool:
        return self.status == DispatchStatus.NO_DRIVERS_AVAILABLE

    @property
    def chosen(self) -> Optional[Candidate]:
        for candidate in self.candidates:
            if candidate.driver.id == self.assigned_driver_id:
                return candidate
        return None


class DispatchEligibilityFilter:
    def __init__(
        self,
        zones: ZoneIndex,
        fare_rules: FareRuleBook,
        calculator: FareCalculator,
        availability: DriverAvailabilityIndex,
        *,
        search_radius_km: Optional[float] = 10.0,
        max_claim_attempts: int = 3,
    ):
        self.zones = zones
        self.fare_rules = fare_rules
        self.calculator = calculator
        self.availability = availability
        self.search_radius_km = search_radius_km
        self.max_claim_attempts = max_claim_attempts

    def quote(self, trip: TripRequest) -> tuple[str, FareBreakdown]:
        """Price a trip at its pickup zone.  Raises on any failure."""
        trip.validate()
        zone = self.zones.resolve(trip.pickup)
        rule = self.fare_rules.get(trip.booking_type, trip.vehicle_type)
        return zone.id, self.calculator.quote(trip, rule, zone.params)

    async def dispatch(
        self,
        trip: TripRequest,
        *,
        ride_id: Optional[str] = None,
        auto_assign: bool = False,
        radius_km: Optional[float] = None,
    ) -> DispatchResult:
        trip.validate()
        if auto_assign and not ride_id:
            raise ValueError("auto_assign needs a ride_id to claim drivers for")

        covering = self.zones.covering(trip.pickup)
        if not covering:
            logger.info(
                "Pickup (%.5f, %.5f) outside service area", trip.pickup.lat, trip.pickup.lng
            )
            return DispatchResult(status=DispatchStatus.OUT_OF_SERVICE_AREA)
        zone = covering[0]

        quote, fare_error = None, None
        try:
            rule = self.fare_rules.get(trip.booking_type, trip.vehicle_type)
            quote = self.calculator.quote(trip, rule, zone.params)
        except NoFareConfigured as exc:
            logger.warning("Dispatching without a quote: %s", exc)
            fare_error = str(exc)

        radius = radius_km if radius_km is not None else self.search_radius_km
        candidates = tuple(await self.availability.list_eligible(trip.pickup, radius))
        if not candidates:
            return DispatchResult(
                status=DispatchStatus.NO_DRIVERS_AVAILABLE,
                zone_id=zone.id,
                quote=quote,
                fare_error=fare_error,
            )

        if not auto_assign:
            return DispatchResult(
                status=DispatchStatus.OK,
                zone_id=zone.id,
                quote=quote,
                fare_error=fare_error,
                candidates=candidates,
            )

        attempts = 0
        for candidate in candidates[: self.max_claim_attempts]:
            attempts += 1
            try:
                await self.availability.claim(candidate.driver.id, ride_id)
            except AlreadyAssigned:
                logger.debug(
                    "Claim race lost on driver %s for ride %s", candidate.driver.id, ride_id
                )
                continue
            return DispatchResult(
                status=DispatchStatus.OK,
                zone_id=zone.id,
                quote=quote,
                fare_error=fare_error,
                candidates=candidates,
                assigned_driver_id=candidate.driver.id,
                attempts=attempts,
            )

        logger.info("Ride %s: no driver claimed after %d attempts", ride_id, attempts)
        return DispatchResult(
            status=DispatchStatus.NO_DRIVERS_AVAILABLE,
            zone_id=zone.id,
            quote=quote,
            fare_error=fare_error,
            candidates=candidates,
            attempts=attempts,
        )

    async def assign(self, ride_id: str, driver_id: str) -> None:
        """Manual (admin) assignment of one specific driver."""
        await self.availability.get(driver_id)
        await self.availability.claim(driver_id, ride_id)
