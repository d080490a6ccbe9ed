"""
Driver availability: eligibility, ranking and the atomic claim.

Eligibility predicate
---------------------
  status == online  AND  is_verified  AND  no active ride

``list_eligible`` is a best-effort snapshot; ``claim`` re-validates
eligibility inside the repository's atomic section, so a stale listing only
costs a retry, never a double assignment.

Repository contract
-------------------
The roster is owned by an injected ``DriverRepository``.  Implementations
must make ``claim`` linearizable per driver *and* per ride: of any number of
concurrent ``claim`` calls for one driver, at most one succeeds, and a ride
is never claimed by two drivers.  ``update`` is an atomic read-modify-write
on one driver so stream writes (status, location, verification) never
overwrite a concurrent claim.

Driver-side writes (status changes, location pings, ride lifecycle events)
arrive from the driver client and are applied here through ``update``; the
claim is the only mutation the engine itself originates.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from .entities import Driver
from .enums import ACTIVE_RIDE_STATUSES, DriverStatus, RideStatus
from .errors import AlreadyAssigned, InvalidInput, UnknownDriver
from .geometry import LatLng

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)


# ── Repository port ───────────────────────────────────────────────────


class DriverRepository(ABC):
    @abstractmethod
    async def get(self, driver_id: str) -> Optional[Driver]: ...

    @abstractmethod
    async def all(self) -> list[Driver]: ...

    async def candidates(
        self, pickup: Optional[LatLng], radius_km: Optional[float]
    ) -> list[Driver]:
        """Superset of the drivers that may lie within *radius_km* of *pickup*.

        Implementations with a spatial index override this; the default is
        the whole roster.
        """
        return await self.all()

    @abstractmethod
    async def add(self, driver: Driver) -> None:
        """Register a driver, replacing any record with the same id."""

    @abstractmethod
    async def update(
        self, driver_id: str, mutate: Callable[[Driver], Driver]
    ) -> Driver:
        """Atomically apply *mutate* to one driver; raise ``UnknownDriver``."""

    @abstractmethod
    async def claim(self, driver_id: str, ride_id: str) -> bool:
        """Atomically reserve an eligible driver for an unclaimed ride."""

    @abstractmethod
    async def release(self, driver_id: str, ride_id: str) -> Driver:
        """Drop *ride_id* from the driver's active set and free the ride."""


# ── Index ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Candidate:
    driver: Driver
    distance_km: Optional[float] = None


class DriverAvailabilityIndex:
    def __init__(
        self,
        repository: DriverRepository,
        *,
        stale_after: timedelta = timedelta(minutes=5),
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.repository = repository
        self.stale_after = stale_after
        self.clock = clock

    @staticmethod
    def eligible(driver: Driver) -> bool:
        return driver.is_eligible()

    def has_fresh_location(self, driver: Driver, now: Optional[datetime] = None) -> bool:
        if driver.location is None:
            return False
        if driver.location_updated_at is None:
            return True
        now = now or self.clock()
        return _aware(now) - _aware(driver.location_updated_at) <= self.stale_after

    async def list_eligible(
        self,
        pickup: Optional[LatLng] = None,
        max_radius_km: Optional[float] = None,
    ) -> list[Candidate]:
        """Eligible drivers, nearest first, best rated first among equals.

        With a radius, only drivers with a fresh location inside it are
        returned.  Without one, drivers lacking a usable location are kept
        but ranked after every located driver.
        """
        if max_radius_km is not None and (pickup is None or max_radius_km < 0):
            raise InvalidInput("A radius search needs a pickup and a radius >= 0")

        roster = await self.repository.candidates(pickup, max_radius_km)
        now = self.clock()
        result: list[Candidate] = []
        for driver in roster:
            if not self.eligible(driver):
                continue
            distance = None
            if pickup is not None and self.has_fresh_location(driver, now):
                distance = pickup.distance_km(driver.location)
            if max_radius_km is not None and (distance is None or distance > max_radius_km):
                continue
            result.append(Candidate(driver=driver, distance_km=distance))

        result.sort(
            key=lambda c: (
                c.distance_km is None,
                c.distance_km or 0.0,
                -c.driver.rating,
                c.driver.id,
            )
        )
        return result

    async def claim(self, driver_id: str, ride_id: str) -> None:
        """Reserve *driver_id* for *ride_id* or raise ``AlreadyAssigned``."""
        if not await self.repository.claim(driver_id, ride_id):
            raise AlreadyAssigned(driver_id, ride_id)
        logger.info("Driver %s claimed for ride %s", driver_id, ride_id)

    # ── Driver-state stream ───────────────────────────────────────────

    async def register(self, driver: Driver) -> None:
        await self.repository.add(driver)

    async def get(self, driver_id: str) -> Driver:
        driver = await self.repository.get(driver_id)
        if driver is None:
            raise UnknownDriver(driver_id)
        return driver

    async def set_status(
        self, driver_id: str, status: DriverStatus, *, by_admin: bool = False
    ) -> Driver:
        return await self.repository.update(
            driver_id, lambda d: d.transition_to(status, by_admin=by_admin)
        )

    async def set_verified(self, driver_id: str, is_verified: bool) -> Driver:
        return await self.repository.update(
            driver_id, lambda d: replace(d, is_verified=is_verified)
        )

    async def update_location(
        self, driver_id: str, location: LatLng, at: Optional[datetime] = None
    ) -> Driver:
        if not location.is_valid():
            raise InvalidInput(f"Location out of range: {location}")
        stamp = at or self.clock()
        return await self.repository.update(
            driver_id,
            lambda d: replace(d, location=location, location_updated_at=stamp),
        )

    async def apply_ride_event(
        self, driver_id: str, ride_id: str, status: RideStatus
    ) -> Driver:
        if status in ACTIVE_RIDE_STATUSES:
            return await self.repository.update(driver_id, lambda d: d.with_ride(ride_id))
        if status in (RideStatus.COMPLETED, RideStatus.CANCELLED):
            return await self.repository.release(driver_id, ride_id)
        raise InvalidInput(f"Ride status {status.value} is not a driver event")
