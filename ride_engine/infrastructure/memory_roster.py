"""
In-process driver roster.

Concurrency model
-----------------
* One ``threading.Lock`` per driver serialises every write to that driver
  (stream updates and claims), which makes ``claim`` a compare-and-swap on
  "eligible and no active ride".
* A single registry lock guards the driver map, the ride -> driver claim
  table and the H3 cell index.  It is only ever taken *inside* a driver lock
  (or alone), never the other way round, so the two cannot deadlock.
* No lock is held across an ``await``: every method body is synchronous, so
  the roster is safe both for asyncio tasks and for worker threads.

Spatial pre-filter
------------------
Each located driver is indexed by its H3 cell.  A radius search expands the
pickup cell into a k-ring that covers the radius and returns only drivers in
those cells; the availability index then applies the exact haversine cut.
"""

from __future__ import annotations

import math
import threading
from collections import defaultdict
from typing import Callable, Iterable, Optional

import h3

from ride_engine.domain.availability import DriverRepository
from ride_engine.domain.entities import Driver
from ride_engine.domain.errors import UnknownDriver
from ride_engine.domain.geometry import LatLng

# Beyond this many rings a full scan is cheaper than the cell lookup
MAX_RING = 60


class InMemoryDriverRepository(DriverRepository):
    def __init__(self, drivers: Iterable[Driver] = (), *, h3_resolution: int = 8):
        self.h3_resolution = h3_resolution
        self._edge_km = h3.average_hexagon_edge_length(h3_resolution, unit="km")

        self._registry_lock = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._drivers: dict[str, Driver] = {}
        self._ride_claims: dict[str, str] = {}
        self._cells: dict[str, set[str]] = defaultdict(set)
        self._driver_cell: dict[str, str] = {}

        for driver in drivers:
            self._add(driver)

    # ── Reads ─────────────────────────────────────────────────────────

    async def get(self, driver_id: str) -> Optional[Driver]:
        with self._registry_lock:
            return self._drivers.get(driver_id)

    async def all(self) -> list[Driver]:
        with self._registry_lock:
            return list(self._drivers.values())

    async def candidates(
        self, pickup: Optional[LatLng], radius_km: Optional[float]
    ) -> list[Driver]:
        if pickup is None or radius_km is None:
            return await self.all()
        k = math.ceil(radius_km / self._edge_km) + 1
        if k > MAX_RING:
            return await self.all()

        origin = h3.latlng_to_cell(pickup.lat, pickup.lng, self.h3_resolution)
        with self._registry_lock:
            ids: set[str] = set()
            for cell in h3.grid_disk(origin, k):
                ids.update(self._cells.get(cell, ()))
            return [self._drivers[i] for i in ids]

    def claimed_by(self, ride_id: str) -> Optional[str]:
        with self._registry_lock:
            return self._ride_claims.get(ride_id)

    # ── Writes ────────────────────────────────────────────────────────

    async def add(self, driver: Driver) -> None:
        self._add(driver)

    async def update(
        self, driver_id: str, mutate: Callable[[Driver], Driver]
    ) -> Driver:
        with self._lock_for(driver_id):
            updated = mutate(self._drivers[driver_id])
            with self._registry_lock:
                self._store(updated)
            return updated

    async def claim(self, driver_id: str, ride_id: str) -> bool:
        with self._lock_for(driver_id):
            current = self._drivers[driver_id]
            if not current.is_eligible():
                return False
            with self._registry_lock:
                if ride_id in self._ride_claims:
                    return False
                self._ride_claims[ride_id] = driver_id
                self._store(current.with_ride(ride_id))
            return True

    async def release(self, driver_id: str, ride_id: str) -> Driver:
        with self._lock_for(driver_id):
            updated = self._drivers[driver_id].without_ride(ride_id)
            with self._registry_lock:
                if self._ride_claims.get(ride_id) == driver_id:
                    del self._ride_claims[ride_id]
                self._store(updated)
            return updated

    # ── Internals ─────────────────────────────────────────────────────

    def _add(self, driver: Driver) -> None:
        with self._registry_lock:
            lock = self._locks.setdefault(driver.id, threading.Lock())
        with lock:
            with self._registry_lock:
                self._store(driver)

    def _lock_for(self, driver_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(driver_id)
        if lock is None:
            raise UnknownDriver(driver_id)
        return lock

    def _store(self, driver: Driver) -> None:
        """Write *driver* and re-index its cell.  Caller holds the registry lock."""
        self._drivers[driver.id] = driver
        old = self._driver_cell.pop(driver.id, None)
        if old is not None:
            self._cells[old].discard(driver.id)
            if not self._cells[old]:
                del self._cells[old]
        if driver.location is not None:
            cell = h3.latlng_to_cell(
                driver.location.lat, driver.location.lng, self.h3_resolution
            )
            self._cells[cell].add(driver.id)
            self._driver_cell[driver.id] = cell
