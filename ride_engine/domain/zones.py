"""
Service-zone index.

Read-mostly: lookups run on every quote and dispatch, while admins create,
toggle or delete a zone a few times a day.  The zone set is therefore held
as an immutable tuple that writers rebuild and swap in with a single
assignment.  Readers grab the current tuple once and never lock, so a
lookup can never observe a half-applied admin update.

Overlap precedence
------------------
When several active zones contain a point, the applicable zone is the one
with the **smallest area** (the most specific geofence, e.g. an airport
polygon inside a city circle).  Ties fall back to the **highest surge
multiplier**, then to the **zone id** so the result never depends on
insertion order.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Iterable, Optional

from .errors import InvalidInput, OutOfServiceArea, UnknownZone
from .geometry import LatLng, Shape


@dataclass(frozen=True)
class ZoneParams:
    """Zone-level fare parameters handed to the fare calculator."""

    surge_multiplier: Decimal = Decimal("1")
    base_fare: Optional[Decimal] = None
    per_km_rate: Optional[Decimal] = None


@dataclass(frozen=True)
class Zone:
    id: str
    name: str
    shape: Shape
    is_active: bool = True
    base_fare: Optional[Decimal] = None
    per_km_rate: Optional[Decimal] = None
    surge_multiplier: Decimal = Decimal("1")
    area_m2: float = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.surge_multiplier <= 0:
            raise InvalidInput(
                f"Zone {self.id}: surge multiplier must be > 0"
            )
        for name in ("base_fare", "per_km_rate"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise InvalidInput(f"Zone {self.id}: {name} must be >= 0")
        object.__setattr__(self, "area_m2", self.shape.area_m2())

    @property
    def params(self) -> ZoneParams:
        return ZoneParams(
            surge_multiplier=self.surge_multiplier,
            base_fare=self.base_fare,
            per_km_rate=self.per_km_rate,
        )

    def contains(self, point: LatLng) -> bool:
        return self.shape.contains(point)


@dataclass(frozen=True)
class ZoneLookupResult:
    covered: bool
    zone_ids: tuple[str, ...] = ()


def _precedence(zone: Zone) -> tuple:
    return (zone.area_m2, -zone.surge_multiplier, zone.id)


class ZoneIndex:
    def __init__(self, zones: Iterable[Zone] = ()):
        self._write_lock = threading.Lock()
        self._snapshot: tuple[Zone, ...] = ()
        self.version = 0
        self.replace_all(zones)

    # ── Queries (lock-free) ───────────────────────────────────────────

    def snapshot(self) -> tuple[Zone, ...]:
        return self._snapshot

    def get(self, zone_id: str) -> Zone:
        for zone in self._snapshot:
            if zone.id == zone_id:
                return zone
        raise UnknownZone(zone_id)

    def covering(self, point: LatLng) -> list[Zone]:
        """Active zones containing *point*, applicable zone first."""
        zones = self._snapshot
        hits = [z for z in zones if z.is_active and z.contains(point)]
        hits.sort(key=_precedence)
        return hits

    def lookup(self, point: LatLng) -> ZoneLookupResult:
        hits = self.covering(point)
        return ZoneLookupResult(
            covered=bool(hits), zone_ids=tuple(z.id for z in hits)
        )

    def resolve(self, point: LatLng) -> Zone:
        """Return the applicable zone or raise ``OutOfServiceArea``."""
        hits = self.covering(point)
        if not hits:
            raise OutOfServiceArea(
                f"({point.lat:.5f}, {point.lng:.5f}) is outside every active zone"
            )
        return hits[0]

    # ── Admin mutations (atomic snapshot swap) ────────────────────────

    def replace_all(self, zones: Iterable[Zone]) -> None:
        new = tuple(sorted(zones, key=lambda z: z.id))
        ids = [z.id for z in new]
        if len(set(ids)) != len(ids):
            raise ValueError("Duplicate zone ids in snapshot")
        with self._write_lock:
            self._swap(new)

    def upsert(self, zone: Zone) -> None:
        with self._write_lock:
            rest = [z for z in self._snapshot if z.id != zone.id]
            self._swap(tuple(sorted(rest + [zone], key=lambda z: z.id)))

    def set_active(self, zone_id: str, is_active: bool) -> Zone:
        with self._write_lock:
            current = self.get(zone_id)
            updated = replace(current, is_active=is_active)
            self._swap(
                tuple(updated if z.id == zone_id else z for z in self._snapshot)
            )
            return updated

    def remove(self, zone_id: str) -> None:
        with self._write_lock:
            self.get(zone_id)
            self._swap(tuple(z for z in self._snapshot if z.id != zone_id))

    # ── Internals ─────────────────────────────────────────────────────

    def _swap(self, zones: tuple[Zone, ...]) -> None:
        self._snapshot = zones
        self.version += 1
