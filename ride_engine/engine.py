"""
Engine assembly.

Wires the zone index, fare rule book, calculator, driver availability index
and dispatch filter from ``Settings``.  The API and the background workers
share one ``Engine`` instance per process.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from ride_engine.config import Settings, settings as default_settings
from ride_engine.domain.availability import DriverAvailabilityIndex, DriverRepository
from ride_engine.domain.dispatch import DispatchEligibilityFilter
from ride_engine.domain.pricing import FareCalculator, FareRuleBook, PricingPolicy
from ride_engine.domain.zones import ZoneIndex


@dataclass
class Engine:
    zones: ZoneIndex
    fare_rules: FareRuleBook
    calculator: FareCalculator
    availability: DriverAvailabilityIndex
    dispatcher: DispatchEligibilityFilter


def _default_repository(cfg: Settings) -> DriverRepository:
    if cfg.driver_store == "sql":
        from ride_engine.infrastructure.database import async_session_factory
        from ride_engine.infrastructure.repositories import SqlDriverRepository

        return SqlDriverRepository(async_session_factory)
    if cfg.driver_store == "memory":
        from ride_engine.infrastructure.memory_roster import InMemoryDriverRepository

        return InMemoryDriverRepository(h3_resolution=cfg.h3_resolution)
    raise ValueError(f"Unknown driver_store {cfg.driver_store!r}")


def build_engine(
    cfg: Optional[Settings] = None,
    *,
    repository: Optional[DriverRepository] = None,
    zones: Optional[ZoneIndex] = None,
    fare_rules: Optional[FareRuleBook] = None,
) -> Engine:
    cfg = cfg or default_settings
    zones = zones or ZoneIndex()
    fare_rules = fare_rules or FareRuleBook()
    calculator = FareCalculator(PricingPolicy.from_settings(cfg))
    availability = DriverAvailabilityIndex(
        repository or _default_repository(cfg),
        stale_after=timedelta(seconds=cfg.location_stale_after_seconds),
    )
    dispatcher = DispatchEligibilityFilter(
        zones,
        fare_rules,
        calculator,
        availability,
        search_radius_km=cfg.dispatch_radius_km,
        max_claim_attempts=cfg.max_claim_attempts,
    )
    return Engine(
        zones=zones,
        fare_rules=fare_rules,
        calculator=calculator,
        availability=availability,
        dispatcher=dispatcher,
    )
