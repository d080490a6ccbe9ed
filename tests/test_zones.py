"""Unit tests for the service-zone index."""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest

from ride_engine.domain.errors import InvalidInput, OutOfServiceArea, UnknownZone
from ride_engine.domain.geometry import Circle, LatLng, Polygon
from ride_engine.domain.zones import Zone, ZoneIndex
from tests.conftest import FAR_AWAY, HOSUR, NEAR_HOSUR

BUS_STAND = Polygon((
    LatLng(12.1240, 77.8280),
    LatLng(12.1240, 77.8340),
    LatLng(12.1295, 77.8340),
    LatLng(12.1295, 77.8280),
))


def city(**overrides) -> Zone:
    return Zone(id="city", name="Hosur Central", shape=Circle(HOSUR, 5000), **overrides)


class TestLookup:
    def test_point_inside_circle_is_covered(self):
        index = ZoneIndex([city()])
        result = index.lookup(NEAR_HOSUR)
        assert result.covered
        assert result.zone_ids == ("city",)

    def test_point_outside_every_zone(self):
        index = ZoneIndex([city()])
        assert not index.lookup(FAR_AWAY).covered
        with pytest.raises(OutOfServiceArea):
            index.resolve(FAR_AWAY)

    def test_empty_index_covers_nothing(self):
        assert ZoneIndex().lookup(HOSUR).zone_ids == ()

    def test_inactive_zone_is_ignored(self):
        index = ZoneIndex([city(is_active=False)])
        assert not index.lookup(NEAR_HOSUR).covered

    def test_smallest_zone_wins_overlap(self):
        index = ZoneIndex([
            city(),
            Zone(id="bus-stand", name="Bus Stand", shape=BUS_STAND),
        ])
        assert index.resolve(NEAR_HOSUR).id == "bus-stand"
        assert index.lookup(NEAR_HOSUR).zone_ids == ("bus-stand", "city")

    def test_equal_area_prefers_higher_surge_then_id(self):
        index = ZoneIndex([
            Zone(id="b", name="B", shape=Circle(HOSUR, 1000)),
            Zone(id="a", name="A", shape=Circle(HOSUR, 1000)),
            Zone(id="c", name="C", shape=Circle(HOSUR, 1000), surge_multiplier=Decimal("1.5")),
        ])
        assert index.lookup(HOSUR).zone_ids == ("c", "a", "b")

    def test_repeated_lookups_are_identical(self):
        index = ZoneIndex([city(), Zone(id="bus-stand", name="Bus Stand", shape=BUS_STAND)])
        first = index.lookup(NEAR_HOSUR)
        assert all(index.lookup(NEAR_HOSUR) == first for _ in range(50))


class TestZoneValidation:
    def test_non_positive_surge_rejected(self):
        with pytest.raises(InvalidInput):
            city(surge_multiplier=Decimal("0"))

    def test_negative_base_fare_rejected(self):
        with pytest.raises(InvalidInput):
            city(base_fare=Decimal("-1"))

    def test_params_carry_zone_fares(self):
        params = city(base_fare=Decimal("50"), per_km_rate=Decimal("12")).params
        assert params.base_fare == Decimal("50")
        assert params.per_km_rate == Decimal("12")
        assert params.surge_multiplier == Decimal("1")


class TestAdminMutations:
    def test_upsert_replaces_by_id(self):
        index = ZoneIndex([city()])
        index.upsert(city(surge_multiplier=Decimal("2")))
        assert len(index.snapshot()) == 1
        assert index.get("city").surge_multiplier == Decimal("2")

    def test_set_active_toggles_coverage(self):
        index = ZoneIndex([city()])
        index.set_active("city", False)
        assert not index.lookup(NEAR_HOSUR).covered
        index.set_active("city", True)
        assert index.lookup(NEAR_HOSUR).covered

    def test_remove(self):
        index = ZoneIndex([city()])
        index.remove("city")
        assert index.snapshot() == ()

    def test_unknown_zone(self):
        index = ZoneIndex()
        with pytest.raises(UnknownZone):
            index.set_active("nope", True)
        with pytest.raises(UnknownZone):
            index.remove("nope")

    def test_duplicate_ids_rejected(self):
        with pytest.raises(ValueError):
            ZoneIndex([city(), city()])

    def test_version_increments_on_every_write(self):
        index = ZoneIndex()
        start = index.version
        index.upsert(city())
        index.set_active("city", False)
        index.remove("city")
        assert index.version == start + 3

    def test_readers_never_see_partial_updates(self):
        """Lookups racing with toggles see either the old or the new snapshot."""
        index = ZoneIndex([city(), Zone(id="bus-stand", name="Bus Stand", shape=BUS_STAND)])

        def toggle():
            for i in range(200):
                index.set_active("bus-stand", i % 2 == 0)

        def read():
            return {index.lookup(NEAR_HOSUR).zone_ids for _ in range(200)}

        with ThreadPoolExecutor(max_workers=4) as pool:
            writer = pool.submit(toggle)
            readers = [pool.submit(read) for _ in range(3)]
            writer.result()
            seen = set().union(*(r.result() for r in readers))

        assert seen <= {("city",), ("bus-stand", "city")}
