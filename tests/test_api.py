"""
Integration tests for the REST API endpoints.

Rides live in a file-backed SQLite database; the zone and fare-rule
repositories are swapped for in-memory stand-ins because their tables use
PostGIS columns.  The engine is built around an in-memory driver roster.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import OperationalError

from ride_engine.domain.enums import BookingType, RideStatus, VehicleType
from ride_engine.domain.errors import NoFareConfigured, UnknownZone
from ride_engine.domain.geometry import Circle
from ride_engine.domain.pricing import FareRule, FareRuleBook
from ride_engine.domain.zones import Zone, ZoneIndex
from ride_engine.engine import build_engine
from ride_engine.infrastructure.memory_roster import InMemoryDriverRepository
from ride_engine.infrastructure.models import RideModel
from ride_engine.infrastructure.repositories import RideRepository
from tests.conftest import HOSUR, make_driver, sedan_metered_rule

NOON = "2026-03-10T12:00:00+05:30"


class _TestZoneRepository:
    """Mirrors ``ZoneRepository`` without the PostGIS footprint column."""

    rows: dict[str, Zone] = {}

    def __init__(self, session):
        self.session = session

    async def list_all(self) -> list[Zone]:
        return list(self.rows.values())

    async def save(self, zone: Zone) -> Zone:
        self.rows[zone.id] = zone
        return zone

    async def set_active(self, zone_id: str, is_active: bool) -> None:
        if zone_id not in self.rows:
            raise UnknownZone(zone_id)

    async def delete(self, zone_id: str) -> None:
        if self.rows.pop(zone_id, None) is None:
            raise UnknownZone(zone_id)


class _TestFareRuleRepository:
    rows: dict = {}

    def __init__(self, session):
        self.session = session

    async def list_active(self) -> list[FareRule]:
        return list(self.rows.values())

    async def upsert(self, rule: FareRule) -> FareRule:
        self.rows[rule.key] = rule
        return rule

    async def delete(self, booking_type: BookingType, vehicle_type: VehicleType) -> None:
        if self.rows.pop((booking_type, vehicle_type), None) is None:
            raise NoFareConfigured(booking_type, vehicle_type)


# ── Fixture ───────────────────────────────────────────────────────────


@pytest.fixture
def app(session_factory):
    """App with one Hosur zone, one sedan rule, one driver."""
    city = Zone(id="hosur-central", name="Hosur Central", shape=Circle(HOSUR, 5000))
    rule = sedan_metered_rule()
    _TestZoneRepository.rows = {city.id: city}
    _TestFareRuleRepository.rows = {rule.key: rule}

    engine = build_engine(
        repository=InMemoryDriverRepository([make_driver("d1", location_updated_at=None)]),
        zones=ZoneIndex([city]),
        fare_rules=FareRuleBook([rule]),
    )

    with (
        patch(
            "ride_engine.workers.config_sync.start_config_sync_loop",
            new_callable=AsyncMock,
        ),
        patch(
            "ride_engine.workers.config_sync.stop_config_sync_loop",
            new_callable=AsyncMock,
        ),
        patch(
            "ride_engine.workers.auto_dispatch.start_auto_dispatch_loop",
            new_callable=AsyncMock,
        ),
        patch(
            "ride_engine.workers.auto_dispatch.stop_auto_dispatch_loop",
            new_callable=AsyncMock,
        ),
        patch("ride_engine.api.app.close_redis", new_callable=AsyncMock),
        patch("ride_engine.api.routes.zones.ZoneRepository", _TestZoneRepository),
        patch("ride_engine.api.routes.fares.FareRuleRepository", _TestFareRuleRepository),
    ):
        # DB session dependency
        async def _test_db():
            async with session_factory() as session:
                try:
                    yield session
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise

        from ride_engine.api.app import create_app
        from ride_engine.api.dependencies import get_db
        from ride_engine.api.middleware import limiter

        limiter.reset()
        application = create_app(engine)
        application.dependency_overrides[get_db] = _test_db
        yield application


@pytest_asyncio.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def fail_commits(app, session_factory) -> None:
    """Route the app to sessions whose commit always fails."""
    from ride_engine.api.dependencies import get_db

    async def _broken_db():
        async with session_factory() as session:
            lost = OperationalError("COMMIT", None, Exception("connection lost"))
            session.commit = AsyncMock(side_effect=lost)
            yield session

    app.dependency_overrides[get_db] = _broken_db


def trip(**overrides) -> dict:
    body = {
        "pickup": {"lat": 12.1290, "lng": 77.8310},
        "dropoff": {"lat": 12.1600, "lng": 77.8500},
        "booking_type": "regular",
        "vehicle_type": "sedan",
        "requested_at": NOON,
        "distance_km": 5.0,
        "duration_min": 15.0,
    }
    body.update(overrides)
    return body


async def add_ride(session_factory, ride_id: str) -> None:
    async with session_factory() as session:
        session.add(RideModel(
            id=ride_id,
            pickup_lat=12.1290,
            pickup_lng=77.8310,
            dropoff_lat=12.1600,
            dropoff_lng=77.8500,
            booking_type=BookingType.REGULAR,
            vehicle_type=VehicleType.SEDAN,
            distance_km=5.0,
            duration_min=15.0,
        ))
        await session.commit()


async def load_ride(session_factory, ride_id: str) -> Optional[RideModel]:
    async with session_factory() as session:
        return await RideRepository(session).get_by_id(ride_id)


# ── Admin / zones ─────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/api/v1/admin/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["zones_version"] >= 1
    assert data["fare_rules_version"] >= 1


@pytest.mark.asyncio
async def test_zone_lookup(client: AsyncClient):
    inside = await client.post("/api/v1/zones/lookup", json={"lat": 12.1290, "lng": 77.8310})
    outside = await client.post("/api/v1/zones/lookup", json={"lat": 12.18, "lng": 77.90})

    assert inside.json() == {"covered": True, "zone_ids": ["hosur-central"]}
    assert outside.json() == {"covered": False, "zone_ids": []}


@pytest.mark.asyncio
async def test_lookup_rejects_out_of_range_point(client: AsyncClient):
    resp = await client.post("/api/v1/zones/lookup", json={"lat": 91, "lng": 0})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_create_polygon_zone_takes_precedence(client: AsyncClient):
    resp = await client.post(
        "/api/v1/admin/zones",
        json={
            "id": "bus-stand",
            "name": "Bus Stand",
            "shape": {
                "type": "polygon",
                "vertices": [
                    {"lat": 12.1240, "lng": 77.8280},
                    {"lat": 12.1240, "lng": 77.8340},
                    {"lat": 12.1295, "lng": 77.8340},
                    {"lat": 12.1295, "lng": 77.8280},
                ],
            },
            "surge_multiplier": "1.2",
        },
    )
    assert resp.status_code == 201
    assert resp.json()["area_m2"] > 0
    assert "bus-stand" in _TestZoneRepository.rows

    lookup = await client.post("/api/v1/zones/lookup", json={"lat": 12.1266, "lng": 77.8308})
    assert lookup.json()["zone_ids"] == ["bus-stand", "hosur-central"]


@pytest.mark.asyncio
async def test_create_zone_rejects_degenerate_polygon(client: AsyncClient):
    resp = await client.post(
        "/api/v1/admin/zones",
        json={
            "id": "line",
            "name": "Line",
            "shape": {
                "type": "polygon",
                "vertices": [{"lat": 12.0, "lng": 77.0}, {"lat": 12.1, "lng": 77.1}],
            },
        },
    )
    assert resp.status_code == 422
    assert resp.json()["error"] == "InvalidGeometry"
    assert "line" not in _TestZoneRepository.rows


@pytest.mark.asyncio
async def test_disable_and_delete_zone(client: AsyncClient):
    resp = await client.patch(
        "/api/v1/admin/zones/hosur-central/active", json={"is_active": False}
    )
    assert resp.status_code == 200
    assert resp.json()["is_active"] is False

    lookup = await client.post("/api/v1/zones/lookup", json={"lat": 12.1290, "lng": 77.8310})
    assert lookup.json()["covered"] is False

    resp = await client.delete("/api/v1/admin/zones/hosur-central")
    assert resp.status_code == 204
    assert (await client.get("/api/v1/admin/zones")).json() == []


@pytest.mark.asyncio
async def test_delete_unknown_zone_returns_404(client: AsyncClient):
    resp = await client.delete("/api/v1/admin/zones/nowhere")
    assert resp.status_code == 404
    assert resp.json()["error"] == "UnknownZone"


@pytest.mark.asyncio
async def test_zone_kept_in_memory_only_after_commit(
    app, client: AsyncClient, session_factory
):
    fail_commits(app, session_factory)
    with pytest.raises(OperationalError):
        await client.post(
            "/api/v1/admin/zones",
            json={
                "id": "airport",
                "name": "Airport",
                "shape": {
                    "type": "circle",
                    "center": {"lat": 12.20, "lng": 77.90},
                    "radius_m": 2000,
                },
            },
        )
    with pytest.raises(OperationalError):
        await client.delete("/api/v1/admin/zones/hosur-central")

    zones = (await client.get("/api/v1/admin/zones")).json()
    assert [z["id"] for z in zones] == ["hosur-central"]


# ── Fares ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_quote(client: AsyncClient):
    resp = await client.post("/api/v1/fares/quote", json=trip())
    assert resp.status_code == 200
    data = resp.json()
    assert data["zone_id"] == "hosur-central"
    assert Decimal(data["fare"]["total"]) == Decimal("195")
    assert data["fare"]["pricing_model"] == "metered"


@pytest.mark.asyncio
async def test_quote_without_rule_returns_404(client: AsyncClient):
    resp = await client.post("/api/v1/fares/quote", json=trip(vehicle_type="suv"))
    assert resp.status_code == 404
    assert resp.json()["error"] == "NoFareConfigured"


@pytest.mark.asyncio
async def test_quote_outside_service_area_returns_422(client: AsyncClient):
    resp = await client.post(
        "/api/v1/fares/quote", json=trip(pickup={"lat": 12.18, "lng": 77.90})
    )
    assert resp.status_code == 422
    assert resp.json()["error"] == "OutOfServiceArea"


@pytest.mark.asyncio
async def test_quote_negative_distance_returns_422(client: AsyncClient):
    resp = await client.post("/api/v1/fares/quote", json=trip(distance_km=-1))
    assert resp.status_code == 422
    assert resp.json()["error"] == "InvalidInput"


@pytest.mark.asyncio
async def test_cancellation_charge(client: AsyncClient):
    body = {"booking_type": "regular", "vehicle_type": "sedan"}
    early = await client.post(
        "/api/v1/fares/cancellation-charge", json={**body, "ride_status": "requested"}
    )
    late = await client.post(
        "/api/v1/fares/cancellation-charge", json={**body, "ride_status": "driver_arrived"}
    )
    assert Decimal(early.json()["amount"]) == Decimal("0")
    assert Decimal(late.json()["amount"]) == Decimal("35")


@pytest.mark.asyncio
async def test_upsert_fare_rule_changes_quote(client: AsyncClient):
    resp = await client.put(
        "/api/v1/admin/fare-rules",
        json={
            "booking_type": "regular",
            "vehicle_type": "suv",
            "pricing_model": "metered",
            "metered": {
                "base_fare": "100",
                "per_km_rate": "20",
                "per_minute_rate": "3",
                "minimum_fare": "150",
            },
            "platform_fee": {"kind": "fixed", "amount": "25"},
        },
    )
    assert resp.status_code == 200
    assert len(_TestFareRuleRepository.rows) == 2

    quote = await client.post("/api/v1/fares/quote", json=trip(vehicle_type="suv"))
    # 100 + 5 * 20 + 15 * 3 + 25
    assert Decimal(quote.json()["fare"]["total"]) == Decimal("270")

    rules = (await client.get("/api/v1/admin/fare-rules")).json()
    assert [r["vehicle_type"] for r in rules] == ["sedan", "suv"]


@pytest.mark.asyncio
async def test_upsert_rejects_rule_without_rates(client: AsyncClient):
    resp = await client.put(
        "/api/v1/admin/fare-rules",
        json={"booking_type": "rental", "vehicle_type": "suv", "pricing_model": "hourly"},
    )
    assert resp.status_code == 422
    assert resp.json()["error"] == "InvalidFareRule"


@pytest.mark.asyncio
async def test_delete_fare_rule(client: AsyncClient):
    resp = await client.delete("/api/v1/admin/fare-rules/regular/sedan")
    assert resp.status_code == 204
    assert _TestFareRuleRepository.rows == {}

    quote = await client.post("/api/v1/fares/quote", json=trip())
    assert quote.status_code == 404
    assert (await client.get("/api/v1/admin/fare-rules")).json() == []

    again = await client.delete("/api/v1/admin/fare-rules/regular/sedan")
    assert again.status_code == 404
    assert again.json()["error"] == "NoFareConfigured"


@pytest.mark.asyncio
async def test_fare_rule_kept_in_memory_only_after_commit(
    app, client: AsyncClient, session_factory
):
    fail_commits(app, session_factory)
    with pytest.raises(OperationalError):
        await client.put(
            "/api/v1/admin/fare-rules",
            json={
                "booking_type": "regular",
                "vehicle_type": "suv",
                "pricing_model": "metered",
                "metered": {
                    "base_fare": "100",
                    "per_km_rate": "20",
                    "per_minute_rate": "3",
                    "minimum_fare": "150",
                },
            },
        )
    with pytest.raises(OperationalError):
        await client.delete("/api/v1/admin/fare-rules/regular/sedan")

    rules = (await client.get("/api/v1/admin/fare-rules")).json()
    assert [r["vehicle_type"] for r in rules] == ["sedan"]
    quote = await client.post("/api/v1/fares/quote", json=trip(vehicle_type="suv"))
    assert quote.status_code == 404


# ── Dispatch ──────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_dispatch_lists_candidates(client: AsyncClient):
    resp = await client.post("/api/v1/dispatch", json={"trip": trip()})
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "OK"
    assert data["zone_id"] == "hosur-central"
    assert [c["driver"]["id"] for c in data["candidates"]] == ["d1"]
    assert data["assigned_driver_id"] is None


@pytest.mark.asyncio
async def test_dispatch_outside_area(client: AsyncClient):
    resp = await client.post(
        "/api/v1/dispatch", json={"trip": trip(pickup={"lat": 12.18, "lng": 77.90})}
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "OutOfServiceArea"
    assert resp.json()["retryable"] is False


@pytest.mark.asyncio
async def test_dispatch_without_rule_still_lists_drivers(client: AsyncClient):
    resp = await client.post("/api/v1/dispatch", json={"trip": trip(vehicle_type="suv")})
    data = resp.json()
    assert data["status"] == "OK"
    assert data["quote"] is None
    assert data["fare_error"]


@pytest.mark.asyncio
async def test_auto_assign_marks_ride(client: AsyncClient, session_factory):
    await add_ride(session_factory, "r1")

    resp = await client.post(
        "/api/v1/dispatch", json={"trip": trip(), "ride_id": "r1", "auto_assign": True}
    )
    assert resp.json()["assigned_driver_id"] == "d1"

    ride = await load_ride(session_factory, "r1")
    assert ride.status == RideStatus.ACCEPTED
    assert ride.driver_id == "d1"
    assert ride.quoted_fare == Decimal("195")

    again = await client.post(
        "/api/v1/dispatch", json={"trip": trip(), "ride_id": "r2", "auto_assign": True}
    )
    assert again.json()["status"] == "NoDriversAvailable"
    assert again.json()["retryable"] is True


@pytest.mark.asyncio
async def test_manual_assign_conflicts(client: AsyncClient):
    first = await client.post("/api/v1/dispatch/r1/assign", json={"driver_id": "d1"})
    second = await client.post("/api/v1/dispatch/r2/assign", json={"driver_id": "d1"})
    unknown = await client.post("/api/v1/dispatch/r3/assign", json={"driver_id": "ghost"})

    assert first.status_code == 200
    assert second.status_code == 409
    assert second.json()["error"] == "AlreadyAssigned"
    assert unknown.status_code == 404


@pytest.mark.asyncio
async def test_failed_save_releases_auto_assigned_driver(
    app, client: AsyncClient, session_factory
):
    await add_ride(session_factory, "r1")
    fail_commits(app, session_factory)

    with pytest.raises(OperationalError):
        await client.post(
            "/api/v1/dispatch", json={"trip": trip(), "ride_id": "r1", "auto_assign": True}
        )

    ride = await load_ride(session_factory, "r1")
    assert ride.status == RideStatus.REQUESTED
    assert ride.driver_id is None
    eligible = (await client.get("/api/v1/drivers/eligible")).json()
    assert [c["driver"]["id"] for c in eligible] == ["d1"]


@pytest.mark.asyncio
async def test_failed_save_releases_manually_assigned_driver(
    app, client: AsyncClient, session_factory
):
    fail_commits(app, session_factory)
    with pytest.raises(OperationalError):
        await client.post("/api/v1/dispatch/r1/assign", json={"driver_id": "d1"})

    eligible = (await client.get("/api/v1/drivers/eligible")).json()
    assert [c["driver"]["id"] for c in eligible] == ["d1"]


# ── Drivers ───────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_driver_stream(client: AsyncClient):
    resp = await client.post(
        "/api/v1/drivers",
        json={"id": "d2", "vehicle_type": "suv", "rating": 4.9},
    )
    assert resp.status_code == 201
    assert resp.json()["status"] == "offline"

    await client.patch("/api/v1/drivers/d2/location", json={"lat": 12.1267, "lng": 77.8309})
    await client.patch("/api/v1/drivers/d2/status", json={"status": "online"})
    eligible = await client.get(
        "/api/v1/drivers/eligible", params={"lat": 12.1266, "lng": 77.8308, "radius_km": 2}
    )
    assert [c["driver"]["id"] for c in eligible.json()] == ["d1"]

    await client.patch("/api/v1/drivers/d2/verification", json={"is_verified": True})
    eligible = await client.get(
        "/api/v1/drivers/eligible", params={"lat": 12.1266, "lng": 77.8308, "radius_km": 2}
    )
    assert [c["driver"]["id"] for c in eligible.json()] == ["d1", "d2"]

    driver = (await client.get("/api/v1/drivers/d2")).json()
    assert driver["location"] == {"lat": 12.1267, "lng": 77.8309}
    assert driver["is_verified"] is True


@pytest.mark.asyncio
async def test_only_admin_can_suspend(client: AsyncClient):
    denied = await client.patch("/api/v1/drivers/d1/status", json={"status": "suspended"})
    allowed = await client.patch(
        "/api/v1/drivers/d1/status", json={"status": "suspended", "by_admin": True}
    )
    assert denied.status_code == 409
    assert denied.json()["error"] == "InvalidStateTransition"
    assert allowed.json()["status"] == "suspended"


@pytest.mark.asyncio
async def test_unknown_driver_returns_404(client: AsyncClient):
    resp = await client.get("/api/v1/drivers/ghost")
    assert resp.status_code == 404
    assert resp.json() == {"detail": "Unknown driver ghost", "error": "UnknownDriver", "retryable": False}


@pytest.mark.asyncio
async def test_location_out_of_range_returns_422(client: AsyncClient):
    resp = await client.patch("/api/v1/drivers/d1/location", json={"lat": 95, "lng": 77.8})
    assert resp.status_code == 422


# ── Ride events ───────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_ride_lifecycle_frees_driver(client: AsyncClient, session_factory):
    await add_ride(session_factory, "r1")
    await client.post(
        "/api/v1/dispatch", json={"trip": trip(), "ride_id": "r1", "auto_assign": True}
    )

    for status in ("driver_arrived", "in_progress"):
        resp = await client.post(
            "/api/v1/rides/r1/events", json={"driver_id": "d1", "status": status}
        )
        assert resp.status_code == 200
        assert resp.json()["active_ride_ids"] == ["r1"]

    resp = await client.post(
        "/api/v1/rides/r1/events", json={"driver_id": "d1", "status": "completed"}
    )
    assert resp.json()["active_ride_ids"] == []
    assert (await load_ride(session_factory, "r1")).status == RideStatus.COMPLETED


@pytest.mark.asyncio
async def test_ride_event_invalid_transition(client: AsyncClient, session_factory):
    await add_ride(session_factory, "r1")
    await client.post("/api/v1/dispatch/r1/assign", json={"driver_id": "d1"})

    resp = await client.post(
        "/api/v1/rides/r1/events", json={"driver_id": "d1", "status": "completed"}
    )
    assert resp.status_code == 409
    assert resp.json()["error"] == "InvalidStateTransition"
    assert (await load_ride(session_factory, "r1")).status == RideStatus.ACCEPTED


@pytest.mark.asyncio
async def test_ride_event_from_other_driver(client: AsyncClient, session_factory):
    await add_ride(session_factory, "r1")
    await client.post("/api/v1/dispatch/r1/assign", json={"driver_id": "d1"})

    resp = await client.post(
        "/api/v1/rides/r1/events", json={"driver_id": "d9", "status": "cancelled"}
    )
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_ride_event_without_ride_row(client: AsyncClient):
    await client.post("/api/v1/dispatch/ext-1/assign", json={"driver_id": "d1"})
    resp = await client.post(
        "/api/v1/rides/ext-1/events", json={"driver_id": "d1", "status": "cancelled"}
    )
    assert resp.status_code == 200
    assert resp.json()["active_ride_ids"] == []
