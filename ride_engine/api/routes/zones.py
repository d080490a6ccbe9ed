"""
Zone endpoints
==============

POST   /api/v1/zones/lookup              -- which active zones cover a point
GET    /api/v1/admin/zones               -- list every zone in the live snapshot
POST   /api/v1/admin/zones               -- create or replace a zone
PATCH  /api/v1/admin/zones/{id}/active   -- enable / disable a zone
DELETE /api/v1/admin/zones/{id}          -- delete a zone

Admin writes are committed to PostgreSQL first and only then applied to
this process's snapshot; other processes pick them up on their next
config sync.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from ride_engine.api.dependencies import get_db, get_engine
from ride_engine.api.middleware import limiter
from ride_engine.api.schemas import (
    Point,
    ZoneActiveUpdate,
    ZoneIn,
    ZoneLookupResponse,
    ZoneOut,
)
from ride_engine.engine import Engine
from ride_engine.infrastructure.repositories import ZoneRepository

router = APIRouter(tags=["zones"])


@router.post(
    "/zones/lookup",
    response_model=ZoneLookupResponse,
    summary="Find the active zones covering a point, most specific first",
)
@limiter.limit("300/minute")
async def lookup_zone(
    request: Request,
    body: Point,
    engine: Engine = Depends(get_engine),
):
    result = engine.zones.lookup(body.to_domain())
    return ZoneLookupResponse(covered=result.covered, zone_ids=list(result.zone_ids))


@router.get("/admin/zones", response_model=list[ZoneOut], summary="List zones")
@limiter.limit("100/minute")
async def list_zones(request: Request, engine: Engine = Depends(get_engine)):
    return [ZoneOut.from_domain(z) for z in engine.zones.snapshot()]


@router.post(
    "/admin/zones",
    status_code=201,
    response_model=ZoneOut,
    summary="Create or replace a zone",
)
@limiter.limit("30/minute")
async def save_zone(
    request: Request,
    body: ZoneIn,
    db: AsyncSession = Depends(get_db),
    engine: Engine = Depends(get_engine),
):
    zone = body.to_domain()
    await ZoneRepository(db).save(zone)
    await db.commit()
    engine.zones.upsert(zone)
    return ZoneOut.from_domain(zone)


@router.patch(
    "/admin/zones/{zone_id}/active",
    response_model=ZoneOut,
    summary="Enable or disable a zone",
)
@limiter.limit("30/minute")
async def set_zone_active(
    request: Request,
    zone_id: str,
    body: ZoneActiveUpdate,
    db: AsyncSession = Depends(get_db),
    engine: Engine = Depends(get_engine),
):
    await ZoneRepository(db).set_active(zone_id, body.is_active)
    await db.commit()
    return ZoneOut.from_domain(engine.zones.set_active(zone_id, body.is_active))


@router.delete("/admin/zones/{zone_id}", status_code=204, summary="Delete a zone")
@limiter.limit("30/minute")
async def delete_zone(
    request: Request,
    zone_id: str,
    db: AsyncSession = Depends(get_db),
    engine: Engine = Depends(get_engine),
):
    await ZoneRepository(db).delete(zone_id)
    await db.commit()
    engine.zones.remove(zone_id)
    return Response(status_code=204)
