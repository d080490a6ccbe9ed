"""
Driver stream endpoints
=======================

POST  /api/v1/drivers                       -- register a driver
GET   /api/v1/drivers/eligible              -- ranked eligible drivers
GET   /api/v1/drivers/{id}                  -- current driver record
PATCH /api/v1/drivers/{id}/status           -- online / offline / suspend
PATCH /api/v1/drivers/{id}/location         -- location ping
PATCH /api/v1/drivers/{id}/verification     -- admin verification flag
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from ride_engine.api.dependencies import get_engine
from ride_engine.api.middleware import limiter
from ride_engine.api.schemas import (
    CandidateOut,
    DriverCreate,
    DriverLocationUpdate,
    DriverOut,
    DriverStatusUpdate,
    DriverVerificationUpdate,
)
from ride_engine.domain.geometry import LatLng
from ride_engine.engine import Engine

router = APIRouter(prefix="/drivers", tags=["drivers"])


@router.post("", status_code=201, response_model=DriverOut, summary="Register a driver")
@limiter.limit("30/minute")
async def register_driver(
    request: Request,
    body: DriverCreate,
    engine: Engine = Depends(get_engine),
):
    driver = body.to_domain()
    await engine.availability.register(driver)
    return DriverOut.from_domain(driver)


@router.get(
    "/eligible",
    response_model=list[CandidateOut],
    summary="Eligible drivers, nearest and best rated first",
)
@limiter.limit("300/minute")
async def list_eligible(
    request: Request,
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lng: Optional[float] = Query(None, ge=-180, le=180),
    radius_km: Optional[float] = Query(None, ge=0),
    engine: Engine = Depends(get_engine),
):
    pickup = LatLng(lat, lng) if lat is not None and lng is not None else None
    candidates = await engine.availability.list_eligible(pickup, radius_km)
    return [CandidateOut.from_domain(c) for c in candidates]


@router.get("/{driver_id}", response_model=DriverOut, summary="Get a driver")
@limiter.limit("300/minute")
async def get_driver(
    request: Request,
    driver_id: str,
    engine: Engine = Depends(get_engine),
):
    return DriverOut.from_domain(await engine.availability.get(driver_id))


@router.patch("/{driver_id}/status", response_model=DriverOut, summary="Change status")
@limiter.limit("100/minute")
async def set_status(
    request: Request,
    driver_id: str,
    body: DriverStatusUpdate,
    engine: Engine = Depends(get_engine),
):
    driver = await engine.availability.set_status(
        driver_id, body.status, by_admin=body.by_admin
    )
    return DriverOut.from_domain(driver)


@router.patch(
    "/{driver_id}/location", response_model=DriverOut, summary="Report a location"
)
@limiter.limit("600/minute")
async def update_location(
    request: Request,
    driver_id: str,
    body: DriverLocationUpdate,
    engine: Engine = Depends(get_engine),
):
    driver = await engine.availability.update_location(
        driver_id, body.to_domain(), at=body.at
    )
    return DriverOut.from_domain(driver)


@router.patch(
    "/{driver_id}/verification",
    response_model=DriverOut,
    summary="Set the verification flag",
)
@limiter.limit("30/minute")
async def set_verification(
    request: Request,
    driver_id: str,
    body: DriverVerificationUpdate,
    engine: Engine = Depends(get_engine),
):
    driver = await engine.availability.set_verified(driver_id, body.is_verified)
    return DriverOut.from_domain(driver)
