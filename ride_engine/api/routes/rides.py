"""
Ride lifecycle endpoint
=======================

POST /api/v1/rides/{ride_id}/events -- a ride changed status for a driver

The driver app reports ``accepted`` -> ``driver_arrived`` -> ``in_progress``
-> ``completed`` (or ``cancelled``).  When the ride is stored in the
``rides`` table the transition is validated against the ride state machine
and persisted; the driver's active-ride set is then updated, which frees
the driver again on ``completed`` / ``cancelled``.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ride_engine.api.dependencies import get_db, get_engine
from ride_engine.api.middleware import limiter
from ride_engine.api.schemas import DriverOut, RideEventRequest
from ride_engine.domain.entities import Ride
from ride_engine.engine import Engine
from ride_engine.infrastructure.repositories import RideRepository

router = APIRouter(prefix="/rides", tags=["rides"])


@router.post(
    "/{ride_id}/events",
    response_model=DriverOut,
    summary="Apply a ride status change to its driver",
)
@limiter.limit("300/minute")
async def ride_event(
    request: Request,
    ride_id: str,
    body: RideEventRequest,
    db: AsyncSession = Depends(get_db),
    engine: Engine = Depends(get_engine),
):
    rides = RideRepository(db)
    row = await rides.get_by_id(ride_id)
    if row is not None:
        if row.driver_id and row.driver_id != body.driver_id:
            raise HTTPException(
                status_code=409,
                detail=f"Ride {ride_id} is assigned to another driver",
            )
        ride = Ride(id=row.id, status=row.status, driver_id=row.driver_id)
        ride.transition_to(body.status)
        await rides.update_status(row, ride.status)

    driver = await engine.availability.apply_ride_event(
        body.driver_id, ride_id, body.status
    )
    return DriverOut.from_domain(driver)
