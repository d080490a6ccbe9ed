"""
Dispatch endpoints
==================

POST /api/v1/dispatch                   -- zone + quote + ranked drivers,
                                           optionally claiming one
POST /api/v1/dispatch/{ride_id}/assign  -- admin: claim a specific driver

When a ``rides`` row exists for the ride id, a successful claim also marks
it ``accepted`` with the driver (and the quoted fare, when there is one).
The assignment is committed before responding; if that fails the driver
claim is released again so the driver is not left holding a phantom ride.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ride_engine.api.dependencies import get_db, get_engine
from ride_engine.api.middleware import limiter
from ride_engine.api.schemas import (
    AssignRequest,
    AssignResponse,
    DispatchRequest,
    DispatchResponse,
)
from ride_engine.engine import Engine
from ride_engine.infrastructure.repositories import RideRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/dispatch", tags=["dispatch"])


@router.post("", response_model=DispatchResponse, summary="Dispatch a trip request")
@limiter.limit("100/minute")
async def dispatch_trip(
    request: Request,
    body: DispatchRequest,
    db: AsyncSession = Depends(get_db),
    engine: Engine = Depends(get_engine),
):
    result = await engine.dispatcher.dispatch(
        body.trip.to_domain(),
        ride_id=body.ride_id,
        auto_assign=body.auto_assign,
        radius_km=body.radius_km,
    )
    if result.assigned_driver_id:
        fare = result.quote.total if result.quote else None
        await _persist_assignment(
            db, engine, body.ride_id, result.assigned_driver_id, fare
        )
    return DispatchResponse.from_domain(result)


@router.post(
    "/{ride_id}/assign",
    response_model=AssignResponse,
    summary="Assign a specific driver to a ride",
)
@limiter.limit("30/minute")
async def assign_driver(
    request: Request,
    ride_id: str,
    body: AssignRequest,
    db: AsyncSession = Depends(get_db),
    engine: Engine = Depends(get_engine),
):
    await engine.dispatcher.assign(ride_id, body.driver_id)
    await _persist_assignment(db, engine, ride_id, body.driver_id, None)
    return AssignResponse(ride_id=ride_id, driver_id=body.driver_id)


async def _persist_assignment(
    db: AsyncSession,
    engine: Engine,
    ride_id: str,
    driver_id: str,
    fare: Optional[Decimal],
) -> None:
    """Mark the stored ride ``accepted`` and commit; undo the claim on failure."""
    try:
        rides = RideRepository(db)
        ride = await rides.get_by_id(ride_id)
        if ride is not None:
            await rides.mark_assigned(ride, driver_id, fare)
        await db.commit()
    except Exception:
        await db.rollback()
        await engine.availability.repository.release(driver_id, ride_id)
        logger.warning("Released driver %s: ride %s could not be saved", driver_id, ride_id)
        raise
