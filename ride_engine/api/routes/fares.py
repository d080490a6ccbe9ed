"""
Fare endpoints
==============

POST   /api/v1/fares/quote                -- price a trip at its pickup zone
POST   /api/v1/fares/cancellation-charge  -- fee owed for cancelling in a status
GET    /api/v1/admin/fare-rules           -- list the live rule book
PUT    /api/v1/admin/fare-rules           -- create or replace one rule
DELETE /api/v1/admin/fare-rules/{booking_type}/{vehicle_type}
                                          -- remove the rule for a pair

Admin writes are committed before this process's rule book is updated;
other processes pick them up on their next config sync.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from ride_engine.api.dependencies import get_db, get_engine
from ride_engine.api.middleware import limiter
from ride_engine.api.schemas import (
    CancellationChargeRequest,
    CancellationChargeResponse,
    FareBreakdownOut,
    FareRuleSchema,
    QuoteResponse,
    TripIn,
)
from ride_engine.domain.enums import BookingType, VehicleType
from ride_engine.engine import Engine
from ride_engine.infrastructure.repositories import FareRuleRepository

router = APIRouter(tags=["fares"])


@router.post("/fares/quote", response_model=QuoteResponse, summary="Quote a trip")
@limiter.limit("300/minute")
async def quote_fare(
    request: Request,
    body: TripIn,
    engine: Engine = Depends(get_engine),
):
    zone_id, breakdown = engine.dispatcher.quote(body.to_domain())
    return QuoteResponse(zone_id=zone_id, fare=FareBreakdownOut.model_validate(breakdown))


@router.post(
    "/fares/cancellation-charge",
    response_model=CancellationChargeResponse,
    summary="Cancellation fee for a ride in the given status",
)
@limiter.limit("100/minute")
async def cancellation_charge(
    request: Request,
    body: CancellationChargeRequest,
    engine: Engine = Depends(get_engine),
):
    rule = engine.fare_rules.get(body.booking_type, body.vehicle_type)
    return CancellationChargeResponse(
        amount=engine.calculator.cancellation_charge(rule, body.ride_status)
    )


@router.get(
    "/admin/fare-rules", response_model=list[FareRuleSchema], summary="List fare rules"
)
@limiter.limit("100/minute")
async def list_fare_rules(request: Request, engine: Engine = Depends(get_engine)):
    rules = sorted(
        engine.fare_rules.rules(),
        key=lambda r: (r.booking_type.value, r.vehicle_type.value),
    )
    return [FareRuleSchema.model_validate(r) for r in rules]


@router.put(
    "/admin/fare-rules", response_model=FareRuleSchema, summary="Upsert a fare rule"
)
@limiter.limit("30/minute")
async def upsert_fare_rule(
    request: Request,
    body: FareRuleSchema,
    db: AsyncSession = Depends(get_db),
    engine: Engine = Depends(get_engine),
):
    rule = body.to_domain()
    await FareRuleRepository(db).upsert(rule)
    await db.commit()
    engine.fare_rules.upsert(rule)
    return FareRuleSchema.model_validate(rule)


@router.delete(
    "/admin/fare-rules/{booking_type}/{vehicle_type}",
    status_code=204,
    summary="Delete a fare rule",
)
@limiter.limit("30/minute")
async def delete_fare_rule(
    request: Request,
    booking_type: BookingType,
    vehicle_type: VehicleType,
    db: AsyncSession = Depends(get_db),
    engine: Engine = Depends(get_engine),
):
    await FareRuleRepository(db).delete(booking_type, vehicle_type)
    await db.commit()
    engine.fare_rules.remove(booking_type, vehicle_type)
    return Response(status_code=204)
