"""
Admin / observability endpoints
===============================

GET /api/v1/admin/health -- health check with the live snapshot versions
"""

from fastapi import APIRouter, Depends

from ride_engine.api.dependencies import get_engine
from ride_engine.api.schemas import HealthResponse
from ride_engine.engine import Engine

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health(engine: Engine = Depends(get_engine)):
    return HealthResponse(
        zones_version=engine.zones.version,
        fare_rules_version=engine.fare_rules.version,
    )
