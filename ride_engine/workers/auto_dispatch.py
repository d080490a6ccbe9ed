"""
Auto-Dispatch Worker
====================

Runs every ``AUTO_DISPATCH_INTERVAL_SECONDS`` (default 15 s).

Concurrency safety
------------------
* **Redis distributed lock** ensures only one API process works the
  ``requested`` backlog per cycle.
* The driver claim itself is atomic in the roster, so even a second
  dispatcher (manual assign, another cycle after a lock expiry) can never
  give one driver two rides.

Algorithm per cycle
-------------------
1. Fetch ``requested`` rides that are due now, or scheduled to start
   within ``SCHEDULED_DISPATCH_LEAD_MINUTES``.
2. Run the dispatch filter on each with ``auto_assign``.
3. On success mark the ride ``accepted`` with the driver and the quoted
   fare and commit; otherwise leave it for the next cycle.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from ride_engine.config import settings
from ride_engine.domain.enums import DispatchStatus
from ride_engine.domain.errors import EngineError
from ride_engine.engine import Engine
from ride_engine.infrastructure.database import async_session_factory
from ride_engine.infrastructure.locks import DistributedLock
from ride_engine.infrastructure.redis_client import get_redis
from ride_engine.infrastructure.repositories import RideRepository, trip_from_ride

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_auto_dispatch_loop(engine: Engine) -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop(engine))
    logger.info(
        "Auto-dispatch worker started (interval=%ds)",
        settings.auto_dispatch_interval_seconds,
    )


async def stop_auto_dispatch_loop() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Auto-dispatch worker stopped")


async def run_dispatch_cycle(
    engine: Engine,
    *,
    redis=None,
    session_factory=async_session_factory,
    now: datetime | None = None,
) -> int:
    """Execute one dispatch cycle.  Returns the number of rides assigned."""
    redis = redis or await get_redis()
    lock = DistributedLock(
        redis, "auto_dispatch", ttl_seconds=settings.dispatch_lock_ttl_seconds
    )

    if not await lock.acquire():
        logger.debug("Lock held by another worker - skipping cycle")
        return 0

    now = now or datetime.now(timezone.utc)
    lead = timedelta(minutes=settings.scheduled_dispatch_lead_minutes)
    assigned = 0
    try:
        async with session_factory() as session:
            rides = RideRepository(session)
            for ride in await rides.get_dispatchable(now, lead):
                try:
                    result = await engine.dispatcher.dispatch(
                        trip_from_ride(ride), ride_id=ride.id, auto_assign=True
                    )
                except EngineError as exc:
                    logger.warning("Ride %s not dispatchable: %s", ride.id, exc)
                    continue

                if result.status != DispatchStatus.OK:
                    logger.info("Ride %s: %s, retrying next cycle", ride.id, result.status.value)
                    continue

                fare = result.quote.total if result.quote else None
                try:
                    await rides.mark_assigned(ride, result.assigned_driver_id, fare)
                    await session.commit()
                except Exception:
                    await session.rollback()
                    await engine.availability.repository.release(
                        result.assigned_driver_id, ride.id
                    )
                    raise
                assigned += 1

        if assigned:
            logger.info("Dispatch cycle: %d rides assigned", assigned)
    finally:
        await lock.release()

    return assigned


# ── Internals ─────────────────────────────────────────────────────────


async def _loop(engine: Engine) -> None:
    """Periodic loop: run a dispatch cycle then sleep."""
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_dispatch_cycle(engine)
        except Exception:
            logger.exception("Unhandled error in dispatch cycle")
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.auto_dispatch_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass
