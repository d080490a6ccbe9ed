"""
Configuration Sync Worker
=========================

Runs every ``CONFIG_REFRESH_INTERVAL_SECONDS`` (default 60 s) in every API
process.  Each process holds its own zone and fare-rule snapshots, so no
distributed lock is taken here.

A cycle loads every zone and every active fare rule from PostgreSQL,
builds the domain values, and only then swaps both snapshots.  If any row
fails validation the cycle aborts and the previous snapshots stay live.
"""

from __future__ import annotations

import asyncio
import logging

from ride_engine.config import settings
from ride_engine.engine import Engine
from ride_engine.infrastructure.database import async_session_factory
from ride_engine.infrastructure.repositories import FareRuleRepository, ZoneRepository

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_config_sync_loop(engine: Engine) -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop(engine))
    logger.info(
        "Config sync started (interval=%ds)", settings.config_refresh_interval_seconds
    )


async def stop_config_sync_loop() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Config sync stopped")


async def run_config_sync(engine: Engine, session_factory=async_session_factory) -> tuple[int, int]:
    """Reload zones and fare rules.  Returns ``(zone_count, rule_count)``."""
    async with session_factory() as session:
        zones = await ZoneRepository(session).list_all()
        rules = await FareRuleRepository(session).list_active()

    engine.zones.replace_all(zones)
    engine.fare_rules.replace_all(rules)
    logger.info(
        "Config sync: %d zones (v%d), %d fare rules (v%d)",
        len(zones),
        engine.zones.version,
        len(rules),
        engine.fare_rules.version,
    )
    return len(zones), len(rules)


# ── Internals ─────────────────────────────────────────────────────────


async def _loop(engine: Engine) -> None:
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_config_sync(engine)
        except Exception:
            logger.exception("Config sync failed; keeping previous snapshots")
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.config_refresh_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass
