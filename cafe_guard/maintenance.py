"""Periodic maintenance sweep.

Runs as an asyncio task owned by the lifespan and cancelled on shutdown.
Expiry, blocking and grace periods are all evaluated lazily at check time,
so this task only bounds memory; it never changes a decision.
"""

from __future__ import annotations

import asyncio

from cafe_guard.context import SecurityContext
from cafe_guard.utils.logger import get_logger

logger = get_logger(__name__)


async def run_periodic_sweep(security: SecurityContext, interval_seconds: float) -> None:
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            removed = security.sweep()
        except Exception as exc:  # noqa: BLE001
            logger.error("Maintenance sweep failed", error=str(exc), error_type=type(exc).__name__)
            continue
        if any(removed.values()):
            logger.info("Maintenance sweep", **removed)
        else:
            logger.debug("Maintenance sweep: nothing to remove")
