"""Periodic recovery sweep for payments stuck in ``processing``."""

from __future__ import annotations

import asyncio
import logging

from app.celery_app import celery_app
from app.services import lifecycle
import db

_LOGGER = logging.getLogger(__name__)


async def _sweep(username: str | None) -> dict:
    try:
        result = await lifecycle.sweep_stuck_payments(username)
    finally:
        # each asyncio.run gets a fresh loop; pooled connections must not outlive it
        await db.dispose_engine()
    return result.model_dump(mode="json", by_alias=True)


@celery_app.task(name="app.workers.sweeper.sweep_stuck", bind=True, max_retries=3)
def sweep_stuck(self, username: str | None = None):  # noqa: D401
    """Repair stuck payments (all owners unless *username* is given)."""
    try:
        summary = asyncio.run(_sweep(username))
    except Exception as exc:  # noqa: BLE001
        # Store unreachable: retry the whole sweep later
        raise self.retry(exc=exc, countdown=30)

    _LOGGER.info(
        "Stuck sweep: %d found, %d repaired",
        summary["stuckPaymentsFound"],
        sum(1 for e in summary["fixedPayments"] if e["action"] in ("marked_as_completed", "reset_for_next_execution")),
    )
    return summary
