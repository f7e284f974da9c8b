"""One-shot stuck-payment sweep.
Run from an external scheduler (e.g. Railway cron) every few minutes:
    python -m app.scripts.sweep_stuck_payments [--username alice]
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from config import settings
from app.services import lifecycle
import db

_LOGGER = logging.getLogger("app.scripts.sweep_stuck_payments")


async def main(username: str | None = None) -> int:
    try:
        result = await lifecycle.sweep_stuck_payments(username)
    finally:
        await db.dispose_engine()

    for entry in result.fixed_payments:
        _LOGGER.info("%s: %s → %s", entry.schedule_id, entry.action, entry.new_status or "-")
    return result.stuck_payments_found


if __name__ == "__main__":  # pragma: no cover
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--username", default=None, help="only sweep this owner's schedules")
    args = parser.parse_args()

    logging.basicConfig(level=settings.LOG_LEVEL)
    _LOGGER.info("[CRON] sweep_stuck_payments: job started")
    try:
        found = asyncio.run(main(args.username))
        _LOGGER.info("[CRON] sweep_stuck_payments: job completed (%d stuck)", found)
    except Exception:
        _LOGGER.exception("[CRON] sweep_stuck_payments: job failed")
        raise SystemExit(1)
