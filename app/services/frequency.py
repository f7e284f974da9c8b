"""Frequency step function for recurring payments.

Calendar steps clamp to the last valid day of the target month, so
2024-01-31 + 1 month is 2024-02-29 and 2024-02-29 + 1 year is 2025-02-28.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from dateutil.relativedelta import relativedelta

Frequency = Literal["once", "daily", "weekly", "monthly", "yearly"]

_STEPS = {
    "daily": relativedelta(days=1),
    "weekly": relativedelta(days=7),
    "monthly": relativedelta(months=1),
    "yearly": relativedelta(years=1),
}

# "once" and anything unrecognised land a century out: effectively never.
NEVER = relativedelta(years=100)


def calculate_next_execution(last_execution: datetime, frequency: str | None) -> datetime:
    return last_execution + _STEPS.get(frequency or "once", NEVER)


def beyond_horizon(next_execution: datetime, now: datetime, years: int) -> bool:
    """True when *next_execution* is so far out the schedule should just complete."""
    return next_execution > now + relativedelta(years=years)
