"""Soft leases: a holder column plus a start timestamp that self-expire."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import ColumnElement, or_
from sqlalchemy.orm import InstrumentedAttribute

from db import ScheduledPayment


@dataclass(frozen=True)
class Lease:
    name: str
    holder: InstrumentedAttribute
    started: InstrumentedAttribute

    def is_free(self, now: datetime, window: timedelta) -> ColumnElement[bool]:
        """SQL predicate: nobody holds the lease, or the holder went stale."""
        return or_(self.holder.is_(None), self.started < now - window)

    def holder_of(self, schedule: ScheduledPayment) -> str | None:
        return getattr(schedule, self.holder.key)

    def is_fresh(self, schedule: ScheduledPayment, now: datetime, window: timedelta) -> bool:
        if self.holder_of(schedule) is None:
            return False
        started = getattr(schedule, self.started.key)
        return started is not None and started >= now - window

    def acquire(self, executor_id: str, now: datetime) -> dict:
        return {self.holder.key: executor_id, self.started.key: now}

    def release(self) -> dict:
        return {self.holder.key: None, self.started.key: None}


CLAIM = Lease("claim", ScheduledPayment.claimed_by, ScheduledPayment.claimed_at)
PROCESSING = Lease("processing", ScheduledPayment.processing_by, ScheduledPayment.processing_started)


def released_leases() -> dict:
    return {**CLAIM.release(), **PROCESSING.release()}
