"""
Async DB helpers for scheduled payments.
Uses SQLAlchemy 2.0 with asyncpg (aiosqlite for local tests); no raw SQL strings in app code.

Every lifecycle mutation goes through one UPDATE statement; the WHERE clause
is the compare-and-swap predicate and ``rowcount`` tells the caller whether
it won.
"""

from __future__ import annotations

import os
from datetime import datetime
from typing import Any, AsyncGenerator, Sequence

from sqlalchemy import ColumnElement, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import (
    create_async_engine, async_sessionmaker, AsyncSession
)

from .models import Base, ExecutionRecord, ScheduledPayment

# ──────────────────────────────────────────────────────────────────────
# 1. Lazy engine / session factory
# ──────────────────────────────────────────────────────────────────────
_engine = None
_session_maker: async_sessionmaker[AsyncSession] | None = None

def _build_url() -> str:
    url = os.getenv("DATABASE_URL") or os.getenv("DATABASE_PUBLIC_URL")
    if not url:
        raise RuntimeError("DATABASE_URL not set")
    if "+asyncpg" not in url:
        url = url.replace("postgres://", "postgresql+asyncpg://", 1).replace(
            "postgresql://", "postgresql+asyncpg://", 1
        )
    return url

def get_engine():
    global _engine
    if _engine is None:
        url = _build_url()
        if url.startswith("sqlite"):
            _engine = create_async_engine(url)
        else:
            _engine = create_async_engine(url, pool_size=5, max_overflow=5)
    return _engine

def get_session() -> AsyncGenerator[AsyncSession, None]:
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(get_engine(), expire_on_commit=False)
    async def _session_scope():
        async with _session_maker() as session:
            yield session
    return _session_scope()


# ──────────────────────────────────────────────────────────────────────
# 2. DDL helper (tests / local dev; production uses Alembic)
# ──────────────────────────────────────────────────────────────────────
async def create_all():
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# ──────────────────────────────────────────────────────────────────────
# 3. Schedule helpers
# ──────────────────────────────────────────────────────────────────────

# 3.1 Insert / read ----------------------------------------------------
async def insert_schedule(schedule: ScheduledPayment) -> str:
    async for s in get_session():
        s.add(schedule)
        await s.commit()
    return schedule.schedule_id


async def get_schedule(schedule_id: str, username: str | None = None) -> ScheduledPayment | None:
    stmt = select(ScheduledPayment).where(ScheduledPayment.schedule_id == schedule_id)
    if username is not None:
        stmt = stmt.where(ScheduledPayment.username == username)
    async for s in get_session():
        res = await s.execute(stmt)
        schedule = res.scalar_one_or_none()
    return schedule


async def list_schedules(
    username: str,
    status: str | None = None,
    wallet_address: str | None = None,
    limit: int = 100,
) -> list[ScheduledPayment]:
    stmt = select(ScheduledPayment).where(ScheduledPayment.username == username)
    if status:
        stmt = stmt.where(ScheduledPayment.status == status)
    if wallet_address:
        stmt = stmt.where(ScheduledPayment.wallet_address == wallet_address)
    stmt = stmt.order_by(ScheduledPayment.created_at.desc()).limit(limit)
    async for s in get_session():
        res = await s.execute(stmt)
        rows = list(res.scalars())
    return rows


# 3.2 Compare-and-swap -------------------------------------------------
async def compare_and_set(
    schedule_id: str,
    conditions: Sequence[ColumnElement[bool]],
    values: dict[str, Any],
) -> bool:
    """Apply *values* only if every condition holds at the same instant."""
    stmt = (
        update(ScheduledPayment)
        .where(ScheduledPayment.schedule_id == schedule_id, *conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    async for s in get_session():
        res = await s.execute(stmt)
        await s.commit()
        matched = res.rowcount == 1
    return matched


async def overwrite_schedule(schedule_id: str, values: dict[str, Any]) -> bool:
    """Unconditional update; returns False only when the row is missing."""
    return await compare_and_set(schedule_id, (), values)


# 3.3 Sweeps and polling -----------------------------------------------
async def find_stuck(cutoff: datetime, username: str | None = None) -> list[ScheduledPayment]:
    stmt = select(ScheduledPayment).where(
        ScheduledPayment.status == "processing",
        ScheduledPayment.processing_started < cutoff,
    )
    if username is not None:
        stmt = stmt.where(ScheduledPayment.username == username)
    stmt = stmt.order_by(ScheduledPayment.processing_started)
    async for s in get_session():
        res = await s.execute(stmt)
        rows = list(res.scalars())
    return rows


async def find_due(
    username: str | None,
    due_before: datetime,
    lease_cutoff: datetime,
    executed_cutoff: datetime,
    quiet_cutoff: datetime,
    limit: int,
) -> list[ScheduledPayment]:
    """Active schedules an executor may pick up.

    *quiet_cutoff* skips rows created or touched very recently so two pollers
    do not race on a schedule another executor just released.
    """
    stmt = select(ScheduledPayment).where(
        ScheduledPayment.status == "active",
        ScheduledPayment.next_execution_at <= due_before,
        or_(
            ScheduledPayment.processing_by.is_(None),
            ScheduledPayment.processing_started < lease_cutoff,
        ),
        or_(
            ScheduledPayment.last_execution_at.is_(None),
            ScheduledPayment.last_execution_at < executed_cutoff,
        ),
        ScheduledPayment.created_at < quiet_cutoff,
        ScheduledPayment.updated_at < quiet_cutoff,
    )
    if username is not None:
        stmt = stmt.where(ScheduledPayment.username == username)
    stmt = stmt.order_by(ScheduledPayment.next_execution_at).limit(limit)
    async for s in get_session():
        res = await s.execute(stmt)
        rows = list(res.scalars())
    return rows


async def count_by_status() -> dict[str, int]:
    stmt = select(ScheduledPayment.status, func.count()).group_by(ScheduledPayment.status)
    async for s in get_session():
        res = await s.execute(stmt)
        counts = {status: count for status, count in res.all()}
    return counts


async def count_active_due(end: datetime, start: datetime | None = None) -> int:
    stmt = select(func.count()).select_from(ScheduledPayment).where(
        ScheduledPayment.status == "active",
        ScheduledPayment.next_execution_at <= end,
    )
    if start is not None:
        stmt = stmt.where(ScheduledPayment.next_execution_at > start)
    async for s in get_session():
        res = await s.execute(stmt)
        total = res.scalar_one()
    return total


# ──────────────────────────────────────────────────────────────────────
# 4. Execution ledger
# ──────────────────────────────────────────────────────────────────────
async def insert_execution_record(record: dict[str, Any]) -> bool:
    """Insert-if-absent keyed on ``execution_id``; True when a row was written."""
    if get_engine().dialect.name == "postgresql":
        stmt = pg_insert(ExecutionRecord).values(**record)
    else:
        stmt = sqlite_insert(ExecutionRecord).values(**record)
    stmt = stmt.on_conflict_do_nothing(index_elements=["execution_id"])
    async for s in get_session():
        res = await s.execute(stmt)
        await s.commit()
        written = res.rowcount == 1
    return written


async def get_execution_record(execution_id: str) -> ExecutionRecord | None:
    async for s in get_session():
        record = await s.get(ExecutionRecord, execution_id)
    return record


async def list_execution_records(schedule_id: str) -> list[ExecutionRecord]:
    stmt = (
        select(ExecutionRecord)
        .where(ExecutionRecord.schedule_id == schedule_id)
        .order_by(ExecutionRecord.execution_count)
    )
    async for s in get_session():
        res = await s.execute(stmt)
        rows = list(res.scalars())
    return rows


async def dispose_engine():
    global _engine, _session_maker
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_maker = None
