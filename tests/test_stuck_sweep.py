from datetime import datetime, timedelta, timezone

import pytest

import db
from app.services import lifecycle
from app.services.errors import PreconditionFailed

NOW = datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_stuck_one_time_payment_is_marked_completed(make_schedule):
    started = NOW - timedelta(minutes=10)
    sid = await make_schedule(status="processing", processing_by="exec-a", processing_started=started)

    result = await lifecycle.sweep_stuck_payments(now=NOW)

    assert result.stuck_payments_found == 1
    (entry,) = result.fixed_payments
    assert entry.action == "marked_as_completed"
    assert entry.new_status == "completed"
    stored = await db.get_schedule(sid)
    assert stored.status == "completed"
    assert stored.executed_count == 1
    assert stored.last_execution_at == started
    assert stored.fixed_stuck_processing is True
    assert stored.processing_by is None


@pytest.mark.asyncio
async def test_stuck_recurring_payment_moves_to_next_cycle(make_schedule):
    started = datetime(2024, 1, 10, 11, 0, tzinfo=timezone.utc)
    sid = await make_schedule(
        frequency="weekly",
        status="processing",
        processing_by="exec-a",
        processing_started=started,
        executed_count=2,
    )

    result = await lifecycle.sweep_stuck_payments(now=NOW)

    (entry,) = result.fixed_payments
    assert entry.action == "reset_for_next_execution"
    assert entry.next_execution == started + timedelta(days=7)
    stored = await db.get_schedule(sid)
    assert stored.status == "active"
    assert stored.executed_count == 3
    assert stored.next_execution_at == started + timedelta(days=7)


@pytest.mark.asyncio
async def test_recent_processing_is_left_alone(make_schedule):
    sid = await make_schedule(
        status="processing", processing_by="exec-a", processing_started=NOW - timedelta(minutes=4)
    )
    result = await lifecycle.sweep_stuck_payments(now=NOW)

    assert result.stuck_payments_found == 0
    assert (await db.get_schedule(sid)).status == "processing"


@pytest.mark.asyncio
async def test_sweep_scoped_to_owner(make_schedule):
    started = NOW - timedelta(hours=1)
    mine = await make_schedule(status="processing", processing_by="x", processing_started=started)
    theirs = await make_schedule(
        username="bob", status="processing", processing_by="x", processing_started=started
    )

    result = await lifecycle.sweep_stuck_payments("alice", now=NOW)

    assert [e.schedule_id for e in result.fixed_payments] == [mine]
    assert (await db.get_schedule(theirs)).status == "processing"


@pytest.mark.asyncio
async def test_sweep_skips_payment_completed_meanwhile(make_schedule, monkeypatch):
    started = NOW - timedelta(minutes=10)
    sid = await make_schedule(status="processing", processing_by="exec-a", processing_started=started)
    stale = await db.find_stuck(NOW - timedelta(minutes=5))

    await db.overwrite_schedule(sid, {"status": "completed", "processing_by": None, "processing_started": None})

    async def _find_stuck(cutoff, username=None):
        return stale

    monkeypatch.setattr(db, "find_stuck", _find_stuck)
    result = await lifecycle.sweep_stuck_payments(now=NOW)

    assert [e.action for e in result.fixed_payments] == ["skipped"]
    assert (await db.get_schedule(sid)).executed_count == 0


@pytest.mark.asyncio
async def test_preview_reports_minutes_stuck(make_schedule):
    sid = await make_schedule(
        status="processing", processing_by="exec-a", processing_started=NOW - timedelta(minutes=12)
    )
    preview = await lifecycle.preview_stuck(now=NOW)

    assert preview.stuck_payments_count == 1
    (payment,) = preview.stuck_payments
    assert payment.schedule_id == sid
    assert payment.minutes_stuck == 12
    assert (await db.get_schedule(sid)).status == "processing"


@pytest.mark.asyncio
async def test_sweep_completes_recurring_payment_at_its_ceiling(make_schedule):
    started = NOW - timedelta(minutes=10)
    sid = await make_schedule(
        frequency="daily",
        status="processing",
        processing_by="exec-a",
        processing_started=started,
        executed_count=2,
        max_executions=3,
    )

    result = await lifecycle.sweep_stuck_payments(now=NOW)

    (entry,) = result.fixed_payments
    assert entry.action == "marked_as_completed"
    assert entry.new_status == "completed"
    assert entry.next_execution is None
    stored = await db.get_schedule(sid)
    assert stored.status == "completed"
    assert stored.executed_count == 3
    assert stored.next_execution_at is None
    assert stored.completed_at == NOW

    with pytest.raises(PreconditionFailed):
        await lifecycle.start_processing(sid, "exec-b", now=NOW + timedelta(days=1))
    assert (await db.get_schedule(sid)).executed_count == 3


@pytest.mark.asyncio
async def test_sweep_completes_unknown_frequency_through_the_horizon(make_schedule):
    sid = await make_schedule(
        frequency="fortnightly",
        status="processing",
        processing_by="exec-a",
        processing_started=NOW - timedelta(minutes=10),
    )

    result = await lifecycle.sweep_stuck_payments(now=NOW)

    assert [e.action for e in result.fixed_payments] == ["marked_as_completed"]
    assert (await db.get_schedule(sid)).status == "completed"
