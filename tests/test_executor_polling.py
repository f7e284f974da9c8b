from datetime import datetime, timedelta, timezone

import pytest

from app.services import lifecycle

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
OLD = NOW - timedelta(days=1)


@pytest.mark.asyncio
async def test_due_list_filters_ineligible_schedules(make_schedule):
    due = await make_schedule(next_execution_at=NOW - timedelta(minutes=1))
    soon = await make_schedule(next_execution_at=NOW + timedelta(minutes=4))
    await make_schedule(next_execution_at=NOW + timedelta(hours=1))
    await make_schedule(status="processing", next_execution_at=NOW)
    await make_schedule(processing_by="exec-a", processing_started=NOW - timedelta(seconds=30))
    await make_schedule(frequency="daily", last_execution_at=NOW - timedelta(seconds=10))
    await make_schedule(created_at=NOW - timedelta(seconds=5), updated_at=NOW - timedelta(seconds=5))
    await make_schedule(frequency="daily", max_executions=2, executed_count=2)
    await make_schedule(frequency="once", executed_count=1)
    await make_schedule(username="bob")

    result = await lifecycle.list_due("alice", now=NOW)

    assert [s.schedule_id for s in result] == [due, soon]


@pytest.mark.asyncio
async def test_due_list_respects_limit(make_schedule, monkeypatch):
    from config import settings

    monkeypatch.setattr(settings, "DUE_LIMIT", 2)
    for minutes in (3, 1, 2):
        await make_schedule(next_execution_at=NOW - timedelta(minutes=minutes))

    result = await lifecycle.list_due("alice", now=NOW)

    assert [s.next_execution_at for s in result] == [
        NOW - timedelta(minutes=3),
        NOW - timedelta(minutes=2),
    ]


@pytest.mark.asyncio
async def test_executor_stats_counts(make_schedule):
    await make_schedule(next_execution_at=NOW - timedelta(hours=1))
    await make_schedule(next_execution_at=NOW + timedelta(hours=3))
    await make_schedule(next_execution_at=NOW + timedelta(days=3))
    await make_schedule(status="processing")
    await make_schedule(status="failed")

    stats = await lifecycle.executor_stats(now=NOW)

    assert stats.active == 3
    assert stats.processing == 1
    assert stats.failed == 1
    assert stats.completed == 0
    assert stats.due_now == 1
    assert stats.upcoming_next_24h == 1
