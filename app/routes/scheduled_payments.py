"""Scheduled-payment endpoints used by the dashboard and executor agents.

Every route is scoped to the authenticated owner. Lifecycle failures are
raised as ``ScheduleError`` subclasses and rendered by the handler in
``main.py``.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from app.services import lifecycle
from app.types.schedule_contract import (
    CancelRequest,
    CancelResult,
    ClaimResult,
    CompleteRequest,
    CompletionResult,
    ExecutionRecordOut,
    ExecutorStats,
    FailureResult,
    ForceUpdateRequest,
    LeaseRequest,
    MarkFailedRequest,
    ProcessingResult,
    ScheduleCreate,
    ScheduleOut,
    Status,
    StuckPreview,
    SweepResult,
)
from app.utils.auth import current_username

router = APIRouter(prefix="/api/scheduled-payments", tags=["scheduled-payments"])


# =============================================================================
# COLLECTION
# =============================================================================


@router.post("", response_model=ScheduleOut, status_code=201)
async def create_schedule(payload: ScheduleCreate, username: str = Depends(current_username)):
    schedule = await lifecycle.create_schedule(username, payload)
    return ScheduleOut.model_validate(schedule)


@router.get("", response_model=List[ScheduleOut])
async def list_schedules(
    status: Optional[Status] = Query(None),
    wallet_address: Optional[str] = Query(None, alias="walletAddress"),
    username: str = Depends(current_username),
):
    schedules = await lifecycle.list_schedules(username, status, wallet_address)
    return [ScheduleOut.model_validate(s) for s in schedules]


@router.get("/due", response_model=List[ScheduleOut])
async def list_due(username: str = Depends(current_username)):
    """Schedules ready for an executor to pick up."""
    due = await lifecycle.list_due(username)
    return [ScheduleOut.model_validate(s) for s in due]


@router.get("/executor", response_model=ExecutorStats)
async def executor_stats(username: str = Depends(current_username)):
    return await lifecycle.executor_stats()


@router.get("/fix-stuck", response_model=StuckPreview)
async def preview_stuck(username: str = Depends(current_username)):
    return await lifecycle.preview_stuck(username)


@router.post("/fix-stuck", response_model=SweepResult)
async def fix_stuck(username: str = Depends(current_username)):
    return await lifecycle.sweep_stuck_payments(username)


# =============================================================================
# SINGLE SCHEDULE
# =============================================================================


@router.get("/{schedule_id}", response_model=ScheduleOut)
async def get_schedule(schedule_id: str, username: str = Depends(current_username)):
    schedule = await lifecycle.get_schedule(schedule_id, username)
    return ScheduleOut.model_validate(schedule)


@router.get("/{schedule_id}/executions", response_model=List[ExecutionRecordOut])
async def list_executions(schedule_id: str, username: str = Depends(current_username)):
    records = await lifecycle.list_executions(schedule_id, username)
    return [ExecutionRecordOut.model_validate(r) for r in records]


@router.post("/{schedule_id}/claim", response_model=ClaimResult)
async def claim(schedule_id: str, body: LeaseRequest, username: str = Depends(current_username)):
    return await lifecycle.claim(schedule_id, body.executor_id, username=username)


@router.post("/{schedule_id}/process", response_model=ProcessingResult)
async def start_processing(
    schedule_id: str,
    body: LeaseRequest,
    username: str = Depends(current_username),
):
    return await lifecycle.start_processing(schedule_id, body.executor_id, username=username)


@router.post("/{schedule_id}/complete", response_model=CompletionResult)
async def complete(schedule_id: str, body: CompleteRequest, username: str = Depends(current_username)):
    return await lifecycle.complete_execution(
        schedule_id, body, force_complete=body.force_complete, username=username
    )


@router.post("/{schedule_id}/fail", response_model=FailureResult)
async def mark_failed(
    schedule_id: str,
    body: MarkFailedRequest,
    username: str = Depends(current_username),
):
    return await lifecycle.mark_failed(
        schedule_id, body.error, executor_id=body.executor_id, username=username
    )


@router.post("/{schedule_id}/force-update", response_model=CompletionResult)
async def force_update(
    schedule_id: str,
    body: ForceUpdateRequest,
    username: str = Depends(current_username),
):
    return await lifecycle.force_update(
        schedule_id, body, force_update=body.force_update, username=username
    )


@router.post("/{schedule_id}/cancel", response_model=CancelResult)
async def cancel(
    schedule_id: str,
    body: Optional[CancelRequest] = None,
    username: str = Depends(current_username),
):
    actor = body.executor_id if body else None
    return await lifecycle.cancel(schedule_id, username, actor=actor)
