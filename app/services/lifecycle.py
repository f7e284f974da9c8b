"""
Scheduled payment lifecycle.

    active ──start_processing──▶ processing ──complete──▶ completed
      ▲                              │                      (once / ceiling)
      │◀──────── complete (recurring: next cycle) ─────────┘
      │◀──────── mark_failed (retry in RETRY_DELAY) ───────┐
      └──────────────────────────────────────────────────── failed (terminal)

Executors are external and run concurrently. The only synchronisation
primitive is the conditional UPDATE in ``db.compare_and_set``: the predicate
and the mutation are one statement, so two executors can never both win the
same version of a schedule. After a lost race a second read produces a
human-readable reason; it never changes the outcome.

Leases self-expire. An executor whose lease went stale may be pre-empted
while still working, so duplicate execution is possible; ``force_update`` and
``sweep_stuck_payments`` reconcile afterwards.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError

import db
from db import ExecutionRecord, ScheduledPayment
from config import settings
from app.services.errors import (
    InvalidRequest,
    PreconditionFailed,
    ScheduleNotFound,
    TerminalState,
)
from app.services.frequency import beyond_horizon, calculate_next_execution
from app.services.lease import CLAIM, PROCESSING, released_leases
from app.types.schedule_contract import (
    CancelResult,
    ClaimResult,
    CompletionResult,
    ExecutionDetails,
    ExecutorStats,
    FailureResult,
    ProcessingResult,
    ScheduleCreate,
    StuckPayment,
    StuckPreview,
    SweepEntry,
    SweepResult,
)

_LOGGER = logging.getLogger(__name__)

# Schedules touched this recently are left alone by the due poller.
_QUIET_SECONDS = 30


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _seconds(value: float) -> timedelta:
    return timedelta(seconds=value)


def _owned_by(username: str | None) -> list:
    return [] if username is None else [ScheduledPayment.username == username]


async def _load(schedule_id: str, username: str | None) -> ScheduledPayment:
    schedule = await db.get_schedule(schedule_id, username)
    if schedule is None:
        raise ScheduleNotFound(schedule_id)
    return schedule


def _status_rejection(schedule: ScheduledPayment) -> PreconditionFailed:
    if schedule.status == "failed":
        return TerminalState(schedule.schedule_id)
    return PreconditionFailed(
        f"Payment status is {schedule.status}",
        code=schedule.status,
        scheduleId=schedule.schedule_id,
        currentStatus=schedule.status,
    )


# ──────────────────────────────────────────────────────────────────────
# Creation and reads
# ──────────────────────────────────────────────────────────────────────

async def create_schedule(
    username: str,
    payload: ScheduleCreate,
    now: datetime | None = None,
) -> ScheduledPayment:
    now = now or _utcnow()
    schedule = ScheduledPayment(
        schedule_id=f"sched_{uuid4().hex}",
        username=username,
        wallet_address=payload.wallet_address,
        token_symbol=payload.token_symbol,
        token_name=payload.token_name,
        contract_address=payload.contract_address,
        decimals=payload.decimals,
        recipient=payload.recipient,
        amount=payload.amount,
        recipients=payload.recipients,
        amounts=payload.amounts,
        description=payload.description,
        frequency=payload.frequency,
        status="active",
        next_execution_at=payload.scheduled_for,
        executed_count=0,
        max_executions=payload.max_executions,
        retry_count=0,
        fixed_stuck_processing=False,
        created_at=now,
        updated_at=now,
    )
    await db.insert_schedule(schedule)
    _LOGGER.info(
        "Schedule %s created for %s (%s, first run %s)",
        schedule.schedule_id, username, payload.frequency, payload.scheduled_for.isoformat(),
    )
    return schedule


async def get_schedule(schedule_id: str, username: str | None = None) -> ScheduledPayment:
    return await _load(schedule_id, username)


async def list_schedules(
    username: str,
    status: str | None = None,
    wallet_address: str | None = None,
) -> list[ScheduledPayment]:
    return await db.list_schedules(username, status, wallet_address)


async def list_executions(schedule_id: str, username: str | None = None) -> list[ExecutionRecord]:
    await _load(schedule_id, username)
    return await db.list_execution_records(schedule_id)


# ──────────────────────────────────────────────────────────────────────
# Leases
# ──────────────────────────────────────────────────────────────────────

async def claim(
    schedule_id: str,
    executor_id: str,
    now: datetime | None = None,
    username: str | None = None,
) -> ClaimResult:
    """Legacy lock: take the claim lease without moving the schedule to processing."""
    now = now or _utcnow()
    window = _seconds(settings.CLAIM_LEASE_SECONDS)

    won = await db.compare_and_set(
        schedule_id,
        [
            ScheduledPayment.status == "active",
            CLAIM.is_free(now, window),
            ScheduledPayment.next_execution_at <= now,
            *_owned_by(username),
        ],
        {**CLAIM.acquire(executor_id, now), "updated_at": now},
    )
    if won:
        _LOGGER.info("Payment %s claimed by executor %s", schedule_id, executor_id)
        return ClaimResult(schedule_id=schedule_id, claimed_by=executor_id, claimed_at=now)

    current = await db.get_schedule(schedule_id, username)
    _LOGGER.info("Payment %s could not be claimed by executor %s", schedule_id, executor_id)
    raise _claim_rejection(current, schedule_id, executor_id, now, window)


def _claim_rejection(
    current: ScheduledPayment | None,
    schedule_id: str,
    executor_id: str,
    now: datetime,
    window: timedelta,
) -> Exception:
    if current is None:
        return ScheduleNotFound(schedule_id)
    if current.status == "processing":
        return PreconditionFailed(
            f"Payment already being processed by executor {current.processing_by}",
            code="already_processing",
            scheduleId=schedule_id,
            holder=current.processing_by,
            currentStatus=current.status,
        )
    if current.status != "active":
        return _status_rejection(current)
    holder = CLAIM.holder_of(current)
    if CLAIM.is_fresh(current, now, window) and holder != executor_id:
        return PreconditionFailed(
            f"Payment already claimed by executor {holder}",
            code="already_claimed",
            scheduleId=schedule_id,
            holder=holder,
            currentStatus=current.status,
        )
    if current.next_execution_at is None or current.next_execution_at > now:
        return PreconditionFailed(
            "Payment not yet due for execution",
            code="not_due",
            scheduleId=schedule_id,
            currentStatus=current.status,
        )
    return PreconditionFailed(
        "Payment not available for claiming",
        scheduleId=schedule_id,
        holder=holder,
        currentStatus=current.status,
    )


async def start_processing(
    schedule_id: str,
    executor_id: str,
    now: datetime | None = None,
    username: str | None = None,
) -> ProcessingResult:
    """Primary lock: move an eligible schedule to ``processing`` for one executor."""
    now = now or _utcnow()
    window = _seconds(settings.PROCESSING_LEASE_SECONDS)
    debounce = _seconds(settings.EXECUTION_DEBOUNCE_SECONDS)

    won = await db.compare_and_set(
        schedule_id,
        [
            ScheduledPayment.status == "active",
            ScheduledPayment.status != "failed",
            PROCESSING.is_free(now, window),
            ScheduledPayment.next_execution_at <= now,
            ScheduledPayment.last_execution_at.is_(None)
            | (ScheduledPayment.last_execution_at < now - debounce),
            ScheduledPayment.max_executions.is_(None)
            | (ScheduledPayment.executed_count < ScheduledPayment.max_executions),
            *_owned_by(username),
        ],
        {**PROCESSING.acquire(executor_id, now), "status": "processing", "updated_at": now},
    )
    if won:
        _LOGGER.info("Payment %s: active → processing (executor %s)", schedule_id, executor_id)
        return ProcessingResult(
            schedule_id=schedule_id, processing_by=executor_id, processing_started=now
        )

    current = await db.get_schedule(schedule_id, username)
    _LOGGER.info("Payment %s could not be marked as processing by executor %s", schedule_id, executor_id)
    raise _processing_rejection(current, schedule_id, now, window, debounce)


def _processing_rejection(
    current: ScheduledPayment | None,
    schedule_id: str,
    now: datetime,
    window: timedelta,
    debounce: timedelta,
) -> Exception:
    if current is None:
        return ScheduleNotFound(schedule_id)
    if current.status == "processing" or (
        current.status == "active" and PROCESSING.is_fresh(current, now, window)
    ):
        return PreconditionFailed(
            f"Payment already being processed by executor {current.processing_by}",
            code="already_processing",
            scheduleId=schedule_id,
            holder=current.processing_by,
            currentStatus=current.status,
        )
    if current.status != "active":
        return _status_rejection(current)
    if current.next_execution_at is None or current.next_execution_at > now:
        return PreconditionFailed(
            "Payment not yet due for execution",
            code="not_due",
            scheduleId=schedule_id,
            currentStatus=current.status,
        )
    if current.last_execution_at is not None and now - current.last_execution_at < debounce:
        return PreconditionFailed(
            "Payment was executed recently",
            code="recently_executed",
            scheduleId=schedule_id,
            currentStatus=current.status,
        )
    if current.max_executions is not None and current.executed_count >= current.max_executions:
        return PreconditionFailed(
            "Payment reached its execution limit",
            code="execution_limit_reached",
            scheduleId=schedule_id,
            currentStatus=current.status,
        )
    return PreconditionFailed(
        "Payment not available for processing",
        scheduleId=schedule_id,
        currentStatus=current.status,
    )


# ──────────────────────────────────────────────────────────────────────
# Completion
# ──────────────────────────────────────────────────────────────────────

def _advance(
    schedule: ScheduledPayment,
    execution_count: int,
    executed_at: datetime,
    now: datetime,
) -> tuple[str, datetime | None]:
    """Status and next run after one more successful execution."""
    if schedule.frequency == "once":
        return "completed", None
    next_at = calculate_next_execution(executed_at, schedule.frequency)
    ceiling = schedule.max_executions
    if ceiling is not None and execution_count >= ceiling:
        return "completed", None
    if beyond_horizon(next_at, now, settings.COMPLETION_HORIZON_YEARS):
        return "completed", None
    return "active", next_at


def _execution_values(
    details: ExecutionDetails,
    status: str,
    execution_count: int,
    next_at: datetime | None,
    executed_at: datetime,
    now: datetime,
) -> dict:
    return {
        **released_leases(),
        "status": status,
        "executed_count": execution_count,
        "last_execution_at": executed_at,
        "next_execution_at": next_at,
        "completed_at": now if status == "completed" else None,
        "retry_count": 0,
        "last_error": None,
        "last_transaction_hash": details.transaction_hash,
        "last_gas_used": details.gas_used,
        "last_block_number": details.block_number,
        "last_actual_cost_eth": details.actual_cost_eth,
        "last_actual_cost_usd": details.actual_cost_usd,
        "last_executor_id": details.executor_id,
        "updated_at": now,
    }


def _ledger_row(
    schedule: ScheduledPayment,
    details: ExecutionDetails,
    execution_id: str,
    execution_count: int,
    executed_at: datetime,
    now: datetime,
    *,
    manual: bool = False,
    forced: bool = False,
) -> dict:
    return {
        "execution_id": execution_id,
        "schedule_id": schedule.schedule_id,
        "username": schedule.username,
        "wallet_address": schedule.wallet_address,
        "transaction_hash": details.transaction_hash,
        "gas_used": details.gas_used,
        "block_number": details.block_number,
        "actual_cost_eth": details.actual_cost_eth,
        "actual_cost_usd": details.actual_cost_usd,
        "executed_at": executed_at,
        "status": "completed",
        "token_symbol": schedule.token_symbol,
        "contract_address": schedule.contract_address,
        "recipient": schedule.recipient or (schedule.recipients or [None])[0],
        "amount": schedule.amount or (schedule.amounts or [None])[0],
        "execution_count": execution_count,
        "executor_id": details.executor_id,
        "is_manual_completion": manual,
        "is_force_update": forced,
        "created_at": now,
    }


def execution_id_for(schedule_id: str, details: ExecutionDetails, execution_count: int) -> str:
    if details.execution_id:
        return details.execution_id
    if details.transaction_hash:
        return f"{schedule_id}:{details.transaction_hash}"
    return f"{schedule_id}:exec:{execution_count}"


async def complete_execution(
    schedule_id: str,
    details: ExecutionDetails,
    *,
    force_complete: bool = False,
    username: str | None = None,
    now: datetime | None = None,
) -> CompletionResult:
    """Record a confirmed on-chain execution and advance the schedule.

    A call whose execution id is already in the ledger is a replay and
    changes nothing. ``force_complete`` skips the ``processing`` check for
    manual recovery but never revives a failed schedule.
    """
    now = now or _utcnow()
    current = await _load(schedule_id, username)
    execution_count = current.executed_count + 1
    execution_id = execution_id_for(schedule_id, details, execution_count)

    existing = await db.get_execution_record(execution_id)
    if existing is not None:
        _LOGGER.info("Payment %s: execution %s already recorded", schedule_id, execution_id)
        return CompletionResult(
            schedule_id=schedule_id,
            final_status=current.status,
            execution_count=existing.execution_count,
            next_execution=current.next_execution_at if current.status == "active" else None,
            transaction_hash=existing.transaction_hash,
            execution_id=execution_id,
            replayed=True,
        )

    if current.status == "failed":
        raise TerminalState(schedule_id)
    if current.status != "processing" and not force_complete:
        raise PreconditionFailed(
            f"Payment is not in processing status (current: {current.status})",
            code="not_processing",
            scheduleId=schedule_id,
            currentStatus=current.status,
        )

    executed_at = details.executed_at or now
    status, next_at = _advance(current, execution_count, executed_at, now)
    won = await db.compare_and_set(
        schedule_id,
        [
            ScheduledPayment.status == current.status,
            ScheduledPayment.executed_count == current.executed_count,
        ],
        _execution_values(details, status, execution_count, next_at, executed_at, now),
    )
    if not won:
        raise PreconditionFailed(
            "Payment was modified concurrently",
            code="conflict",
            scheduleId=schedule_id,
        )

    # Not atomic with the schedule update; a crash here loses the ledger row.
    await db.insert_execution_record(
        _ledger_row(
            current, details, execution_id, execution_count, executed_at, now,
            manual=force_complete,
        )
    )
    _LOGGER.info(
        "Payment %s: %s → %s after execution %d (next: %s)",
        schedule_id, current.status, status, execution_count,
        next_at.isoformat() if next_at else "-",
    )
    return CompletionResult(
        schedule_id=schedule_id,
        final_status=status,
        execution_count=execution_count,
        next_execution=next_at,
        transaction_hash=details.transaction_hash,
        execution_id=execution_id,
    )


async def force_update(
    schedule_id: str,
    details: ExecutionDetails,
    *,
    force_update: bool,
    username: str | None = None,
    now: datetime | None = None,
) -> CompletionResult:
    """Break-glass completion: ignores status and leases, no compare-and-swap.

    It can race a legitimate executor; that risk is accepted for manual
    recovery of inconsistent schedules.
    """
    if not force_update:
        raise InvalidRequest("Force update flag required", code="force_flag_required")

    now = now or _utcnow()
    current = await _load(schedule_id, username)
    execution_count = current.executed_count + 1
    executed_at = details.executed_at or now
    status, next_at = _advance(current, execution_count, executed_at, now)

    values = _execution_values(details, status, execution_count, next_at, executed_at, now)
    values.update(force_updated_by=details.executor_id, force_updated_at=now)
    if not await db.overwrite_schedule(schedule_id, values):
        raise ScheduleNotFound(schedule_id)

    execution_id = details.execution_id or f"{schedule_id}:force:{execution_count}"
    await db.insert_execution_record(
        _ledger_row(
            current, details, execution_id, execution_count, executed_at, now,
            forced=True,
        )
    )
    _LOGGER.warning(
        "Payment %s force updated by %s: %s → %s (execution %d)",
        schedule_id, details.executor_id, current.status, status, execution_count,
    )
    return CompletionResult(
        schedule_id=schedule_id,
        final_status=status,
        execution_count=execution_count,
        next_execution=next_at,
        transaction_hash=details.transaction_hash,
        execution_id=execution_id,
        was_force_updated=True,
    )


# ──────────────────────────────────────────────────────────────────────
# Failure and cancellation
# ──────────────────────────────────────────────────────────────────────

async def mark_failed(
    schedule_id: str,
    error_message: str,
    *,
    executor_id: str | None = None,
    username: str | None = None,
    now: datetime | None = None,
) -> FailureResult:
    """Fixed-delay retry: MAX_RETRIES failures make the schedule terminal."""
    now = now or _utcnow()
    current = await _load(schedule_id, username)
    if current.status not in ("active", "processing"):
        raise _status_rejection(current)

    retry_count = current.retry_count + 1
    values = {
        **released_leases(),
        "retry_count": retry_count,
        "last_error": error_message,
        "last_executor_id": executor_id,
        "updated_at": now,
    }
    if retry_count >= settings.MAX_RETRIES:
        values.update(status="failed", failed_at=now)
        next_retry = None
    else:
        next_retry = now + _seconds(settings.RETRY_DELAY_SECONDS)
        values.update(status="active", next_execution_at=next_retry)

    won = await db.compare_and_set(
        schedule_id,
        [
            ScheduledPayment.status == current.status,
            ScheduledPayment.retry_count == current.retry_count,
        ],
        values,
    )
    if not won:
        raise PreconditionFailed(
            "Payment was modified concurrently",
            code="conflict",
            scheduleId=schedule_id,
        )

    if next_retry is None:
        _LOGGER.info(
            "Payment %s marked as permanently failed after %d attempts: %s",
            schedule_id, retry_count, error_message,
        )
    else:
        _LOGGER.info(
            "Payment %s scheduled for retry at %s (attempt %d/%d): %s",
            schedule_id, next_retry.isoformat(), retry_count, settings.MAX_RETRIES, error_message,
        )
    return FailureResult(
        schedule_id=schedule_id,
        status=values["status"],
        will_retry=next_retry is not None,
        next_retry_at=next_retry,
        retry_count=retry_count,
    )


async def cancel(
    schedule_id: str,
    username: str | None = None,
    actor: str | None = None,
    now: datetime | None = None,
) -> CancelResult:
    now = now or _utcnow()
    current = await _load(schedule_id, username)
    if current.status == "cancelled":
        return CancelResult(schedule_id=schedule_id)
    if current.status in ("failed", "completed"):
        raise _status_rejection(current)

    won = await db.compare_and_set(
        schedule_id,
        [ScheduledPayment.status == current.status],
        {
            **released_leases(),
            "status": "cancelled",
            "cancelled_at": now,
            "cancelled_by": actor or "user",
            "updated_at": now,
        },
    )
    if not won:
        raise PreconditionFailed(
            "Payment was modified concurrently",
            code="conflict",
            scheduleId=schedule_id,
        )
    _LOGGER.info("Payment %s: %s → cancelled", schedule_id, current.status)
    return CancelResult(schedule_id=schedule_id)


# ──────────────────────────────────────────────────────────────────────
# Stuck-payment recovery
# ──────────────────────────────────────────────────────────────────────

async def preview_stuck(username: str | None = None, now: datetime | None = None) -> StuckPreview:
    now = now or _utcnow()
    stuck = await db.find_stuck(now - _seconds(settings.STUCK_AFTER_SECONDS), username)
    return StuckPreview(
        stuck_payments_count=len(stuck),
        stuck_payments=[
            StuckPayment(
                schedule_id=p.schedule_id,
                token_symbol=p.token_symbol,
                amount=p.amount,
                recipient=p.recipient,
                frequency=p.frequency,
                processing_started=p.processing_started,
                processing_by=p.processing_by,
                minutes_stuck=round((now - p.processing_started).total_seconds() / 60),
            )
            for p in stuck
        ],
        timestamp=now,
    )


async def sweep_stuck_payments(username: str | None = None, now: datetime | None = None) -> SweepResult:
    """Repair schedules stuck in ``processing`` longer than STUCK_AFTER_SECONDS.

    The outcome of the stuck execution is assumed, not verified on-chain:
    one-time payments become completed, recurring ones move to their next
    cycle. ``username=None`` sweeps every owner.
    """
    now = now or _utcnow()
    stuck = await db.find_stuck(now - _seconds(settings.STUCK_AFTER_SECONDS), username)
    _LOGGER.info("Found %d stuck processing payments", len(stuck))

    entries = []
    for payment in stuck:
        try:
            entries.append(await _repair(payment, now))
        except SQLAlchemyError as exc:
            _LOGGER.exception("Error fixing payment %s", payment.schedule_id)
            entries.append(
                SweepEntry(schedule_id=payment.schedule_id, action="failed_to_fix", error=str(exc))
            )
    return SweepResult(stuck_payments_found=len(stuck), fixed_payments=entries, timestamp=now)


async def _repair(payment: ScheduledPayment, now: datetime) -> SweepEntry:
    started = payment.processing_started
    values = {
        **released_leases(),
        "last_execution_at": started,
        "fixed_stuck_processing": True,
        "fixed_at": now,
        "updated_at": now,
    }
    # a stuck one-time payment counts as its single execution
    execution_count = 1 if payment.frequency == "once" else payment.executed_count + 1
    status, next_at = _advance(payment, execution_count, started, now)
    values.update(
        status=status,
        executed_count=execution_count,
        next_execution_at=next_at,
        completed_at=now if status == "completed" else None,
    )
    action = "marked_as_completed" if status == "completed" else "reset_for_next_execution"

    won = await db.compare_and_set(
        payment.schedule_id,
        [
            ScheduledPayment.status == "processing",
            ScheduledPayment.processing_started == started,
        ],
        values,
    )
    if not won:
        # the executor finished (or someone else repaired it) in the meantime
        return SweepEntry(schedule_id=payment.schedule_id, action="skipped")

    _LOGGER.info("Fixed stuck payment %s → %s", payment.schedule_id, values["status"])
    return SweepEntry(
        schedule_id=payment.schedule_id,
        action=action,
        new_status=values["status"],
        next_execution=next_at,
    )


# ──────────────────────────────────────────────────────────────────────
# Executor polling
# ──────────────────────────────────────────────────────────────────────

async def list_due(username: str | None = None, now: datetime | None = None) -> list[ScheduledPayment]:
    """Schedules an executor should try next, soonest first."""
    now = now or _utcnow()
    candidates = await db.find_due(
        username,
        due_before=now + _seconds(settings.DUE_LOOKAHEAD_SECONDS),
        lease_cutoff=now - _seconds(settings.PROCESSING_LEASE_SECONDS),
        executed_cutoff=now - _seconds(settings.EXECUTION_DEBOUNCE_SECONDS),
        quiet_cutoff=now - _seconds(_QUIET_SECONDS),
        limit=settings.DUE_LIMIT,
    )

    due = []
    for payment in candidates:
        if payment.max_executions is not None and payment.executed_count >= payment.max_executions:
            _LOGGER.info("Skipping payment %s: execution count exceeded", payment.schedule_id)
            continue
        if payment.frequency == "once" and payment.executed_count > 0:
            _LOGGER.info("Skipping payment %s: one-time payment already executed", payment.schedule_id)
            continue
        due.append(payment)
    return due


async def executor_stats(now: datetime | None = None) -> ExecutorStats:
    now = now or _utcnow()
    counts = await db.count_by_status()
    return ExecutorStats(
        active=counts.get("active", 0),
        processing=counts.get("processing", 0),
        completed=counts.get("completed", 0),
        failed=counts.get("failed", 0),
        cancelled=counts.get("cancelled", 0),
        due_now=await db.count_active_due(now),
        upcoming_next_24h=await db.count_active_due(now + timedelta(hours=24), start=now),
        timestamp=now,
    )
