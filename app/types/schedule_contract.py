"""Pydantic models that define the contract between executor agents and the
scheduled-payment backend.

These classes are intentionally framework-agnostic so they can be reused by
workers, API responses, and tests without pulling in FastAPI or database
layers.  Field names are snake_case in Python and camelCase on the wire;
both spellings are accepted on input.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from app.services.frequency import Frequency

Status = Literal["active", "processing", "completed", "failed", "cancelled"]


class _Contract(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _require_aware(v: Optional[datetime]) -> Optional[datetime]:
    if v is not None and v.tzinfo is None:
        raise ValueError("datetime must be timezone-aware")
    return v


def _positive_amount(v: str) -> str:
    try:
        value = Decimal(v)
    except InvalidOperation:
        raise ValueError(f"amount '{v}' is not a number")
    if not value.is_finite() or value <= 0:
        raise ValueError("amount must be greater than zero")
    return v


# ──────────────────────────────
# Schedules
# ──────────────────────────────


class ScheduleCreate(_Contract):
    """A new payment instruction. The payload is immutable once stored."""

    wallet_address: str
    token_symbol: str
    token_name: Optional[str] = None
    contract_address: str = "native"
    decimals: int = Field(18, ge=0, le=36)
    recipient: Optional[str] = None
    amount: Optional[str] = None
    recipients: Optional[List[str]] = None
    amounts: Optional[List[str]] = None
    description: Optional[str] = None
    frequency: Frequency = "once"
    scheduled_for: datetime
    max_executions: Optional[int] = Field(None, ge=1)

    @field_validator("scheduled_for")
    def _aware(cls, v):  # noqa: N805
        return _require_aware(v)

    @field_validator("amount")
    def _amount(cls, v):  # noqa: N805
        return v if v is None else _positive_amount(v)

    @field_validator("amounts")
    def _amounts(cls, v):  # noqa: N805
        return v if v is None else [_positive_amount(a) for a in v]

    @model_validator(mode="after")
    def _payload_shape(self):
        """Either a single recipient/amount pair or matching batch lists."""
        if self.recipients is not None or self.amounts is not None:
            if not self.recipients or not self.amounts:
                raise ValueError("recipients and amounts must be provided together")
            if len(self.recipients) != len(self.amounts):
                raise ValueError("recipients and amounts must have the same length")
        elif not self.recipient or self.amount is None:
            raise ValueError("recipient and amount are required")
        return self


class ScheduleOut(_Contract):
    model_config = ConfigDict(from_attributes=True)

    schedule_id: str
    username: str
    wallet_address: str
    token_symbol: str
    token_name: Optional[str] = None
    contract_address: str
    decimals: int
    recipient: Optional[str] = None
    amount: Optional[str] = None
    recipients: Optional[List[str]] = None
    amounts: Optional[List[str]] = None
    description: Optional[str] = None
    frequency: str
    status: str
    next_execution_at: Optional[datetime] = None
    last_execution_at: Optional[datetime] = None
    executed_count: int
    max_executions: Optional[int] = None
    retry_count: int
    claimed_by: Optional[str] = None
    claimed_at: Optional[datetime] = None
    processing_by: Optional[str] = None
    processing_started: Optional[datetime] = None
    last_error: Optional[str] = None
    last_transaction_hash: Optional[str] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ──────────────────────────────
# Executor requests
# ──────────────────────────────


class LeaseRequest(_Contract):
    executor_id: str

    @field_validator("executor_id")
    def _non_empty(cls, v):  # noqa: N805
        if not v.strip():
            raise ValueError("Executor ID required")
        return v


class ExecutionDetails(_Contract):
    """What the executor observed on-chain."""

    executor_id: Optional[str] = None
    execution_id: Optional[str] = None
    transaction_hash: Optional[str] = None
    gas_used: Optional[int] = None
    block_number: Optional[int] = None
    actual_cost_eth: Optional[float] = None
    actual_cost_usd: Optional[float] = None
    executed_at: Optional[datetime] = None

    @field_validator("executed_at")
    def _aware(cls, v):  # noqa: N805
        return _require_aware(v)


class CompleteRequest(ExecutionDetails):
    force_complete: bool = False


class ForceUpdateRequest(ExecutionDetails):
    force_update: bool = False


class MarkFailedRequest(_Contract):
    error: str
    executor_id: Optional[str] = None


class CancelRequest(_Contract):
    executor_id: Optional[str] = None


# ──────────────────────────────
# Results
# ──────────────────────────────


class ClaimResult(_Contract):
    success: bool = True
    schedule_id: str
    claimed_by: str
    claimed_at: datetime


class ProcessingResult(_Contract):
    success: bool = True
    schedule_id: str
    processing_by: str
    processing_started: datetime
    status: Status = "processing"


class CompletionResult(_Contract):
    success: bool = True
    schedule_id: str
    final_status: str
    execution_count: int
    next_execution: Optional[datetime] = None
    transaction_hash: Optional[str] = None
    execution_id: str
    replayed: bool = False
    was_force_updated: bool = False


class FailureResult(_Contract):
    success: bool = True
    schedule_id: str
    status: str
    will_retry: bool
    next_retry_at: Optional[datetime] = None
    retry_count: int


class CancelResult(_Contract):
    success: bool = True
    schedule_id: str
    status: str = "cancelled"


class SweepEntry(_Contract):
    schedule_id: str
    action: Literal["marked_as_completed", "reset_for_next_execution", "skipped", "failed_to_fix"]
    old_status: str = "processing"
    new_status: Optional[str] = None
    next_execution: Optional[datetime] = None
    error: Optional[str] = None


class SweepResult(_Contract):
    success: bool = True
    stuck_payments_found: int
    fixed_payments: List[SweepEntry]
    timestamp: datetime


class StuckPayment(_Contract):
    schedule_id: str
    token_symbol: str
    amount: Optional[str] = None
    recipient: Optional[str] = None
    frequency: str
    processing_started: Optional[datetime] = None
    processing_by: Optional[str] = None
    minutes_stuck: int


class StuckPreview(_Contract):
    success: bool = True
    stuck_payments_count: int
    stuck_payments: List[StuckPayment]
    timestamp: datetime


class ExecutorStats(_Contract):
    status: str = "healthy"
    active: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    due_now: int = 0
    upcoming_next_24h: int = 0
    timestamp: datetime


class ExecutionRecordOut(_Contract):
    model_config = ConfigDict(from_attributes=True)

    execution_id: str
    schedule_id: str
    transaction_hash: Optional[str] = None
    gas_used: Optional[int] = None
    block_number: Optional[int] = None
    actual_cost_eth: Optional[float] = None
    actual_cost_usd: Optional[float] = None
    executed_at: datetime
    token_symbol: str
    recipient: Optional[str] = None
    amount: Optional[str] = None
    execution_count: int
    executor_id: Optional[str] = None
    is_manual_completion: bool = False
    is_force_update: bool = False
