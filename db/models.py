"""ORM models for scheduled payments and the execution ledger."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, DateTime, Index, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC timestamps on every backend.

    Postgres stores TIMESTAMPTZ natively; SQLite drops tzinfo, so values are
    normalised to UTC on the way in and re-tagged as UTC on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> Any:
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("datetime values must be timezone-aware")
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: Any, dialect: Any) -> Any:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    type_annotation_map = {datetime: UTCDateTime}


class ScheduledPayment(Base):
    __tablename__ = "schedules"

    schedule_id:      Mapped[str] = mapped_column(primary_key=True)
    username:         Mapped[str] = mapped_column(index=True)
    wallet_address:   Mapped[str]

    # payment payload
    token_symbol:     Mapped[str]
    token_name:       Mapped[str | None]
    contract_address: Mapped[str]
    decimals:         Mapped[int] = mapped_column(default=18)
    recipient:        Mapped[str | None]
    amount:           Mapped[str | None]
    recipients:       Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    amounts:          Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    description:      Mapped[str | None]

    frequency:        Mapped[str] = mapped_column(default="once")
    status:           Mapped[str] = mapped_column(default="active")

    next_execution_at: Mapped[datetime | None]
    last_execution_at: Mapped[datetime | None]
    executed_count:    Mapped[int] = mapped_column(default=0)
    max_executions:    Mapped[int | None]
    retry_count:       Mapped[int] = mapped_column(default=0)

    # soft leases
    claimed_by:         Mapped[str | None]
    claimed_at:         Mapped[datetime | None]
    processing_by:      Mapped[str | None]
    processing_started: Mapped[datetime | None]

    # last execution details
    last_error:            Mapped[str | None]
    last_transaction_hash: Mapped[str | None]
    last_gas_used:         Mapped[int | None]
    last_block_number:     Mapped[int | None]
    last_actual_cost_eth:  Mapped[float | None]
    last_actual_cost_usd:  Mapped[float | None]
    last_executor_id:      Mapped[str | None]

    # lifecycle markers
    completed_at:           Mapped[datetime | None]
    failed_at:              Mapped[datetime | None]
    cancelled_at:           Mapped[datetime | None]
    cancelled_by:           Mapped[str | None]
    force_updated_by:       Mapped[str | None]
    force_updated_at:       Mapped[datetime | None]
    fixed_stuck_processing: Mapped[bool] = mapped_column(default=False)
    fixed_at:               Mapped[datetime | None]

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(server_default=func.now())

    __table_args__ = (
        Index("ix_schedules_status_next_execution", "status", "next_execution_at"),
    )


class ExecutionRecord(Base):
    __tablename__ = "executed_transactions"

    execution_id:     Mapped[str] = mapped_column(primary_key=True)
    schedule_id:      Mapped[str] = mapped_column(index=True)
    username:         Mapped[str]
    wallet_address:   Mapped[str]
    transaction_hash: Mapped[str | None]
    gas_used:         Mapped[int | None]
    block_number:     Mapped[int | None]
    actual_cost_eth:  Mapped[float | None]
    actual_cost_usd:  Mapped[float | None]
    executed_at:      Mapped[datetime]
    status:           Mapped[str] = mapped_column(default="completed")
    token_symbol:     Mapped[str]
    contract_address: Mapped[str]
    recipient:        Mapped[str | None]
    amount:           Mapped[str | None]
    execution_count:  Mapped[int]
    executor_id:      Mapped[str | None]
    is_manual_completion: Mapped[bool] = mapped_column(default=False)
    is_force_update:      Mapped[bool] = mapped_column(default=False)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
