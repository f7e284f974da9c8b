"""create schedules and executed_transactions

Revision ID: 20261018_01
Revises: None
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261018_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _ts(name: str, **kw) -> sa.Column:
    return sa.Column(name, sa.TIMESTAMP(timezone=True), **kw)


def upgrade() -> None:
    op.create_table(
        "schedules",
        sa.Column("schedule_id", sa.String(), primary_key=True),
        sa.Column("username", sa.String(), nullable=False),
        sa.Column("wallet_address", sa.String(), nullable=False),
        sa.Column("token_symbol", sa.String(), nullable=False),
        sa.Column("token_name", sa.String(), nullable=True),
        sa.Column("contract_address", sa.String(), nullable=False),
        sa.Column("decimals", sa.Integer(), nullable=False),
        sa.Column("recipient", sa.String(), nullable=True),
        sa.Column("amount", sa.String(), nullable=True),
        sa.Column("recipients", sa.JSON(), nullable=True),
        sa.Column("amounts", sa.JSON(), nullable=True),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("frequency", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        _ts("next_execution_at", nullable=True),
        _ts("last_execution_at", nullable=True),
        sa.Column("executed_count", sa.Integer(), nullable=False),
        sa.Column("max_executions", sa.Integer(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False),
        sa.Column("claimed_by", sa.String(), nullable=True),
        _ts("claimed_at", nullable=True),
        sa.Column("processing_by", sa.String(), nullable=True),
        _ts("processing_started", nullable=True),
        sa.Column("last_error", sa.String(), nullable=True),
        sa.Column("last_transaction_hash", sa.String(), nullable=True),
        sa.Column("last_gas_used", sa.Integer(), nullable=True),
        sa.Column("last_block_number", sa.Integer(), nullable=True),
        sa.Column("last_actual_cost_eth", sa.Float(), nullable=True),
        sa.Column("last_actual_cost_usd", sa.Float(), nullable=True),
        sa.Column("last_executor_id", sa.String(), nullable=True),
        _ts("completed_at", nullable=True),
        _ts("failed_at", nullable=True),
        _ts("cancelled_at", nullable=True),
        sa.Column("cancelled_by", sa.String(), nullable=True),
        sa.Column("force_updated_by", sa.String(), nullable=True),
        _ts("force_updated_at", nullable=True),
        sa.Column("fixed_stuck_processing", sa.Boolean(), nullable=False),
        _ts("fixed_at", nullable=True),
        _ts("created_at", server_default=sa.func.now(), nullable=False),
        _ts("updated_at", server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_schedules_username", "schedules", ["username"])
    op.create_index(
        "ix_schedules_status_next_execution", "schedules", ["status", "next_execution_at"]
    )

    op.create_table(
        "executed_transactions",
        sa.Column("execution_id", sa.String(), primary_key=True),
        sa.Column("schedule_id", sa.String(), nullable=False),
        sa.Column("username", sa.String(), nullable=False),
        sa.Column("wallet_address", sa.String(), nullable=False),
        sa.Column("transaction_hash", sa.String(), nullable=True),
        sa.Column("gas_used", sa.Integer(), nullable=True),
        sa.Column("block_number", sa.Integer(), nullable=True),
        sa.Column("actual_cost_eth", sa.Float(), nullable=True),
        sa.Column("actual_cost_usd", sa.Float(), nullable=True),
        _ts("executed_at", nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("token_symbol", sa.String(), nullable=False),
        sa.Column("contract_address", sa.String(), nullable=False),
        sa.Column("recipient", sa.String(), nullable=True),
        sa.Column("amount", sa.String(), nullable=True),
        sa.Column("execution_count", sa.Integer(), nullable=False),
        sa.Column("executor_id", sa.String(), nullable=True),
        sa.Column("is_manual_completion", sa.Boolean(), nullable=False),
        sa.Column("is_force_update", sa.Boolean(), nullable=False),
        _ts("created_at", server_default=sa.func.now(), nullable=False),
    )
    op.create_index(
        "ix_executed_transactions_schedule_id", "executed_transactions", ["schedule_id"]
    )


def downgrade() -> None:
    op.drop_index("ix_executed_transactions_schedule_id", table_name="executed_transactions")
    op.drop_table("executed_transactions")
    op.drop_index("ix_schedules_status_next_execution", table_name="schedules")
    op.drop_index("ix_schedules_username", table_name="schedules")
    op.drop_table("schedules")
