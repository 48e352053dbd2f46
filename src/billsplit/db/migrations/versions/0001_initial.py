"""ledger schema

Revision ID: 0001
Revises:
Create Date: 2026-10-17 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def _ledger_clock() -> sa.TextClause:
    # now() is frozen per transaction; ledger order needs the statement time
    return sa.text("clock_timestamp()")


def upgrade() -> None:
    op.create_table(
        "events",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("creator_id", sa.BigInteger(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("category", sa.Text(), nullable=False, server_default="other"),
        sa.Column("status", sa.Text(), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "category in ('restaurant','travel','shared_house','shopping','entertainment','utilities','other')",
            name="events_category_check",
        ),
        sa.CheckConstraint("status in ('active','completed')", name="events_status_check"),
    )

    op.create_table(
        "event_participants",
        sa.Column("event_id", sa.BigInteger(), sa.ForeignKey("events.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("user_id", sa.BigInteger(), primary_key=True),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "expenses",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("event_id", sa.BigInteger(), sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False),
        sa.Column("payer_id", sa.BigInteger(), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("total_amount", sa.BigInteger(), nullable=False),
        sa.Column("split_type", sa.Text(), nullable=False),
        sa.Column("reversal_of", sa.BigInteger(), sa.ForeignKey("expenses.id"), unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_ledger_clock()),
        sa.CheckConstraint("total_amount > 0", name="expenses_total_amount_check"),
        sa.CheckConstraint("split_type in ('equal','percentage','custom')", name="expenses_split_type_check"),
    )

    op.create_table(
        "expense_allocations",
        sa.Column("expense_id", sa.BigInteger(), sa.ForeignKey("expenses.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("user_id", sa.BigInteger(), primary_key=True),
        sa.Column("amount_cents", sa.BigInteger(), nullable=False),
        sa.CheckConstraint("amount_cents >= 0", name="expense_allocations_amount_check"),
    )

    op.create_table(
        "payments",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("event_id", sa.BigInteger(), sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False),
        sa.Column("from_id", sa.BigInteger(), nullable=False),
        sa.Column("to_id", sa.BigInteger(), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_ledger_clock()),
        sa.CheckConstraint("amount > 0", name="payments_amount_check"),
        sa.CheckConstraint("from_id <> to_id", name="payments_parties_check"),
    )

    op.create_index("idx_event_participants_user", "event_participants", ["user_id"])
    op.create_index("idx_events_created_at", "events", ["created_at"])
    op.create_index("idx_expenses_event", "expenses", ["event_id"])
    op.create_index("idx_payments_event", "payments", ["event_id"])


def downgrade() -> None:
    op.drop_index("idx_payments_event", table_name="payments")
    op.drop_index("idx_expenses_event", table_name="expenses")
    op.drop_index("idx_events_created_at", table_name="events")
    op.drop_index("idx_event_participants_user", table_name="event_participants")

    op.drop_table("payments")
    op.drop_table("expense_allocations")
    op.drop_table("expenses")
    op.drop_table("event_participants")
    op.drop_table("events")
