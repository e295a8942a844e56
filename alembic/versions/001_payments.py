"""Bookings and payments.

Revision ID: 001_payments
Revises: None
Create Date: 2026-10-19

Creates:
- bookings (payment-facing columns)
- payments ledger with its invariants as constraints
"""

from typing import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers
revision: str = "001_payments"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

ACTIVE_PAYMENT = "status IN ('pending', 'paid')"


def upgrade() -> None:
    """Create booking and payment tables."""

    # ==================== BOOKINGS ====================
    op.create_table(
        "bookings",
        sa.Column("booking_id", sa.String(64), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False, index=True),
        sa.Column("service_type", sa.String(20), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("platform_fee", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(20), server_default="pending", index=True),
        sa.Column("payment_status", sa.String(20), server_default="pending"),
        sa.Column("payment_id", sa.String(40), index=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # ==================== PAYMENTS ====================
    op.create_table(
        "payments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("payment_id", sa.String(40), nullable=False, unique=True, index=True),
        sa.Column("booking_id", sa.String(64), nullable=False, index=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("platform_fee", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), server_default="INR"),
        sa.Column("payment_method", sa.String(20), nullable=False, index=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("gateway_order_id", sa.String(64), nullable=False, unique=True),
        sa.Column("gateway_payment_id", sa.String(64), index=True),
        sa.Column("gateway_signature", sa.String(128)),
        sa.Column("transaction_id", sa.String(64)),
        sa.Column("failure_reason", sa.Text),
        sa.Column("refund_amount", sa.Numeric(12, 2)),
        sa.Column("refund_reason", sa.Text),
        sa.Column("refunded_at", sa.DateTime(timezone=True)),
        sa.Column("metadata", postgresql.JSONB, server_default=sa.text("'{}'::jsonb")),
        sa.Column("paid_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("total_amount = amount + platform_fee", name="ck_payments_total"),
        sa.CheckConstraint("amount >= 0 AND platform_fee >= 0", name="ck_payments_non_negative"),
        sa.CheckConstraint(
            "refund_amount IS NULL OR (refund_amount > 0 AND refund_amount <= total_amount)",
            name="ck_payments_refund_le_total",
        ),
        sa.CheckConstraint(
            "(status IN ('paid', 'refunded') AND gateway_payment_id IS NOT NULL)"
            " OR (status IN ('pending', 'failed') AND gateway_payment_id IS NULL)",
            name="ck_payments_gateway_payment_id",
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'paid', 'failed', 'refunded')", name="ck_payments_status"
        ),
        sa.CheckConstraint(
            "payment_method IN ('upi', 'card', 'wallet', 'net_banking', 'offline_cash')",
            name="ck_payments_method",
        ),
    )

    # At most one pending/paid payment per booking
    op.create_index(
        "uq_payments_booking_active",
        "payments",
        ["booking_id"],
        unique=True,
        postgresql_where=sa.text(ACTIVE_PAYMENT),
    )
    op.create_index("ix_payments_user_status", "payments", ["user_id", "status"])
    op.create_index("ix_payments_status_created", "payments", ["status", "created_at"])


def downgrade() -> None:
    """Drop booking and payment tables."""
    op.drop_index("ix_payments_status_created", table_name="payments")
    op.drop_index("ix_payments_user_status", table_name="payments")
    op.drop_index("uq_payments_booking_active", table_name="payments")
    op.drop_table("payments")
    op.drop_table("bookings")
