"""Payment ledger model.

Every payment attempt is a row; rows are never deleted. Status changes go
through compare-and-set updates in ``app.services.payment_ledger``.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, CheckConstraint, DateTime, Index, Numeric, String, Text, Uuid, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.database import Base

_ACTIVE = "status IN ('pending', 'paid')"


class Payment(Base):
    """Payment attempt for a booking."""

    __tablename__ = "payments"
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (
        CheckConstraint("total_amount = amount + platform_fee", name="ck_payments_total"),
        CheckConstraint("amount >= 0 AND platform_fee >= 0", name="ck_payments_non_negative"),
        CheckConstraint(
            "refund_amount IS NULL OR (refund_amount > 0 AND refund_amount <= total_amount)",
            name="ck_payments_refund_le_total",
        ),
        CheckConstraint(
            "(status IN ('paid', 'refunded') AND gateway_payment_id IS NOT NULL)"
            " OR (status IN ('pending', 'failed') AND gateway_payment_id IS NULL)",
            name="ck_payments_gateway_payment_id",
        ),
        CheckConstraint(
            "status IN ('pending', 'paid', 'failed', 'refunded')", name="ck_payments_status"
        ),
        CheckConstraint(
            "payment_method IN ('upi', 'card', 'wallet', 'net_banking', 'offline_cash')",
            name="ck_payments_method",
        ),
        # At most one pending/paid payment per booking
        Index(
            "uq_payments_booking_active",
            "booking_id",
            unique=True,
            postgresql_where=text(_ACTIVE),
            sqlite_where=text(_ACTIVE),
        ),
        Index("ix_payments_user_status", "user_id", "status"),
        Index("ix_payments_status_created", "status", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    payment_id: Mapped[str] = mapped_column(String(40), unique=True, nullable=False, index=True)
    booking_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # Amounts in major units (rupees); gateway calls convert to paise
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    platform_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="INR")

    payment_method: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    # Gateway
    gateway_order_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    gateway_payment_id: Mapped[str | None] = mapped_column(String(64), index=True)
    gateway_signature: Mapped[str | None] = mapped_column(String(128))
    transaction_id: Mapped[str | None] = mapped_column(String(64))
    failure_reason: Mapped[str | None] = mapped_column(Text)

    # Refund
    refund_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    refund_reason: Mapped[str | None] = mapped_column(Text)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Opaque gateway payloads (order, capture, refund)
    gateway_metadata: Mapped[dict] = mapped_column(
        "metadata", JSON().with_variant(JSONB, "postgresql"), default=dict
    )

    # Timestamps
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<Payment {self.payment_id} booking={self.booking_id} status={self.status}>"
