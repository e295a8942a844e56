"""Booking model.

Bookings are owned by the booking service; this mapping covers the columns
the payment engine reads (pricing, owner, service type, start) and the
columns it writes (payment link, payment status, confirmation).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.database import Base


class Booking(Base):
    """Ride pooling or rental booking."""

    __tablename__ = "bookings"
    __mapper_args__ = {"eager_defaults": True}

    booking_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    service_type: Mapped[str] = mapped_column(String(20), nullable=False)  # pooling, rental
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Pricing (rupees)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    platform_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    # Status
    status: Mapped[str] = mapped_column(
        String(20), default="pending", index=True
    )  # pending, confirmed, in_progress, completed, cancelled
    payment_status: Mapped[str] = mapped_column(
        String(20), default="pending"
    )  # pending, paid, failed, refunded
    payment_id: Mapped[str | None] = mapped_column(String(40), index=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
