"""Booking/payment drift reconciliation.

Re-applies the booking projection for bookings whose payment status does not
match their linked payment. Normally a no-op: payment and booking writes share
a transaction. It catches rows written by older code paths or edited by hand.
"""

import logging

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.payment_state import PaymentStatus
from app.models.booking import Booking
from app.models.payment import Payment
from app.services.booking_service import BOOKING_PENDING, BookingService

logger = logging.getLogger(__name__)

_PROJECTED_STATUSES = [
    PaymentStatus.PENDING.value,
    PaymentStatus.PAID.value,
    PaymentStatus.REFUNDED.value,
]


async def find_drifted_bookings(
    db: AsyncSession,
    limit: int = 200,
) -> list[tuple[str, str]]:
    """(booking_id, payment_status) pairs whose booking lags its payment."""
    result = await db.execute(
        select(Booking.booking_id, Payment.status)
        .join(Payment, Payment.payment_id == Booking.payment_id)
        .where(
            Payment.status.in_(_PROJECTED_STATUSES),
            or_(
                Booking.payment_status != Payment.status,
                and_(
                    Payment.status == PaymentStatus.PAID.value,
                    Booking.status == BOOKING_PENDING,
                ),
            ),
        )
        .order_by(Payment.updated_at)
        .limit(limit)
    )
    return [(row[0], row[1]) for row in result.all()]


async def reconcile_bookings(
    db: AsyncSession,
    batch_size: int = 200,
    bookings: BookingService | None = None,
) -> int:
    """Project payment state onto drifted bookings.

    Returns:
        int: Number of bookings corrected
    """
    bookings = bookings or BookingService()
    drifted = await find_drifted_bookings(db, limit=batch_size)

    corrected = 0
    for booking_id, payment_status in drifted:
        if await bookings.apply_payment_state(db, booking_id, payment_status):
            corrected += 1

    if corrected:
        logger.warning(f"Reconciler corrected {corrected} booking(s) out of sync with payments")
    else:
        logger.debug("Reconciler found no booking drift")
    return corrected
