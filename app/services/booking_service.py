"""Booking collaborator used by the payment engine.

Booking payment state is a projection of the booking's payment status. The
same projection is applied inline by the payment service and again by the
background reconciler, so applying it twice must be harmless.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundError
from app.domain.payment_state import PaymentStatus
from app.models.booking import Booking

logger = logging.getLogger(__name__)

BOOKING_PENDING = "pending"
BOOKING_CONFIRMED = "confirmed"


def project_booking_state(payment_status: str) -> tuple[str, str | None] | None:
    """Booking (payment_status, status) implied by a payment status.

    ``None`` status means the booking status is left alone. A failed payment
    projects nothing so the booking stays open for another attempt.
    """
    status = PaymentStatus(payment_status)
    if status == PaymentStatus.PAID:
        return PaymentStatus.PAID.value, BOOKING_CONFIRMED
    if status == PaymentStatus.REFUNDED:
        return PaymentStatus.REFUNDED.value, None
    if status == PaymentStatus.PENDING:
        return PaymentStatus.PENDING.value, None
    return None


class BookingService:
    """Booking lookups and payment-driven mutations."""

    async def get_booking(self, db: AsyncSession, booking_id: str) -> Booking | None:
        result = await db.execute(select(Booking).where(Booking.booking_id == booking_id))
        return result.scalar_one_or_none()

    async def get_user_booking(self, db: AsyncSession, booking_id: str, user_id: str) -> Booking:
        """Booking owned by ``user_id``; someone else's booking reads as missing."""
        booking = await self.get_booking(db, booking_id)
        if not booking or booking.user_id != user_id:
            raise NotFoundError("Booking", booking_id)
        return booking

    async def link_payment(self, db: AsyncSession, booking: Booking, payment_id: str) -> None:
        """Point the booking at a freshly created pending payment."""
        booking.payment_id = payment_id
        booking.payment_status = PaymentStatus.PENDING.value
        await db.flush()

    async def apply_payment_state(
        self,
        db: AsyncSession,
        booking_id: str,
        payment_status: str,
    ) -> bool:
        """Project a payment status onto its booking.

        Returns:
            bool: True if the booking row changed
        """
        projection = project_booking_state(payment_status)
        if projection is None:
            return False

        booking = await self.get_booking(db, booking_id)
        if not booking:
            logger.warning(f"Booking {booking_id} missing while applying payment {payment_status}")
            return False

        new_payment_status, new_status = projection
        changed = False

        if booking.payment_status != new_payment_status:
            booking.payment_status = new_payment_status
            changed = True

        # Only a pending booking is confirmed; cancelled or started bookings keep their status
        if new_status and booking.status == BOOKING_PENDING:
            booking.status = new_status
            changed = True

        if changed:
            await db.flush()
            logger.info(
                f"Booking {booking_id} synced: payment_status={booking.payment_status} "
                f"status={booking.status}"
            )
        return changed
