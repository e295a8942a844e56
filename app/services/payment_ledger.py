"""Payment ledger persistence.

All status changes are compare-and-set updates keyed on the row id and the
status the caller last observed. A CAS that touches zero rows means another
actor (client verify, webhook, reconciler) already moved the payment.
"""

import logging
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictError
from app.domain.payment_state import ACTIVE_STATUSES, PaymentStatus, assert_payment_transition
from app.models.payment import Payment

logger = logging.getLogger(__name__)


class PaymentLedger:
    """Reads and writes payment rows."""

    async def insert(self, db: AsyncSession, payment: Payment) -> Payment:
        """Persist a new pending payment.

        Raises:
            ConflictError: Another active payment exists for the booking
        """
        db.add(payment)
        try:
            await db.flush()
        except IntegrityError as e:
            await db.rollback()
            logger.warning(f"Payment insert rejected for booking {payment.booking_id}: {e.orig}")
            raise ConflictError(
                f"An active payment already exists for booking {payment.booking_id}"
            ) from e
        await db.refresh(payment)
        return payment

    async def get_by_payment_id(self, db: AsyncSession, payment_id: str) -> Payment | None:
        result = await db.execute(select(Payment).where(Payment.payment_id == payment_id))
        return result.scalar_one_or_none()

    async def get_by_order_id(self, db: AsyncSession, gateway_order_id: str) -> Payment | None:
        result = await db.execute(
            select(Payment).where(Payment.gateway_order_id == gateway_order_id)
        )
        return result.scalar_one_or_none()

    async def find_active_for_booking(self, db: AsyncSession, booking_id: str) -> Payment | None:
        """Pending or paid payment for a booking, if any."""
        result = await db.execute(
            select(Payment).where(
                Payment.booking_id == booking_id,
                Payment.status.in_([s.value for s in ACTIVE_STATUSES]),
            )
        )
        return result.scalars().first()

    async def count_for_booking(self, db: AsyncSession, booking_id: str) -> int:
        """Number of payments ever recorded for a booking."""
        result = await db.execute(
            select(func.count()).select_from(Payment).where(Payment.booking_id == booking_id)
        )
        return result.scalar() or 0

    async def transition(
        self,
        db: AsyncSession,
        payment: Payment,
        target: PaymentStatus | str,
        **values: Any,
    ) -> bool:
        """Move ``payment`` to ``target`` if it is still in its observed status.

        Args:
            db: Database session
            payment: Payment as last read by the caller
            target: New status
            **values: Extra columns written in the same statement

        Returns:
            bool: True if this call applied the transition, False if it lost a race

        Raises:
            ConflictError: The transition is not allowed from the observed status
        """
        target = PaymentStatus(target)
        expected = payment.status
        assert_payment_transition(expected, target)

        assignments = {getattr(Payment, key): value for key, value in values.items()}
        assignments[Payment.status] = target.value

        result = await db.execute(
            update(Payment)
            .where(Payment.id == payment.id, Payment.status == expected)
            .values(assignments)
            .execution_options(synchronize_session=False)
        )
        await db.refresh(payment)

        if result.rowcount != 1:
            logger.info(
                f"Payment {payment.payment_id} CAS {expected} -> {target.value} lost; "
                f"now {payment.status}"
            )
            return False

        logger.info(f"Payment {payment.payment_id}: {expected} -> {target.value}")
        return True

    async def list_for_user(
        self,
        db: AsyncSession,
        user_id: str,
        status: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[Payment], int]:
        """User's payments, newest first, with the unpaginated total."""
        query = select(Payment).where(Payment.user_id == user_id)
        if status:
            query = query.where(Payment.status == status)

        count_query = select(func.count()).select_from(query.subquery())
        total = (await db.execute(count_query)).scalar() or 0

        query = query.order_by(Payment.created_at.desc(), Payment.id.desc())
        query = query.offset((page - 1) * limit).limit(limit)
        result = await db.execute(query)
        return list(result.scalars().all()), total
