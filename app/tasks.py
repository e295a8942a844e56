"""Celery background tasks.

- Booking/payment reconciliation
"""

import asyncio
import logging

from celery import shared_task

from app.config import settings
from app.database import get_db_context
from app.services.reconciliation_service import reconcile_bookings

logger = logging.getLogger(__name__)


_loop: asyncio.AbstractEventLoop | None = None


def run_async(coro):
    """Run async function in sync context.

    One loop per worker process; pooled connections are bound to it.
    """
    global _loop
    if _loop is None or _loop.is_closed():
        _loop = asyncio.new_event_loop()
    return _loop.run_until_complete(coro)


# ==================== RECONCILIATION TASKS ====================


@shared_task(bind=True, max_retries=3)
def reconcile_booking_payment_states(self):
    """Re-derive booking payment state from the payment ledger.

    Runs every ``reconcile_interval_minutes``.
    """
    try:
        corrected = run_async(_reconcile_booking_payment_states())
        return {"status": "success", "corrected": corrected}
    except Exception as exc:
        logger.exception("Booking reconciliation failed")
        raise self.retry(exc=exc, countdown=60)


async def _reconcile_booking_payment_states() -> int:
    """Async implementation of booking reconciliation."""
    async with get_db_context() as db:
        return await reconcile_bookings(db, batch_size=settings.reconcile_batch_size)
