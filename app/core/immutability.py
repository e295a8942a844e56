"""Immutability enforcement for payment records using SQLAlchemy events."""

import logging
from datetime import UTC, datetime

from sqlalchemy import event, inspect

from app.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

# Columns fixed at creation; status columns move only through ledger CAS updates
IMMUTABLE_PAYMENT_FIELDS = (
    "payment_id",
    "booking_id",
    "user_id",
    "amount",
    "platform_fee",
    "total_amount",
    "currency",
    "payment_method",
    "gateway_order_id",
)

_registered = False


class ImmutabilityViolationError(ValidationError):
    """Raised when attempting to modify immutable payment records."""

    def __init__(self, model_name: str, operation: str, record_id: str):
        self.model_name = model_name
        self.operation = operation
        self.record_id = record_id
        super().__init__(
            f"Immutability violation: Cannot {operation} {model_name} record {record_id}. "
            "Payments are an append-only audit trail."
        )


def _log_immutability_violation(model_name: str, operation: str, record_id: str) -> None:
    """Log immutability violation for audit purposes."""
    logger.error(
        f"IMMUTABILITY_VIOLATION: Attempted to {operation} {model_name} "
        f"record_id={record_id} at {datetime.now(UTC).isoformat()}"
    )


def register_immutability_enforcement() -> None:
    """Register SQLAlchemy event listeners for immutability enforcement.

    Must be called after models are imported but before session use.
    Safe to call more than once.
    """
    global _registered
    if _registered:
        return

    from app.models.payment import Payment

    # ============ Payment: No DELETE ============

    @event.listens_for(Payment, "before_delete")
    def prevent_payment_delete(mapper, connection, target):
        """Prevent deletion of payments."""
        _log_immutability_violation("Payment", "DELETE", str(target.payment_id))
        raise ImmutabilityViolationError("Payment", "DELETE", str(target.payment_id))

    # ============ Payment: identity and money columns are frozen ============

    @event.listens_for(Payment, "before_update")
    def prevent_payment_rewrite(mapper, connection, target):
        """Prevent rewriting identity or monetary columns."""
        state = inspect(target)
        for field in IMMUTABLE_PAYMENT_FIELDS:
            if state.attrs[field].history.has_changes():
                operation = f"UPDATE {field} of"
                _log_immutability_violation("Payment", operation, str(target.payment_id))
                raise ImmutabilityViolationError("Payment", operation, str(target.payment_id))

    _registered = True
    logger.info("Immutability enforcement registered for payment records")
