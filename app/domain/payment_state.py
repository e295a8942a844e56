"""Payment state machine."""

from enum import Enum

from app.core.exceptions import ConflictError


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.PAID, PaymentStatus.FAILED},
    PaymentStatus.PAID: {PaymentStatus.REFUNDED},
    PaymentStatus.FAILED: set(),
    PaymentStatus.REFUNDED: set(),
}

# Statuses that block a new payment for the same booking
ACTIVE_STATUSES = (PaymentStatus.PENDING, PaymentStatus.PAID)


def can_transition(current: str, target: str) -> bool:
    allowed = PAYMENT_TRANSITIONS.get(PaymentStatus(current), set())
    return PaymentStatus(target) in allowed


def assert_payment_transition(current: str, target: str) -> None:
    if not can_transition(current, target):
        raise ConflictError(
            f"Invalid payment transition: {PaymentStatus(current).value} → {PaymentStatus(target).value}"
        )
