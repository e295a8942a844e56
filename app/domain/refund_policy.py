"""Refund policy domain logic.

Refund ceilings depend on how far ahead of the booking start the refund is
requested:
- pooling: full refund 24h+ before start, 50% from 12h, nothing after
- rental: full refund 48h+ before start, 50% from 24h, nothing after
"""

from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum


class ServiceType(str, Enum):
    """Bookable service types."""

    POOLING = "pooling"
    RENTAL = "rental"


# Refund rules: list of (hours_before_start, refund_percentage)
# Evaluated in order - first match wins
POLICY_RULES: dict[ServiceType, list[tuple[int, Decimal]]] = {
    ServiceType.POOLING: [
        (24, Decimal("100")),
        (12, Decimal("50")),
    ],
    ServiceType.RENTAL: [
        (48, Decimal("100")),
        (24, Decimal("50")),
    ],
}


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def hours_until(start_time: datetime, now: datetime | None = None) -> float:
    """Hours remaining until ``start_time`` (negative once it has passed)."""
    now = _as_utc(now or datetime.now(UTC))
    return (_as_utc(start_time) - now).total_seconds() / 3600


def refund_percentage(
    service_type: str | ServiceType,
    start_time: datetime,
    now: datetime | None = None,
) -> Decimal:
    """Calculate refund percentage (0-100) based on service type and timing.

    Raises:
        ValueError: If the service type is unknown
    """
    service_type = ServiceType(service_type)
    remaining = hours_until(start_time, now)

    for min_hours, refund_pct in POLICY_RULES[service_type]:
        if remaining >= min_hours:
            return refund_pct

    return Decimal("0")


def eligible_refund(
    total_amount: Decimal | int,
    start_time: datetime,
    service_type: str | ServiceType,
    now: datetime | None = None,
) -> Decimal:
    """Maximum refundable amount, in major currency units.

    Args:
        total_amount: Amount paid for the booking
        start_time: Booking start
        service_type: pooling or rental
        now: Reference time (defaults to the current UTC time)

    Returns:
        Decimal: Refund ceiling rounded to 2 decimal places
    """
    refund_pct = refund_percentage(service_type, start_time, now)
    amount = Decimal(total_amount) * refund_pct / Decimal("100")
    return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def get_policy_description(service_type: str | ServiceType) -> str:
    """Get human-readable policy description."""
    descriptions = {
        ServiceType.POOLING: (
            "Full refund up to 24 hours before the ride. "
            "50% refund if cancelled 12-24 hours before. "
            "No refund if cancelled less than 12 hours before."
        ),
        ServiceType.RENTAL: (
            "Full refund up to 48 hours before the rental starts. "
            "50% refund if cancelled 24-48 hours before. "
            "No refund if cancelled less than 24 hours before."
        ),
    }

    try:
        service_type = ServiceType(service_type)
    except ValueError:
        return "Unknown refund policy"

    return descriptions[service_type]
