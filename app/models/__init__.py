"""Database models."""

from app.models.booking import Booking
from app.models.payment import Payment

__all__ = [
    "Booking",
    "Payment",
]
