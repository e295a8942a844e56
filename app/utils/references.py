"""Payment reference generation utilities."""

import secrets
import string
import time

_BASE36 = string.digits + string.ascii_lowercase


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def generate_payment_id(prefix: str = "PAY") -> str:
    """Generate a stable external payment id.

    Returns:
        str: Payment id like 'PAYlz3k9q1aF3B29C1D' (prefix, base36 millis, 8 hex)
    """
    timestamp = _base36(int(time.time() * 1000))
    random_part = secrets.token_hex(4).upper()
    return f"{prefix}{timestamp}{random_part}"


def generate_receipt(payment_id: str) -> str:
    """Gateway receipt for an order. Razorpay caps receipts at 40 chars."""
    return f"rcpt_{payment_id}"[:40]
