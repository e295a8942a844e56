from decimal import Decimal

import pytest

from app.core.idempotency import generate_idempotency_key
from app.utils.currency import from_minor_units, to_decimal, to_minor_units
from app.utils.references import generate_payment_id, generate_receipt


@pytest.mark.parametrize("rupees", [1, 50, 450, 999_999])
def test_integer_rupees_round_trip(rupees):
    assert to_minor_units(rupees) == rupees * 100
    assert from_minor_units(rupees * 100) == Decimal(rupees)


def test_minor_units_from_decimal_and_float():
    assert to_minor_units(Decimal("450.50")) == 45050
    assert to_minor_units(0.1) == 10
    assert to_minor_units("19.99") == 1999


def test_to_decimal_quantizes():
    assert to_decimal("10.005") == Decimal("10.01")
    assert to_decimal(3) == Decimal("3.00")


def test_payment_id_format():
    payment_id = generate_payment_id()
    assert payment_id.startswith("PAY")
    assert payment_id[-8:] == payment_id[-8:].upper()
    assert generate_payment_id() != payment_id


def test_receipt_fits_gateway_limit():
    assert generate_receipt("PAY123") == "rcpt_PAY123"
    assert len(generate_receipt("PAY" + "x" * 60)) == 40


def test_idempotency_key_is_deterministic():
    first = generate_idempotency_key("refund_create", "PAY1", {"amount": 45000})
    assert first == generate_idempotency_key("refund_create", "PAY1", {"amount": 45000})
    assert len(first) == 64
    assert first != generate_idempotency_key("refund_create", "PAY1", {"amount": 100})
    assert first != generate_idempotency_key("order_create", "PAY1", {"amount": 45000})
