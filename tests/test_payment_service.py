from datetime import UTC, datetime
from decimal import Decimal

import pytest

from app.core.exceptions import (
    ConflictError,
    GatewayRejectedError,
    GatewayUnavailableError,
    InvalidAmountError,
    InvalidSignatureError,
    NotFoundError,
    PaymentNotCapturedError,
)
from app.core.signatures import callback_payload, compute_hmac
from app.database import async_session_maker
from app.gateways.base import GatewayRejected, GatewayUnavailable
from app.models.payment import Payment
from app.services.payment_service import WebhookOutcome

CHECKOUT_SECRET = "checkout-secret"


def sign(order_id: str, gateway_payment_id: str) -> str:
    return compute_hmac(CHECKOUT_SECRET, callback_payload(order_id, gateway_payment_id))


def captured_event(order_id: str, gateway_payment_id: str) -> dict:
    return {"payment": {"entity": {"id": gateway_payment_id, "order_id": order_id, "status": "captured"}}}


async def create(service, db, booking_id="BK1", user_id="user_1", method="upi"):
    payment, order = await service.create_payment(
        db,
        booking_id=booking_id,
        user_id=user_id,
        amount=Decimal("400"),
        platform_fee=Decimal("50"),
        total_amount=Decimal("450"),
        payment_method=method,
    )
    await db.commit()
    return payment, order


async def create_and_verify(service, gateway, db):
    payment, order = await create(service, db)
    gateway.capture(order.id, "pay_1")
    payment = await service.verify_payment(db, order.id, "pay_1", sign(order.id, "pay_1"), "user_1")
    await db.commit()
    return payment


class BookingUpdateSpy:
    """Counts booking projections that actually changed the row."""

    def __init__(self, bookings):
        self.calls = 0
        self._apply = bookings.apply_payment_state
        bookings.apply_payment_state = self

    async def __call__(self, db, booking_id, payment_status):
        changed = await self._apply(db, booking_id, payment_status)
        if changed:
            self.calls += 1
        return changed


# ============ create_payment ============


@pytest.mark.asyncio
async def test_create_payment_orders_total_in_paise(service, gateway, db, booking_factory):
    await booking_factory(db)

    payment, order = await create(service, db)

    assert gateway.orders[0]["amount"] == 45000
    assert gateway.orders[0]["currency"] == "INR"
    assert gateway.orders[0]["receipt"] == f"rcpt_{payment.payment_id}"
    assert gateway.orders[0]["notes"]["booking_id"] == "BK1"
    assert len(gateway.orders[0]["idempotency_key"]) == 64
    assert payment.status == "pending"
    assert payment.gateway_order_id == order.id
    assert payment.total_amount == Decimal("450.00")
    assert payment.gateway_metadata["gateway_order"]["id"] == order.id

    booking = await service.bookings.get_booking(db, "BK1")
    await db.refresh(booking)
    assert booking.payment_id == payment.payment_id
    assert booking.payment_status == "pending"


@pytest.mark.asyncio
async def test_create_payment_requires_own_booking(service, db, booking_factory):
    await booking_factory(db, user_id="someone_else")

    with pytest.raises(NotFoundError):
        await create(service, db)


@pytest.mark.asyncio
async def test_create_payment_rejects_inconsistent_total(service, gateway, db, booking_factory):
    await booking_factory(db)

    with pytest.raises(InvalidAmountError):
        await service.create_payment(
            db,
            booking_id="BK1",
            user_id="user_1",
            amount=Decimal("400"),
            platform_fee=Decimal("50"),
            total_amount=Decimal("500"),
            payment_method="upi",
        )
    assert gateway.orders == []


@pytest.mark.asyncio
async def test_create_payment_conflicts_with_active_payment(service, gateway, db, booking_factory):
    await booking_factory(db)
    await create(service, db)

    with pytest.raises(ConflictError):
        await create(service, db)
    assert len(gateway.orders) == 1


@pytest.mark.asyncio
async def test_create_payment_conflicts_with_paid_payment(service, gateway, db, booking_factory):
    await booking_factory(db)
    await create_and_verify(service, gateway, db)

    with pytest.raises(ConflictError):
        await create(service, db)


@pytest.mark.asyncio
async def test_failed_payment_allows_retry(service, gateway, db, booking_factory):
    await booking_factory(db)
    first, order = await create(service, db)
    outcome = await service.reconcile_webhook_event(
        db, "payment.failed", {"payment": {"entity": {"id": "pay_x", "order_id": order.id}}}
    )
    await db.commit()
    assert outcome == WebhookOutcome.APPLIED

    second, _ = await create(service, db)

    assert second.payment_id != first.payment_id
    assert second.status == "pending"
    assert len(gateway.orders) == 2
    assert gateway.orders[0]["idempotency_key"] != gateway.orders[1]["idempotency_key"]


@pytest.mark.asyncio
async def test_gateway_failure_creates_no_payment(service, gateway, db, booking_factory):
    await booking_factory(db)
    gateway.fail_with = GatewayUnavailable("timed out")

    with pytest.raises(GatewayUnavailableError) as exc_info:
        await create(service, db)

    assert exc_info.value.headers["Retry-After"]
    payments, total = await service.list_payments(db, "user_1")
    assert total == 0


@pytest.mark.asyncio
async def test_retry_after_lost_order_response_reuses_order(service, gateway, db, booking_factory):
    await booking_factory(db)
    gateway.fail_after_accept = GatewayUnavailable("read timed out")

    with pytest.raises(GatewayUnavailableError):
        await create(service, db)
    payment, order = await create(service, db)

    assert gateway.order_calls == 2
    assert len(gateway.orders) == 1
    assert order.id == gateway.orders[0]["id"]
    assert payment.gateway_order_id == order.id


@pytest.mark.asyncio
async def test_gateway_rejection_surfaces(service, gateway, db, booking_factory):
    await booking_factory(db)
    gateway.fail_with = GatewayRejected("amount too low")

    with pytest.raises(GatewayRejectedError):
        await create(service, db)


# ============ verify_payment ============


@pytest.mark.asyncio
async def test_scenario_a_verify_then_duplicate_webhook(service, gateway, db, booking_factory):
    await booking_factory(db)
    spy = BookingUpdateSpy(service.bookings)

    payment = await create_and_verify(service, gateway, db)

    assert payment.status == "paid"
    assert payment.gateway_payment_id == "pay_1"
    assert payment.paid_at is not None
    assert spy.calls == 1

    booking = await service.bookings.get_booking(db, "BK1")
    await db.refresh(booking)
    assert booking.payment_status == "paid"
    assert booking.status == "confirmed"

    outcome = await service.reconcile_webhook_event(
        db, "payment.captured", captured_event(payment.gateway_order_id, "pay_1")
    )
    await db.commit()

    assert outcome == WebhookOutcome.DUPLICATE
    assert spy.calls == 1


@pytest.mark.asyncio
async def test_verify_records_acquirer_reference(service, gateway, db, booking_factory):
    await booking_factory(db)
    _, order = await create(service, db)
    gateway.capture(order.id, "pay_1", acquirer_data={"rrn": "412345678901"})

    payment = await service.verify_payment(db, order.id, "pay_1", sign(order.id, "pay_1"), "user_1")

    assert payment.gateway_payment_id == "pay_1"
    assert payment.transaction_id == "412345678901"


@pytest.mark.asyncio
async def test_verify_rejects_bad_signature(service, gateway, db, booking_factory):
    await booking_factory(db)
    payment, order = await create(service, db)
    gateway.capture(order.id, "pay_1")

    with pytest.raises(InvalidSignatureError):
        await service.verify_payment(db, order.id, "pay_1", "deadbeef", "user_1")

    await db.refresh(payment)
    assert payment.status == "pending"


@pytest.mark.asyncio
async def test_verify_requires_gateway_capture(service, gateway, db, booking_factory):
    await booking_factory(db)
    payment, order = await create(service, db)
    gateway.capture(order.id, "pay_1", status="authorized")

    with pytest.raises(PaymentNotCapturedError):
        await service.verify_payment(db, order.id, "pay_1", sign(order.id, "pay_1"), "user_1")

    await db.refresh(payment)
    assert payment.status == "pending"


@pytest.mark.asyncio
async def test_verify_rejects_payment_for_another_order(service, gateway, db, booking_factory):
    await booking_factory(db)
    _, order = await create(service, db)
    gateway.capture("order_other", "pay_1")

    with pytest.raises(PaymentNotCapturedError):
        await service.verify_payment(db, order.id, "pay_1", sign(order.id, "pay_1"), "user_1")


@pytest.mark.asyncio
async def test_verify_unknown_gateway_payment(service, db, booking_factory):
    await booking_factory(db)
    _, order = await create(service, db)

    with pytest.raises(PaymentNotCapturedError):
        await service.verify_payment(db, order.id, "pay_404", sign(order.id, "pay_404"), "user_1")


@pytest.mark.asyncio
async def test_verify_unknown_order_or_other_user(service, gateway, db, booking_factory):
    await booking_factory(db)
    _, order = await create(service, db)
    gateway.capture(order.id, "pay_1")

    with pytest.raises(NotFoundError):
        await service.verify_payment(db, "order_missing", "pay_1", sign("order_missing", "pay_1"), "user_1")
    with pytest.raises(NotFoundError):
        await service.verify_payment(db, order.id, "pay_1", sign(order.id, "pay_1"), "intruder")


@pytest.mark.asyncio
async def test_verify_twice_conflicts(service, gateway, db, booking_factory):
    await booking_factory(db)
    payment = await create_and_verify(service, gateway, db)

    with pytest.raises(ConflictError, match="already verified"):
        await service.verify_payment(
            db, payment.gateway_order_id, "pay_1", sign(payment.gateway_order_id, "pay_1"), "user_1"
        )


@pytest.mark.asyncio
async def test_capture_does_not_confirm_cancelled_booking(service, gateway, db, booking_factory):
    await booking_factory(db)
    payment, order = await create(service, db)
    booking = await service.bookings.get_booking(db, "BK1")
    booking.status = "cancelled"
    await db.commit()

    await service.reconcile_webhook_event(db, "payment.captured", captured_event(order.id, "pay_1"))
    await db.commit()

    await db.refresh(booking)
    assert booking.payment_status == "paid"
    assert booking.status == "cancelled"


# ============ reconcile_webhook_event ============


@pytest.mark.asyncio
async def test_captured_webhook_is_idempotent(service, db, booking_factory):
    await booking_factory(db)
    payment, order = await create(service, db)
    spy = BookingUpdateSpy(service.bookings)
    event = captured_event(order.id, "pay_9")

    outcomes = []
    for _ in range(3):
        outcomes.append(await service.reconcile_webhook_event(db, "payment.captured", event))
        await db.commit()

    assert outcomes == [WebhookOutcome.APPLIED, WebhookOutcome.DUPLICATE, WebhookOutcome.DUPLICATE]
    assert spy.calls == 1
    await db.refresh(payment)
    assert payment.status == "paid"
    assert payment.gateway_payment_id == "pay_9"
    assert payment.transaction_id == "pay_9"


@pytest.mark.asyncio
async def test_captured_webhook_records_upi_reference(service, db, booking_factory):
    await booking_factory(db)
    payment, order = await create(service, db)
    event = captured_event(order.id, "pay_5")
    event["payment"]["entity"]["acquirer_data"] = {"rrn": None, "upi_transaction_id": "AXL0123456789"}

    await service.reconcile_webhook_event(db, "payment.captured", event)

    await db.refresh(payment)
    assert payment.transaction_id == "AXL0123456789"


@pytest.mark.asyncio
async def test_failed_webhook_records_reason(service, db, booking_factory):
    await booking_factory(db)
    payment, order = await create(service, db)
    event = {"payment": {"entity": {"id": "pay_2", "order_id": order.id, "error_description": "Card declined"}}}

    assert await service.reconcile_webhook_event(db, "payment.failed", event) == WebhookOutcome.APPLIED
    await db.commit()
    assert await service.reconcile_webhook_event(db, "payment.failed", event) == WebhookOutcome.DUPLICATE

    await db.refresh(payment)
    assert payment.status == "failed"
    assert payment.failure_reason == "Card declined"
    assert payment.gateway_payment_id is None

    booking = await service.bookings.get_booking(db, "BK1")
    await db.refresh(booking)
    assert booking.status == "pending"


@pytest.mark.asyncio
async def test_failed_webhook_default_reason(service, db, booking_factory):
    await booking_factory(db)
    payment, order = await create(service, db)

    await service.reconcile_webhook_event(db, "payment.failed", {"payment": {"entity": {"order_id": order.id}}})
    await db.commit()

    await db.refresh(payment)
    assert payment.failure_reason == "Payment failed"


@pytest.mark.asyncio
async def test_failed_webhook_after_capture_is_noop(service, gateway, db, booking_factory):
    await booking_factory(db)
    payment = await create_and_verify(service, gateway, db)

    outcome = await service.reconcile_webhook_event(
        db, "payment.failed", {"payment": {"entity": {"order_id": payment.gateway_order_id}}}
    )

    assert outcome == WebhookOutcome.DUPLICATE
    await db.refresh(payment)
    assert payment.status == "paid"


@pytest.mark.asyncio
async def test_capture_after_failure_is_not_applied(service, db, booking_factory):
    await booking_factory(db)
    payment, order = await create(service, db)
    await service.reconcile_webhook_event(db, "payment.failed", {"payment": {"entity": {"order_id": order.id}}})
    await db.commit()

    outcome = await service.reconcile_webhook_event(db, "payment.captured", captured_event(order.id, "pay_3"))

    assert outcome == WebhookOutcome.IGNORED
    await db.refresh(payment)
    assert payment.status == "failed"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "event_type,payload",
    [
        ("refund.processed", {"refund": {"entity": {"id": "rfnd_1"}}}),
        ("payment.captured", {"payment": {"entity": {"id": "pay_1", "order_id": "order_unknown"}}}),
        ("payment.captured", {"payment": {}}),
        ("payment.captured", {"payment": "garbage"}),
        ("payment.failed", {}),
    ],
)
async def test_unusable_events_are_ignored(service, db, event_type, payload):
    assert await service.reconcile_webhook_event(db, event_type, payload) == WebhookOutcome.IGNORED


# ============ process_refund ============


@pytest.mark.asyncio
async def test_scenario_b_full_refund_by_default(service, gateway, db, booking_factory):
    await booking_factory(db)
    payment = await create_and_verify(service, gateway, db)

    payment = await service.process_refund(db, payment.payment_id, "user_1")
    await db.commit()

    assert payment.status == "refunded"
    assert payment.refund_amount == Decimal("450.00")
    assert payment.refund_reason == "User requested refund"
    assert payment.refunded_at is not None
    assert payment.gateway_metadata["gateway_refund"]["id"] == "rfnd_1"
    assert gateway.refunds[0]["amount"] == 45000
    assert gateway.refunds[0]["payment_id"] == "pay_1"
    assert len(gateway.refunds[0]["idempotency_key"]) == 64

    booking = await service.bookings.get_booking(db, "BK1")
    await db.refresh(booking)
    assert booking.payment_status == "refunded"


@pytest.mark.asyncio
async def test_partial_refund_within_policy(service, gateway, db, booking_factory):
    await booking_factory(db)
    payment = await create_and_verify(service, gateway, db)

    payment = await service.process_refund(
        db, payment.payment_id, "user_1", refund_amount=Decimal("100"), reason="Plans changed"
    )

    assert payment.refund_amount == Decimal("100.00")
    assert payment.refund_reason == "Plans changed"


@pytest.mark.asyncio
async def test_refund_above_total_is_invalid(service, gateway, db, booking_factory):
    await booking_factory(db)
    payment = await create_and_verify(service, gateway, db)

    with pytest.raises(InvalidAmountError):
        await service.process_refund(db, payment.payment_id, "user_1", refund_amount=Decimal("450.01"))
    with pytest.raises(InvalidAmountError):
        await service.process_refund(db, payment.payment_id, "user_1", refund_amount=0)
    assert gateway.refunds == []


@pytest.mark.asyncio
async def test_refund_policy_ceiling(service, gateway, db, booking_factory):
    # 13h before a pooling ride: 50% refundable
    await booking_factory(db, hours_ahead=13)
    payment = await create_and_verify(service, gateway, db)

    with pytest.raises(InvalidAmountError, match="cancellation policy"):
        await service.process_refund(db, payment.payment_id, "user_1")

    payment = await service.process_refund(db, payment.payment_id, "user_1", refund_amount=Decimal("225"))
    assert payment.refund_amount == Decimal("225.00")


@pytest.mark.asyncio
async def test_refund_policy_override(service, gateway, db, booking_factory):
    await booking_factory(db, hours_ahead=1)
    payment = await create_and_verify(service, gateway, db)

    payment = await service.process_refund(db, payment.payment_id, "user_1", override_policy=True)

    assert payment.refund_amount == Decimal("450.00")


@pytest.mark.asyncio
async def test_refund_twice_conflicts(service, gateway, db, booking_factory):
    await booking_factory(db)
    payment = await create_and_verify(service, gateway, db)
    await service.process_refund(db, payment.payment_id, "user_1")
    await db.commit()

    with pytest.raises(ConflictError, match="already refunded"):
        await service.process_refund(db, payment.payment_id, "user_1")
    assert len(gateway.refunds) == 1


@pytest.mark.asyncio
async def test_refund_requires_paid_payment(service, db, booking_factory):
    await booking_factory(db)
    payment, _ = await create(service, db)

    with pytest.raises(ConflictError):
        await service.process_refund(db, payment.payment_id, "user_1")


@pytest.mark.asyncio
async def test_refund_requires_owner(service, gateway, db, booking_factory):
    await booking_factory(db)
    payment = await create_and_verify(service, gateway, db)

    with pytest.raises(NotFoundError):
        await service.process_refund(db, payment.payment_id, "intruder")


@pytest.mark.asyncio
async def test_refund_gateway_rejection_keeps_payment_paid(service, gateway, db, booking_factory):
    await booking_factory(db)
    payment = await create_and_verify(service, gateway, db)
    gateway.fail_with = GatewayRejected("The payment has been fully refunded already")

    with pytest.raises(GatewayRejectedError):
        await service.process_refund(db, payment.payment_id, "user_1")

    await db.refresh(payment)
    assert payment.status == "paid"


# ============ concurrent actors ============


@pytest.mark.asyncio
async def test_verify_loses_race_to_webhook(service, gateway, db, booking_factory):
    await booking_factory(db)
    payment, order = await create(service, db)
    gateway.capture(order.id, "pay_1")
    spy = BookingUpdateSpy(service.bookings)

    # The webhook commits through its own session; this one still holds the pending row
    async with async_session_maker() as other:
        outcome = await service.reconcile_webhook_event(
            other, "payment.captured", captured_event(order.id, "pay_1")
        )
        await other.commit()
    assert outcome == WebhookOutcome.APPLIED
    assert payment.status == "pending"

    with pytest.raises(ConflictError, match="already verified"):
        await service.verify_payment(db, order.id, "pay_1", sign(order.id, "pay_1"), "user_1")
    await db.rollback()

    assert spy.calls == 1
    booking = await service.bookings.get_booking(db, "BK1")
    await db.refresh(booking)
    assert booking.payment_status == "paid"
    assert booking.status == "confirmed"


@pytest.mark.asyncio
async def test_stale_capture_webhook_is_duplicate(service, db, booking_factory):
    await booking_factory(db)
    payment, order = await create(service, db)
    spy = BookingUpdateSpy(service.bookings)
    event = captured_event(order.id, "pay_1")

    async with async_session_maker() as other:
        assert await service.reconcile_webhook_event(other, "payment.captured", event) == WebhookOutcome.APPLIED
        await other.commit()
    assert payment.status == "pending"

    outcome = await service.reconcile_webhook_event(db, "payment.captured", event)
    await db.commit()

    assert outcome == WebhookOutcome.DUPLICATE
    assert spy.calls == 1
    assert payment.status == "paid"


@pytest.mark.asyncio
async def test_stale_refund_conflicts(service, gateway, db, booking_factory):
    await booking_factory(db)
    payment = await create_and_verify(service, gateway, db)

    async with async_session_maker() as other:
        await service.process_refund(other, payment.payment_id, "user_1")
        await other.commit()
    assert payment.status == "paid"

    with pytest.raises(ConflictError, match="already refunded"):
        await service.process_refund(db, payment.payment_id, "user_1")
    await db.rollback()

    assert len(gateway.refunds) == 1
    await db.refresh(payment)
    assert payment.status == "refunded"
    assert payment.refund_amount == Decimal("450.00")


# ============ queries ============


@pytest.mark.asyncio
async def test_list_payments_filters_and_paginates(service, gateway, db, booking_factory):
    await booking_factory(db, booking_id="BK1")
    await booking_factory(db, booking_id="BK2")
    await booking_factory(db, booking_id="BK3", user_id="user_2")
    await create(service, db, booking_id="BK1")
    await create(service, db, booking_id="BK2")
    await create(service, db, booking_id="BK3", user_id="user_2")

    payments, total = await service.list_payments(db, "user_1", limit=1)
    assert total == 2
    assert len(payments) == 1

    payments, total = await service.list_payments(db, "user_1", status="paid")
    assert total == 0


@pytest.mark.asyncio
async def test_payment_rows_cannot_be_deleted(service, db, booking_factory):
    from app.core.immutability import ImmutabilityViolationError

    await booking_factory(db)
    payment, _ = await create(service, db)

    await db.delete(payment)
    with pytest.raises(ImmutabilityViolationError):
        await db.flush()
    await db.rollback()

    assert await db.get(Payment, payment.id) is not None


@pytest.mark.asyncio
async def test_paid_at_is_recent(service, gateway, db, booking_factory):
    await booking_factory(db)
    payment = await create_and_verify(service, gateway, db)

    paid_at = payment.paid_at
    if paid_at.tzinfo is None:
        paid_at = paid_at.replace(tzinfo=UTC)
    assert (datetime.now(UTC) - paid_at).total_seconds() < 60
