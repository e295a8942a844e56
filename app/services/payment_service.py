"""Payment lifecycle service.

Creates gateway orders, verifies checkout callbacks, reconciles gateway
webhooks and executes refunds. Payment and booking writes share the caller's
session and are committed together by the caller.
"""

import logging
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, NoReturn

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import (
    ConflictError,
    GatewayRejectedError,
    GatewayUnavailableError,
    InvalidAmountError,
    InvalidSignatureError,
    NotFoundError,
    PaymentNotCapturedError,
)
from app.core.idempotency import generate_idempotency_key
from app.core.signatures import SignatureVerifier
from app.domain.payment_state import PaymentStatus
from app.domain.refund_policy import eligible_refund
from app.gateways.base import (
    GatewayError,
    GatewayNotFound,
    GatewayUnavailable,
    OrderRef,
    PaymentGateway,
)
from app.models.payment import Payment
from app.services.booking_service import BookingService
from app.services.payment_ledger import PaymentLedger
from app.utils.currency import to_decimal, to_minor_units
from app.utils.references import generate_payment_id, generate_receipt

logger = logging.getLogger(__name__)

EVENT_PAYMENT_CAPTURED = "payment.captured"
EVENT_PAYMENT_FAILED = "payment.failed"

DEFAULT_REFUND_REASON = "User requested refund"
DEFAULT_FAILURE_REASON = "Payment failed"


class WebhookOutcome(str, Enum):
    """What a webhook delivery did to local state."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


def _raise_gateway_error(error: GatewayError) -> NoReturn:
    if isinstance(error, GatewayUnavailable):
        raise GatewayUnavailableError(error.message) from error
    raise GatewayRejectedError(error.message) from error


def _payment_entity(payload: dict[str, Any]) -> dict[str, Any] | None:
    """Extract ``payload.payment.entity`` from a webhook body."""
    try:
        entity = payload["payment"]["entity"]
    except (KeyError, TypeError):
        return None
    return entity if isinstance(entity, dict) else None


ACQUIRER_REFERENCE_KEYS = ("rrn", "upi_transaction_id", "bank_transaction_id", "auth_code")


def _acquirer_reference(entity: dict[str, Any]) -> str | None:
    """Acquirer-side transaction reference from a gateway payment entity."""
    acquirer_data = entity.get("acquirer_data")
    if not isinstance(acquirer_data, dict):
        return None
    for key in ACQUIRER_REFERENCE_KEYS:
        if acquirer_data.get(key):
            return str(acquirer_data[key])
    return None


def _merge_metadata(payment: Payment, **entries: Any) -> dict[str, Any]:
    return {**(payment.gateway_metadata or {}), **entries}


class PaymentService:
    """Payment lifecycle operations."""

    def __init__(
        self,
        gateway: PaymentGateway,
        verifier: SignatureVerifier,
        bookings: BookingService | None = None,
        ledger: PaymentLedger | None = None,
    ):
        self.gateway = gateway
        self.verifier = verifier
        self.bookings = bookings or BookingService()
        self.ledger = ledger or PaymentLedger()

    # ============ Create ============

    async def create_payment(
        self,
        db: AsyncSession,
        booking_id: str,
        user_id: str,
        amount: Decimal | int | str,
        platform_fee: Decimal | int | str,
        total_amount: Decimal | int | str,
        payment_method: str,
    ) -> tuple[Payment, OrderRef]:
        """Create a gateway order and a pending payment for a booking.

        The gateway order is created first; no payment row exists unless the
        gateway accepted the order.

        Raises:
            NotFoundError: Booking missing or owned by someone else
            InvalidAmountError: Amounts do not add up or total is not positive
            ConflictError: Booking already has a pending or paid payment
            GatewayUnavailableError: Gateway timed out or is down
            GatewayRejectedError: Gateway refused the order
        """
        booking = await self.bookings.get_user_booking(db, booking_id, user_id)

        amount = to_decimal(amount)
        platform_fee = to_decimal(platform_fee)
        total_amount = to_decimal(total_amount)
        if amount < 0 or platform_fee < 0:
            raise InvalidAmountError("Amounts must not be negative")
        if total_amount != amount + platform_fee:
            raise InvalidAmountError(
                f"Total {total_amount} does not equal amount {amount} + fee {platform_fee}"
            )
        if total_amount <= 0:
            raise InvalidAmountError("Total amount must be positive")

        # Failed attempts do not block a retry
        existing = await self.ledger.find_active_for_booking(db, booking_id)
        if existing:
            raise ConflictError(
                f"Booking {booking_id} already has a {existing.status} payment ({existing.payment_id})"
            )

        # Every earlier payment is terminal here, so a client retry of this
        # attempt derives the same key and gets back the order already created
        attempt = await self.ledger.count_for_booking(db, booking_id) + 1
        payment_id = generate_payment_id()
        minor_units = to_minor_units(total_amount)
        try:
            order = await self.gateway.create_order(
                amount=minor_units,
                currency=settings.payment_currency,
                receipt=generate_receipt(payment_id),
                notes={
                    "booking_id": booking_id,
                    "user_id": user_id,
                    "service_type": booking.service_type,
                },
                idempotency_key=generate_idempotency_key(
                    "order_create", booking_id, {"attempt": attempt, "amount": minor_units}
                ),
            )
        except GatewayError as e:
            logger.warning(f"Order creation failed for booking {booking_id}: {e.message}")
            _raise_gateway_error(e)

        payment = Payment(
            payment_id=payment_id,
            booking_id=booking_id,
            user_id=user_id,
            amount=amount,
            platform_fee=platform_fee,
            total_amount=total_amount,
            currency=settings.payment_currency,
            payment_method=payment_method,
            status=PaymentStatus.PENDING.value,
            gateway_order_id=order.id,
            gateway_metadata={"gateway_order": order.raw},
        )
        payment = await self.ledger.insert(db, payment)
        await self.bookings.link_payment(db, booking, payment_id)

        logger.info(
            f"Payment {payment_id} created for booking {booking_id}: "
            f"{total_amount} {payment.currency}, order {order.id}"
        )
        return payment, order

    # ============ Verify (client callback) ============

    async def verify_payment(
        self,
        db: AsyncSession,
        order_id: str,
        gateway_payment_id: str,
        signature: str,
        user_id: str,
    ) -> Payment:
        """Confirm a checkout the client reports as completed.

        The client signature is only a precondition; the payment becomes paid
        only if the gateway itself reports the capture.

        Raises:
            InvalidSignatureError: Signature does not match
            NotFoundError: No payment for the order owned by the user
            ConflictError: Payment is no longer pending
            PaymentNotCapturedError: Gateway does not report a capture for the order
        """
        if not self.verifier.verify_callback(order_id, gateway_payment_id, signature):
            logger.warning(f"Invalid checkout signature for order {order_id}")
            raise InvalidSignatureError()

        payment = await self.ledger.get_by_order_id(db, order_id)
        if not payment or payment.user_id != user_id:
            raise NotFoundError("Payment", order_id)

        if payment.status == PaymentStatus.PAID.value:
            raise ConflictError("Payment already verified")
        if payment.status != PaymentStatus.PENDING.value:
            raise ConflictError(f"Payment is {payment.status}")

        try:
            record = await self.gateway.fetch_payment(gateway_payment_id)
        except GatewayNotFound as e:
            raise PaymentNotCapturedError("Payment not found at gateway") from e
        except GatewayError as e:
            _raise_gateway_error(e)

        if not record.is_captured or record.order_id != order_id:
            logger.warning(
                f"Payment {payment.payment_id} not captured: gateway status={record.status} "
                f"order={record.order_id}"
            )
            raise PaymentNotCapturedError(f"Gateway reports payment as {record.status}")

        applied = await self.ledger.transition(
            db,
            payment,
            PaymentStatus.PAID,
            gateway_payment_id=gateway_payment_id,
            gateway_signature=signature,
            transaction_id=_acquirer_reference(record.raw) or record.id,
            paid_at=datetime.now(UTC),
            gateway_metadata=_merge_metadata(payment, gateway_payment=record.raw),
        )
        if not applied:
            if payment.status == PaymentStatus.PAID.value:
                raise ConflictError("Payment already verified")
            raise ConflictError(f"Payment is {payment.status}")

        await self.bookings.apply_payment_state(db, payment.booking_id, payment.status)
        return payment

    # ============ Webhooks ============

    async def reconcile_webhook_event(
        self,
        db: AsyncSession,
        event_type: str,
        payload: dict[str, Any],
    ) -> WebhookOutcome:
        """Apply a signature-verified gateway event.

        Safe to call any number of times with the same event.
        """
        if event_type not in (EVENT_PAYMENT_CAPTURED, EVENT_PAYMENT_FAILED):
            logger.info(f"Ignoring webhook event {event_type}")
            return WebhookOutcome.IGNORED

        entity = _payment_entity(payload)
        if not entity or not entity.get("order_id"):
            logger.warning(f"Webhook {event_type} without a payment entity order id")
            return WebhookOutcome.IGNORED

        order_id = entity["order_id"]
        payment = await self.ledger.get_by_order_id(db, order_id)
        if not payment:
            logger.info(f"Webhook {event_type} for unknown order {order_id}")
            return WebhookOutcome.IGNORED

        if event_type == EVENT_PAYMENT_CAPTURED:
            return await self._apply_capture(db, payment, entity)
        return await self._apply_failure(db, payment, entity)

    async def _apply_capture(
        self,
        db: AsyncSession,
        payment: Payment,
        entity: dict[str, Any],
    ) -> WebhookOutcome:
        if payment.status in (PaymentStatus.PAID.value, PaymentStatus.REFUNDED.value):
            return WebhookOutcome.DUPLICATE
        if payment.status == PaymentStatus.FAILED.value:
            logger.warning(
                f"Capture received for failed payment {payment.payment_id} "
                f"(gateway payment {entity.get('id')}); needs manual review"
            )
            return WebhookOutcome.IGNORED

        gateway_payment_id = entity.get("id")
        if not gateway_payment_id:
            logger.warning(f"Capture for order {payment.gateway_order_id} without payment id")
            return WebhookOutcome.IGNORED

        applied = await self.ledger.transition(
            db,
            payment,
            PaymentStatus.PAID,
            gateway_payment_id=gateway_payment_id,
            transaction_id=_acquirer_reference(entity) or gateway_payment_id,
            paid_at=datetime.now(UTC),
            gateway_metadata=_merge_metadata(payment, gateway_payment=entity),
        )
        if not applied:
            return WebhookOutcome.DUPLICATE

        await self.bookings.apply_payment_state(db, payment.booking_id, payment.status)
        logger.info(f"Payment {payment.payment_id} captured via webhook")
        return WebhookOutcome.APPLIED

    async def _apply_failure(
        self,
        db: AsyncSession,
        payment: Payment,
        entity: dict[str, Any],
    ) -> WebhookOutcome:
        if payment.status != PaymentStatus.PENDING.value:
            return WebhookOutcome.DUPLICATE

        applied = await self.ledger.transition(
            db,
            payment,
            PaymentStatus.FAILED,
            failure_reason=entity.get("error_description") or DEFAULT_FAILURE_REASON,
            gateway_metadata=_merge_metadata(payment, gateway_payment=entity),
        )
        if not applied:
            return WebhookOutcome.DUPLICATE

        logger.info(f"Payment {payment.payment_id} failed: {payment.failure_reason}")
        return WebhookOutcome.APPLIED

    # ============ Refunds ============

    async def process_refund(
        self,
        db: AsyncSession,
        payment_id: str,
        user_id: str,
        refund_amount: Decimal | int | str | None = None,
        reason: str | None = None,
        override_policy: bool = False,
        now: datetime | None = None,
    ) -> Payment:
        """Refund a paid payment.

        Args:
            db: Database session
            payment_id: External payment id
            user_id: Requesting user (must own the payment)
            refund_amount: Amount in rupees; defaults to the full total
            reason: Refund reason
            override_policy: Skip the cancellation-window ceiling
            now: Reference time for the policy window

        Raises:
            NotFoundError: Payment missing or not owned
            ConflictError: Payment not paid, already refunded, or lacks a gateway payment
            InvalidAmountError: Amount not positive, above total or above policy ceiling
            GatewayRejectedError: Gateway refused the refund
            GatewayUnavailableError: Gateway timed out or is down
        """
        payment = await self.get_payment(db, payment_id, user_id)

        if payment.status == PaymentStatus.REFUNDED.value:
            raise ConflictError("Payment already refunded")
        if payment.status != PaymentStatus.PAID.value:
            raise ConflictError(f"Only paid payments can be refunded (status: {payment.status})")
        if not payment.gateway_payment_id:
            raise ConflictError("Payment has no gateway payment to refund")

        total = to_decimal(payment.total_amount)
        amount = total if refund_amount is None else to_decimal(refund_amount)
        if amount <= 0:
            raise InvalidAmountError("Refund amount must be positive")
        if amount > total:
            raise InvalidAmountError(f"Refund amount {amount} exceeds total {total}")

        if settings.enforce_refund_policy and not override_policy:
            booking = await self.bookings.get_booking(db, payment.booking_id)
            if not booking:
                raise NotFoundError("Booking", payment.booking_id)
            try:
                ceiling = eligible_refund(total, booking.start_time, booking.service_type, now)
            except ValueError as e:
                raise InvalidAmountError(f"No refund policy for {booking.service_type}") from e
            if amount > ceiling:
                raise InvalidAmountError(
                    f"Refund amount {amount} exceeds the {ceiling} allowed by the cancellation policy"
                )

        reason = reason or DEFAULT_REFUND_REASON
        minor_units = to_minor_units(amount)
        try:
            refund = await self.gateway.issue_refund(
                payment.gateway_payment_id,
                minor_units,
                notes={"payment_id": payment.payment_id, "reason": reason},
                idempotency_key=generate_idempotency_key(
                    "refund_create", payment.payment_id, {"amount": minor_units}
                ),
            )
        except GatewayError as e:
            logger.error(f"Refund failed for payment {payment.payment_id}: {e.message}")
            _raise_gateway_error(e)

        applied = await self.ledger.transition(
            db,
            payment,
            PaymentStatus.REFUNDED,
            refund_amount=amount,
            refund_reason=reason,
            refunded_at=datetime.now(UTC),
            gateway_metadata=_merge_metadata(payment, gateway_refund=refund.raw),
        )
        if not applied:
            logger.warning(
                f"Refund {refund.id} issued but payment {payment.payment_id} "
                f"moved to {payment.status} concurrently"
            )
            raise ConflictError("Payment already refunded")

        await self.bookings.apply_payment_state(db, payment.booking_id, payment.status)
        logger.info(f"Payment {payment.payment_id} refunded {amount} (refund {refund.id})")
        return payment

    # ============ Queries ============

    async def get_payment(self, db: AsyncSession, payment_id: str, user_id: str) -> Payment:
        payment = await self.ledger.get_by_payment_id(db, payment_id)
        if not payment or payment.user_id != user_id:
            raise NotFoundError("Payment", payment_id)
        return payment

    async def list_payments(
        self,
        db: AsyncSession,
        user_id: str,
        status: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[Payment], int]:
        return await self.ledger.list_for_user(db, user_id, status=status, page=page, limit=limit)
