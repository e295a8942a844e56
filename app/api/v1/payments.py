"""Payment endpoints."""

from typing import Annotated, Literal

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import CurrentUserDep, PaymentServiceDep
from app.core.exceptions import NotFoundError
from app.database import get_db
from app.schemas.payment import (
    GatewayOrderResponse,
    PaymentCreate,
    PaymentCreateResponse,
    PaymentEnvelope,
    PaymentListResponse,
    PaymentMethodResponse,
    PaymentMethodsResponse,
    PaymentRefundRequest,
    PaymentResponse,
    PaymentVerify,
)

router = APIRouter()

CHECKOUT_METHODS = [
    PaymentMethodResponse(id="upi", name="UPI", description="Pay using UPI apps", icon="upi"),
    PaymentMethodResponse(
        id="card", name="Credit/Debit Card", description="Pay using card", icon="card"
    ),
    PaymentMethodResponse(
        id="wallet", name="Wallet", description="Pay using digital wallets", icon="wallet"
    ),
    PaymentMethodResponse(
        id="net_banking",
        name="Net Banking",
        description="Pay using net banking",
        icon="netbanking",
    ),
]


@router.post("/create", response_model=PaymentCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_payment(
    payment_data: PaymentCreate,
    current_user: CurrentUserDep,
    service: PaymentServiceDep,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> PaymentCreateResponse:
    """Create a gateway order and a pending payment for a booking."""
    booking = await service.bookings.get_booking(db, payment_data.booking_id)
    if not booking or booking.user_id != current_user.id:
        raise NotFoundError("Booking", payment_data.booking_id)

    payment, order = await service.create_payment(
        db,
        booking_id=booking.booking_id,
        user_id=current_user.id,
        amount=booking.amount,
        platform_fee=booking.platform_fee,
        total_amount=booking.total_amount,
        payment_method=payment_data.payment_method,
    )
    await db.commit()
    return PaymentCreateResponse(
        payment=PaymentResponse.model_validate(payment),
        gateway_order=GatewayOrderResponse(
            id=order.id,
            amount=order.amount,
            currency=order.currency,
            key=service.gateway.public_key,
        ),
    )


@router.post("/verify", response_model=PaymentEnvelope)
async def verify_payment(
    verify_data: PaymentVerify,
    current_user: CurrentUserDep,
    service: PaymentServiceDep,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> PaymentEnvelope:
    """Confirm a completed checkout with the gateway."""
    payment = await service.verify_payment(
        db,
        order_id=verify_data.order_id,
        gateway_payment_id=verify_data.gateway_payment_id,
        signature=verify_data.signature,
        user_id=current_user.id,
    )
    await db.commit()
    return PaymentEnvelope(payment=PaymentResponse.model_validate(payment))


@router.get("/methods", response_model=PaymentMethodsResponse)
async def list_payment_methods() -> PaymentMethodsResponse:
    """Payment methods offered at checkout."""
    return PaymentMethodsResponse(methods=CHECKOUT_METHODS)


@router.get("", response_model=PaymentListResponse)
async def list_payments(
    current_user: CurrentUserDep,
    service: PaymentServiceDep,
    db: Annotated[AsyncSession, Depends(get_db)],
    payment_status: Annotated[
        Literal["pending", "paid", "failed", "refunded"] | None, Query(alias="status")
    ] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
) -> PaymentListResponse:
    """List the current user's payments, newest first."""
    payments, total = await service.list_payments(
        db, current_user.id, status=payment_status, page=page, limit=limit
    )
    return PaymentListResponse(
        payments=[PaymentResponse.model_validate(p) for p in payments],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/{payment_id}", response_model=PaymentEnvelope)
async def get_payment(
    payment_id: str,
    current_user: CurrentUserDep,
    service: PaymentServiceDep,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> PaymentEnvelope:
    """Get payment details."""
    payment = await service.get_payment(db, payment_id, current_user.id)
    return PaymentEnvelope(payment=PaymentResponse.model_validate(payment))


@router.post("/{payment_id}/refund", response_model=PaymentEnvelope)
async def refund_payment(
    payment_id: str,
    current_user: CurrentUserDep,
    service: PaymentServiceDep,
    db: Annotated[AsyncSession, Depends(get_db)],
    refund_data: PaymentRefundRequest | None = None,
) -> PaymentEnvelope:
    """Refund a paid payment.

    ``overridePolicy`` is honoured for admins only.
    """
    refund_data = refund_data or PaymentRefundRequest()
    payment = await service.process_refund(
        db,
        payment_id=payment_id,
        user_id=current_user.id,
        refund_amount=refund_data.refund_amount,
        reason=refund_data.reason,
        override_policy=refund_data.override_policy and current_user.is_admin,
    )
    await db.commit()
    return PaymentEnvelope(payment=PaymentResponse.model_validate(payment))
