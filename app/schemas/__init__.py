"""Pydantic schemas for API validation."""

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
    WebhookAck,
)

__all__ = [
    # Payment
    "PaymentCreate",
    "PaymentVerify",
    "PaymentRefundRequest",
    "PaymentResponse",
    "PaymentEnvelope",
    "PaymentListResponse",
    "PaymentCreateResponse",
    "GatewayOrderResponse",
    "PaymentMethodResponse",
    "PaymentMethodsResponse",
    # Webhooks
    "WebhookAck",
]
