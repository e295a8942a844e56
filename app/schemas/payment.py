"""Payment-related Pydantic schemas.

Request and response bodies use camelCase on the wire.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

# Rupee amounts go out as JSON numbers
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]

CheckoutMethod = Literal["upi", "card", "wallet", "net_banking"]


class CamelModel(BaseModel):
    """Base schema with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PaymentCreate(CamelModel):
    """Schema for initiating a payment."""

    booking_id: str = Field(..., min_length=1, max_length=64)
    payment_method: CheckoutMethod


class PaymentVerify(CamelModel):
    """Checkout callback relayed by the client."""

    order_id: str = Field(..., min_length=1)
    gateway_payment_id: str = Field(..., min_length=1)
    signature: str = Field(..., min_length=1)


class PaymentRefundRequest(CamelModel):
    """Schema for refunding a payment."""

    refund_amount: Decimal | None = Field(
        None, description="Refund amount in rupees. If not provided, full refund."
    )
    reason: str | None = Field(None, max_length=1000)
    override_policy: bool = False


class PaymentResponse(CamelModel):
    """Schema for payment response."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )

    payment_id: str
    booking_id: str
    user_id: str
    amount: Money
    platform_fee: Money
    total_amount: Money
    currency: str
    payment_method: str
    status: str
    gateway_order_id: str
    gateway_payment_id: str | None = None
    transaction_id: str | None = None
    failure_reason: str | None = None
    refund_amount: Money | None = None
    refund_reason: str | None = None
    refunded_at: datetime | None = None
    paid_at: datetime | None = None
    gateway_metadata: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("gateway_metadata", "metadata"),
        serialization_alias="metadata",
    )
    created_at: datetime
    updated_at: datetime


class GatewayOrderResponse(CamelModel):
    """Order details the client needs to open checkout."""

    id: str
    amount: int  # paise
    currency: str
    key: str | None = None


class PaymentCreateResponse(CamelModel):
    payment: PaymentResponse
    gateway_order: GatewayOrderResponse


class PaymentEnvelope(CamelModel):
    payment: PaymentResponse


class PaymentListResponse(CamelModel):
    """Schema for paginated payment list."""

    payments: list[PaymentResponse]
    total: int
    page: int
    limit: int


class PaymentMethodResponse(CamelModel):
    id: str
    name: str
    description: str
    icon: str


class PaymentMethodsResponse(CamelModel):
    methods: list[PaymentMethodResponse]


class WebhookAck(CamelModel):
    success: bool
