"""Base payment gateway interface.

All gateway adapters must implement this interface.
Business logic should NOT live in adapters - only gateway communication.
Amounts crossing this interface are always in minor units (paise).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum


class GatewayType(str, Enum):
    """Supported payment gateways."""

    RAZORPAY = "razorpay"


class GatewayError(Exception):
    """Base class for gateway failures."""

    def __init__(self, message: str, *, status_code: int | None = None, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


class GatewayUnavailable(GatewayError):
    """Timeout, network failure, 5xx or throttling. Retryable."""


class GatewayRejected(GatewayError):
    """The gateway refused the request (validation, business rule). Not retryable."""


class GatewayNotFound(GatewayError):
    """The referenced gateway object does not exist."""


@dataclass
class OrderRef:
    """Gateway order created for a checkout."""

    id: str
    amount: int
    currency: str
    raw: dict = field(default_factory=dict)


@dataclass
class GatewayPaymentRecord:
    """Authoritative gateway view of a payment."""

    id: str
    status: str  # created, authorized, captured, refunded, failed
    order_id: str | None = None
    error_description: str | None = None
    raw: dict = field(default_factory=dict)

    @property
    def is_captured(self) -> bool:
        return self.status == "captured"


@dataclass
class RefundRef:
    """Refund accepted by the gateway."""

    id: str
    amount: int
    raw: dict = field(default_factory=dict)


class PaymentGateway(ABC):
    """Abstract base class for payment gateways."""

    @property
    @abstractmethod
    def gateway_type(self) -> GatewayType:
        """Return the gateway type."""
        pass

    @property
    def public_key(self) -> str | None:
        """Publishable key handed to the checkout client, if any."""
        return None

    @abstractmethod
    async def create_order(
        self,
        amount: int,
        currency: str,
        receipt: str,
        notes: dict | None = None,
        idempotency_key: str | None = None,
    ) -> OrderRef:
        """Create an order the client will pay against.

        Args:
            amount: Amount in smallest currency unit (paise)
            currency: Currency code (INR)
            receipt: Internal reference (payment_id based)
            notes: Key/value notes stored on the order
            idempotency_key: Dedup key derived from the local payment id

        Raises:
            GatewayUnavailable: Transient failure
            GatewayRejected: Invalid request
        """
        pass

    @abstractmethod
    async def fetch_payment(self, gateway_payment_id: str) -> GatewayPaymentRecord:
        """Fetch the gateway's view of a payment. Read-only, safe to retry.

        Raises:
            GatewayNotFound: Unknown payment id
            GatewayUnavailable: Transient failure
        """
        pass

    @abstractmethod
    async def issue_refund(
        self,
        gateway_payment_id: str,
        amount: int,
        notes: dict | None = None,
        idempotency_key: str | None = None,
    ) -> RefundRef:
        """Refund a captured payment. Never retried blindly.

        Args:
            gateway_payment_id: Captured gateway payment id
            amount: Refund amount in smallest currency unit
            notes: Key/value notes stored on the refund
            idempotency_key: Dedup key derived from the local payment id

        Raises:
            GatewayRejected: Refund refused
            GatewayUnavailable: Transient failure
        """
        pass

    async def aclose(self) -> None:
        """Release network resources."""
        return None
