"""Pytest bootstrap configuration.

Environment variables are set before any ``app`` import because settings,
the engine and the session factory are built at import time.
"""
import os
import tempfile
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from pathlib import Path

_DB_DIR = tempfile.mkdtemp(prefix="ridepay-tests-")

os.environ["ENVIRONMENT"] = "test"
os.environ["DEBUG"] = "false"
os.environ["SQLALCHEMY_DATABASE_URI"] = f"sqlite+aiosqlite:///{Path(_DB_DIR) / 'test.db'}"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret"
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "checkout-secret"
os.environ["RAZORPAY_WEBHOOK_SECRET"] = "webhook-secret"
os.environ["ENFORCE_REFUND_POLICY"] = "true"

import httpx  # noqa: E402
import pytest  # noqa: E402

from app.core.immutability import register_immutability_enforcement  # noqa: E402
from app.core.security import create_access_token  # noqa: E402
from app.core.signatures import SignatureVerifier  # noqa: E402
from app.database import Base, async_session_maker, engine  # noqa: E402
from app.gateways.base import (  # noqa: E402
    GatewayNotFound,
    GatewayPaymentRecord,
    GatewayType,
    OrderRef,
    PaymentGateway,
    RefundRef,
)
from app.models.booking import Booking  # noqa: E402
from app.services.payment_service import PaymentService  # noqa: E402

CHECKOUT_SECRET = "checkout-secret"
WEBHOOK_SECRET = "webhook-secret"

register_immutability_enforcement()


class FakeGateway(PaymentGateway):
    """In-memory gateway that records every call."""

    def __init__(self):
        self.orders: list[dict] = []
        self.refunds: list[dict] = []
        self.payments: dict[str, GatewayPaymentRecord] = {}
        self.fail_with: Exception | None = None
        # Raised after an order is accepted, like a response lost to a timeout
        self.fail_after_accept: Exception | None = None
        self.order_calls = 0

    @property
    def gateway_type(self) -> GatewayType:
        return GatewayType.RAZORPAY

    @property
    def public_key(self) -> str | None:
        return "rzp_test_fake"

    async def create_order(self, amount, currency, receipt, notes=None, idempotency_key=None):
        self.order_calls += 1
        if self.fail_with:
            raise self.fail_with
        replayed = self._replay(self.orders, idempotency_key)
        if replayed:
            return OrderRef(
                id=replayed["id"],
                amount=replayed["amount"],
                currency=replayed["currency"],
                raw={"id": replayed["id"], "amount": replayed["amount"]},
            )
        order_id = f"order_{len(self.orders) + 1}"
        call = {
            "id": order_id,
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "notes": notes,
            "idempotency_key": idempotency_key,
        }
        self.orders.append(call)
        if self.fail_after_accept:
            error, self.fail_after_accept = self.fail_after_accept, None
            raise error
        return OrderRef(id=order_id, amount=amount, currency=currency, raw={"id": order_id, "amount": amount})

    def capture(
        self,
        order_id: str,
        gateway_payment_id: str,
        status: str = "captured",
        acquirer_data: dict | None = None,
    ) -> None:
        """Make the gateway report a payment for ``order_id``."""
        raw = {"id": gateway_payment_id, "status": status, "order_id": order_id}
        if acquirer_data is not None:
            raw["acquirer_data"] = acquirer_data
        self.payments[gateway_payment_id] = GatewayPaymentRecord(
            id=gateway_payment_id, status=status, order_id=order_id, raw=raw
        )

    async def fetch_payment(self, gateway_payment_id):
        if gateway_payment_id not in self.payments:
            raise GatewayNotFound("The id provided does not exist", status_code=400)
        return self.payments[gateway_payment_id]

    async def issue_refund(self, gateway_payment_id, amount, notes=None, idempotency_key=None):
        if self.fail_with:
            raise self.fail_with
        replayed = self._replay(self.refunds, idempotency_key)
        if replayed:
            return RefundRef(id=replayed["id"], amount=replayed["amount"], raw={"id": replayed["id"]})
        refund_id = f"rfnd_{len(self.refunds) + 1}"
        self.refunds.append(
            {
                "id": refund_id,
                "payment_id": gateway_payment_id,
                "amount": amount,
                "notes": notes,
                "idempotency_key": idempotency_key,
            }
        )
        return RefundRef(id=refund_id, amount=amount, raw={"id": refund_id, "amount": amount})

    @staticmethod
    def _replay(calls: list[dict], idempotency_key: str | None) -> dict | None:
        """Earlier call with the same key; the gateway answers it instead of acting twice."""
        if not idempotency_key:
            return None
        return next((c for c in calls if c["idempotency_key"] == idempotency_key), None)


@pytest.fixture
async def database():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


@pytest.fixture
async def db(database):
    async with async_session_maker() as session:
        yield session


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def verifier() -> SignatureVerifier:
    return SignatureVerifier(checkout_secret=CHECKOUT_SECRET, webhook_secret=WEBHOOK_SECRET)


@pytest.fixture
def service(gateway, verifier) -> PaymentService:
    return PaymentService(gateway=gateway, verifier=verifier)


async def make_booking(
    db,
    booking_id: str = "BK1",
    user_id: str = "user_1",
    service_type: str = "pooling",
    hours_ahead: float = 30,
    amount: str = "400",
    platform_fee: str = "50",
    status: str = "pending",
) -> Booking:
    booking = Booking(
        booking_id=booking_id,
        user_id=user_id,
        service_type=service_type,
        start_time=datetime.now(UTC) + timedelta(hours=hours_ahead),
        amount=Decimal(amount),
        platform_fee=Decimal(platform_fee),
        total_amount=Decimal(amount) + Decimal(platform_fee),
        status=status,
        payment_status="pending",
    )
    db.add(booking)
    await db.commit()
    return booking


@pytest.fixture
def booking_factory():
    return make_booking


@pytest.fixture
async def app_client(database, gateway, verifier):
    from app.api.deps import get_signature_verifier
    from app.main import app
    from app.services.gateway_service import get_payment_gateway

    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_signature_verifier] = lambda: verifier
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(user_id: str = "user_1", role: str = "user") -> dict[str, str]:
        token = create_access_token({"sub": user_id, "role": role})
        return {"Authorization": f"Bearer {token}"}

    return _headers
