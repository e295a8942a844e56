"""Razorpay payment gateway adapter.

Talks to the Razorpay REST API over httpx with HTTP basic auth.
Documentation: https://razorpay.com/docs/api/
"""

import logging

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.config import settings
from app.gateways.base import (
    GatewayError,
    GatewayNotFound,
    GatewayPaymentRecord,
    GatewayRejected,
    GatewayType,
    GatewayUnavailable,
    OrderRef,
    PaymentGateway,
    RefundRef,
)

logger = logging.getLogger(__name__)

IDEMPOTENCY_HEADER = "X-Idempotency-Key"


class RazorpayGateway(PaymentGateway):
    """Razorpay payment gateway implementation."""

    def __init__(
        self,
        key_id: str | None = None,
        key_secret: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.key_id = key_id if key_id is not None else settings.razorpay_key_id
        self.key_secret = key_secret if key_secret is not None else settings.razorpay_key_secret
        self.base_url = (base_url or settings.razorpay_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.gateway_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else settings.gateway_max_retries
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def gateway_type(self) -> GatewayType:
        return GatewayType.RAZORPAY

    @property
    def public_key(self) -> str | None:
        return self.key_id

    def _get_client(self) -> httpx.AsyncClient:
        if not self.key_id or not self.key_secret:
            raise GatewayUnavailable("Razorpay not configured")
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                auth=(self.key_id, self.key_secret),
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._client

    async def _request(
        self,
        method: str,
        path: str,
        json: dict | None = None,
        headers: dict | None = None,
    ) -> dict:
        """Send one request and translate failures into gateway errors."""
        client = self._get_client()
        try:
            response = await client.request(method, path, json=json, headers=headers)
        except httpx.TimeoutException as e:
            raise GatewayUnavailable(f"Razorpay timed out: {e}") from e
        except httpx.TransportError as e:
            raise GatewayUnavailable(f"Razorpay unreachable: {e}") from e

        if response.status_code < 400:
            return response.json()

        try:
            error = response.json().get("error", {})
        except ValueError:
            error = {}
        code = error.get("code")
        description = error.get("description") or response.text[:200]

        if response.status_code == 429 or response.status_code >= 500:
            raise GatewayUnavailable(description, status_code=response.status_code, code=code)
        if response.status_code == 404 or "does not exist" in (description or "").lower():
            raise GatewayNotFound(description, status_code=response.status_code, code=code)
        raise GatewayRejected(description, status_code=response.status_code, code=code)

    async def create_order(
        self,
        amount: int,
        currency: str,
        receipt: str,
        notes: dict | None = None,
        idempotency_key: str | None = None,
    ) -> OrderRef:
        """Create Razorpay order."""
        headers = {IDEMPOTENCY_HEADER: idempotency_key} if idempotency_key else None
        data = await self._request(
            "POST",
            "/orders",
            json={
                "amount": amount,
                "currency": currency,
                "receipt": receipt,
                "notes": {k: str(v) for k, v in (notes or {}).items()},
            },
            headers=headers,
        )
        logger.info(f"Razorpay order created: {data.get('id')} receipt={receipt}")
        return OrderRef(
            id=data["id"],
            amount=int(data["amount"]),
            currency=data["currency"],
            raw=data,
        )

    async def fetch_payment(self, gateway_payment_id: str) -> GatewayPaymentRecord:
        """Fetch Razorpay payment, retrying transient failures."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
            retry=retry_if_exception_type(GatewayUnavailable),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                data = await self._request("GET", f"/payments/{gateway_payment_id}")

        return GatewayPaymentRecord(
            id=data["id"],
            status=data.get("status", ""),
            order_id=data.get("order_id"),
            error_description=data.get("error_description"),
            raw=data,
        )

    async def issue_refund(
        self,
        gateway_payment_id: str,
        amount: int,
        notes: dict | None = None,
        idempotency_key: str | None = None,
    ) -> RefundRef:
        """Create Razorpay refund."""
        body: dict = {
            "amount": amount,
            "notes": {k: str(v) for k, v in (notes or {}).items()},
        }
        headers = None
        if idempotency_key:
            headers = {IDEMPOTENCY_HEADER: idempotency_key}
            body["receipt"] = idempotency_key[:40]

        data = await self._request(
            "POST",
            f"/payments/{gateway_payment_id}/refund",
            json=body,
            headers=headers,
        )
        logger.info(f"Razorpay refund created: {data.get('id')} payment={gateway_payment_id}")
        return RefundRef(id=data["id"], amount=int(data.get("amount", amount)), raw=data)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


__all__ = ["RazorpayGateway", "GatewayError"]
