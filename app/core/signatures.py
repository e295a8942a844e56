"""HMAC-SHA256 signature verification for payment callbacks and webhooks.

Two secrets are used on purpose:
- the checkout secret signs ``order_id|payment_id`` handed back to the client
  after checkout. The client relays it, so it is only ever trusted together
  with an authoritative gateway lookup.
- the webhook secret signs raw webhook bodies sent server-to-server.
"""

from __future__ import annotations

import hashlib
import hmac

from app.config import settings


def compute_hmac(secret: str, payload: str | bytes) -> str:
    """Return the hex HMAC-SHA256 digest of ``payload`` under ``secret``."""
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def callback_payload(order_id: str, gateway_payment_id: str) -> str:
    """Canonical string signed for checkout callbacks."""
    return f"{order_id}|{gateway_payment_id}"


def _matches(secret: str | None, payload: str | bytes, provided_signature: str | None) -> bool:
    if not secret or not provided_signature:
        return False
    expected = compute_hmac(secret, payload)
    return hmac.compare_digest(expected, provided_signature.strip().lower())


class SignatureVerifier:
    """Verifies client callbacks and gateway webhooks."""

    def __init__(self, checkout_secret: str | None, webhook_secret: str | None) -> None:
        self.checkout_secret = checkout_secret
        self.webhook_secret = webhook_secret

    @classmethod
    def from_settings(cls) -> "SignatureVerifier":
        return cls(
            checkout_secret=settings.razorpay_key_secret,
            webhook_secret=settings.razorpay_webhook_secret,
        )

    def verify_callback(
        self,
        order_id: str,
        gateway_payment_id: str,
        provided_signature: str | None,
    ) -> bool:
        """Check the signature the client received from checkout."""
        return _matches(
            self.checkout_secret,
            callback_payload(order_id, gateway_payment_id),
            provided_signature,
        )

    def verify_webhook(self, raw_body: bytes, provided_signature: str | None) -> bool:
        """Check a webhook signature against the exact bytes received."""
        return _matches(self.webhook_secret, raw_body, provided_signature)
