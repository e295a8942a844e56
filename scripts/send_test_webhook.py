#!/usr/bin/env python3
"""
Sign and send a Razorpay-style webhook to a local server.

DO NOT ADD BUSINESS LOGIC HERE.
This script only builds and posts the event.

Usage:
    python scripts/send_test_webhook.py --order-id order_ABC --payment-id pay_XYZ
    python scripts/send_test_webhook.py --event payment.failed --order-id order_ABC --reason "Card declined"
    python scripts/send_test_webhook.py --order-id order_ABC --payment-id pay_XYZ --bad-signature
"""

import argparse
import hashlib
import hmac
import json
import os
import sys

import httpx

BASE_URL = "http://localhost:8000"
WEBHOOK_PATH = "/api/v1/payments/webhook"


def build_event(event: str, order_id: str, payment_id: str, reason: str | None) -> dict:
    """Build a minimal webhook envelope."""
    entity = {
        "id": payment_id,
        "entity": "payment",
        "order_id": order_id,
        "status": "captured" if event == "payment.captured" else "failed",
    }
    if reason:
        entity["error_description"] = reason
    return {"entity": "event", "event": event, "payload": {"payment": {"entity": entity}}}


def send(base_url: str, secret: str, event: dict, bad_signature: bool = False) -> int:
    """Post the event signed with ``secret``."""
    body = json.dumps(event, separators=(",", ":")).encode()
    signature = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    if bad_signature:
        signature = "0" * len(signature)

    response = httpx.post(
        f"{base_url}{WEBHOOK_PATH}",
        content=body,
        headers={"Content-Type": "application/json", "X-Razorpay-Signature": signature},
        timeout=10.0,
    )

    print(f"Status: {response.status_code}")
    try:
        print(json.dumps(response.json(), indent=2))
    except json.JSONDecodeError:
        print(response.text)
    return response.status_code


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Send a signed test webhook")
    parser.add_argument("--event", default="payment.captured", choices=["payment.captured", "payment.failed"])
    parser.add_argument("--order-id", required=True)
    parser.add_argument("--payment-id", default="pay_test_local")
    parser.add_argument("--reason", help="error_description for payment.failed")
    parser.add_argument("--base-url", default=BASE_URL)
    parser.add_argument("--secret", default=os.environ.get("RAZORPAY_WEBHOOK_SECRET"))
    parser.add_argument("--bad-signature", action="store_true")
    args = parser.parse_args()

    if not args.secret:
        print("ERROR: Pass --secret or set RAZORPAY_WEBHOOK_SECRET.")
        sys.exit(1)

    event = build_event(args.event, args.order_id, args.payment_id, args.reason)
    status = send(args.base_url, args.secret, event, bad_signature=args.bad_signature)
    sys.exit(0 if status < 400 else 1)
