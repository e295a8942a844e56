"""Webhook endpoint for the payment gateway."""

import json
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import PaymentServiceDep
from app.database import get_db
from app.schemas.payment import WebhookAck

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/webhook", response_model=WebhookAck, status_code=status.HTTP_200_OK)
async def razorpay_webhook(
    request: Request,
    service: PaymentServiceDep,
    db: Annotated[AsyncSession, Depends(get_db)],
    razorpay_signature: Annotated[str | None, Header(alias="X-Razorpay-Signature")] = None,
):
    """Handle Razorpay webhook events.

    400 for authentication or envelope problems (never retried usefully),
    500 for processing errors so the gateway redelivers.
    """
    # Signature covers the exact bytes received
    payload = await request.body()

    if not service.verifier.verify_webhook(payload, razorpay_signature):
        logger.warning("Rejected webhook with missing or invalid signature")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signature",
        )

    try:
        event = json.loads(payload)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid payload",
        )
    if not isinstance(event, dict) or not isinstance(event.get("event"), str):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid payload",
        )

    event_type = event["event"]
    try:
        outcome = await service.reconcile_webhook_event(db, event_type, event.get("payload") or {})
        await db.commit()
    except Exception:
        await db.rollback()
        logger.exception(f"Error processing webhook {event_type}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False},
        )

    logger.info(f"Webhook {event_type} processed: {outcome.value}")
    return WebhookAck(success=True)
