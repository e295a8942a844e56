"""Main API router that includes all endpoint routers."""

from fastapi import APIRouter

from app.api.v1 import payments, webhooks

api_router = APIRouter()

# Webhooks (signature-authenticated, registered ahead of /payments/{payment_id})
api_router.include_router(webhooks.router, prefix="/payments", tags=["Webhooks"])

# Payments
api_router.include_router(payments.router, prefix="/payments", tags=["Payments"])
