"""Payment gateway wiring.

Builds the configured gateway adapter for the composition root (API
dependencies, Celery tasks). Services receive the adapter through their
constructor so tests can swap in a fake.
"""

from functools import lru_cache

from app.config import settings
from app.gateways.base import GatewayType, PaymentGateway
from app.gateways.razorpay import RazorpayGateway


def _is_production() -> bool:
    """Check if running in production environment."""
    return settings.environment == "production"


def build_gateway(gateway_type: str | GatewayType = GatewayType.RAZORPAY) -> PaymentGateway:
    """Create a gateway adapter instance."""
    gateway_type = GatewayType(gateway_type)
    if gateway_type == GatewayType.RAZORPAY:
        return RazorpayGateway()
    raise ValueError(f"Unsupported gateway: {gateway_type}")


@lru_cache
def get_payment_gateway() -> PaymentGateway:
    """Process-wide gateway adapter (holds the HTTP connection pool)."""
    gateway = build_gateway(GatewayType.RAZORPAY)
    key_id = gateway.public_key or ""
    if _is_production() and key_id.startswith("rzp_test_"):
        raise RuntimeError("Refusing to use Razorpay test keys in production")
    return gateway


async def close_payment_gateway() -> None:
    """Close the cached gateway's connection pool on shutdown."""
    if get_payment_gateway.cache_info().currsize:
        await get_payment_gateway().aclose()
        get_payment_gateway.cache_clear()
