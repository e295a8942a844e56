"""API dependencies for authentication and service wiring."""

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.exceptions import AuthenticationError
from app.core.security import verify_token
from app.core.signatures import SignatureVerifier
from app.gateways.base import PaymentGateway
from app.services.booking_service import BookingService
from app.services.gateway_service import get_payment_gateway
from app.services.payment_service import PaymentService

# Security scheme
security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    """Identity asserted by the access token. Users live in the auth service."""

    id: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> CurrentUser:
    """Get the current authenticated user from JWT token."""
    if not credentials:
        raise AuthenticationError("Not authenticated")
    payload = verify_token(credentials.credentials, token_type="access")
    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Invalid token payload")
    return CurrentUser(id=str(user_id), role=payload.get("role") or "user")


def get_signature_verifier() -> SignatureVerifier:
    return SignatureVerifier.from_settings()


def get_booking_service() -> BookingService:
    return BookingService()


def get_payment_service(
    gateway: Annotated[PaymentGateway, Depends(get_payment_gateway)],
    verifier: Annotated[SignatureVerifier, Depends(get_signature_verifier)],
    bookings: Annotated[BookingService, Depends(get_booking_service)],
) -> PaymentService:
    """Payment service with the process-wide gateway adapter injected."""
    return PaymentService(gateway=gateway, verifier=verifier, bookings=bookings)


CurrentUserDep = Annotated[CurrentUser, Depends(get_current_user)]
PaymentServiceDep = Annotated[PaymentService, Depends(get_payment_service)]
