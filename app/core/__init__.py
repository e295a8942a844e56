"""Core utilities and security modules."""

from app.core.exceptions import (
    AppException,
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    GatewayRejectedError,
    GatewayUnavailableError,
    InvalidAmountError,
    InvalidSignatureError,
    NotFoundError,
    PaymentNotCapturedError,
    ValidationError,
)
from app.core.security import create_access_token, verify_token
from app.core.signatures import SignatureVerifier, compute_hmac

__all__ = [
    "AppException",
    "AuthenticationError",
    "AuthorizationError",
    "ConflictError",
    "GatewayRejectedError",
    "GatewayUnavailableError",
    "InvalidAmountError",
    "InvalidSignatureError",
    "NotFoundError",
    "PaymentNotCapturedError",
    "ValidationError",
    "SignatureVerifier",
    "compute_hmac",
    "create_access_token",
    "verify_token",
]
