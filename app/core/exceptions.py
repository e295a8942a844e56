"""Custom application exceptions."""

from typing import Any

from fastapi import HTTPException, status


class AppException(HTTPException):
    """Base application exception."""

    def __init__(
        self,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail: str = "An unexpected error occurred",
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(status_code=status_code, detail=detail, headers=headers)


class ValidationError(AppException):
    """Validation error exception."""

    def __init__(self, detail: str = "Validation failed", errors: list[dict[str, Any]] | None = None) -> None:
        self.errors = errors
        super().__init__(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)


class NotFoundError(AppException):
    """Resource not found exception."""

    def __init__(self, resource: str = "Resource", identifier: str | None = None) -> None:
        detail = f"{resource} not found"
        if identifier:
            detail = f"{resource} with ID '{identifier}' not found"
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class ConflictError(AppException):
    """Operation conflicts with the current state of a resource."""

    def __init__(self, detail: str = "Resource is in a conflicting state") -> None:
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class AuthenticationError(AppException):
    """Authentication failed exception."""

    def __init__(self, detail: str = "Authentication failed") -> None:
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class AuthorizationError(AppException):
    """Authorization denied exception."""

    def __init__(self, detail: str = "You don't have permission to access this resource") -> None:
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class InvalidSignatureError(AppException):
    """Forged or tampered payment signature."""

    def __init__(self, detail: str = "Invalid payment signature") -> None:
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class InvalidAmountError(AppException):
    """Amount violates payment or refund rules."""

    def __init__(self, detail: str = "Invalid amount") -> None:
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class PaymentNotCapturedError(AppException):
    """Gateway does not report the payment as captured."""

    def __init__(self, detail: str = "Payment not captured") -> None:
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class GatewayUnavailableError(AppException):
    """Payment gateway timed out or is temporarily unavailable. Safe to retry."""

    def __init__(self, detail: str | None = None, retry_after: int = 30) -> None:
        message = "Payment gateway is unavailable"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=message,
            headers={"Retry-After": str(retry_after)},
        )


class GatewayRejectedError(AppException):
    """Payment gateway rejected the request. Not retryable."""

    def __init__(self, detail: str | None = None) -> None:
        message = "Payment gateway rejected the request"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(status_code=status.HTTP_502_BAD_GATEWAY, detail=message)

