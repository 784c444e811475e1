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


# ==================== LEDGER ERRORS ====================


class LedgerError(AppException):
    """Base class for booking ledger failures."""


class InvalidTransition(LedgerError):
    """Attempted a booking state change that is not allowed."""

    def __init__(self, detail: str = "This operation is not allowed for the current booking status") -> None:
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class TerminalStateViolation(LedgerError):
    """Attempted to move a completed or cancelled booking."""

    def __init__(self, current: str = "terminal", detail: str | None = None) -> None:
        self.current = current
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail or f"Booking is {current} and can no longer change",
        )


class AlreadyCancelled(TerminalStateViolation):
    """Cancellation requested for a booking that is already cancelled."""

    def __init__(self) -> None:
        super().__init__(current="cancelled", detail="Booking is already cancelled")


class TripAlreadyOccurred(LedgerError):
    """Cancellation requested after the trip started."""

    def __init__(self, detail: str = "Cannot cancel trips that have already occurred") -> None:
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class InvalidCancellation(LedgerError):
    """Refund tier requested for a negative number of days until the trip."""

    def __init__(self, days_until_trip: int) -> None:
        self.days_until_trip = days_until_trip
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot cancel {abs(days_until_trip)} day(s) after the trip started",
        )


class PersistenceError(LedgerError):
    """Ledger transaction failed to commit. Nothing was written."""

    def __init__(self, detail: str = "The booking could not be updated. Please try again.") -> None:
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)


class PaymentError(AppException):
    """Payment processing error."""

    def __init__(self, detail: str = "Payment processing failed") -> None:
        super().__init__(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail=detail)


class RateLimitExceeded(AppException):
    """Rate limit exceeded exception."""

    def __init__(self, detail: str = "Too many requests. Please try again later.") -> None:
        super().__init__(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=detail)


class ExternalServiceError(AppException):
    """External service error."""

    def __init__(self, service: str, detail: str | None = None) -> None:
        message = f"External service '{service}' is unavailable"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=message)
