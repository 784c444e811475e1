"""Core utilities: exceptions, security, middleware."""

from app.core.exceptions import (
    AlreadyCancelled,
    AppException,
    AuthenticationError,
    AuthorizationError,
    InvalidCancellation,
    InvalidTransition,
    LedgerError,
    NotFoundError,
    PaymentError,
    PersistenceError,
    TerminalStateViolation,
    TripAlreadyOccurred,
    ValidationError,
)
from app.core.security import verify_token

__all__ = [
    "AlreadyCancelled",
    "AppException",
    "AuthenticationError",
    "AuthorizationError",
    "InvalidCancellation",
    "InvalidTransition",
    "LedgerError",
    "NotFoundError",
    "PaymentError",
    "PersistenceError",
    "TerminalStateViolation",
    "TripAlreadyOccurred",
    "ValidationError",
    "verify_token",
]
