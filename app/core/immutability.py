"""Immutability enforcement for ledger audit records using SQLAlchemy events."""

import logging
from datetime import UTC, datetime

from sqlalchemy import event

from app.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

_registered = False


class ImmutabilityViolationError(ValidationError):
    """Raised when attempting to modify immutable ledger records."""

    def __init__(self, model_name: str, operation: str, record_id: str):
        self.model_name = model_name
        self.operation = operation
        self.record_id = record_id
        super().__init__(
            f"Immutability violation: Cannot {operation} {model_name} record {record_id}. "
            "Cancellation records are immutable after creation."
        )


def _log_immutability_violation(model_name: str, operation: str, record_id: str) -> None:
    """Log immutability violation for audit purposes."""
    logger.error(
        f"IMMUTABILITY_VIOLATION: Attempted to {operation} {model_name} "
        f"record_id={record_id} at {datetime.now(UTC).isoformat()}"
    )


def register_immutability_enforcement() -> None:
    """Register SQLAlchemy event listeners for immutability enforcement.

    Must be called after models are imported but before session use.
    Safe to call more than once.
    """
    global _registered
    if _registered:
        return

    from app.models.ledger import CancellationRecord

    @event.listens_for(CancellationRecord, "before_update")
    def prevent_cancellation_update(mapper, connection, target):
        _log_immutability_violation("CancellationRecord", "UPDATE", str(target.id))
        raise ImmutabilityViolationError("CancellationRecord", "UPDATE", str(target.id))

    @event.listens_for(CancellationRecord, "before_delete")
    def prevent_cancellation_delete(mapper, connection, target):
        _log_immutability_violation("CancellationRecord", "DELETE", str(target.id))
        raise ImmutabilityViolationError("CancellationRecord", "DELETE", str(target.id))

    _registered = True
    logger.info("Immutability enforcement registered for cancellation records")
