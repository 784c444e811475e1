"""Processor refunds for cancelled bookings.

Runs outside the ledger transaction: reads what the ledger says is owed,
asks the gateway to move the money, and records the outcome back through
the ledger as a RefundIssued event.
"""

import logging
from uuid import UUID

from app.core.exceptions import ExternalServiceError, PaymentError
from app.domain.events import BookingStatus, LedgerResult, RefundIssued, RefundStatus
from app.gateways.base import PaymentGateway
from app.services.ledger_service import LedgerService

logger = logging.getLogger(__name__)


class RefundService:
    """Issues owed refunds through a payment gateway."""

    def __init__(self, gateway: PaymentGateway, ledger: LedgerService) -> None:
        self.gateway = gateway
        self.ledger = ledger

    async def issue_refund(self, booking_id: UUID) -> LedgerResult | None:
        """Refund the amount a cancelled booking is owed.

        Returns the ledger result when the processor settled the refund
        synchronously, or None when nothing is owed or the processor will
        confirm later via webhook.

        Raises:
            NotFoundError: Unknown booking
            PaymentError: Booking has no captured payment to refund
            ExternalServiceError: Processor rejected the refund
        """
        booking = await self.ledger.get_booking(booking_id)

        if booking.status != BookingStatus.CANCELLED or booking.refund_status != RefundStatus.PENDING:
            logger.info(
                f"No refund owed for booking {booking_id} "
                f"(status={booking.status}, refund_status={booking.refund_status})"
            )
            return None

        if not booking.stripe_payment_intent_id:
            raise PaymentError(f"Booking {booking_id} has no captured payment to refund")

        result = await self.gateway.process_refund(
            transaction_id=booking.stripe_payment_intent_id,
            amount=booking.refund_amount,
            reason="Booking cancelled",
            metadata={"booking_id": str(booking_id)},
            idempotency_key=f"booking-refund-{booking_id}",
        )

        if not result.success:
            logger.error(f"Refund for booking {booking_id} failed: {result.error_message}")
            raise ExternalServiceError(self.gateway.gateway_type.value, result.error_message)

        if result.status != "succeeded":
            logger.info(f"Refund {result.refund_id} for booking {booking_id} is {result.status}, awaiting webhook")
            return None

        return await self.ledger.apply_event(
            booking_id,
            RefundIssued(processor_reference_id=result.refund_id, amount=booking.refund_amount),
        )


def build_refund_service() -> RefundService:
    from app.gateways.stripe_gateway import stripe_gateway
    from app.services.ledger_service import build_ledger_service

    return RefundService(stripe_gateway, build_ledger_service())
