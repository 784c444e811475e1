"""Booking ledger orchestration.

The only entry point that mutates booking state. Every call loads the
booking (and its referral earning) under lock, asks the pure domain
components what should change, writes everything in one transaction and
returns a LedgerResult listing the side effects the caller owes. It never
sends email or talks to the payment processor itself.
"""

import logging
from datetime import UTC, date, datetime
from decimal import Decimal
from uuid import UUID

from app.config import settings
from app.core.exceptions import AppException, InvalidTransition, NotFoundError, TripAlreadyOccurred
from app.domain.booking_state import (
    BookingStateMachine,
    assert_booking_transition,
    booking_state_machine,
)
from app.domain.cancellation_policy import RefundQuote, quote_refund
from app.domain.events import (
    BookingDraft,
    BookingSnapshot,
    CancellationInitiator,
    Decision,
    LedgerEvent,
    LedgerResult,
    Notification,
    ReferralEarningSnapshot,
)
from app.domain.money import split_price
from app.domain.referral_settlement import referral_status_for, settle_referral, void_referral
from app.services.ledger_repository import LedgerRepository, SqlAlchemyLedgerRepository

logger = logging.getLogger(__name__)


class LedgerService:
    """Applies ledger events to bookings atomically."""

    def __init__(
        self,
        repository: LedgerRepository,
        state_machine: BookingStateMachine = booking_state_machine,
        commission_rate: Decimal | None = None,
        hosting_fee: int | None = None,
    ) -> None:
        self.repository = repository
        self.state_machine = state_machine
        self.commission_rate = commission_rate if commission_rate is not None else settings.commission_rate
        self.hosting_fee = hosting_fee if hosting_fee is not None else settings.hosting_fee_cents

    async def open_booking(self, draft: BookingDraft) -> LedgerResult:
        """Create a pending, unpaid booking with its money split.

        Args:
            draft: Checkout details (price, trip date, customer, referral)

        Returns:
            LedgerResult: The new booking's status and money fields
        """
        referral_rate = draft.referral_rate if draft.referrer_id else Decimal("0")
        split = split_price(
            gross_price=draft.gross_price,
            commission_rate=self.commission_rate,
            hosting_fee=self.hosting_fee,
            referral_rate=referral_rate,
            currency=draft.currency,
        )

        async with self.repository.transaction():
            booking = await self.repository.insert_booking(draft, split, self.commission_rate)
            earning = None
            if booking.referrer_id is not None:
                earning = await self.repository.insert_referral_earning(booking, split.referral_amount)

        logger.info(
            f"Opened booking {booking.id}: gross={split.gross_price} commission={split.commission_amount} "
            f"hosting={split.hosting_fee} referral={split.referral_amount} guide={split.guide_payout}"
        )
        return self._result(booking, "booking_opened", Decision(), earning, {})

    async def apply_event(
        self,
        booking_id: UUID,
        event: LedgerEvent,
        now: datetime | None = None,
    ) -> LedgerResult:
        """Apply a ledger event to a booking.

        Args:
            booking_id: Booking to mutate
            event: PaymentSucceeded, GuideMarksCompleted, CancellationRequested or RefundIssued
            now: Override for the current time (timezone-aware)

        Returns:
            LedgerResult: New state and the notifications/refund owed

        Raises:
            NotFoundError: Unknown booking
            InvalidTransition, AlreadyCancelled, TripAlreadyOccurred,
            TerminalStateViolation, InvalidCancellation: Event rejected, nothing written
            PersistenceError: Transaction failed, nothing written
        """
        now = now or datetime.now(UTC)

        try:
            async with self.repository.transaction():
                booking = await self.repository.lock_booking(booking_id)
                if booking is None:
                    raise NotFoundError("Booking", str(booking_id))
                earning = None
                if booking.referrer_id is not None:
                    earning = await self.repository.lock_referral_earning(booking_id)

                decision = self.state_machine.decide(booking, event, now)
                earning_updates = await self._persist(booking, earning, decision, now)
        except AppException as e:
            logger.warning(f"Rejected {event.name} for booking {booking_id}: {e.detail}")
            raise

        if decision.changed:
            logger.info(
                f"Applied {event.name} to booking {booking_id}: "
                f"{booking.status} -> {decision.booking_updates.get('status', booking.status)}"
            )
        else:
            logger.info(f"Ignored replayed {event.name} for booking {booking_id}")

        return self._result(booking, event.name, decision, earning, earning_updates)

    async def get_booking(self, booking_id: UUID) -> BookingSnapshot:
        async with self.repository.transaction():
            booking = await self.repository.lock_booking(booking_id)
        if booking is None:
            raise NotFoundError("Booking", str(booking_id))
        return booking

    async def quote_cancellation(
        self,
        booking_id: UUID,
        initiator: CancellationInitiator,
        today: date | None = None,
    ) -> RefundQuote:
        """Preview the refund a cancellation would produce, without writing."""
        today = today or datetime.now(UTC).date()
        async with self.repository.transaction():
            booking = await self.repository.lock_booking(booking_id)
        if booking is None:
            raise NotFoundError("Booking", str(booking_id))
        assert_booking_transition(booking.status, "cancelled")
        if booking.trip_start_date < today:
            raise TripAlreadyOccurred()
        quote = quote_refund(
            booking.gross_price,
            booking.trip_start_date,
            today,
            guide_initiated=initiator == CancellationInitiator.GUIDE,
        )
        if booking.payment_status != "paid":
            return RefundQuote(quote.days_until_trip, quote.refund_percentage, 0)
        return quote

    async def _persist(
        self,
        booking: BookingSnapshot,
        earning: ReferralEarningSnapshot | None,
        decision: Decision,
        now: datetime,
    ) -> dict:
        if not decision.changed:
            return {}

        await self.repository.update_booking(booking.id, decision.booking_updates)

        if decision.cancellation is not None:
            await self.repository.insert_cancellation(decision.cancellation)

        outcome = None
        if decision.settle_referral:
            outcome = settle_referral(
                booking, earning, now, booking_status=decision.booking_updates.get("status")
            )
        elif decision.void_referral:
            outcome = void_referral(earning, now)

        if earning is not None:
            booking_status = decision.booking_updates.get("status", booking.status)
            expected = referral_status_for(booking_status, earning.status)
            actual = outcome.earning_updates.get("status", earning.status) if outcome else earning.status
            if actual != expected:
                raise InvalidTransition(
                    f"Referral earning would be {actual} on a {booking_status} booking, expected {expected}"
                )

        if outcome is not None and outcome.changed:
            await self.repository.update_referral_earning(earning.id, outcome.earning_updates)
            decision.notifications.extend(outcome.notifications)
            return outcome.earning_updates
        return {}

    def _result(
        self,
        booking: BookingSnapshot,
        event_name: str,
        decision: Decision,
        earning: ReferralEarningSnapshot | None,
        earning_updates: dict,
    ) -> LedgerResult:
        updates = decision.booking_updates
        referral_status = None
        if earning is not None:
            referral_status = earning_updates.get("status", earning.status)
        notifications: tuple[Notification, ...] = tuple(decision.notifications)
        return LedgerResult(
            booking_id=booking.id,
            event=event_name,
            changed=decision.changed,
            status=updates.get("status", booking.status),
            payment_status=updates.get("payment_status", booking.payment_status),
            refund_status=updates.get("refund_status", booking.refund_status),
            gross_price=booking.gross_price,
            commission_amount=booking.commission_amount,
            hosting_fee=booking.hosting_fee,
            guide_payout=booking.guide_payout,
            referral_payout_amount=booking.referral_payout_amount,
            refund_amount=updates.get("refund_amount", booking.refund_amount),
            currency=booking.currency,
            referral_status=referral_status,
            refund_owed=decision.refund_owed,
            cancellation=decision.cancellation,
            notifications=notifications,
        )


def build_ledger_service() -> LedgerService:
    """LedgerService wired to the application database."""
    from app.database import async_session_maker

    return LedgerService(SqlAlchemyLedgerRepository(async_session_maker))
