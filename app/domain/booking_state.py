"""Booking state machine.

States: pending → confirmed → completed, with cancellation allowed from
pending or confirmed. Completed and cancelled are terminal.

The machine is pure: it reads a locked BookingSnapshot and returns a
Decision (field updates, audit record, side effects owed). Persisting the
decision is the orchestrator's job.
"""

from datetime import date, datetime

from app.core.exceptions import (
    AlreadyCancelled,
    AuthorizationError,
    InvalidTransition,
    TerminalStateViolation,
    TripAlreadyOccurred,
)
from app.domain.cancellation_policy import days_until, refund_tier
from app.domain.events import (
    BookingSnapshot,
    BookingStatus,
    CancellationDraft,
    CancellationInitiator,
    CancellationRequested,
    Decision,
    GuideMarksCompleted,
    LedgerEvent,
    Notification,
    NotificationKind,
    PaymentStatus,
    PaymentSucceeded,
    RefundIssued,
    RefundStatus,
)
from app.domain.money import refund_amount_for

BOOKING_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"confirmed", "cancelled"},
    "confirmed": {"completed", "cancelled"},
    "completed": set(),
    "cancelled": set(),
}

TERMINAL_STATES = {"completed", "cancelled"}


def assert_booking_transition(current: str, target: str) -> None:
    if current in TERMINAL_STATES:
        if current == "cancelled" and target == "cancelled":
            raise AlreadyCancelled()
        raise TerminalStateViolation(current)
    allowed = BOOKING_TRANSITIONS.get(current, set())
    if target not in allowed:
        raise InvalidTransition(f"Invalid booking transition: {current} → {target}")


class BookingStateMachine:
    """Decides the effect of a ledger event on a single booking."""

    def decide(
        self,
        booking: BookingSnapshot,
        event: LedgerEvent,
        now: datetime,
    ) -> Decision:
        """Validate the event against the booking and compute its effects.

        Args:
            booking: Current (locked) booking state
            event: Incoming ledger event
            now: Timezone-aware current time

        Returns:
            Decision: Updates and side effects; empty when the event is a replay

        Raises:
            InvalidTransition, AlreadyCancelled, TripAlreadyOccurred,
            TerminalStateViolation, AuthorizationError
        """
        if isinstance(event, PaymentSucceeded):
            return self._payment_succeeded(booking, event, now)
        if isinstance(event, GuideMarksCompleted):
            return self._guide_marks_completed(booking, event, now)
        if isinstance(event, CancellationRequested):
            return self._cancellation_requested(booking, event, now)
        if isinstance(event, RefundIssued):
            return self._refund_issued(booking, event, now)
        raise InvalidTransition(f"Unsupported ledger event: {type(event).__name__}")

    def _payment_succeeded(
        self, booking: BookingSnapshot, event: PaymentSucceeded, now: datetime
    ) -> Decision:
        # Processor webhooks are retried; a second capture notice is a no-op
        if booking.status == BookingStatus.CONFIRMED and booking.payment_status == PaymentStatus.PAID:
            return Decision()
        if booking.status == BookingStatus.CANCELLED:
            return self._payment_after_cancellation(booking, event, now)

        assert_booking_transition(booking.status, BookingStatus.CONFIRMED.value)

        updates = {
            "status": BookingStatus.CONFIRMED.value,
            "payment_status": PaymentStatus.PAID.value,
            "confirmed_at": now,
        }
        if event.payment_intent_id:
            updates["stripe_payment_intent_id"] = event.payment_intent_id

        return Decision(
            booking_updates=updates,
            notifications=[
                Notification(
                    kind=NotificationKind.BOOKING_CONFIRMED,
                    recipient_id=booking.customer_id,
                    booking_id=booking.id,
                    payload={"amount": booking.gross_price, "currency": booking.currency},
                ),
                Notification(
                    kind=NotificationKind.GUIDE_BOOKING_RECEIVED,
                    recipient_id=booking.guide_id,
                    booking_id=booking.id,
                    payload={
                        "guide_payout": booking.guide_payout,
                        "hosting_fee": booking.hosting_fee,
                        "currency": booking.currency,
                    },
                ),
            ],
        )

    def _payment_after_cancellation(
        self, booking: BookingSnapshot, event: PaymentSucceeded, now: datetime
    ) -> Decision:
        """Capture that lands after an unpaid booking was cancelled.

        The booking stays cancelled; the whole payment is owed back.
        """
        if booking.payment_status != PaymentStatus.UNPAID:
            return Decision()

        updates = {
            "payment_status": PaymentStatus.PAID.value,
            "refund_status": RefundStatus.PENDING.value,
            "refund_amount": booking.gross_price,
        }
        if event.payment_intent_id:
            updates["stripe_payment_intent_id"] = event.payment_intent_id

        return Decision(
            booking_updates=updates,
            notifications=[
                Notification(
                    kind=NotificationKind.REFUND_PENDING,
                    recipient_id=booking.customer_id,
                    booking_id=booking.id,
                    payload={
                        "refund_amount": booking.gross_price,
                        "refund_percentage": 100,
                        "currency": booking.currency,
                    },
                ),
            ],
            refund_owed=booking.gross_price,
        )

    def _guide_marks_completed(
        self, booking: BookingSnapshot, event: GuideMarksCompleted, now: datetime
    ) -> Decision:
        if event.guide_id != booking.guide_id:
            raise AuthorizationError("Only the guide can complete trips")

        # Duplicate completion requests succeed without touching anything
        if booking.status == BookingStatus.COMPLETED:
            return Decision()

        assert_booking_transition(booking.status, BookingStatus.COMPLETED.value)

        if event.require_trip_ended and now.date() < booking.trip_end_date:
            raise InvalidTransition(
                f"Trip ends on {booking.trip_end_date.isoformat()} and cannot be completed yet"
            )

        return Decision(
            booking_updates={
                "status": BookingStatus.COMPLETED.value,
                "completed_at": now,
            },
            settle_referral=booking.referrer_id is not None,
            notifications=[
                Notification(
                    kind=NotificationKind.TRIP_COMPLETED,
                    recipient_id=booking.customer_id,
                    booking_id=booking.id,
                ),
            ],
        )

    def _cancellation_requested(
        self, booking: BookingSnapshot, event: CancellationRequested, now: datetime
    ) -> Decision:
        assert_booking_transition(booking.status, BookingStatus.CANCELLED.value)

        today: date = now.date()
        if booking.trip_start_date < today:
            raise TripAlreadyOccurred()

        initiator = CancellationInitiator(event.initiator)
        days = days_until(booking.trip_start_date, today)
        refund_pct = refund_tier(days, guide_initiated=initiator == CancellationInitiator.GUIDE)

        # Nothing to give back if the customer never paid
        if booking.payment_status == PaymentStatus.PAID:
            refund_amount = refund_amount_for(booking.gross_price, refund_pct)
        else:
            refund_amount = 0

        refund_status = RefundStatus.PENDING if refund_amount > 0 else RefundStatus.NONE

        other_party = booking.customer_id if initiator == CancellationInitiator.GUIDE else booking.guide_id
        notifications = [
            Notification(
                kind=NotificationKind.BOOKING_CANCELLED,
                recipient_id=other_party,
                booking_id=booking.id,
                payload={"cancelled_by": initiator.value, "reason": event.reason},
            ),
        ]
        if refund_amount > 0:
            notifications.append(
                Notification(
                    kind=NotificationKind.REFUND_PENDING,
                    recipient_id=booking.customer_id,
                    booking_id=booking.id,
                    payload={
                        "refund_amount": refund_amount,
                        "refund_percentage": refund_pct,
                        "currency": booking.currency,
                    },
                )
            )

        return Decision(
            booking_updates={
                "status": BookingStatus.CANCELLED.value,
                "cancelled_at": now,
                "cancelled_by": initiator.value,
                "cancellation_reason": event.reason,
                "refund_amount": refund_amount,
                "refund_status": refund_status.value,
            },
            cancellation=CancellationDraft(
                booking_id=booking.id,
                initiator=initiator.value,
                reason=event.reason,
                refund_percentage=refund_pct,
                refund_amount=refund_amount,
                days_until_trip=days,
            ),
            void_referral=booking.referrer_id is not None,
            notifications=notifications,
            refund_owed=refund_amount,
        )

    def _refund_issued(
        self, booking: BookingSnapshot, event: RefundIssued, now: datetime
    ) -> Decision:
        if booking.status == BookingStatus.COMPLETED:
            raise TerminalStateViolation(booking.status)
        if booking.status != BookingStatus.CANCELLED:
            raise InvalidTransition("Refunds can only be recorded for cancelled bookings")

        if booking.refund_status == RefundStatus.COMPLETED:
            if booking.refund_transaction_id == event.processor_reference_id:
                return Decision()
            raise TerminalStateViolation(
                booking.status, detail="Refund already processed for this booking"
            )
        if booking.refund_status != RefundStatus.PENDING:
            raise InvalidTransition("No refund is owed for this booking")

        refunded = event.amount if event.amount is not None else booking.refund_amount
        if refunded >= booking.gross_price:
            payment_status = PaymentStatus.REFUNDED
        else:
            payment_status = PaymentStatus.PARTIALLY_REFUNDED

        return Decision(
            booking_updates={
                "refund_status": RefundStatus.COMPLETED.value,
                "refund_transaction_id": event.processor_reference_id,
                "refund_processed_at": now,
                "payment_status": payment_status.value,
            },
            notifications=[
                Notification(
                    kind=NotificationKind.REFUND_ISSUED,
                    recipient_id=booking.customer_id,
                    booking_id=booking.id,
                    payload={"refund_amount": refunded, "currency": booking.currency},
                ),
            ],
        )


booking_state_machine = BookingStateMachine()
