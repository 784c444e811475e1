"""Referral settlement rules.

A referral earning is created pending with its booking and may only become
paid once that booking is completed. settle_referral() is the single place
that marks an earning paid; cancellation voids it instead.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from app.core.exceptions import InvalidTransition
from app.domain.events import (
    BookingSnapshot,
    BookingStatus,
    Notification,
    NotificationKind,
    ReferralEarningSnapshot,
    ReferralStatus,
)

REFERRAL_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"paid", "voided"},
    "paid": set(),
    "voided": set(),
}


@dataclass
class SettlementOutcome:
    """Earning field updates plus any notification owed to the referrer."""

    earning_updates: dict[str, Any] = field(default_factory=dict)
    notifications: list[Notification] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.earning_updates)


def referral_status_for(booking_status: str, current: str) -> str:
    """Derive the only status an earning may hold for a booking status."""
    if current in (ReferralStatus.PAID, ReferralStatus.VOIDED):
        return current
    if booking_status == BookingStatus.COMPLETED:
        return ReferralStatus.PAID.value
    if booking_status == BookingStatus.CANCELLED:
        return ReferralStatus.VOIDED.value
    return ReferralStatus.PENDING.value


def settle_referral(
    booking: BookingSnapshot,
    earning: ReferralEarningSnapshot | None,
    now: datetime,
    booking_status: str | None = None,
) -> SettlementOutcome:
    """Mark a referral earning paid after its booking completed.

    Args:
        booking: Booking snapshot (status may predate the completion write)
        earning: The booking's referral earning, if any
        now: Settlement timestamp
        booking_status: Status the booking is moving to, when not yet persisted

    Returns:
        SettlementOutcome: Empty when there is no referral or it was already paid
    """
    if booking.referrer_id is None or earning is None:
        return SettlementOutcome()

    status = booking_status or booking.status
    if status != BookingStatus.COMPLETED:
        raise InvalidTransition(
            f"Referral earnings can only be paid for completed bookings, booking is {status}"
        )

    if earning.status == ReferralStatus.PAID:
        return SettlementOutcome()
    if earning.status not in REFERRAL_TRANSITIONS or "paid" not in REFERRAL_TRANSITIONS[earning.status]:
        raise InvalidTransition(f"Invalid referral transition: {earning.status} → paid")

    return SettlementOutcome(
        earning_updates={"status": ReferralStatus.PAID.value, "paid_at": now},
        notifications=[
            Notification(
                kind=NotificationKind.REFERRAL_PAID,
                recipient_id=earning.referrer_id,
                booking_id=booking.id,
                payload={"earnings_amount": earning.earnings_amount, "currency": booking.currency},
            ),
        ],
    )


def void_referral(earning: ReferralEarningSnapshot | None, now: datetime) -> SettlementOutcome:
    """Void a pending earning whose booking was cancelled."""
    if earning is None or earning.status != ReferralStatus.PENDING:
        return SettlementOutcome()
    return SettlementOutcome(earning_updates={"status": ReferralStatus.VOIDED.value, "voided_at": now})


def is_referral_eligible(
    referrer_id: UUID,
    customer_id: UUID,
    referrer_has_completed_trip: bool,
) -> tuple[bool, str | None]:
    """Check whether a referrer may earn on a customer's booking.

    Referrers must have completed the same trip themselves and cannot refer
    their own bookings.
    """
    if referrer_id == customer_id:
        return False, "Cannot refer yourself"
    if not referrer_has_completed_trip:
        return False, "Referrer has not completed this trip"
    return True, None

