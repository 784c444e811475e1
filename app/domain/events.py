"""Ledger events, snapshots and results.

Events are what external callers (webhooks, API routes) hand to the ledger.
Snapshots are the state the ledger reads under lock. Results describe what
changed and which side effects the caller now owes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Union
from uuid import UUID


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class RefundStatus(str, Enum):
    NONE = "none"
    PENDING = "pending"
    COMPLETED = "completed"


class ReferralStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    VOIDED = "voided"


class CancellationInitiator(str, Enum):
    GUIDE = "guide"
    CUSTOMER = "customer"


class NotificationKind(str, Enum):
    """Side effects the caller must dispatch after a ledger write."""

    BOOKING_CONFIRMED = "booking_confirmed"
    GUIDE_BOOKING_RECEIVED = "guide_booking_received"
    BOOKING_CANCELLED = "booking_cancelled"
    REFUND_PENDING = "refund_pending"
    REFUND_ISSUED = "refund_issued"
    TRIP_COMPLETED = "trip_completed"
    REFERRAL_PAID = "referral_paid"
    PAYMENT_FAILED = "payment_failed"


# ==================== EVENTS ====================


@dataclass(frozen=True)
class PaymentSucceeded:
    """Payment processor captured the customer's payment."""

    payment_intent_id: str | None = None
    name: str = field(default="payment_succeeded", init=False)


@dataclass(frozen=True)
class GuideMarksCompleted:
    """Guide who owns the trip marks it as done.

    ``require_trip_ended`` makes the scheduled end date a hard precondition.
    """

    guide_id: UUID
    require_trip_ended: bool = False
    name: str = field(default="guide_marks_completed", init=False)


@dataclass(frozen=True)
class CancellationRequested:
    initiator: CancellationInitiator
    reason: str
    requested_by: UUID | None = None
    name: str = field(default="cancellation_requested", init=False)


@dataclass(frozen=True)
class RefundIssued:
    """Payment processor confirmed the refund went through."""

    processor_reference_id: str
    amount: int | None = None
    name: str = field(default="refund_issued", init=False)


LedgerEvent = Union[PaymentSucceeded, GuideMarksCompleted, CancellationRequested, RefundIssued]


# ==================== SNAPSHOTS ====================


@dataclass(frozen=True)
class BookingSnapshot:
    """Booking state as loaded (and locked) by the repository."""

    id: UUID
    trip_id: UUID
    customer_id: UUID
    guide_id: UUID
    status: str
    payment_status: str
    refund_status: str
    gross_price: int
    commission_amount: int
    hosting_fee: int
    guide_payout: int
    referral_payout_amount: int
    trip_start_date: date
    trip_end_date: date
    currency: str = "USD"
    referrer_id: UUID | None = None
    refund_amount: int = 0
    refund_transaction_id: str | None = None
    stripe_payment_intent_id: str | None = None


@dataclass(frozen=True)
class ReferralEarningSnapshot:
    id: UUID
    referrer_id: UUID
    booking_id: UUID
    earnings_amount: int
    status: str
    paid_at: datetime | None = None


@dataclass(frozen=True)
class CancellationDraft:
    """CancellationRecord to insert alongside the booking update."""

    booking_id: UUID
    initiator: str
    reason: str
    refund_percentage: int
    refund_amount: int
    days_until_trip: int


# ==================== RESULTS ====================


@dataclass(frozen=True)
class Notification:
    kind: NotificationKind
    recipient_id: UUID | None
    booking_id: UUID
    payload: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "recipient_id": str(self.recipient_id) if self.recipient_id else None,
            "booking_id": str(self.booking_id),
            "payload": self.payload,
        }


@dataclass
class Decision:
    """Pure outcome of applying an event to a booking snapshot."""

    booking_updates: dict[str, Any] = field(default_factory=dict)
    cancellation: CancellationDraft | None = None
    settle_referral: bool = False
    void_referral: bool = False
    notifications: list[Notification] = field(default_factory=list)
    refund_owed: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.booking_updates)


@dataclass(frozen=True)
class LedgerResult:
    """What the ledger did, returned to the caller for dispatch."""

    booking_id: UUID
    event: str
    changed: bool
    status: str
    payment_status: str
    refund_status: str
    gross_price: int
    commission_amount: int
    hosting_fee: int
    guide_payout: int
    referral_payout_amount: int
    refund_amount: int
    currency: str
    referral_status: str | None = None
    refund_owed: int = 0
    cancellation: CancellationDraft | None = None
    notifications: tuple[Notification, ...] = ()


@dataclass(frozen=True)
class BookingDraft:
    """Everything needed to open a pending booking at checkout."""

    trip_id: UUID
    trip_date_id: UUID
    customer_id: UUID
    guide_id: UUID
    gross_price: int
    trip_start_date: date
    trip_end_date: date
    currency: str = "USD"
    participant_count: int = 1
    referrer_id: UUID | None = None
    referral_rate: Decimal = Decimal("0")
    stripe_checkout_session_id: str | None = None
    booking_id: UUID | None = None
