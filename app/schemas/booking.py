"""Booking-related Pydantic schemas."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.domain.cancellation_policy import RefundQuote
from app.domain.events import LedgerResult


class CheckoutRequest(BaseModel):
    """Schema for starting checkout on a trip date."""

    trip_date_id: UUID
    participant_count: int = Field(default=1, ge=1, le=20)
    referrer_handle: str | None = Field(None, min_length=2, max_length=50)

    @field_validator("referrer_handle")
    @classmethod
    def normalize_handle(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip().lstrip("@").lower()
        return v or None


class CheckoutResponse(BaseModel):
    """Schema for the hosted checkout redirect."""

    booking_id: UUID
    session_id: str
    checkout_url: str
    gross_price: int
    currency: str


class BookingResponse(BaseModel):
    """Schema for booking response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    trip_id: UUID
    trip_date_id: UUID
    customer_id: UUID
    guide_id: UUID
    participant_count: int

    # Money split (cents)
    gross_price: int
    currency: str
    commission_rate: Decimal
    commission_amount: int
    hosting_fee: int
    guide_payout: int

    # Referral
    referrer_id: UUID | None
    referral_rate: Decimal
    referral_payout_amount: int

    # Status
    status: str
    payment_status: str
    refund_status: str

    # Cancellation
    cancelled_by: str | None
    cancellation_reason: str | None
    refund_amount: int

    # Timestamps
    confirmed_at: datetime | None
    completed_at: datetime | None
    cancelled_at: datetime | None
    refund_processed_at: datetime | None
    created_at: datetime


class BookingCancelRequest(BaseModel):
    """Schema for cancelling a booking."""

    reason: str = Field(..., min_length=5, max_length=500)

    @field_validator("reason")
    @classmethod
    def strip_reason(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 5:
            raise ValueError("reason must be at least 5 characters")
        return v


class CancellationQuoteResponse(BaseModel):
    """Schema for refund preview before cancelling."""

    booking_id: UUID
    initiator: str
    days_until_trip: int
    refund_percentage: int
    refund_amount: int
    currency: str
    policy: str

    @classmethod
    def from_quote(
        cls,
        booking_id: UUID,
        initiator: str,
        quote: RefundQuote,
        currency: str,
        policy: str,
    ) -> "CancellationQuoteResponse":
        return cls(
            booking_id=booking_id,
            initiator=initiator,
            days_until_trip=quote.days_until_trip,
            refund_percentage=quote.refund_percentage,
            refund_amount=quote.refund_amount,
            currency=currency,
            policy=policy,
        )


class CancellationDetail(BaseModel):
    initiator: str
    reason: str
    refund_percentage: int
    refund_amount: int
    days_until_trip: int


class LedgerResultResponse(BaseModel):
    """Schema for the outcome of a booking state change."""

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
    cancellation: CancellationDetail | None = None

    @classmethod
    def from_result(cls, result: LedgerResult) -> "LedgerResultResponse":
        cancellation = None
        if result.cancellation is not None:
            cancellation = CancellationDetail(
                initiator=result.cancellation.initiator,
                reason=result.cancellation.reason,
                refund_percentage=result.cancellation.refund_percentage,
                refund_amount=result.cancellation.refund_amount,
                days_until_trip=result.cancellation.days_until_trip,
            )
        return cls(
            booking_id=result.booking_id,
            event=result.event,
            changed=result.changed,
            status=result.status,
            payment_status=result.payment_status,
            refund_status=result.refund_status,
            gross_price=result.gross_price,
            commission_amount=result.commission_amount,
            hosting_fee=result.hosting_fee,
            guide_payout=result.guide_payout,
            referral_payout_amount=result.referral_payout_amount,
            refund_amount=result.refund_amount,
            currency=result.currency,
            referral_status=result.referral_status,
            refund_owed=result.refund_owed,
            cancellation=cancellation,
        )


class RefundQueuedResponse(BaseModel):
    booking_id: UUID
    refund_amount: int
    status: str = "queued"

