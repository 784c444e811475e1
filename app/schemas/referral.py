"""Referral-related Pydantic schemas."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class ReferralEarningResponse(BaseModel):
    """Schema for one referral earning."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    booking_id: UUID
    trip_id: UUID
    earnings_amount: int
    currency: str
    status: str
    paid_at: datetime | None
    voided_at: datetime | None
    created_at: datetime


class ReferralEarningsSummary(BaseModel):
    """Schema for the caller's referral earnings and totals."""

    earnings: list[ReferralEarningResponse]
    total_pending: int
    total_paid: int
    currency: str


class ReferralLookupResponse(BaseModel):
    """Schema for checking whether a handle may refer a trip."""

    handle: str
    trip_id: UUID
    eligible: bool
    reason: str | None = None
    referrer_id: UUID | None = None
    referral_rate: Decimal | None = None
