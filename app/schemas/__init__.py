"""Pydantic schemas for API validation."""

from app.schemas.booking import (
    BookingCancelRequest,
    BookingResponse,
    CancellationQuoteResponse,
    CheckoutRequest,
    CheckoutResponse,
    LedgerResultResponse,
    RefundQueuedResponse,
)
from app.schemas.referral import (
    ReferralEarningResponse,
    ReferralEarningsSummary,
    ReferralLookupResponse,
)

__all__ = [
    "BookingCancelRequest",
    "BookingResponse",
    "CancellationQuoteResponse",
    "CheckoutRequest",
    "CheckoutResponse",
    "LedgerResultResponse",
    "RefundQueuedResponse",
    "ReferralEarningResponse",
    "ReferralEarningsSummary",
    "ReferralLookupResponse",
]
