"""Referral endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_db
from app.config import settings
from app.core.exceptions import NotFoundError
from app.domain.events import ReferralStatus
from app.models.ledger import ReferralEarning
from app.models.trip import Trip
from app.models.user import User
from app.schemas.referral import (
    ReferralEarningResponse,
    ReferralEarningsSummary,
    ReferralLookupResponse,
)
from app.services.checkout_service import lookup_referrer, referral_rate_for

router = APIRouter()


@router.get("/earnings", response_model=ReferralEarningsSummary)
async def list_my_earnings(
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> ReferralEarningsSummary:
    """List the caller's referral earnings with pending and paid totals."""
    result = await db.execute(
        select(ReferralEarning)
        .where(ReferralEarning.referrer_id == current_user.id)
        .order_by(ReferralEarning.created_at.desc())
    )
    earnings = result.scalars().all()

    return ReferralEarningsSummary(
        earnings=[ReferralEarningResponse.model_validate(e) for e in earnings],
        total_pending=sum(e.earnings_amount for e in earnings if e.status == ReferralStatus.PENDING),
        total_paid=sum(e.earnings_amount for e in earnings if e.status == ReferralStatus.PAID),
        currency=settings.default_currency,
    )


@router.get("/lookup", response_model=ReferralLookupResponse)
async def lookup_referral(
    handle: Annotated[str, Query(min_length=2, max_length=50)],
    trip_id: UUID,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> ReferralLookupResponse:
    """Check whether a handle can refer the caller onto a trip."""
    trip = await db.get(Trip, trip_id)
    if trip is None:
        raise NotFoundError("Trip", str(trip_id))

    lookup = await lookup_referrer(db, handle, trip.id, current_user.id)
    return ReferralLookupResponse(
        handle=handle.lstrip("@").lower(),
        trip_id=trip.id,
        eligible=lookup.eligible,
        reason=lookup.reason,
        referrer_id=lookup.referrer.id if lookup.referrer else None,
        referral_rate=referral_rate_for(trip) if lookup.eligible else None,
    )
