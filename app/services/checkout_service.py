"""Checkout: open a pending booking and hand the customer to Stripe."""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import ExternalServiceError, NotFoundError, ValidationError
from app.domain.events import BookingDraft, BookingStatus, LedgerResult
from app.domain.referral_settlement import is_referral_eligible
from app.gateways.base import PaymentGateway
from app.models.booking import Booking
from app.models.trip import Trip, TripDate
from app.models.user import User
from app.services.ledger_service import LedgerService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckoutSession:
    result: LedgerResult
    session_id: str
    checkout_url: str


@dataclass(frozen=True)
class ReferrerLookup:
    referrer: User | None
    eligible: bool
    reason: str | None = None


def referral_rate_for(trip: Trip) -> Decimal:
    """Share of the gross a referrer earns on this trip, falling back to the platform default."""
    if trip.referral_payout_rate is None:
        return settings.default_referral_rate
    return trip.referral_payout_rate


async def referrer_has_completed_trip(db: AsyncSession, referrer_id: UUID, trip_id: UUID) -> bool:
    result = await db.execute(
        select(func.count(Booking.id)).where(
            Booking.customer_id == referrer_id,
            Booking.trip_id == trip_id,
            Booking.status == BookingStatus.COMPLETED.value,
        )
    )
    return result.scalar_one() > 0


async def lookup_referrer(
    db: AsyncSession,
    handle: str,
    trip_id: UUID,
    customer_id: UUID,
) -> ReferrerLookup:
    """Resolve a referrer handle and check eligibility for a trip."""
    result = await db.execute(select(User).where(User.handle == handle.lstrip("@").lower()))
    referrer = result.scalar_one_or_none()
    if referrer is None or not referrer.is_active:
        return ReferrerLookup(referrer=None, eligible=False, reason="Referrer not found")

    completed = await referrer_has_completed_trip(db, referrer.id, trip_id)
    eligible, reason = is_referral_eligible(referrer.id, customer_id, completed)
    return ReferrerLookup(referrer=referrer, eligible=eligible, reason=reason)


class CheckoutService:
    """Opens bookings through the ledger and creates the hosted payment page."""

    def __init__(self, ledger: LedgerService, gateway: PaymentGateway) -> None:
        self.ledger = ledger
        self.gateway = gateway

    async def start_checkout(
        self,
        db: AsyncSession,
        customer: User,
        trip_date_id: UUID,
        participant_count: int = 1,
        referrer_handle: str | None = None,
    ) -> CheckoutSession:
        """Validate the slot, open a pending booking and create a Checkout Session.

        Args:
            db: Read session for trip, capacity and referrer lookups
            customer: Paying user
            trip_date_id: Scheduled departure being booked
            participant_count: Spots requested
            referrer_handle: Optional @handle of the user who referred the customer

        Returns:
            CheckoutSession: Ledger result plus the Stripe redirect

        Raises:
            NotFoundError: Unknown trip date
            ValidationError: Past date, own trip, sold out or ineligible referrer
            ExternalServiceError: Stripe could not create the session
        """
        trip_date = await db.get(TripDate, trip_date_id)
        if trip_date is None:
            raise NotFoundError("Trip date", str(trip_date_id))
        trip = await db.get(Trip, trip_date.trip_id)

        if trip_date.start_date <= datetime.now(UTC).date():
            raise ValidationError("This trip date is no longer bookable")
        if trip.guide_id == customer.id:
            raise ValidationError("Guides cannot book their own trips")

        booked = await db.execute(
            select(func.coalesce(func.sum(Booking.participant_count), 0)).where(
                Booking.trip_date_id == trip_date.id,
                Booking.status.in_([BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value]),
            )
        )
        if booked.scalar_one() + participant_count > trip_date.capacity:
            raise ValidationError("Not enough spots left on this date")

        referrer_id = None
        if referrer_handle:
            lookup = await lookup_referrer(db, referrer_handle, trip.id, customer.id)
            if not lookup.eligible:
                raise ValidationError(lookup.reason or "Referral not allowed")
            referrer_id = lookup.referrer.id

        booking_id = uuid4()
        gross_price = trip.price * participant_count
        checkout = await self.gateway.create_checkout_session(
            amount=gross_price,
            currency=trip.currency,
            reference_id=str(booking_id),
            description=f"{trip.title} ({trip_date.start_date.isoformat()})",
            success_url=f"{settings.site_url}/bookings/{booking_id}?checkout=success",
            cancel_url=f"{settings.site_url}/trips/{trip.id}?checkout=cancelled",
            metadata={"trip_id": str(trip.id), "customer_id": str(customer.id)},
        )
        if not checkout.success:
            raise ExternalServiceError(self.gateway.gateway_type.value, checkout.error_message)

        result = await self.ledger.open_booking(
            BookingDraft(
                booking_id=booking_id,
                trip_id=trip.id,
                trip_date_id=trip_date.id,
                customer_id=customer.id,
                guide_id=trip.guide_id,
                gross_price=gross_price,
                trip_start_date=trip_date.start_date,
                trip_end_date=trip_date.end_date,
                currency=trip.currency,
                participant_count=participant_count,
                referrer_id=referrer_id,
                referral_rate=referral_rate_for(trip) if referrer_id else Decimal("0"),
                stripe_checkout_session_id=checkout.session_id,
            )
        )
        logger.info(f"Checkout session {checkout.session_id} created for booking {booking_id}")
        return CheckoutSession(result=result, session_id=checkout.session_id, checkout_url=checkout.checkout_url)
