"""Booking endpoints."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import (
    TaskDispatcher,
    get_current_admin,
    get_current_user,
    get_db,
    get_ledger_service,
    get_payment_gateway,
    get_task_dispatcher,
    require_booking_access,
    require_guide_booking_access,
)
from app.config import settings
from app.core.exceptions import InvalidTransition
from app.core.middleware import cancel_limiter, checkout_limiter
from app.domain.cancellation_policy import get_policy_description
from app.domain.events import (
    BookingStatus,
    CancellationInitiator,
    CancellationRequested,
    GuideMarksCompleted,
    PaymentStatus,
    RefundStatus,
)
from app.gateways.base import PaymentGateway
from app.models.booking import Booking
from app.models.user import User
from app.schemas.booking import (
    BookingCancelRequest,
    BookingResponse,
    CancellationQuoteResponse,
    CheckoutRequest,
    CheckoutResponse,
    LedgerResultResponse,
    RefundQueuedResponse,
)
from app.services.checkout_service import CheckoutService
from app.services.ledger_service import LedgerService

logger = logging.getLogger(__name__)

router = APIRouter()


def _initiator_for(booking: Booking, user: User) -> CancellationInitiator:
    if booking.guide_id == user.id:
        return CancellationInitiator.GUIDE
    return CancellationInitiator.CUSTOMER


@router.post(
    "/checkout",
    response_model=CheckoutResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(checkout_limiter)],
)
async def start_checkout(
    request: CheckoutRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    ledger: Annotated[LedgerService, Depends(get_ledger_service)],
    gateway: Annotated[PaymentGateway, Depends(get_payment_gateway)],
) -> CheckoutResponse:
    """Open a pending booking and return the Stripe Checkout redirect."""
    checkout = await CheckoutService(ledger, gateway).start_checkout(
        db,
        customer=current_user,
        trip_date_id=request.trip_date_id,
        participant_count=request.participant_count,
        referrer_handle=request.referrer_handle,
    )
    return CheckoutResponse(
        booking_id=checkout.result.booking_id,
        session_id=checkout.session_id,
        checkout_url=checkout.checkout_url,
        gross_price=checkout.result.gross_price,
        currency=checkout.result.currency,
    )


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking: Annotated[Booking, Depends(require_booking_access)],
) -> Booking:
    """Get booking details for its customer, guide or an admin."""
    return booking


@router.get("/{booking_id}/cancellation-quote", response_model=CancellationQuoteResponse)
async def get_cancellation_quote(
    booking: Annotated[Booking, Depends(require_booking_access)],
    current_user: Annotated[User, Depends(get_current_user)],
    ledger: Annotated[LedgerService, Depends(get_ledger_service)],
) -> CancellationQuoteResponse:
    """Preview the refund a cancellation would produce right now."""
    initiator = _initiator_for(booking, current_user)
    quote = await ledger.quote_cancellation(booking.id, initiator)
    return CancellationQuoteResponse.from_quote(
        booking_id=booking.id,
        initiator=initiator.value,
        quote=quote,
        currency=booking.currency,
        policy=get_policy_description(),
    )


@router.post(
    "/{booking_id}/cancel",
    response_model=LedgerResultResponse,
    dependencies=[Depends(cancel_limiter)],
)
async def cancel_booking(
    request: BookingCancelRequest,
    booking: Annotated[Booking, Depends(require_booking_access)],
    current_user: Annotated[User, Depends(get_current_user)],
    ledger: Annotated[LedgerService, Depends(get_ledger_service)],
    gateway: Annotated[PaymentGateway, Depends(get_payment_gateway)],
    dispatcher: Annotated[TaskDispatcher, Depends(get_task_dispatcher)],
) -> LedgerResultResponse:
    """Cancel a booking.

    Refund tier depends on calendar days until the trip starts; a guide
    cancelling always refunds the customer in full.

    An unpaid booking also has its hosted checkout closed so it cannot be
    paid afterwards.
    """
    result = await ledger.apply_event(
        booking.id,
        CancellationRequested(
            initiator=_initiator_for(booking, current_user),
            reason=request.reason,
            requested_by=current_user.id,
        ),
    )

    dispatcher.notify(result.notifications)
    if result.refund_owed > 0:
        dispatcher.refund(booking.id)

    if result.payment_status == PaymentStatus.UNPAID and booking.stripe_checkout_session_id:
        expired = await gateway.expire_checkout_session(booking.stripe_checkout_session_id)
        if not expired:
            logger.warning(
                f"Checkout session {booking.stripe_checkout_session_id} for cancelled booking {booking.id} is still open"
            )

    return LedgerResultResponse.from_result(result)


@router.post("/{booking_id}/complete", response_model=LedgerResultResponse)
async def complete_booking(
    booking: Annotated[Booking, Depends(require_guide_booking_access)],
    current_user: Annotated[User, Depends(get_current_user)],
    ledger: Annotated[LedgerService, Depends(get_ledger_service)],
    dispatcher: Annotated[TaskDispatcher, Depends(get_task_dispatcher)],
) -> LedgerResultResponse:
    """Guide marks the trip as done, releasing the referral earning."""
    result = await ledger.apply_event(
        booking.id,
        GuideMarksCompleted(
            guide_id=current_user.id,
            require_trip_ended=settings.require_trip_end_for_completion,
        ),
    )
    dispatcher.notify(result.notifications)
    return LedgerResultResponse.from_result(result)


@router.post(
    "/{booking_id}/refund",
    response_model=RefundQueuedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def reissue_refund(
    booking: Annotated[Booking, Depends(require_booking_access)],
    admin: Annotated[User, Depends(get_current_admin)],
    ledger: Annotated[LedgerService, Depends(get_ledger_service)],
    dispatcher: Annotated[TaskDispatcher, Depends(get_task_dispatcher)],
) -> RefundQueuedResponse:
    """Re-enqueue the processor refund for a cancelled booking (admin only)."""
    snapshot = await ledger.get_booking(booking.id)
    if snapshot.status != BookingStatus.CANCELLED or snapshot.refund_status != RefundStatus.PENDING:
        raise InvalidTransition("No refund is owed for this booking")

    dispatcher.refund(booking.id)
    logger.info(f"Admin {admin.id} re-queued refund for booking {booking.id}")
    return RefundQueuedResponse(booking_id=booking.id, refund_amount=snapshot.refund_amount)
