"""Webhook endpoints for payment gateways."""

import logging
from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import (
    TaskDispatcher,
    get_db,
    get_ledger_service,
    get_payment_gateway,
    get_task_dispatcher,
)
from app.config import settings
from app.core.exceptions import ExternalServiceError, LedgerError, NotFoundError, PersistenceError
from app.domain.events import (
    CancellationInitiator,
    CancellationRequested,
    LedgerEvent,
    Notification,
    NotificationKind,
    PaymentSucceeded,
    RefundIssued,
)
from app.gateways.base import PaymentGateway
from app.models.booking import Booking
from app.services.ledger_service import LedgerService

logger = logging.getLogger(__name__)

router = APIRouter()

CHECKOUT_EXPIRED_REASON = "Checkout session expired"


@router.post("/stripe", status_code=status.HTTP_200_OK)
async def stripe_webhook(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    ledger: Annotated[LedgerService, Depends(get_ledger_service)],
    gateway: Annotated[PaymentGateway, Depends(get_payment_gateway)],
    dispatcher: Annotated[TaskDispatcher, Depends(get_task_dispatcher)],
    stripe_signature: str | None = Header(None, alias="Stripe-Signature"),
) -> dict:
    """Handle Stripe webhook events.

    Ledger conflicts (replays, events for bookings that moved on) are logged
    and acknowledged so Stripe stops retrying. Storage failures return 500 so
    it retries.
    """
    if not settings.stripe_webhook_secret:
        raise ExternalServiceError("stripe", "webhook secret is not configured")

    payload = await request.body()
    event = gateway.verify_webhook(payload, stripe_signature or "")
    if event is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signature",
        )

    event_type = event.get("type")
    data = event.get("data", {}).get("object", {})

    if event_type == "payment_intent.payment_failed":
        await _handle_payment_failed(db, data, dispatcher)
        return {"received": True}

    booking_id, ledger_event = await _to_ledger_event(db, event_type, data)
    if ledger_event is None:
        logger.info(f"Ignoring Stripe event {event.get('id')} of type {event_type}")
        return {"received": True}
    if booking_id is None:
        logger.warning(f"Stripe event {event.get('id')} ({event_type}) has no booking reference")
        return {"received": True, "applied": False}

    try:
        result = await ledger.apply_event(booking_id, ledger_event)
    except PersistenceError:
        raise
    except (LedgerError, NotFoundError) as e:
        logger.warning(f"Stripe event {event.get('id')} ({event_type}) not applied to booking {booking_id}: {e.detail}")
        return {"received": True, "applied": False}

    if isinstance(ledger_event, CancellationRequested):
        logger.info(f"Released spots held by booking {booking_id} after its checkout session expired")
    else:
        dispatcher.notify(result.notifications)
    if result.refund_owed > 0:
        dispatcher.refund(booking_id)
    return {"received": True, "applied": result.changed}


def _booking_id_from_metadata(data: dict[str, Any]) -> UUID | None:
    raw = (data.get("metadata") or {}).get("booking_id") or data.get("client_reference_id")
    if not raw:
        return None
    try:
        return UUID(raw)
    except ValueError:
        return None


async def _booking_id_for_intent(db: AsyncSession, payment_intent_id: str | None) -> UUID | None:
    if not payment_intent_id:
        return None
    result = await db.execute(
        select(Booking.id).where(Booking.stripe_payment_intent_id == payment_intent_id)
    )
    return result.scalar_one_or_none()


async def _to_ledger_event(
    db: AsyncSession,
    event_type: str | None,
    data: dict[str, Any],
) -> tuple[UUID | None, LedgerEvent | None]:
    """Translate a Stripe event into the booking id and ledger event it implies."""
    if event_type == "checkout.session.completed":
        if data.get("payment_status") != "paid":
            return None, None
        booking_id = _booking_id_from_metadata(data)
        return booking_id, PaymentSucceeded(payment_intent_id=data.get("payment_intent"))

    if event_type == "checkout.session.expired":
        booking_id = _booking_id_from_metadata(data)
        return booking_id, CancellationRequested(
            initiator=CancellationInitiator.CUSTOMER,
            reason=CHECKOUT_EXPIRED_REASON,
        )

    if event_type == "payment_intent.succeeded":
        booking_id = _booking_id_from_metadata(data)
        return booking_id, PaymentSucceeded(payment_intent_id=data.get("id"))

    if event_type in ("refund.created", "refund.updated"):
        if data.get("status") != "succeeded":
            return None, None
        booking_id = _booking_id_from_metadata(data) or await _booking_id_for_intent(
            db, data.get("payment_intent")
        )
        return booking_id, RefundIssued(
            processor_reference_id=data.get("id"),
            amount=data.get("amount"),
        )

    if event_type == "charge.refunded":
        # Only expanded payloads carry the refund id; otherwise refund.* covers it
        refunds = (data.get("refunds") or {}).get("data") or []
        if not refunds:
            return None, None
        booking_id = _booking_id_from_metadata(data) or await _booking_id_for_intent(
            db, data.get("payment_intent")
        )
        return booking_id, RefundIssued(
            processor_reference_id=refunds[0]["id"],
            amount=data.get("amount_refunded"),
        )

    return None, None


async def _handle_payment_failed(
    db: AsyncSession,
    data: dict[str, Any],
    dispatcher: TaskDispatcher,
) -> None:
    """Tell the customer their card was declined. The booking stays pending."""
    booking_id = _booking_id_from_metadata(data)
    booking = await db.get(Booking, booking_id) if booking_id else None
    if booking is None:
        logger.warning(f"Payment failure for unknown booking (intent {data.get('id')})")
        return

    message = (data.get("last_payment_error") or {}).get("message")
    logger.info(f"Payment failed for booking {booking.id}: {message}")
    dispatcher.notify(
        [
            Notification(
                kind=NotificationKind.PAYMENT_FAILED,
                recipient_id=booking.customer_id,
                booking_id=booking.id,
                payload={"message": message} if message else {},
            )
        ]
    )
