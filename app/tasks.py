"""Celery background tasks.

Side effects owed by ledger writes run here, after the write committed:
- Notification emails
- Processor refunds for cancelled bookings
"""

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from uuid import UUID

from celery import shared_task
from sqlalchemy import select

from app.core.exceptions import LedgerError, NotFoundError, PaymentError, PersistenceError
from app.database import engine, get_db_context
from app.models.booking import Booking
from app.services.notification_service import notification_from_dict, notification_service
from app.services.refund_service import build_refund_service

logger = logging.getLogger(__name__)


def run_async(coro):
    """Run a coroutine on a fresh event loop, releasing pooled connections after."""

    async def runner():
        try:
            return await coro
        finally:
            await engine.dispose()

    return asyncio.run(runner())


# ==================== NOTIFICATION TASKS ====================


@shared_task(bind=True, max_retries=3)
def dispatch_notifications(self, notifications: list[dict]):
    """Send the notifications a ledger result listed.

    Args:
        notifications: Notification.as_dict() payloads
    """
    try:
        sent = run_async(_dispatch_notifications(notifications))
        return {"status": "success", "sent": sent, "total": len(notifications)}
    except Exception as exc:
        logger.exception("Notification dispatch failed")
        raise self.retry(exc=exc, countdown=60)


async def _dispatch_notifications(notifications: list[dict]) -> int:
    sent = 0
    try:
        for data in notifications:
            if await notification_service.dispatch(notification_from_dict(data)):
                sent += 1
    finally:
        await notification_service.close()
    return sent


# ==================== REFUND TASKS ====================


@shared_task(bind=True, max_retries=5)
def issue_refund(self, booking_id: str):
    """Ask the processor to refund a cancelled booking."""
    try:
        result = run_async(build_refund_service().issue_refund(UUID(booking_id)))
    except PersistenceError as exc:
        raise self.retry(exc=exc, countdown=300)
    except (NotFoundError, PaymentError, LedgerError) as e:
        # Not retryable; an admin re-queues once resolved
        logger.error(f"Refund for booking {booking_id} not issued: {e.detail}")
        return {"status": "failed", "booking_id": booking_id, "error": e.detail}
    except Exception as exc:
        logger.exception(f"Refund for booking {booking_id} failed")
        raise self.retry(exc=exc, countdown=300)

    if result is not None and result.notifications:
        dispatch_notifications.delay([n.as_dict() for n in result.notifications])
    return {"status": "success", "booking_id": booking_id, "settled": result is not None}


@shared_task
def retry_pending_refunds():
    """Re-enqueue refunds still pending an hour after cancellation."""
    booking_ids = run_async(_pending_refund_ids())
    for booking_id in booking_ids:
        issue_refund.delay(str(booking_id))
    return {"status": "success", "enqueued": len(booking_ids)}


async def _pending_refund_ids() -> list[UUID]:
    cutoff = datetime.now(UTC) - timedelta(hours=1)
    async with get_db_context() as db:
        result = await db.execute(
            select(Booking.id).where(
                Booking.status == "cancelled",
                Booking.refund_status == "pending",
                Booking.cancelled_at <= cutoff,
            )
        )
        return list(result.scalars().all())
