"""Notification Service for ledger side effects.

The ledger never sends anything itself; it returns the notifications a
caller owes. This service turns them into email (SendGrid over HTTP).
"""

import logging
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

import httpx
from sqlalchemy import select

from app.config import settings
from app.database import get_db_context
from app.domain.events import Notification, NotificationKind
from app.domain.money import from_minor_units
from app.models.user import User

logger = logging.getLogger(__name__)


def _money(amount: int | None, currency: str | None) -> str:
    currency = currency or settings.default_currency
    return f"{currency} {from_minor_units(amount or 0, currency):,}"


class NotificationService:
    """Service for sending ledger notifications by email."""

    def __init__(self) -> None:
        """Initialize notification service."""
        self._http_client: httpx.AsyncClient | None = None

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Lazy-load HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=30.0)
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    # ==================== EMAIL (SENDGRID) ====================

    async def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: str | None = None,
    ) -> bool:
        """Send an email via SendGrid.

        Args:
            to_email: Recipient email
            subject: Email subject
            html_content: HTML body
            text_content: Plain text body

        Returns:
            bool: True if sent successfully
        """
        if not settings.sendgrid_api_key:
            logger.info(f"SendGrid not configured, skipping email to {to_email}: {subject}")
            return False

        headers = {
            "Authorization": f"Bearer {settings.sendgrid_api_key}",
            "Content-Type": "application/json",
        }
        payload: dict[str, Any] = {
            "personalizations": [{"to": [{"email": to_email}]}],
            "from": {
                "email": settings.email_from_address,
                "name": settings.email_from_name,
            },
            "subject": subject,
            "content": [{"type": "text/html", "value": html_content}],
        }
        if text_content:
            payload["content"].insert(0, {"type": "text/plain", "value": text_content})

        try:
            response = await self.http_client.post(
                "https://api.sendgrid.com/v3/mail/send",
                headers=headers,
                json=payload,
            )
        except httpx.HTTPError as e:
            logger.error(f"SendGrid request failed for {to_email}: {e}")
            return False

        if response.status_code not in (200, 202):
            logger.error(f"SendGrid rejected email to {to_email}: {response.status_code} {response.text}")
            return False
        return True

    # ==================== RENDERING ====================

    def render(self, kind: NotificationKind, booking_id: UUID, payload: dict[str, Any]) -> tuple[str, str]:
        """Build the (title, body) pair for a notification kind."""
        currency = payload.get("currency")
        reference = str(booking_id)[:8].upper()

        if kind == NotificationKind.BOOKING_CONFIRMED:
            return (
                "Booking Confirmed!",
                f"Your payment of {_money(payload.get('amount'), currency)} was received "
                f"and booking {reference} is confirmed.",
            )
        if kind == NotificationKind.GUIDE_BOOKING_RECEIVED:
            return (
                "New Booking",
                f"You have a new confirmed booking ({reference}). Your payout will be "
                f"{_money(payload.get('guide_payout'), currency)} after the trip is completed.",
            )
        if kind == NotificationKind.BOOKING_CANCELLED:
            return (
                "Booking Cancelled",
                f"Booking {reference} was cancelled by the {payload.get('cancelled_by', 'other party')}. "
                f"Reason: {payload.get('reason', '')}",
            )
        if kind == NotificationKind.REFUND_PENDING:
            return (
                "Refund on the Way",
                f"A refund of {_money(payload.get('refund_amount'), currency)} "
                f"({payload.get('refund_percentage', 0)}%) for booking {reference} is being processed.",
            )
        if kind == NotificationKind.REFUND_ISSUED:
            return (
                "Refund Issued",
                f"Your refund of {_money(payload.get('refund_amount'), currency)} for booking "
                f"{reference} has been issued. It may take 5-10 business days to appear.",
            )
        if kind == NotificationKind.TRIP_COMPLETED:
            return (
                "How was your trip?",
                f"Your guide marked booking {reference} as completed. We hope you had a great time.",
            )
        if kind == NotificationKind.REFERRAL_PAID:
            return (
                "Referral Earnings",
                f"You earned {_money(payload.get('earnings_amount'), currency)} "
                f"from a trip you referred ({reference}).",
            )
        if kind == NotificationKind.PAYMENT_FAILED:
            return (
                "Payment Failed",
                f"We couldn't process the payment for booking {reference}. "
                f"{payload.get('message', 'Please try again with another card.')}",
            )
        raise ValueError(f"Unknown notification kind: {kind}")

    # ==================== DISPATCH ====================

    async def notify_user(
        self,
        user_id: UUID,
        title: str,
        body: str,
        action_url: str | None = None,
    ) -> bool:
        """Email a user by id. Returns False if the user is unknown or the send fails."""
        async with get_db_context() as db:
            result = await db.execute(select(User).where(User.id == user_id))
            user = result.scalar_one_or_none()

        if not user or not user.email:
            logger.warning(f"No email on file for user {user_id}, dropping notification: {title}")
            return False

        return await self.send_email(
            to_email=user.email,
            subject=title,
            html_content=self._generate_email_html(title, body, action_url),
            text_content=body,
        )

    async def dispatch(self, notification: Notification) -> bool:
        """Send one ledger notification to its recipient."""
        if notification.recipient_id is None:
            return False
        title, body = self.render(notification.kind, notification.booking_id, notification.payload)
        sent = await self.notify_user(
            user_id=notification.recipient_id,
            title=title,
            body=body,
            action_url=f"{settings.site_url}/bookings/{notification.booking_id}",
        )
        logger.info(
            f"Notification {notification.kind.value} for booking {notification.booking_id} "
            f"to {notification.recipient_id}: {'sent' if sent else 'not sent'}"
        )
        return sent

    def _generate_email_html(self, title: str, body: str, action_url: str | None) -> str:
        """Generate simple HTML email content.

        Args:
            title: Email title
            body: Email body
            action_url: CTA button URL

        Returns:
            str: HTML email content
        """
        button_html = ""
        if action_url:
            button_html = f"""
            <p style="margin-top: 24px;">
                <a href="{action_url}"
                   style="background-color: #0F766E; color: white; padding: 12px 24px;
                          text-decoration: none; border-radius: 6px; display: inline-block;">
                    View Booking
                </a>
            </p>
            """

        return f"""
        <!DOCTYPE html>
        <html>
        <head>
            <meta charset="utf-8">
            <meta name="viewport" content="width=device-width, initial-scale=1.0">
        </head>
        <body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
                     max-width: 600px; margin: 0 auto; padding: 20px; color: #333;">
            <div style="background-color: #f9fafb; border-radius: 8px; padding: 24px;">
                <h1 style="color: #111827; font-size: 24px; margin-bottom: 16px;">{title}</h1>
                <p style="color: #4b5563; font-size: 16px; line-height: 1.6;">{body}</p>
                {button_html}
            </div>
            <p style="color: #9ca3af; font-size: 12px; margin-top: 24px; text-align: center;">
                &copy; {datetime.now(UTC).year} {settings.app_name}. All rights reserved.
            </p>
        </body>
        </html>
        """


def notification_from_dict(data: dict[str, Any]) -> Notification:
    """Rebuild a Notification from its JSON-safe form (Celery payloads)."""
    return Notification(
        kind=NotificationKind(data["kind"]),
        recipient_id=UUID(data["recipient_id"]) if data.get("recipient_id") else None,
        booking_id=UUID(data["booking_id"]),
        payload=data.get("payload") or {},
    )


# Singleton instance
notification_service = NotificationService()
