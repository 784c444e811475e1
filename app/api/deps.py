"""API dependencies for authentication and common operations."""

import logging
from collections.abc import Sequence
from typing import Annotated
from uuid import UUID

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import AuthenticationError, AuthorizationError, NotFoundError
from app.core.security import verify_token
from app.database import get_db
from app.domain.events import Notification
from app.gateways.base import PaymentGateway
from app.models.booking import Booking
from app.models.user import User
from app.services.ledger_service import LedgerService, build_ledger_service

logger = logging.getLogger(__name__)

# Security scheme
security = HTTPBearer()


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """Get the current authenticated user from the provider's JWT."""
    payload = verify_token(credentials.credentials)
    try:
        user_id = UUID(payload["sub"])
    except ValueError:
        raise AuthenticationError("Invalid token subject")

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if not user:
        raise AuthenticationError("User not found")
    if not user.is_active:
        raise AuthenticationError("User account is deactivated")

    return user


async def get_current_admin(
    current_user: Annotated[User, Depends(get_current_user)],
) -> User:
    """Get current user and verify they are an admin."""
    if current_user.role != "admin":
        raise AuthorizationError("Admin access required")
    return current_user


def get_ledger_service() -> LedgerService:
    """Ledger orchestrator bound to the application database."""
    return build_ledger_service()


def get_payment_gateway() -> PaymentGateway:
    from app.gateways.stripe_gateway import stripe_gateway

    return stripe_gateway


class TaskDispatcher:
    """Enqueues the side effects a committed ledger write reported."""

    def notify(self, notifications: Sequence[Notification]) -> None:
        if not notifications:
            return
        from app.tasks import dispatch_notifications

        dispatch_notifications.delay([n.as_dict() for n in notifications])

    def refund(self, booking_id: UUID) -> None:
        from app.tasks import issue_refund

        issue_refund.delay(str(booking_id))
        logger.info(f"Queued processor refund for booking {booking_id}")


def get_task_dispatcher() -> TaskDispatcher:
    return TaskDispatcher()


class BookingPermissionChecker:
    """Check if user has permission to access a booking."""

    def __init__(self, allow_customer: bool = True, allow_guide: bool = True):
        self.allow_customer = allow_customer
        self.allow_guide = allow_guide

    async def __call__(
        self,
        booking_id: UUID,
        current_user: Annotated[User, Depends(get_current_user)],
        db: Annotated[AsyncSession, Depends(get_db)],
    ) -> Booking:
        """Load the booking if the caller may act on it."""
        result = await db.execute(select(Booking).where(Booking.id == booking_id))
        booking = result.scalar_one_or_none()

        if not booking:
            raise NotFoundError("Booking", str(booking_id))

        # Admin always has access
        if current_user.role == "admin":
            return booking

        if self.allow_customer and booking.customer_id == current_user.id:
            return booking

        if self.allow_guide and booking.guide_id == current_user.id:
            return booking

        raise AuthorizationError("You don't have permission to access this booking")


# Convenience instances
require_booking_access = BookingPermissionChecker(allow_customer=True, allow_guide=True)
require_guide_booking_access = BookingPermissionChecker(allow_customer=False, allow_guide=True)
