"""Data access for the booking ledger.

LedgerRepository is the interface the ledger orchestrator is constructed
with. SqlAlchemyLedgerRepository opens its own session per transaction so a
ledger write commits (or rolls back) as one unit, independent of whatever
the request session is doing.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import Select, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import PersistenceError
from app.domain.events import (
    BookingDraft,
    BookingSnapshot,
    CancellationDraft,
    ReferralEarningSnapshot,
)
from app.domain.money import PriceSplit
from app.models.booking import Booking
from app.models.ledger import CancellationRecord, ReferralEarning
from app.models.trip import TripDate

logger = logging.getLogger(__name__)


def booking_lock_query(booking_id: UUID) -> Select:
    """Row-locking select for one booking; concurrent ledger writers queue on it."""
    return select(Booking).where(Booking.id == booking_id).with_for_update()


def earning_lock_query(booking_id: UUID) -> Select:
    return select(ReferralEarning).where(ReferralEarning.booking_id == booking_id).with_for_update()


class LedgerRepository(ABC):
    """Persistence operations the ledger needs, all inside transaction()."""

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[None]:
        """All-or-nothing unit of work. Storage failures raise PersistenceError."""

    @abstractmethod
    async def lock_booking(self, booking_id: UUID) -> BookingSnapshot | None:
        """Load a booking and hold a row lock until the transaction ends."""

    @abstractmethod
    async def lock_referral_earning(self, booking_id: UUID) -> ReferralEarningSnapshot | None:
        """Load the booking's referral earning under a row lock."""

    @abstractmethod
    async def update_booking(self, booking_id: UUID, updates: dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def insert_cancellation(self, draft: CancellationDraft) -> None:
        ...

    @abstractmethod
    async def update_referral_earning(self, earning_id: UUID, updates: dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def insert_booking(
        self,
        draft: BookingDraft,
        split: PriceSplit,
        commission_rate: Any,
    ) -> BookingSnapshot:
        ...

    @abstractmethod
    async def insert_referral_earning(
        self,
        booking: BookingSnapshot,
        earnings_amount: int,
    ) -> ReferralEarningSnapshot:
        ...


def booking_to_snapshot(booking: Booking, trip_date: TripDate) -> BookingSnapshot:
    return BookingSnapshot(
        id=booking.id,
        trip_id=booking.trip_id,
        customer_id=booking.customer_id,
        guide_id=booking.guide_id,
        status=booking.status,
        payment_status=booking.payment_status,
        refund_status=booking.refund_status,
        gross_price=booking.gross_price,
        commission_amount=booking.commission_amount,
        hosting_fee=booking.hosting_fee,
        guide_payout=booking.guide_payout,
        referral_payout_amount=booking.referral_payout_amount,
        trip_start_date=trip_date.start_date,
        trip_end_date=trip_date.end_date,
        currency=booking.currency,
        referrer_id=booking.referrer_id,
        refund_amount=booking.refund_amount,
        refund_transaction_id=booking.refund_transaction_id,
        stripe_payment_intent_id=booking.stripe_payment_intent_id,
    )


def earning_to_snapshot(earning: ReferralEarning) -> ReferralEarningSnapshot:
    return ReferralEarningSnapshot(
        id=earning.id,
        referrer_id=earning.referrer_id,
        booking_id=earning.booking_id,
        earnings_amount=earning.earnings_amount,
        status=earning.status,
        paid_at=earning.paid_at,
    )


class SqlAlchemyLedgerRepository(LedgerRepository):
    """LedgerRepository backed by an async SQLAlchemy session factory."""

    def __init__(self, session_factory: Callable[[], AsyncSession]) -> None:
        self._session_factory = session_factory
        self._session: AsyncSession | None = None

    @property
    def session(self) -> AsyncSession:
        if self._session is None:
            raise RuntimeError("Ledger repository used outside of transaction()")
        return self._session

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self._session is not None:
            raise RuntimeError("Ledger transactions cannot be nested")
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    self._session = session
                    try:
                        yield
                        await session.flush()
                    finally:
                        self._session = None
        except SQLAlchemyError as e:
            logger.error(f"Ledger transaction rolled back: {e}")
            raise PersistenceError() from e

    async def lock_booking(self, booking_id: UUID) -> BookingSnapshot | None:
        result = await self.session.execute(booking_lock_query(booking_id))
        booking = result.scalar_one_or_none()
        if booking is None:
            return None
        trip_date = await self.session.get(TripDate, booking.trip_date_id)
        return booking_to_snapshot(booking, trip_date)

    async def lock_referral_earning(self, booking_id: UUID) -> ReferralEarningSnapshot | None:
        result = await self.session.execute(earning_lock_query(booking_id))
        earning = result.scalar_one_or_none()
        return earning_to_snapshot(earning) if earning else None

    async def update_booking(self, booking_id: UUID, updates: dict[str, Any]) -> None:
        booking = await self.session.get(Booking, booking_id)
        for field, value in updates.items():
            setattr(booking, field, value)

    async def insert_cancellation(self, draft: CancellationDraft) -> None:
        self.session.add(
            CancellationRecord(
                booking_id=draft.booking_id,
                initiator=draft.initiator,
                reason=draft.reason,
                refund_percentage=draft.refund_percentage,
                refund_amount=draft.refund_amount,
                days_until_trip=draft.days_until_trip,
            )
        )

    async def update_referral_earning(self, earning_id: UUID, updates: dict[str, Any]) -> None:
        earning = await self.session.get(ReferralEarning, earning_id)
        for field, value in updates.items():
            setattr(earning, field, value)

    async def insert_booking(
        self,
        draft: BookingDraft,
        split: PriceSplit,
        commission_rate: Any,
    ) -> BookingSnapshot:
        booking = Booking(
            id=draft.booking_id or uuid4(),
            trip_id=draft.trip_id,
            trip_date_id=draft.trip_date_id,
            customer_id=draft.customer_id,
            guide_id=draft.guide_id,
            participant_count=draft.participant_count,
            gross_price=split.gross_price,
            currency=split.currency,
            commission_rate=commission_rate,
            commission_amount=split.commission_amount,
            hosting_fee=split.hosting_fee,
            guide_payout=split.guide_payout,
            referrer_id=draft.referrer_id,
            referral_rate=draft.referral_rate,
            referral_payout_amount=split.referral_amount,
            status="pending",
            payment_status="unpaid",
            refund_status="none",
            refund_amount=0,
            stripe_checkout_session_id=draft.stripe_checkout_session_id,
        )
        self.session.add(booking)
        await self.session.flush()
        trip_date = await self.session.get(TripDate, draft.trip_date_id)
        return booking_to_snapshot(booking, trip_date)

    async def insert_referral_earning(
        self,
        booking: BookingSnapshot,
        earnings_amount: int,
    ) -> ReferralEarningSnapshot:
        earning = ReferralEarning(
            referrer_id=booking.referrer_id,
            booking_id=booking.id,
            trip_id=booking.trip_id,
            earnings_amount=earnings_amount,
            currency=booking.currency,
            status="pending",
        )
        self.session.add(earning)
        await self.session.flush()
        return earning_to_snapshot(earning)
