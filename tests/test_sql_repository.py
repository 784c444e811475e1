from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.dialects import postgresql

from app.core.exceptions import AlreadyCancelled
from app.core.immutability import ImmutabilityViolationError
from app.database import async_session_maker
from app.domain.events import (
    BookingDraft,
    CancellationInitiator,
    CancellationRequested,
    GuideMarksCompleted,
    PaymentSucceeded,
)
from app.models import Booking, CancellationRecord, ReferralEarning
from app.services.ledger_repository import (
    SqlAlchemyLedgerRepository,
    booking_lock_query,
    earning_lock_query,
)
from app.services.ledger_service import LedgerService

pytestmark = pytest.mark.anyio


@pytest.fixture
def ledger(database):
    return LedgerService(SqlAlchemyLedgerRepository(async_session_maker))


def draft_for(seeded, referred=True, **overrides):
    values = dict(
        trip_id=seeded.trip.id,
        trip_date_id=seeded.trip_date.id,
        customer_id=seeded.customer.id,
        guide_id=seeded.guide.id,
        gross_price=seeded.trip.price,
        trip_start_date=seeded.trip_date.start_date,
        trip_end_date=seeded.trip_date.end_date,
        referrer_id=seeded.referrer.id if referred else None,
        referral_rate=seeded.trip.referral_payout_rate,
    )
    values.update(overrides)
    return BookingDraft(**values)


async def fetch(model, **filters):
    async with async_session_maker() as session:
        result = await session.execute(select(model).filter_by(**filters))
        return result.scalars().all()


async def test_open_booking_persists_split_and_earning(ledger, seeded):
    booking_id = uuid4()

    result = await ledger.open_booking(draft_for(seeded, booking_id=booking_id))

    assert result.booking_id == booking_id
    [booking] = await fetch(Booking, id=booking_id)
    assert booking.status == "pending"
    assert booking.gross_price == (
        booking.commission_amount + booking.hosting_fee + booking.guide_payout + booking.referral_payout_amount
    )
    [earning] = await fetch(ReferralEarning, booking_id=booking_id)
    assert earning.status == "pending"
    assert earning.earnings_amount == 750


async def test_paid_booking_completes_and_pays_referrer(ledger, seeded):
    opened = await ledger.open_booking(draft_for(seeded))

    await ledger.apply_event(opened.booking_id, PaymentSucceeded("pi_sql_1"))
    result = await ledger.apply_event(opened.booking_id, GuideMarksCompleted(seeded.guide.id))

    assert result.status == "completed"
    [booking] = await fetch(Booking, id=opened.booking_id)
    assert booking.stripe_payment_intent_id == "pi_sql_1"
    assert booking.completed_at is not None
    [earning] = await fetch(ReferralEarning, booking_id=opened.booking_id)
    assert earning.status == "paid"
    assert earning.paid_at is not None


async def test_cancellation_writes_record_and_voids_earning(ledger, seeded):
    opened = await ledger.open_booking(draft_for(seeded))
    await ledger.apply_event(opened.booking_id, PaymentSucceeded("pi_sql_2"))

    result = await ledger.apply_event(
        opened.booking_id,
        CancellationRequested(initiator=CancellationInitiator.CUSTOMER, reason="Injured my ankle"),
    )

    assert result.refund_owed == 50000
    [booking] = await fetch(Booking, id=opened.booking_id)
    assert (booking.status, booking.refund_status, booking.cancelled_by) == ("cancelled", "pending", "customer")
    [record] = await fetch(CancellationRecord, booking_id=opened.booking_id)
    assert (record.refund_percentage, record.refund_amount, record.days_until_trip) == (100, 50000, 10)
    [earning] = await fetch(ReferralEarning, booking_id=opened.booking_id)
    assert earning.status == "voided"


async def test_rejected_event_leaves_database_untouched(ledger, seeded):
    opened = await ledger.open_booking(draft_for(seeded, referred=False))
    cancel = CancellationRequested(initiator=CancellationInitiator.GUIDE, reason="Storm warning")
    await ledger.apply_event(opened.booking_id, cancel)

    with pytest.raises(AlreadyCancelled):
        await ledger.apply_event(opened.booking_id, cancel)

    assert len(await fetch(CancellationRecord, booking_id=opened.booking_id)) == 1


async def test_cancellation_records_are_immutable(ledger, seeded):
    opened = await ledger.open_booking(draft_for(seeded, referred=False))
    await ledger.apply_event(
        opened.booking_id,
        CancellationRequested(initiator=CancellationInitiator.CUSTOMER, reason="Schedule clash"),
    )

    async with async_session_maker() as session:
        result = await session.execute(
            select(CancellationRecord).where(CancellationRecord.booking_id == opened.booking_id)
        )
        record = result.scalar_one()
        record.reason = "Rewritten"
        with pytest.raises(ImmutabilityViolationError):
            await session.commit()


@pytest.mark.parametrize("lock_query", [booking_lock_query, earning_lock_query])
def test_ledger_reads_lock_rows_on_postgres(lock_query):
    sql = str(lock_query(uuid4()).compile(dialect=postgresql.dialect()))
    assert sql.rstrip().endswith("FOR UPDATE")


async def test_late_capture_on_cancelled_booking_is_stored_as_refund_owed(ledger, seeded):
    opened = await ledger.open_booking(draft_for(seeded, referred=False))
    await ledger.apply_event(
        opened.booking_id,
        CancellationRequested(initiator=CancellationInitiator.CUSTOMER, reason="Changed plans"),
    )

    result = await ledger.apply_event(opened.booking_id, PaymentSucceeded(payment_intent_id="pi_late"))

    assert result.refund_owed == seeded.trip.price
    [booking] = await fetch(Booking, id=opened.booking_id)
    assert booking.status == "cancelled"
    assert booking.payment_status == "paid"
    assert booking.refund_status == "pending"
    assert booking.refund_amount == seeded.trip.price
    assert booking.stripe_payment_intent_id == "pi_late"
