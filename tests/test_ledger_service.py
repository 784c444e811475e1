from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from app.core.exceptions import (
    AlreadyCancelled,
    InvalidTransition,
    NotFoundError,
    PersistenceError,
    TerminalStateViolation,
    TripAlreadyOccurred,
)
from app.domain.events import (
    BookingDraft,
    CancellationInitiator,
    CancellationRequested,
    Decision,
    GuideMarksCompleted,
    NotificationKind,
    PaymentSucceeded,
    RefundIssued,
)
from app.domain.booking_state import BookingStateMachine
from app.services.ledger_service import LedgerService
from tests.fakes import InMemoryLedgerRepository

pytestmark = pytest.mark.anyio

TODAY = date(2026, 6, 1)
NOW = datetime(2026, 6, 1, 15, 30, tzinfo=UTC)


@pytest.fixture
def repo():
    return InMemoryLedgerRepository()


@pytest.fixture
def ledger(repo):
    return LedgerService(repo, commission_rate=Decimal("0.12"), hosting_fee=100)


def cancel_event(initiator=CancellationInitiator.CUSTOMER):
    return CancellationRequested(initiator=initiator, reason="Change of plans")


async def test_open_booking_splits_price_and_creates_earning(ledger, repo):
    draft = BookingDraft(
        trip_id=uuid4(),
        trip_date_id=uuid4(),
        customer_id=uuid4(),
        guide_id=uuid4(),
        gross_price=50000,
        trip_start_date=TODAY + timedelta(days=20),
        trip_end_date=TODAY + timedelta(days=22),
        referrer_id=uuid4(),
        referral_rate=Decimal("0.015"),
    )

    result = await ledger.open_booking(draft)

    assert result.status == "pending"
    assert result.payment_status == "unpaid"
    assert (result.commission_amount, result.hosting_fee, result.referral_payout_amount, result.guide_payout) == (
        6000,
        100,
        750,
        43150,
    )
    assert result.referral_status == "pending"
    assert repo.earning_for(result.booking_id).earnings_amount == 750


async def test_open_booking_ignores_rate_without_referrer(ledger, repo):
    draft = BookingDraft(
        trip_id=uuid4(),
        trip_date_id=uuid4(),
        customer_id=uuid4(),
        guide_id=uuid4(),
        gross_price=50000,
        trip_start_date=TODAY + timedelta(days=20),
        trip_end_date=TODAY + timedelta(days=22),
        referral_rate=Decimal("0.015"),
    )

    result = await ledger.open_booking(draft)

    assert result.referral_payout_amount == 0
    assert result.guide_payout == 43900
    assert repo.earnings == {}


async def test_payment_then_completion_settles_referral(ledger, repo):
    booking = repo.add_booking(status="pending", payment_status="unpaid", referred=True, today=TODAY)

    paid = await ledger.apply_event(booking.id, PaymentSucceeded("pi_1"), now=NOW)
    assert paid.status == "confirmed"
    assert paid.payment_status == "paid"

    done = await ledger.apply_event(booking.id, GuideMarksCompleted(booking.guide_id), now=NOW)
    assert done.status == "completed"
    assert done.referral_status == "paid"
    assert NotificationKind.REFERRAL_PAID in {n.kind for n in done.notifications}
    assert repo.earning_for(booking.id).paid_at == NOW


async def test_double_completion_is_idempotent(ledger, repo):
    booking = repo.add_booking(referred=True, today=TODAY)

    first = await ledger.apply_event(booking.id, GuideMarksCompleted(booking.guide_id), now=NOW)
    later = NOW + timedelta(hours=1)
    second = await ledger.apply_event(booking.id, GuideMarksCompleted(booking.guide_id), now=later)

    assert first.changed and not second.changed
    assert second.status == "completed"
    assert second.referral_status == "paid"
    assert second.notifications == ()
    assert repo.earning_for(booking.id).paid_at == NOW


@pytest.mark.parametrize(
    "days,refund",
    [(10, 50000), (5, 25000), (1, 0)],
)
async def test_customer_cancellation_refund_tiers(ledger, repo, days, refund):
    booking = repo.add_booking(start_in_days=days, today=TODAY)

    result = await ledger.apply_event(booking.id, cancel_event(), now=NOW)

    assert result.status == "cancelled"
    assert result.refund_amount == refund
    assert result.refund_owed == refund
    assert result.refund_status == ("pending" if refund else "none")
    assert repo.cancellations[0].refund_amount == refund
    assert repo.cancellations[0].days_until_trip == days


async def test_cancellation_voids_pending_referral(ledger, repo):
    booking = repo.add_booking(referred=True, today=TODAY)

    result = await ledger.apply_event(booking.id, cancel_event(), now=NOW)

    assert result.referral_status == "voided"
    earning = repo.earning_for(booking.id)
    assert earning.status == "voided"
    assert earning.paid_at is None
    assert repo.earning_extra[earning.id]["voided_at"] == NOW


async def test_cancel_after_trip_started_writes_nothing(ledger, repo):
    booking = repo.add_booking(start_in_days=-1, today=TODAY)

    with pytest.raises(TripAlreadyOccurred):
        await ledger.apply_event(booking.id, cancel_event(), now=NOW)

    assert repo.bookings[booking.id].status == "confirmed"
    assert repo.cancellations == []
    assert repo.commits == 0


async def test_cancel_twice_rejected(ledger, repo):
    booking = repo.add_booking(today=TODAY)
    await ledger.apply_event(booking.id, cancel_event(), now=NOW)

    with pytest.raises(AlreadyCancelled):
        await ledger.apply_event(booking.id, cancel_event(), now=NOW)

    assert len(repo.cancellations) == 1


async def test_completed_booking_rejects_cancellation(ledger, repo):
    booking = repo.add_booking(status="completed", today=TODAY)

    with pytest.raises(TerminalStateViolation):
        await ledger.apply_event(booking.id, cancel_event(), now=NOW)


async def test_refund_issued_after_cancellation(ledger, repo):
    booking = repo.add_booking(start_in_days=5, today=TODAY)
    await ledger.apply_event(booking.id, cancel_event(), now=NOW)

    result = await ledger.apply_event(booking.id, RefundIssued("re_1", amount=25000), now=NOW)
    replay = await ledger.apply_event(booking.id, RefundIssued("re_1", amount=25000), now=NOW)

    assert result.refund_status == "completed"
    assert result.payment_status == "partially_refunded"
    assert not replay.changed


async def test_refund_without_owed_amount_rejected(ledger, repo):
    booking = repo.add_booking(start_in_days=1, today=TODAY)
    await ledger.apply_event(booking.id, cancel_event(), now=NOW)

    with pytest.raises(InvalidTransition):
        await ledger.apply_event(booking.id, RefundIssued("re_1"), now=NOW)


async def test_unknown_booking(ledger):
    with pytest.raises(NotFoundError):
        await ledger.apply_event(uuid4(), PaymentSucceeded("pi_1"), now=NOW)


async def test_persistence_failure_leaves_no_partial_writes(ledger, repo):
    booking = repo.add_booking(referred=True, today=TODAY)
    repo.fail_on_commit = True

    with pytest.raises(PersistenceError):
        await ledger.apply_event(booking.id, cancel_event(), now=NOW)

    assert repo.bookings[booking.id].status == "confirmed"
    assert repo.earning_for(booking.id).status == "pending"
    assert repo.cancellations == []
    assert repo.booking_extra == {}


async def test_quote_cancellation(ledger, repo):
    booking = repo.add_booking(start_in_days=5, today=TODAY)

    quote = await ledger.quote_cancellation(booking.id, CancellationInitiator.CUSTOMER, today=TODAY)
    guide_quote = await ledger.quote_cancellation(booking.id, CancellationInitiator.GUIDE, today=TODAY)

    assert (quote.refund_percentage, quote.refund_amount) == (50, 25000)
    assert (guide_quote.refund_percentage, guide_quote.refund_amount) == (100, 50000)
    assert repo.bookings[booking.id].status == "confirmed"


async def test_quote_for_unpaid_booking_is_zero(ledger, repo):
    booking = repo.add_booking(status="pending", payment_status="unpaid", today=TODAY)

    quote = await ledger.quote_cancellation(booking.id, CancellationInitiator.CUSTOMER, today=TODAY)

    assert quote.refund_amount == 0


async def test_quote_for_cancelled_booking_rejected(ledger, repo):
    booking = repo.add_booking(status="cancelled", today=TODAY)

    with pytest.raises(AlreadyCancelled):
        await ledger.quote_cancellation(booking.id, CancellationInitiator.CUSTOMER, today=TODAY)


class CompletesWithoutSettling(BookingStateMachine):
    def decide(self, booking, event, now):
        return Decision(booking_updates={"status": "completed", "completed_at": now})


async def test_completion_that_leaves_referral_pending_is_rejected(repo):
    ledger = LedgerService(repo, state_machine=CompletesWithoutSettling())
    booking = repo.add_booking(referred=True, today=TODAY)

    with pytest.raises(InvalidTransition):
        await ledger.apply_event(booking.id, GuideMarksCompleted(booking.guide_id), now=NOW)

    assert repo.bookings[booking.id].status == "confirmed"
    assert repo.earning_for(booking.id).status == "pending"
    assert repo.commits == 0


async def test_capture_after_cancelling_unpaid_booking_owes_full_refund(ledger, repo):
    booking = repo.add_booking(status="pending", payment_status="unpaid", referred=True, today=TODAY)
    await ledger.apply_event(booking.id, cancel_event(), now=NOW)

    result = await ledger.apply_event(booking.id, PaymentSucceeded("pi_late"), now=NOW)

    assert result.changed
    assert (result.status, result.payment_status, result.refund_status) == ("cancelled", "paid", "pending")
    assert result.refund_owed == result.refund_amount == 50000
    assert result.referral_status == "voided"
    assert repo.bookings[booking.id].stripe_payment_intent_id == "pi_late"
