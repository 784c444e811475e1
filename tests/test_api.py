import json
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from uuid import UUID

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from app.api.deps import get_current_user, get_ledger_service, get_payment_gateway, get_task_dispatcher
from app.config import settings
from app.core.exceptions import PersistenceError
from app.database import async_session_maker
from app.domain.events import (
    BookingDraft,
    CancellationInitiator,
    CancellationRequested,
    GuideMarksCompleted,
    PaymentSucceeded,
    RefundIssued,
)
from app.main import app
from app.models import CancellationRecord, Trip, TripDate
from app.services.ledger_service import build_ledger_service
from tests.fakes import FakeGateway

pytestmark = pytest.mark.anyio


class RecordingDispatcher:
    def __init__(self):
        self.notifications = []
        self.refunds = []

    def notify(self, notifications):
        self.notifications.extend(notifications)

    def refund(self, booking_id):
        self.refunds.append(booking_id)


class AppHarness:
    def __init__(self, seeded):
        self.seeded = seeded
        self.user = seeded.customer
        self.gateway = FakeGateway()
        self.dispatcher = RecordingDispatcher()
        self.ledger = build_ledger_service()

    def act_as(self, user):
        self.user = user


@pytest.fixture
async def harness(seeded):
    h = AppHarness(seeded)
    app.dependency_overrides[get_current_user] = lambda: h.user
    app.dependency_overrides[get_payment_gateway] = lambda: h.gateway
    app.dependency_overrides[get_task_dispatcher] = lambda: h.dispatcher
    yield h
    app.dependency_overrides.clear()


@pytest.fixture
async def client(harness):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


async def open_booking(harness, trip_date=None, referred=False, paid=True):
    seeded = harness.seeded
    trip_date = trip_date or seeded.trip_date
    result = await harness.ledger.open_booking(
        BookingDraft(
            trip_id=seeded.trip.id,
            trip_date_id=trip_date.id,
            customer_id=seeded.customer.id,
            guide_id=seeded.guide.id,
            gross_price=seeded.trip.price,
            trip_start_date=trip_date.start_date,
            trip_end_date=trip_date.end_date,
            referrer_id=seeded.referrer.id if referred else None,
            referral_rate=seeded.trip.referral_payout_rate,
        )
    )
    if paid:
        await harness.ledger.apply_event(result.booking_id, PaymentSucceeded("pi_api_1"))
    return result.booking_id


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["database"] == "ok"


async def test_checkout_opens_pending_booking(client, harness):
    response = await client.post(
        "/api/v1/bookings/checkout",
        json={"trip_date_id": str(harness.seeded.trip_date.id), "participant_count": 2},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["gross_price"] == 100000
    assert body["checkout_url"].startswith("https://checkout.stripe.test/")
    assert harness.gateway.sessions[0]["reference_id"] == body["booking_id"]

    booking = await client.get(f"/api/v1/bookings/{body['booking_id']}")
    assert booking.json()["status"] == "pending"


async def test_checkout_rejects_ineligible_referrer(client, harness):
    response = await client.post(
        "/api/v1/bookings/checkout",
        json={"trip_date_id": str(harness.seeded.trip_date.id), "referrer_handle": "@riley"},
    )

    assert response.status_code == 422
    assert response.json() == {"detail": "Referrer has not completed this trip"}
    assert harness.gateway.sessions == []


async def test_guide_cannot_book_own_trip(client, harness):
    harness.act_as(harness.seeded.guide)

    response = await client.post(
        "/api/v1/bookings/checkout",
        json={"trip_date_id": str(harness.seeded.trip_date.id)},
    )

    assert response.status_code == 422


async def test_stranger_cannot_view_booking(client, harness):
    booking_id = await open_booking(harness)
    harness.act_as(harness.seeded.referrer)

    response = await client.get(f"/api/v1/bookings/{booking_id}")

    assert response.status_code == 403


async def test_cancellation_quote(client, harness):
    booking_id = await open_booking(harness)

    response = await client.get(f"/api/v1/bookings/{booking_id}/cancellation-quote")

    assert response.status_code == 200
    body = response.json()
    assert (body["initiator"], body["days_until_trip"], body["refund_percentage"]) == ("customer", 10, 100)
    assert body["refund_amount"] == 50000


async def test_customer_cancel_queues_refund_and_notifies(client, harness):
    booking_id = await open_booking(harness)

    response = await client.post(
        f"/api/v1/bookings/{booking_id}/cancel", json={"reason": "Family emergency"}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "cancelled"
    assert body["refund_owed"] == 50000
    assert body["cancellation"]["initiator"] == "customer"
    assert harness.dispatcher.refunds == [booking_id]
    assert {n.kind.value for n in harness.dispatcher.notifications} == {"booking_cancelled", "refund_pending"}


async def test_guide_cancel_uses_guide_policy(client, harness):
    booking_id = await open_booking(harness)
    harness.act_as(harness.seeded.guide)

    response = await client.post(
        f"/api/v1/bookings/{booking_id}/cancel", json={"reason": "Avalanche risk"}
    )

    assert response.json()["cancellation"]["initiator"] == "guide"
    assert response.json()["cancellation"]["refund_percentage"] == 100


async def test_double_cancel_conflicts(client, harness):
    booking_id = await open_booking(harness)
    url = f"/api/v1/bookings/{booking_id}/cancel"

    await client.post(url, json={"reason": "Family emergency"})
    response = await client.post(url, json={"reason": "Family emergency"})

    assert response.status_code == 409
    assert response.json() == {"detail": "Booking is already cancelled"}


async def test_cancel_after_trip_started(client, harness):
    start = datetime.now(UTC).date() - timedelta(days=1)
    async with async_session_maker() as session:
        past = TripDate(trip_id=harness.seeded.trip.id, start_date=start, end_date=start + timedelta(days=2))
        session.add(past)
        await session.commit()
    booking_id = await open_booking(harness, trip_date=past)

    response = await client.post(
        f"/api/v1/bookings/{booking_id}/cancel", json={"reason": "Changed my mind"}
    )

    assert response.status_code == 400
    assert response.json() == {"detail": "Cannot cancel trips that have already occurred"}


async def test_cancel_reason_too_short(client, harness):
    booking_id = await open_booking(harness)

    response = await client.post(f"/api/v1/bookings/{booking_id}/cancel", json={"reason": "   no "})

    assert response.status_code == 422


async def test_persistence_failure_returns_generic_500(client, harness):
    booking_id = await open_booking(harness)

    class FailingLedger:
        async def apply_event(self, booking_id, event, now=None):
            raise PersistenceError()

    app.dependency_overrides[get_ledger_service] = FailingLedger

    response = await client.post(
        f"/api/v1/bookings/{booking_id}/cancel", json={"reason": "Family emergency"}
    )

    assert response.status_code == 500
    assert response.json() == {"detail": "The booking could not be updated. Please try again."}
    assert harness.dispatcher.refunds == []


async def test_guide_completes_and_referrer_sees_paid_earning(client, harness):
    booking_id = await open_booking(harness, referred=True)
    harness.act_as(harness.seeded.guide)

    first = await client.post(f"/api/v1/bookings/{booking_id}/complete")
    second = await client.post(f"/api/v1/bookings/{booking_id}/complete")

    assert first.json()["status"] == "completed"
    assert first.json()["referral_status"] == "paid"
    assert second.status_code == 200
    assert second.json()["changed"] is False

    harness.act_as(harness.seeded.referrer)
    earnings = (await client.get("/api/v1/referrals/earnings")).json()
    assert earnings["total_paid"] == 750
    assert earnings["total_pending"] == 0


async def test_customer_cannot_complete(client, harness):
    booking_id = await open_booking(harness)

    response = await client.post(f"/api/v1/bookings/{booking_id}/complete")

    assert response.status_code == 403


async def test_referral_lookup_after_completed_trip(client, harness):
    booking_id = await open_booking(harness)
    await harness.ledger.apply_event(booking_id, GuideMarksCompleted(harness.seeded.guide.id))
    # the seeded customer has now completed the trip and may refer others
    harness.act_as(harness.seeded.referrer)

    response = await client.get(
        "/api/v1/referrals/lookup",
        params={"handle": "@casey", "trip_id": str(harness.seeded.trip.id)},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["eligible"] is True
    assert body["referrer_id"] == str(harness.seeded.customer.id)
    assert Decimal(body["referral_rate"]) == Decimal("0.015")


async def test_referral_lookup_quotes_default_rate_when_trip_has_none(client, harness):
    async with async_session_maker() as session:
        trip = await session.get(Trip, harness.seeded.trip.id)
        trip.referral_payout_rate = None
        await session.commit()
    booking_id = await open_booking(harness)
    await harness.ledger.apply_event(booking_id, GuideMarksCompleted(harness.seeded.guide.id))
    harness.act_as(harness.seeded.referrer)

    response = await client.get(
        "/api/v1/referrals/lookup",
        params={"handle": "casey", "trip_id": str(harness.seeded.trip.id)},
    )

    assert response.json()["eligible"] is True
    assert Decimal(response.json()["referral_rate"]) == settings.default_referral_rate


async def test_admin_requeues_owed_refund(client, harness):
    booking_id = await open_booking(harness)
    await harness.ledger.apply_event(
        booking_id, CancellationRequested(initiator=CancellationInitiator.CUSTOMER, reason="Sick")
    )
    harness.act_as(harness.seeded.admin)

    response = await client.post(f"/api/v1/bookings/{booking_id}/refund")

    assert response.status_code == 202
    assert response.json()["refund_amount"] == 50000
    assert harness.dispatcher.refunds == [booking_id]


async def test_non_admin_cannot_requeue_refund(client, harness):
    booking_id = await open_booking(harness)

    response = await client.post(f"/api/v1/bookings/{booking_id}/refund")

    assert response.status_code == 403


def stripe_event(event_type, obj):
    return json.dumps({"id": "evt_test", "type": event_type, "data": {"object": obj}})


async def test_webhook_rejects_bad_signature(client):
    response = await client.post(
        "/api/v1/webhooks/stripe",
        content=stripe_event("checkout.session.completed", {}),
        headers={"Stripe-Signature": "forged"},
    )

    assert response.status_code == 400


async def test_checkout_completed_webhook_confirms_booking(client, harness):
    booking_id = await open_booking(harness, paid=False)
    payload = stripe_event(
        "checkout.session.completed",
        {"payment_status": "paid", "payment_intent": "pi_hook_1", "metadata": {"booking_id": str(booking_id)}},
    )

    first = await client.post("/api/v1/webhooks/stripe", content=payload, headers={"Stripe-Signature": "valid"})
    replay = await client.post("/api/v1/webhooks/stripe", content=payload, headers={"Stripe-Signature": "valid"})

    assert first.json() == {"received": True, "applied": True}
    assert replay.json() == {"received": True, "applied": False}
    booking = (await client.get(f"/api/v1/bookings/{booking_id}")).json()
    assert (booking["status"], booking["payment_status"]) == ("confirmed", "paid")


async def test_capture_after_cancellation_queues_full_refund(client, harness):
    booking_id = await open_booking(harness, paid=False)
    await client.post(f"/api/v1/bookings/{booking_id}/cancel", json={"reason": "Found another trip"})
    payload = stripe_event(
        "checkout.session.completed",
        {"payment_status": "paid", "payment_intent": "pi_late", "metadata": {"booking_id": str(booking_id)}},
    )

    response = await client.post("/api/v1/webhooks/stripe", content=payload, headers={"Stripe-Signature": "valid"})

    assert response.json() == {"received": True, "applied": True}
    assert harness.dispatcher.refunds == [booking_id]
    booking = await harness.ledger.get_booking(booking_id)
    assert (booking.status, booking.payment_status, booking.refund_status) == ("cancelled", "paid", "pending")
    assert booking.refund_amount == 50000
    assert booking.stripe_payment_intent_id == "pi_late"


async def test_webhook_conflict_is_acknowledged(client, harness):
    booking_id = await open_booking(harness)
    await harness.ledger.apply_event(booking_id, GuideMarksCompleted(harness.seeded.guide.id))
    payload = stripe_event(
        "payment_intent.succeeded",
        {"id": "pi_other", "metadata": {"booking_id": str(booking_id)}},
    )

    response = await client.post("/api/v1/webhooks/stripe", content=payload, headers={"Stripe-Signature": "valid"})

    assert response.status_code == 200
    assert response.json() == {"received": True, "applied": False}
    assert harness.dispatcher.refunds == []


async def test_cancelling_unpaid_booking_expires_checkout_session(client, harness):
    checkout = await client.post(
        "/api/v1/bookings/checkout",
        json={"trip_date_id": str(harness.seeded.trip_date.id)},
    )
    booking_id = checkout.json()["booking_id"]

    response = await client.post(f"/api/v1/bookings/{booking_id}/cancel", json={"reason": "Changed my mind"})

    assert response.json()["payment_status"] == "unpaid"
    assert harness.gateway.expired == [checkout.json()["session_id"]]
    assert harness.dispatcher.refunds == []


async def test_cancelling_paid_booking_leaves_checkout_alone(client, harness):
    booking_id = await open_booking(harness)

    await client.post(f"/api/v1/bookings/{booking_id}/cancel", json={"reason": "Family emergency"})

    assert harness.gateway.expired == []


async def test_expired_checkout_releases_capacity(client, harness):
    trip_date_id = str(harness.seeded.trip_date.id)
    held = await client.post(
        "/api/v1/bookings/checkout", json={"trip_date_id": trip_date_id, "participant_count": 8}
    )
    booking_id = held.json()["booking_id"]
    harness.act_as(harness.seeded.referrer)
    full = await client.post("/api/v1/bookings/checkout", json={"trip_date_id": trip_date_id})
    assert full.status_code == 422

    payload = stripe_event(
        "checkout.session.expired",
        {"id": held.json()["session_id"], "status": "expired", "client_reference_id": booking_id},
    )
    response = await client.post("/api/v1/webhooks/stripe", content=payload, headers={"Stripe-Signature": "valid"})

    assert response.json() == {"received": True, "applied": True}
    booking = await harness.ledger.get_booking(UUID(booking_id))
    assert (booking.status, booking.refund_status) == ("cancelled", "none")
    async with async_session_maker() as session:
        record = (
            await session.execute(select(CancellationRecord).where(CancellationRecord.booking_id == booking.id))
        ).scalar_one()
    assert (record.reason, record.refund_amount) == ("Checkout session expired", 0)
    assert harness.dispatcher.refunds == []
    assert harness.dispatcher.notifications == []

    retry = await client.post("/api/v1/bookings/checkout", json={"trip_date_id": trip_date_id})
    assert retry.status_code == 201


async def test_expired_checkout_for_paid_booking_is_acknowledged(client, harness):
    booking_id = await open_booking(harness)
    payload = stripe_event("checkout.session.expired", {"metadata": {"booking_id": str(booking_id)}})

    response = await client.post("/api/v1/webhooks/stripe", content=payload, headers={"Stripe-Signature": "valid"})

    assert response.json() == {"received": True, "applied": False}
    booking = await harness.ledger.get_booking(booking_id)
    assert booking.status == "confirmed"


async def test_charge_refunded_webhook_completes_refund(client, harness):
    booking_id = await open_booking(harness)
    await harness.ledger.apply_event(
        booking_id, CancellationRequested(initiator=CancellationInitiator.CUSTOMER, reason="Sick")
    )
    payload = stripe_event(
        "charge.refunded",
        {
            "id": "ch_1",
            "payment_intent": "pi_api_1",
            "amount_refunded": 50000,
            "refunds": {"data": [{"id": "re_hook_1"}]},
        },
    )

    response = await client.post("/api/v1/webhooks/stripe", content=payload, headers={"Stripe-Signature": "valid"})

    assert response.json()["applied"] is True
    booking = await harness.ledger.get_booking(booking_id)
    assert (booking.refund_status, booking.payment_status) == ("completed", "refunded")
    assert booking.refund_transaction_id == "re_hook_1"


async def test_refund_updated_webhook_completes_refund(client, harness):
    booking_id = await open_booking(harness)
    await harness.ledger.apply_event(
        booking_id, CancellationRequested(initiator=CancellationInitiator.CUSTOMER, reason="Sick")
    )
    payload = stripe_event(
        "refund.updated",
        {
            "id": "re_async_1",
            "status": "succeeded",
            "amount": 50000,
            "payment_intent": "pi_api_1",
            "metadata": {"booking_id": str(booking_id)},
        },
    )

    first = await client.post("/api/v1/webhooks/stripe", content=payload, headers={"Stripe-Signature": "valid"})
    replay = await client.post("/api/v1/webhooks/stripe", content=payload, headers={"Stripe-Signature": "valid"})

    assert first.json() == {"received": True, "applied": True}
    assert replay.json() == {"received": True, "applied": False}
    booking = await harness.ledger.get_booking(booking_id)
    assert (booking.refund_status, booking.payment_status) == ("completed", "refunded")
    assert booking.refund_transaction_id == "re_async_1"


async def test_unexpanded_charge_refunded_does_not_conflict_with_recorded_refund(client, harness):
    booking_id = await open_booking(harness)
    await harness.ledger.apply_event(
        booking_id, CancellationRequested(initiator=CancellationInitiator.CUSTOMER, reason="Sick")
    )
    await harness.ledger.apply_event(booking_id, RefundIssued(processor_reference_id="re_sync_1", amount=50000))
    payload = stripe_event(
        "charge.refunded",
        {"id": "ch_1", "payment_intent": "pi_api_1", "amount_refunded": 50000, "refunded": True},
    )

    response = await client.post("/api/v1/webhooks/stripe", content=payload, headers={"Stripe-Signature": "valid"})

    assert response.json() == {"received": True}
    booking = await harness.ledger.get_booking(booking_id)
    assert booking.refund_transaction_id == "re_sync_1"


async def test_pending_refund_update_is_ignored(client, harness):
    booking_id = await open_booking(harness)
    await harness.ledger.apply_event(
        booking_id, CancellationRequested(initiator=CancellationInitiator.CUSTOMER, reason="Sick")
    )
    payload = stripe_event(
        "refund.created",
        {"id": "re_async_2", "status": "pending", "payment_intent": "pi_api_1", "amount": 50000},
    )

    response = await client.post("/api/v1/webhooks/stripe", content=payload, headers={"Stripe-Signature": "valid"})

    assert response.json() == {"received": True}
    booking = await harness.ledger.get_booking(booking_id)
    assert booking.refund_status == "pending"


async def test_payment_failed_webhook_notifies_customer(client, harness):
    booking_id = await open_booking(harness, paid=False)
    payload = stripe_event(
        "payment_intent.payment_failed",
        {
            "id": "pi_failed",
            "metadata": {"booking_id": str(booking_id)},
            "last_payment_error": {"message": "Your card was declined."},
        },
    )

    response = await client.post("/api/v1/webhooks/stripe", content=payload, headers={"Stripe-Signature": "valid"})

    assert response.json() == {"received": True}
    [notification] = harness.dispatcher.notifications
    assert notification.kind.value == "payment_failed"
    assert notification.recipient_id == harness.seeded.customer.id
