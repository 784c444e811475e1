#!/usr/bin/env python3
"""
Checkout, payment and cancellation flow script.

DO NOT ADD BUSINESS LOGIC HERE.
This script only orchestrates API calls.
All rules live in the backend.

Usage:
    python scripts/flow_book_and_cancel.py --customer-id <UUID> --trip-date-id <UUID>
    python scripts/flow_book_and_cancel.py --customer-id <UUID> --trip-date-id <UUID> --referrer riley

Flow:
    1. Start checkout as customer
    2. Deliver a signed checkout.session.completed webhook
    3. Preview the cancellation refund
    4. Cancel the booking
    5. Fetch the final booking
"""

import argparse
import hashlib
import hmac
import json
import sys
import time
import uuid

import httpx

from app.config import settings
from app.core.security import create_access_token

BASE_URL = "http://localhost:8000"


def token_for(user_id: str) -> str:
    """Mint a token the way the auth provider would."""
    return create_access_token(user_id, f"{user_id}@summit.local", int(time.time()) + 3600)


def api_request(token: str, method: str, endpoint: str, data: dict | None = None) -> dict:
    """Make authenticated API request."""
    headers = {"Authorization": f"Bearer {token}"}
    url = f"{BASE_URL}{endpoint}"

    if method == "GET":
        response = httpx.get(url, headers=headers, timeout=10.0, follow_redirects=True)
    elif method == "POST":
        response = httpx.post(url, headers=headers, json=data or {}, timeout=10.0, follow_redirects=True)
    else:
        raise ValueError(f"Unknown method: {method}")

    return {"status": response.status_code, "data": response.json() if response.text else {}}


def send_webhook(event: dict) -> dict:
    """POST a Stripe-style event signed with the local webhook secret."""
    if not settings.stripe_webhook_secret:
        print("ERROR: STRIPE_WEBHOOK_SECRET must be set to sign test webhooks")
        sys.exit(1)

    payload = json.dumps(event)
    timestamp = int(time.time())
    signature = hmac.new(
        settings.stripe_webhook_secret.encode(),
        f"{timestamp}.{payload}".encode(),
        hashlib.sha256,
    ).hexdigest()
    response = httpx.post(
        f"{BASE_URL}/api/v1/webhooks/stripe",
        content=payload,
        headers={"Stripe-Signature": f"t={timestamp},v1={signature}", "Content-Type": "application/json"},
        timeout=10.0,
    )
    return {"status": response.status_code, "data": response.json() if response.text else {}}


def print_step(step: int, title: str):
    """Print step header."""
    print(f"\n{'='*60}")
    print(f"STEP {step}: {title}")
    print("="*60)


def print_result(result: dict, fields: list[str] | None = None):
    """Print result, optionally filtering fields."""
    if result["status"] >= 400:
        print(f"ERROR ({result['status']}): {json.dumps(result['data'], indent=2)}")
        return False

    print(f"Status: {result['status']}")
    if fields:
        filtered = {k: result["data"].get(k) for k in fields if k in result["data"]}
        print(json.dumps(filtered, indent=2))
    else:
        print(json.dumps(result["data"], indent=2))
    return True


def main():
    parser = argparse.ArgumentParser(description="Checkout and cancellation flow")
    parser.add_argument("--customer-id", required=True, help="Customer user UUID")
    parser.add_argument("--trip-date-id", required=True, help="Trip date UUID")
    parser.add_argument("--participants", type=int, default=1, help="Number of participants")
    parser.add_argument("--referrer", help="Referrer handle")
    parser.add_argument("--cancel-reason", default="Change in travel plans", help="Cancellation reason")
    args = parser.parse_args()

    token = token_for(args.customer_id)

    # Step 1: Checkout
    print_step(1, "Start checkout")
    checkout = api_request(token, "POST", "/api/v1/bookings/checkout", {
        "trip_date_id": args.trip_date_id,
        "participant_count": args.participants,
        "referrer_handle": args.referrer,
    })
    if not print_result(checkout):
        sys.exit(1)
    booking_id = checkout["data"]["booking_id"]

    # Step 2: Payment webhook
    print_step(2, "Deliver checkout.session.completed")
    payment_intent = f"pi_test_{uuid.uuid4().hex[:16]}"
    webhook = send_webhook({
        "id": f"evt_test_{uuid.uuid4().hex[:16]}",
        "type": "checkout.session.completed",
        "data": {"object": {
            "id": checkout["data"]["session_id"],
            "payment_status": "paid",
            "payment_intent": payment_intent,
            "metadata": {"booking_id": booking_id},
        }},
    })
    if not print_result(webhook):
        sys.exit(1)

    # Step 3: Quote
    print_step(3, "Preview cancellation refund")
    quote = api_request(token, "GET", f"/api/v1/bookings/{booking_id}/cancellation-quote")
    if not print_result(quote, ["days_until_trip", "refund_percentage", "refund_amount", "currency"]):
        sys.exit(1)

    # Step 4: Cancel
    print_step(4, "Cancel booking")
    cancel = api_request(token, "POST", f"/api/v1/bookings/{booking_id}/cancel", {"reason": args.cancel_reason})
    if not print_result(cancel, ["status", "payment_status", "refund_status", "refund_amount", "referral_status"]):
        sys.exit(1)

    # Step 5: Final state
    print_step(5, "Fetch booking")
    booking = api_request(token, "GET", f"/api/v1/bookings/{booking_id}")
    if not print_result(booking, [
        "status", "payment_status", "refund_status", "gross_price", "commission_amount",
        "hosting_fee", "guide_payout", "referral_payout_amount", "refund_amount",
    ]):
        sys.exit(1)

    print("\n" + "="*60)
    print("BOOK & CANCEL FLOW COMPLETE")
    print("="*60)
    print(f"Booking:       {booking_id}")
    print(f"Gross:         {booking['data']['gross_price']:,} cents")
    print(f"Refund owed:   {cancel['data']['refund_owed']:,} cents")


if __name__ == "__main__":
    main()
