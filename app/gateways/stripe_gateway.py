"""Stripe payment gateway adapter."""

import json
import logging

import stripe

from app.config import settings
from app.gateways.base import (
    CheckoutResult,
    GatewayType,
    PaymentGateway,
    RefundResult,
)

logger = logging.getLogger(__name__)


class StripeGateway(PaymentGateway):
    """Stripe payment gateway implementation."""

    def __init__(self, secret_key: str | None = None, webhook_secret: str | None = None):
        self.secret_key = secret_key or settings.stripe_secret_key
        self.webhook_secret = webhook_secret or settings.stripe_webhook_secret

    @property
    def gateway_type(self) -> GatewayType:
        return GatewayType.STRIPE

    async def create_checkout_session(
        self,
        amount: int,
        currency: str,
        reference_id: str,
        description: str,
        success_url: str,
        cancel_url: str,
        metadata: dict | None = None,
    ) -> CheckoutResult:
        """Create Stripe Checkout Session."""
        if not self.secret_key:
            return CheckoutResult(
                success=False,
                error_message="Stripe not configured",
            )

        try:
            stripe.api_key = self.secret_key

            session = stripe.checkout.Session.create(
                mode="payment",
                payment_method_types=["card"],
                line_items=[
                    {
                        "price_data": {
                            "currency": currency.lower(),
                            "product_data": {"name": description},
                            "unit_amount": amount,
                        },
                        "quantity": 1,
                    }
                ],
                success_url=success_url,
                cancel_url=cancel_url,
                client_reference_id=reference_id,
                metadata={"booking_id": reference_id, **(metadata or {})},
                payment_intent_data={"metadata": {"booking_id": reference_id}},
            )

            return CheckoutResult(
                success=True,
                session_id=session.id,
                checkout_url=session.url,
                raw_response={"id": session.id, "url": session.url},
            )

        except stripe.StripeError as e:
            logger.error(f"Stripe checkout session failed for {reference_id}: {e}")
            return CheckoutResult(
                success=False,
                error_message=str(e),
            )

    async def process_refund(
        self,
        transaction_id: str,
        amount: int,
        reason: str,
        metadata: dict | None = None,
        idempotency_key: str | None = None,
    ) -> RefundResult:
        """Process Stripe refund."""
        if not self.secret_key:
            return RefundResult(
                success=False,
                error_message="Stripe not configured",
            )

        try:
            stripe.api_key = self.secret_key

            refund = stripe.Refund.create(
                payment_intent=transaction_id,
                amount=amount,
                reason="requested_by_customer",
                metadata={"reason": reason[:500], **(metadata or {})},
                idempotency_key=idempotency_key,
            )

            return RefundResult(
                success=refund.status in ("succeeded", "pending"),
                refund_id=refund.id,
                status=refund.status,
                raw_response={"status": refund.status, "id": refund.id},
            )

        except stripe.StripeError as e:
            logger.error(f"Stripe refund failed for {transaction_id}: {e}")
            return RefundResult(
                success=False,
                error_message=str(e),
            )

    async def expire_checkout_session(self, session_id: str) -> bool:
        """Expire an open Checkout Session; already completed sessions fail."""
        if not self.secret_key:
            return False

        try:
            stripe.api_key = self.secret_key
            stripe.checkout.Session.expire(session_id)
            return True

        except stripe.StripeError as e:
            logger.warning(f"Could not expire Stripe checkout session {session_id}: {e}")
            return False

    def verify_webhook(
        self,
        payload: bytes,
        signature: str,
    ) -> dict | None:
        """Verify Stripe webhook signature."""
        if not self.webhook_secret:
            return None

        try:
            stripe.Webhook.construct_event(
                payload,
                signature,
                self.webhook_secret,
            )
            return json.loads(payload)

        except (ValueError, stripe.SignatureVerificationError) as e:
            logger.warning(f"Stripe webhook verification failed: {e}")
            return None


stripe_gateway = StripeGateway()
