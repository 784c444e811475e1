"""Base payment gateway interface.

All gateway adapters must implement this interface.
Business logic should NOT live in adapters - only gateway communication.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum


class GatewayType(str, Enum):
    """Supported payment gateways."""

    STRIPE = "stripe"


@dataclass
class CheckoutResult:
    """Result of creating a hosted checkout session."""

    success: bool
    session_id: str | None = None
    checkout_url: str | None = None
    error_message: str | None = None
    raw_response: dict | None = None


@dataclass
class RefundResult:
    """Result of a refund operation."""

    success: bool
    refund_id: str | None = None
    status: str | None = None
    error_message: str | None = None
    raw_response: dict | None = None


class PaymentGateway(ABC):
    """Abstract base class for payment gateways."""

    @property
    @abstractmethod
    def gateway_type(self) -> GatewayType:
        """Return the gateway type."""
        pass

    @abstractmethod
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
        """Create a hosted checkout session.

        Args:
            amount: Amount in smallest currency unit (cents)
            currency: Currency code (USD)
            reference_id: Internal reference (booking_id)
            description: Line item description
            success_url: Redirect after payment
            cancel_url: Redirect when the customer backs out
            metadata: Additional metadata

        Returns:
            CheckoutResult with the session id and redirect URL
        """
        pass

    @abstractmethod
    async def process_refund(
        self,
        transaction_id: str,
        amount: int,
        reason: str,
        metadata: dict | None = None,
        idempotency_key: str | None = None,
    ) -> RefundResult:
        """Process a refund.

        Args:
            transaction_id: Original payment transaction ID
            amount: Refund amount in smallest currency unit
            reason: Refund reason
            metadata: Additional metadata
            idempotency_key: Key that makes retries of the same refund safe

        Returns:
            RefundResult with refund details
        """
        pass

    @abstractmethod
    async def expire_checkout_session(self, session_id: str) -> bool:
        """Close a hosted checkout session so it can no longer be paid.

        Returns:
            bool: True if the processor expired the session
        """
        pass

    @abstractmethod
    def verify_webhook(
        self,
        payload: bytes,
        signature: str,
    ) -> dict | None:
        """Verify webhook signature and parse payload.

        Args:
            payload: Raw request body
            signature: Webhook signature header

        Returns:
            Parsed event dict if valid, None if invalid
        """
        pass
