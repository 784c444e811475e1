"""Cancellation policy domain logic.

Refund tiers by whole days between the cancellation date and the trip start:
- more than 7 days: 100% refund
- 4 to 7 days: 50% refund
- 0 to 3 days: no refund
- trip already started: rejected

Guide-initiated cancellations always refund 100%.
"""

from dataclasses import dataclass
from datetime import date

from app.core.exceptions import InvalidCancellation
from app.domain.money import refund_amount_for

# Refund rules: list of (days_before_trip_exclusive, refund_percentage)
# Evaluated in order - first match wins
REFUND_TIERS: list[tuple[int, int]] = [
    (7, 100),  # 8+ days before: full refund
    (3, 50),   # 4-7 days before: half refund
]
GUIDE_CANCELLATION_REFUND = 100


@dataclass(frozen=True)
class RefundQuote:
    """Refund a cancellation would produce right now."""

    days_until_trip: int
    refund_percentage: int
    refund_amount: int


def days_until(trip_start: date, today: date) -> int:
    """Whole calendar days from today until the trip starts (negative once started)."""
    return (trip_start - today).days


def refund_tier(days_until_trip: int, guide_initiated: bool = False) -> int:
    """Calculate refund percentage for a cancellation.

    Args:
        days_until_trip: Whole days between cancellation and trip start
        guide_initiated: True when the guide cancels (always full refund)

    Returns:
        int: Refund percentage (0, 50 or 100)

    Raises:
        InvalidCancellation: If the trip has already started
    """
    if days_until_trip < 0:
        raise InvalidCancellation(days_until_trip)

    if guide_initiated:
        return GUIDE_CANCELLATION_REFUND

    for min_days, refund_pct in REFUND_TIERS:
        if days_until_trip > min_days:
            return refund_pct

    return 0


def quote_refund(
    gross_price: int,
    trip_start: date,
    today: date,
    guide_initiated: bool = False,
) -> RefundQuote:
    """Compute the refund tier and amount for cancelling today."""
    days = days_until(trip_start, today)
    refund_pct = refund_tier(days, guide_initiated=guide_initiated)
    return RefundQuote(
        days_until_trip=days,
        refund_percentage=refund_pct,
        refund_amount=refund_amount_for(gross_price, refund_pct),
    )


def get_policy_description() -> str:
    """Get human-readable policy description."""
    return (
        "Full refund if cancelled more than 7 days before the trip. "
        "50% refund if cancelled 4-7 days before. "
        "No refund if cancelled 3 days or less before the trip. "
        "Trips cancelled by the guide are always refunded in full."
    )
