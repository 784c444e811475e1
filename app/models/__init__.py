"""Database models."""

from app.models.booking import Booking
from app.models.ledger import CancellationRecord, ReferralEarning
from app.models.trip import Trip, TripDate
from app.models.user import User

__all__ = [
    # User
    "User",
    # Trip
    "Trip",
    "TripDate",
    # Booking
    "Booking",
    # Ledger
    "ReferralEarning",
    "CancellationRecord",
]
