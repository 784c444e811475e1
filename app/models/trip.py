"""Trip and scheduled departure models."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, Date, DateTime, ForeignKey, Integer, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from app.database import Base

if TYPE_CHECKING:
    from app.models.user import User


class Trip(Base):
    """Adventure trip offered by a guide."""

    __tablename__ = "trips"
    __table_args__ = (
        CheckConstraint(
            "referral_payout_rate >= 0 AND referral_payout_rate <= 0.02",
            name="ck_trips_referral_rate_range",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    guide_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    price: Mapped[int] = mapped_column(Integer, nullable=False)  # per participant, in cents
    currency: Mapped[str] = mapped_column(String(3), default="USD")

    # Share of gross price paid to referrers (0.00 - 0.02)
    referral_payout_rate: Mapped[Decimal | None] = mapped_column(Numeric(6, 4), default=Decimal("0.01"))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    # Relationships
    guide: Mapped["User"] = relationship("User", back_populates="trips")
    dates: Mapped[list["TripDate"]] = relationship(
        "TripDate", back_populates="trip", cascade="all, delete-orphan"
    )


class TripDate(Base):
    """Scheduled departure of a trip."""

    __tablename__ = "trip_dates"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    trip_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("trips.id", ondelete="CASCADE"), nullable=False, index=True
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, default=10)

    trip: Mapped["Trip"] = relationship("Trip", back_populates="dates")
