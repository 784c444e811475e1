"""Booking database model."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from app.database import Base

if TYPE_CHECKING:
    from app.models.ledger import CancellationRecord, ReferralEarning
    from app.models.trip import Trip, TripDate
    from app.models.user import User


class Booking(Base):
    """One customer's purchase of one trip-date slot.

    Never deleted: cancellation is a status, not a row removal.
    """

    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint(
            "gross_price = commission_amount + hosting_fee + guide_payout + referral_payout_amount",
            name="ck_bookings_split_sums_to_gross",
        ),
        CheckConstraint(
            "referral_payout_amount = 0 OR referrer_id IS NOT NULL",
            name="ck_bookings_referral_requires_referrer",
        ),
        CheckConstraint("gross_price > 0", name="ck_bookings_gross_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    trip_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("trips.id"), nullable=False, index=True
    )
    trip_date_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("trip_dates.id"), nullable=False, index=True
    )
    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    guide_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    participant_count: Mapped[int] = mapped_column(Integer, default=1)

    # Money (in cents)
    gross_price: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    commission_rate: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False)
    commission_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    hosting_fee: Mapped[int] = mapped_column(Integer, nullable=False)
    guide_payout: Mapped[int] = mapped_column(Integer, nullable=False)  # absorbs rounding

    # Referral
    referrer_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id"), index=True
    )
    referral_rate: Mapped[Decimal] = mapped_column(Numeric(6, 4), default=Decimal("0"))
    referral_payout_amount: Mapped[int] = mapped_column(Integer, default=0)

    # Status
    status: Mapped[str] = mapped_column(
        String(20), default="pending", index=True
    )  # pending, confirmed, completed, cancelled
    payment_status: Mapped[str] = mapped_column(
        String(20), default="unpaid"
    )  # unpaid, paid, refunded, partially_refunded

    # Payment processor references
    stripe_checkout_session_id: Mapped[str | None] = mapped_column(String(255), unique=True)
    stripe_payment_intent_id: Mapped[str | None] = mapped_column(String(255), index=True)

    # Cancellation & refund
    cancelled_by: Mapped[str | None] = mapped_column(String(10))  # guide, customer
    cancellation_reason: Mapped[str | None] = mapped_column(Text)
    refund_amount: Mapped[int] = mapped_column(Integer, default=0)
    refund_status: Mapped[str] = mapped_column(String(20), default="none")  # none, pending, completed
    refund_transaction_id: Mapped[str | None] = mapped_column(String(255))

    # Timestamps
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    refund_processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    trip: Mapped["Trip"] = relationship("Trip")
    trip_date: Mapped["TripDate"] = relationship("TripDate")
    customer: Mapped["User"] = relationship(
        "User", back_populates="bookings", foreign_keys=[customer_id]
    )
    guide: Mapped["User"] = relationship("User", foreign_keys=[guide_id])
    referrer: Mapped["User | None"] = relationship("User", foreign_keys=[referrer_id])
    referral_earning: Mapped["ReferralEarning | None"] = relationship(
        "ReferralEarning", back_populates="booking", uselist=False
    )
    cancellations: Mapped[list["CancellationRecord"]] = relationship(
        "CancellationRecord", back_populates="booking"
    )

    @property
    def trip_start_date(self) -> date:
        return self.trip_date.start_date
