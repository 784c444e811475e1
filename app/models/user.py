"""User-related database models."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from app.database import Base

if TYPE_CHECKING:
    from app.models.booking import Booking
    from app.models.trip import Trip


class User(Base):
    """Profile for an account held by the hosted auth provider.

    The id is the provider's subject id; credentials never live here.
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    full_name: Mapped[str | None] = mapped_column(String(200))
    handle: Mapped[str | None] = mapped_column(String(50), unique=True, index=True)  # @name
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, default="customer"
    )  # customer, guide, admin
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Guides only: Stripe Connect destination for payouts
    display_name: Mapped[str | None] = mapped_column(String(200))
    stripe_account_id: Mapped[str | None] = mapped_column(String(100))

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    trips: Mapped[list["Trip"]] = relationship("Trip", back_populates="guide")
    bookings: Mapped[list["Booking"]] = relationship(
        "Booking", back_populates="customer", foreign_keys="[Booking.customer_id]"
    )

    @property
    def name(self) -> str:
        return self.display_name or self.full_name or self.email
