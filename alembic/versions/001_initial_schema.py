"""Initial database schema.

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-17

Creates all initial tables for the Summit booking ledger:
- Users (profiles for hosted-auth accounts; guides are users)
- Trips and trip dates
- Bookings with their money split
- Referral earnings and cancellation records
"""

from typing import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers
revision: str = "001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create all database tables."""

    # ==================== USERS ====================
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(255), unique=True, nullable=False, index=True),
        sa.Column("full_name", sa.String(200)),
        sa.Column("handle", sa.String(50), unique=True, index=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="customer"),
        sa.Column("is_active", sa.Boolean, server_default=sa.true()),
        sa.Column("display_name", sa.String(200)),
        sa.Column("stripe_account_id", sa.String(100)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now()),
    )

    # ==================== TRIPS ====================
    op.create_table(
        "trips",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("guide_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False, index=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("price", sa.Integer, nullable=False),
        sa.Column("currency", sa.String(3), server_default="USD"),
        sa.Column("referral_payout_rate", sa.Numeric(6, 4), server_default="0.0100"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            "referral_payout_rate >= 0 AND referral_payout_rate <= 0.02",
            name="ck_trips_referral_rate_range",
        ),
    )

    op.create_table(
        "trip_dates",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("trip_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("trips.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("start_date", sa.Date, nullable=False, index=True),
        sa.Column("end_date", sa.Date, nullable=False),
        sa.Column("capacity", sa.Integer, server_default="10"),
    )

    # ==================== BOOKINGS ====================
    op.create_table(
        "bookings",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("trip_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("trips.id"), nullable=False, index=True),
        sa.Column("trip_date_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("trip_dates.id"), nullable=False, index=True),
        sa.Column("customer_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False, index=True),
        sa.Column("guide_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False, index=True),
        sa.Column("participant_count", sa.Integer, server_default="1"),
        # Money split (cents)
        sa.Column("gross_price", sa.Integer, nullable=False),
        sa.Column("currency", sa.String(3), server_default="USD"),
        sa.Column("commission_rate", sa.Numeric(6, 4), nullable=False),
        sa.Column("commission_amount", sa.Integer, nullable=False),
        sa.Column("hosting_fee", sa.Integer, nullable=False),
        sa.Column("guide_payout", sa.Integer, nullable=False),
        # Referral
        sa.Column("referrer_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), index=True),
        sa.Column("referral_rate", sa.Numeric(6, 4), server_default="0"),
        sa.Column("referral_payout_amount", sa.Integer, server_default="0"),
        # Status
        sa.Column("status", sa.String(20), server_default="pending", index=True),
        sa.Column("payment_status", sa.String(20), server_default="unpaid"),
        # Processor references
        sa.Column("stripe_checkout_session_id", sa.String(255), unique=True),
        sa.Column("stripe_payment_intent_id", sa.String(255), index=True),
        # Cancellation & refund
        sa.Column("cancelled_by", sa.String(10)),
        sa.Column("cancellation_reason", sa.Text),
        sa.Column("refund_amount", sa.Integer, server_default="0"),
        sa.Column("refund_status", sa.String(20), server_default="none"),
        sa.Column("refund_transaction_id", sa.String(255)),
        # Timestamps
        sa.Column("confirmed_at", sa.DateTime(timezone=True)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("cancelled_at", sa.DateTime(timezone=True)),
        sa.Column("refund_processed_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now()),
        sa.CheckConstraint(
            "gross_price = commission_amount + hosting_fee + guide_payout + referral_payout_amount",
            name="ck_bookings_split_sums_to_gross",
        ),
        sa.CheckConstraint(
            "referral_payout_amount = 0 OR referrer_id IS NOT NULL",
            name="ck_bookings_referral_requires_referrer",
        ),
        sa.CheckConstraint("gross_price > 0", name="ck_bookings_gross_positive"),
    )

    # ==================== LEDGER ====================
    op.create_table(
        "referral_earnings",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("referrer_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False, index=True),
        sa.Column("booking_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("bookings.id"), nullable=False, unique=True),
        sa.Column("trip_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("trips.id"), nullable=False),
        sa.Column("earnings_amount", sa.Integer, nullable=False),
        sa.Column("currency", sa.String(3), server_default="USD"),
        sa.Column("status", sa.String(16), server_default="pending", index=True),
        sa.Column("paid_at", sa.DateTime(timezone=True)),
        sa.Column("voided_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "cancellation_records",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("booking_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("bookings.id"), nullable=False, index=True),
        sa.Column("initiator", sa.String(10), nullable=False),
        sa.Column("reason", sa.Text, nullable=False),
        sa.Column("refund_percentage", sa.Integer, nullable=False),
        sa.Column("refund_amount", sa.Integer, nullable=False),
        sa.Column("days_until_trip", sa.Integer, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )


def downgrade() -> None:
    """Drop all database tables in reverse order."""
    op.drop_table("cancellation_records")
    op.drop_table("referral_earnings")
    op.drop_table("bookings")
    op.drop_table("trip_dates")
    op.drop_table("trips")
    op.drop_table("users")
