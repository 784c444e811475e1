#!/usr/bin/env python3
"""Seed a guide, customer, referrer, admin and one upcoming trip date.

Prints the ids the flow scripts need. Safe to run more than once.
"""

import asyncio
from datetime import UTC, datetime, timedelta
from decimal import Decimal

from sqlalchemy import select

from app.database import async_session_maker, init_db
from app.models.trip import Trip, TripDate
from app.models.user import User

USERS = [
    ("guide@summit.travel", "guide", "alpine_ana", "Ana Alpine"),
    ("customer@summit.travel", "customer", "casey", "Casey Customer"),
    ("referrer@summit.travel", "customer", "riley", "Riley Referrer"),
    ("admin@summit.travel", "admin", "summit_admin", "Summit Admin"),
]


async def get_or_create_user(session, email: str, role: str, handle: str, full_name: str) -> User:
    result = await session.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if user:
        print(f"Existing {role}: {email} ({user.id})")
        return user

    user = User(email=email, role=role, handle=handle, full_name=full_name, is_active=True)
    session.add(user)
    await session.flush()
    print(f"Created {role}: {email} ({user.id})")
    return user


async def seed() -> None:
    await init_db()

    async with async_session_maker() as session:
        users = {}
        for email, role, handle, full_name in USERS:
            users[role if role != "customer" else handle] = await get_or_create_user(
                session, email, role, handle, full_name
            )

        guide = users["guide"]
        trip = Trip(
            guide_id=guide.id,
            title="Three Peaks Sunrise Trek",
            price=50000,
            currency="USD",
            referral_payout_rate=Decimal("0.015"),
        )
        session.add(trip)
        await session.flush()

        start = datetime.now(UTC).date() + timedelta(days=14)
        trip_date = TripDate(trip_id=trip.id, start_date=start, end_date=start + timedelta(days=2), capacity=8)
        session.add(trip_date)
        await session.commit()

        print(f"\nTrip:      {trip.id} ({trip.title})")
        print(f"Trip date: {trip_date.id} ({trip_date.start_date} - {trip_date.end_date})")


if __name__ == "__main__":
    asyncio.run(seed())
