import os
import tempfile

# Settings are read once at import time; point them at throwaway services first.
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault(
    "DATABASE_URL_OVERRIDE",
    "sqlite+aiosqlite:///" + os.path.join(tempfile.gettempdir(), f"summit-test-{os.getpid()}.db"),
)
os.environ.setdefault("AUTH_JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")

import pytest  # noqa: E402


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def database(anyio_backend):
    """Fresh tables in the throwaway SQLite database."""
    import app.models  # noqa: F401
    from app.core.immutability import register_immutability_enforcement
    from app.database import Base, engine

    register_immutability_enforcement()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


@pytest.fixture
async def seeded(database):
    """A guide, customer, referrer and admin plus one trip departing in ten days."""
    from datetime import UTC, datetime, timedelta
    from decimal import Decimal
    from types import SimpleNamespace

    from app.database import async_session_maker
    from app.models import Trip, TripDate, User

    async with async_session_maker() as session:
        guide = User(email="guide@summit.test", role="guide", handle="guide", display_name="Ana")
        customer = User(email="customer@summit.test", role="customer", handle="casey")
        referrer = User(email="referrer@summit.test", role="customer", handle="riley")
        admin = User(email="admin@summit.test", role="admin", handle="admin")
        session.add_all([guide, customer, referrer, admin])
        await session.flush()

        trip = Trip(
            guide_id=guide.id,
            title="Three Peaks Sunrise Trek",
            price=50000,
            currency="USD",
            referral_payout_rate=Decimal("0.015"),
        )
        session.add(trip)
        await session.flush()

        start = datetime.now(UTC).date() + timedelta(days=10)
        trip_date = TripDate(trip_id=trip.id, start_date=start, end_date=start + timedelta(days=2), capacity=8)
        session.add(trip_date)
        await session.commit()

    return SimpleNamespace(
        guide=guide,
        customer=customer,
        referrer=referrer,
        admin=admin,
        trip=trip,
        trip_date=trip_date,
    )
