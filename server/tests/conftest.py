"""Test configuration and fixtures."""

import asyncio
import hashlib
import hmac
import json
import os
import time
from datetime import date, timedelta

# Must be set before tourslots.core.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from tourslots.core.config import settings
from tourslots.core.database import Base, get_db
from tourslots.core.dependencies import ADMIN_ROLE, issue_token
from tourslots.models import *  # noqa: F403 - Import all models
from tourslots.schemas.tour import CreateTourRequest
from tourslots.services.payment_gateway import (
    CheckoutSession,
    PaymentGateway,
    PaymentGatewayError,
    StripePaymentGateway,
    get_payment_gateway,
)
from tourslots.services.tour_service import TourService

# Test database URL (in-memory SQLite for speed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
WEBHOOK_SECRET = "whsec_test_secret"


class FakePaymentGateway(PaymentGateway):
    """Payment gateway double that records sessions instead of calling Stripe."""

    def __init__(self):
        self.sessions: list[dict] = []
        self.fail_with: str | None = None
        self.delay_seconds: float = 0
        self._verifier = StripePaymentGateway(
            secret_key="sk_test_unused", webhook_secret=WEBHOOK_SECRET, tolerance_seconds=300
        )

    async def create_checkout_session(self, customer_ref, line_items, reservation_ids, expires_at=None):
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if self.fail_with:
            raise PaymentGatewayError(self.fail_with)

        session_id = f"cs_test_{len(self.sessions) + 1}"
        self.sessions.append({
            "session_id": session_id,
            "customer_ref": customer_ref,
            "line_items": line_items,
            "reservation_ids": reservation_ids,
            "expires_at": expires_at,
        })
        return CheckoutSession(session_id=session_id, url=f"https://checkout.stripe.test/{session_id}")

    def verify_webhook(self, payload, signature):
        return self._verifier.verify_webhook(payload, signature)


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    """Session factory bound to the in-memory test engine."""
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def test_session(session_factory):
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def file_session_factory(tmp_path):
    """
    Session factory over a file-backed SQLite database.

    Every session gets its own connection, which is what concurrent
    checkouts look like in production.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'concurrency.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    await engine.dispose()


@pytest.fixture
def fake_gateway():
    return FakePaymentGateway()


@pytest_asyncio.fixture(scope="function")
async def test_app(test_session, fake_gateway):
    """Create the FastAPI application wired to the test database and payment gateway."""
    from tourslots.main import create_app

    app = create_app()

    async def override_get_db():
        yield test_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: fake_gateway

    yield app

    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def test_client(test_app):
    """Create a test HTTP client."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def admin_headers():
    token = issue_token("operator-1", [ADMIN_ROLE])
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def customer_headers():
    token = issue_token("customer-1", ["customer"])
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def booking_date() -> date:
    """A date far enough ahead to satisfy any advance-booking rule used in tests."""
    return date.today() + timedelta(days=30)


@pytest.fixture
def sample_tour_data():
    """Sample tour payload: slot 0 holds 10, slot 1 holds 5, slot 2 is switched off."""
    return {
        "name": "Kyoto Tea Ceremony Experience",
        "slug": "kyoto-tea-ceremony",
        "description": "A private tea ceremony in a machiya townhouse",
        "price": {"amount": 8000, "currency": "JPY"},
        "time_slots": [
            {"start_time": "09:00", "end_time": "10:30", "max_capacity": 10},
            {"start_time": "11:00", "end_time": "12:30", "max_capacity": 5},
            {"start_time": "14:00", "end_time": "15:30", "max_capacity": 8, "is_active": False},
        ],
        "operating_days": [],
        "advance_booking_days": 1,
    }


@pytest_asyncio.fixture
async def tour(test_session, sample_tour_data):
    """Persisted sample tour."""
    return await TourService(test_session).create_tour(CreateTourRequest(**sample_tour_data))


@pytest.fixture
def restore_settings():
    """Snapshot booking settings a test may change and put them back afterwards."""
    names = [
        "availability_policy",
        "hold_window_minutes",
        "checkout_timeout_seconds",
        "reservation_lock_timeout_seconds",
        "reservation_lock_retries",
        "max_selections_per_checkout",
    ]
    saved = {name: getattr(settings, name) for name in names}
    yield settings
    for name, value in saved.items():
        setattr(settings, name, value)


@pytest.fixture
def stripe_signature():
    """Build a Stripe-Signature header for a payload."""

    def sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
        timestamp = timestamp or int(time.time())
        signed_payload = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
        digest = hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()
        return f"t={timestamp},v1={digest}"

    return sign


@pytest.fixture
def stripe_event():
    """Build a Stripe Checkout session event body."""

    def build(
        event_type: str,
        session_id: str,
        reservation_ids: list[str],
        payment_intent: str = "pi_test_123",
        payment_status: str = "paid",
        event_id: str = "evt_test_1",
    ) -> dict:
        return {
            "id": event_id,
            "object": "event",
            "type": event_type,
            "data": {
                "object": {
                    "id": session_id,
                    "object": "checkout.session",
                    "payment_intent": payment_intent,
                    "payment_status": payment_status,
                    "metadata": {
                        "customer_id": "customer-1",
                        "reservation_ids": ",".join(reservation_ids),
                    },
                }
            },
        }

    return build


@pytest.fixture
def encode_event():
    def encode(event: dict) -> bytes:
        return json.dumps(event, separators=(",", ":")).encode("utf-8")

    return encode
