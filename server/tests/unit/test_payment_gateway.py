"""Tests for the Stripe Checkout gateway."""

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
import stripe
from pydantic import ValidationError

from tourslots.core.config import Settings
from tourslots.services.payment_gateway import LineItem, PaymentGatewayError, StripePaymentGateway


@pytest.fixture
def captured_params(monkeypatch):
    captured = {}

    def fake_create(**params):
        captured.update(params)
        return SimpleNamespace(id="cs_test_stripe", url="https://checkout.stripe.com/c/pay/cs_test_stripe")

    monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)
    return captured


def line_item():
    return LineItem(name="Tea ceremony", unit_amount=8000, quantity=2, currency="JPY", description="09:00-10:30")


@pytest.mark.asyncio
async def test_session_closes_when_the_hold_lapses(captured_params):
    gateway = StripePaymentGateway(secret_key="sk_test_123", webhook_secret="whsec_test")
    hold_expiry = datetime(2030, 4, 1, 9, 30)

    session = await gateway.create_checkout_session(
        "customer-1", [line_item()], ["r-1", "r-2"], expires_at=hold_expiry
    )

    assert session.session_id == "cs_test_stripe"
    assert captured_params["expires_at"] == int(hold_expiry.replace(tzinfo=timezone.utc).timestamp())
    assert captured_params["metadata"]["reservation_ids"] == "r-1,r-2"
    assert captured_params["line_items"][0]["price_data"]["currency"] == "jpy"
    assert captured_params["api_key"] == "sk_test_123"


@pytest.mark.asyncio
async def test_oversized_metadata_is_rejected_before_calling_stripe(captured_params):
    gateway = StripePaymentGateway(secret_key="sk_test_123", webhook_secret="whsec_test")
    ids = [f"{i:036d}" for i in range(20)]

    with pytest.raises(PaymentGatewayError):
        await gateway.create_checkout_session("customer-1", [line_item()], ids)

    assert captured_params == {}


def test_hold_window_cannot_be_shorter_than_a_payment_session():
    with pytest.raises(ValidationError):
        Settings(hold_window_minutes=10)

    assert Settings(hold_window_minutes=45).hold_window_minutes == 45
