"""Payment provider integration (Stripe Checkout)."""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import stripe

from ..core.config import settings

logger = logging.getLogger(__name__)

# Stripe metadata values are capped at 500 characters
METADATA_VALUE_LIMIT = 500


class PaymentGatewayError(Exception):
    """The payment provider rejected or failed a request."""


class SignatureVerificationFailed(Exception):
    """A webhook payload did not carry a valid signature."""


@dataclass(frozen=True)
class LineItem:
    """One priced line on the hosted payment page."""

    name: str
    unit_amount: int
    quantity: int
    currency: str
    description: str | None = None
    image: str | None = None


@dataclass(frozen=True)
class CheckoutSession:
    """Payment session created for a batch of pending reservations."""

    session_id: str
    url: str | None


class PaymentGateway(ABC):
    """Interface the booking engine uses to talk to a payment provider."""

    @abstractmethod
    async def create_checkout_session(
        self,
        customer_ref: str,
        line_items: list[LineItem],
        reservation_ids: list[str],
        expires_at: datetime | None = None,
    ) -> CheckoutSession:
        """
        Create a hosted checkout session whose metadata lists ``reservation_ids``.

        ``expires_at`` is the naive UTC time after which the session can no
        longer be paid; it should match the hold on the reservations.
        """

    @abstractmethod
    def verify_webhook(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        """Check the signature of a webhook payload and return the decoded event."""


class StripePaymentGateway(PaymentGateway):
    """Stripe Checkout implementation of the payment gateway."""

    def __init__(
        self,
        secret_key: str | None = None,
        webhook_secret: str | None = None,
        tolerance_seconds: int | None = None,
    ):
        self.secret_key = secret_key or settings.stripe_secret_key
        self.webhook_secret = webhook_secret or settings.stripe_webhook_secret
        self.tolerance_seconds = tolerance_seconds or settings.stripe_webhook_tolerance_seconds

    def _create_session_sync(self, params: dict[str, Any]) -> Any:
        return stripe.checkout.Session.create(api_key=self.secret_key, **params)

    async def create_checkout_session(
        self,
        customer_ref: str,
        line_items: list[LineItem],
        reservation_ids: list[str],
        expires_at: datetime | None = None,
    ) -> CheckoutSession:
        joined_ids = ",".join(reservation_ids)
        if len(joined_ids) > METADATA_VALUE_LIMIT:
            raise PaymentGatewayError(
                f"Too many reservations for one payment session ({len(reservation_ids)})"
            )

        params = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "client_reference_id": customer_ref,
            "success_url": settings.payment_success_url,
            "cancel_url": settings.payment_cancel_url,
            "line_items": [
                {
                    "price_data": {
                        "currency": item.currency.lower(),
                        "unit_amount": item.unit_amount,
                        "product_data": {
                            "name": item.name,
                            **({"description": item.description} if item.description else {}),
                            **({"images": [item.image]} if item.image else {}),
                        },
                    },
                    "quantity": item.quantity,
                }
                for item in line_items
            ],
            "metadata": {
                "customer_id": customer_ref,
                "reservation_ids": joined_ids,
            },
        }
        if expires_at is not None:
            # Payable no longer than the hold it settles
            params["expires_at"] = int(expires_at.replace(tzinfo=timezone.utc).timestamp())

        try:
            # The Stripe SDK is synchronous
            session = await asyncio.wait_for(
                asyncio.to_thread(self._create_session_sync, params),
                timeout=settings.payment_session_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            logger.error(
                "Timed out creating Stripe checkout session",
                extra={"timeout_seconds": settings.payment_session_timeout_seconds}
            )
            raise PaymentGatewayError("Timed out creating payment session") from e
        except stripe.StripeError as e:
            logger.error(
                "Stripe rejected checkout session",
                extra={"error": str(e), "customer_id": customer_ref}
            )
            raise PaymentGatewayError(str(e)) from e

        logger.info(
            "Created Stripe checkout session",
            extra={
                "session_id": session.id,
                "reservation_count": len(reservation_ids)
            }
        )
        return CheckoutSession(session_id=session.id, url=session.url)

    def verify_webhook(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        if not signature:
            raise SignatureVerificationFailed("Missing Stripe-Signature header")

        try:
            stripe.Webhook.construct_event(
                payload, signature, self.webhook_secret, tolerance=self.tolerance_seconds
            )
        except stripe.SignatureVerificationError as e:
            raise SignatureVerificationFailed(str(e)) from e
        except ValueError as e:
            raise SignatureVerificationFailed(f"Malformed webhook payload: {e}") from e

        # Signature is valid; hand the services a plain dict
        return json.loads(payload)


_default_gateway: PaymentGateway | None = None


def get_payment_gateway() -> PaymentGateway:
    """Dependency providing the configured payment gateway."""
    global _default_gateway
    if _default_gateway is None:
        _default_gateway = StripePaymentGateway()
    return _default_gateway
