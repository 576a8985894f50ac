"""Service layer package."""

from .availability_service import AvailabilityService
from .checkout_service import CheckoutService
from .idempotency_service import IdempotencyService
from .payment_callback_service import PaymentCallbackService
from .payment_gateway import CheckoutSession, LineItem, PaymentGateway, StripePaymentGateway, get_payment_gateway
from .reservation_service import ReservationService
from .tour_service import TourService

__all__ = [
    "AvailabilityService",
    "CheckoutService",
    "CheckoutSession",
    "IdempotencyService",
    "LineItem",
    "PaymentCallbackService",
    "PaymentGateway",
    "ReservationService",
    "StripePaymentGateway",
    "TourService",
    "get_payment_gateway",
]
