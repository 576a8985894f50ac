"""FastAPI routers package."""

from .checkout import router as checkout_router
from .health import router as health_router
from .metrics import router as metrics_router
from .reservations import router as reservations_router
from .tour import router as tour_router
from .webhook import router as webhook_router

__all__ = [
    "checkout_router",
    "health_router",
    "metrics_router",
    "reservations_router",
    "tour_router",
    "webhook_router",
]
