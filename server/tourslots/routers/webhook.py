"""Payment provider webhook router."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import get_db
from ..core.exceptions import ProblemDetailsException
from ..core.observability import metrics_collector
from ..schemas.common import problem_responses
from ..schemas.reservation import WebhookAck
from ..services.payment_callback_service import PaymentCallbackService
from ..services.payment_gateway import PaymentGateway, get_payment_gateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/webhooks", tags=["webhooks"])

DB_DEPENDENCY = Depends(get_db)
GATEWAY_DEPENDENCY = Depends(get_payment_gateway)
SIGNATURE_HEADER = Header(None, alias="Stripe-Signature")


@router.post("/stripe", response_model=WebhookAck, responses=problem_responses(400))
async def stripe_webhook(
    request: Request,
    db: AsyncSession = DB_DEPENDENCY,
    gateway: PaymentGateway = GATEWAY_DEPENDENCY,
    stripe_signature: Optional[str] = SIGNATURE_HEADER,
) -> JSONResponse:
    """
    Receive Stripe Checkout events.

    The raw body is verified before anything is parsed. A rejected signature
    returns 400 without touching the ledger; a processing failure returns 500
    so that Stripe redelivers the event.
    """
    payload = await request.body()
    callback_service = PaymentCallbackService(db, gateway)

    event = callback_service.verify_event(payload, stripe_signature)

    try:
        ack = await callback_service.handle_event(event)

    except ProblemDetailsException:
        raise

    except Exception as e:
        await db.rollback()
        metrics_collector.record_webhook(event.get("type", "unknown"), "error")
        logger.error(
            "Failed to process webhook event",
            extra={
                "event_id": event.get("id"),
                "event_type": event.get("type"),
                "error": str(e)
            },
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Webhook processing failed") from e

    return JSONResponse(status_code=200, content=ack.model_dump(mode="json"))
