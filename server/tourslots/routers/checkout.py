"""Checkout router: turn a cart into pending holds and a payment session."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import get_db
from ..core.dependencies import IdempotencyKey
from ..core.exceptions import ProblemDetailsException
from ..schemas.checkout import CheckoutRequest, CheckoutResponse
from ..schemas.common import problem_responses
from ..services.checkout_service import CheckoutService
from ..services.idempotency_service import IdempotencyService
from ..services.payment_gateway import PaymentGateway, get_payment_gateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["checkout"])

DB_DEPENDENCY = Depends(get_db)
GATEWAY_DEPENDENCY = Depends(get_payment_gateway)

IDEMPOTENT_METHOD = "checkout"


@router.post(
    "/checkout",
    response_model=CheckoutResponse,
    status_code=201,
    responses=problem_responses(400, 404, 409, 422, 502, 503),
)
async def initiate_checkout(
    request: CheckoutRequest,
    db: AsyncSession = DB_DEPENDENCY,
    gateway: PaymentGateway = GATEWAY_DEPENDENCY,
    idempotency_key: Optional[str] = IdempotencyKey,
) -> JSONResponse:
    """
    Start checkout for a cart of slot selections.

    Every selection is held as a pending reservation before the payment
    session is created. Failures name the offending selection. With an
    Idempotency-Key header a retried submission replays the first outcome
    instead of placing new holds.
    """
    request_body = request.model_dump(mode="json")
    idempotency_service = IdempotencyService(db)

    if idempotency_key:
        cached_response = await idempotency_service.check_idempotency(
            idempotency_key=idempotency_key,
            method=IDEMPOTENT_METHOD,
            request_body=request_body
        )
        if cached_response:
            status_code, response_body = cached_response
            return JSONResponse(
                status_code=status_code,
                content=response_body,
                headers={"Idempotent-Replayed": "true"}
            )

    try:
        result = await CheckoutService(db, gateway).initiate_checkout(request)

    except ProblemDetailsException as e:
        # Retryable failures must not be pinned to the key
        if idempotency_key and not e.retryable:
            await idempotency_service.store_response(
                idempotency_key=idempotency_key,
                method=IDEMPOTENT_METHOD,
                request_body=request_body,
                status_code=e.status_code,
                response_body=e.problem_details
            )
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in checkout",
            extra={
                "customer_id": request.customer_id,
                "selection_count": len(request.selections),
                "error": str(e)
            },
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e

    response_body = result.model_dump(mode="json")
    if idempotency_key:
        await idempotency_service.store_response(
            idempotency_key=idempotency_key,
            method=IDEMPOTENT_METHOD,
            request_body=request_body,
            status_code=201,
            response_body=response_body
        )

    return JSONResponse(status_code=201, content=response_body)
