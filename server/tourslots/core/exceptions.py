"""Custom exceptions following RFC 9457 Problem Details for HTTP APIs."""

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

PROBLEM_BASE_URI = "https://tourslots.example.com/problems"


class ProblemDetailsException(HTTPException):
    """
    Base exception class following RFC 9457 Problem Details for HTTP APIs.

    https://tools.ietf.org/rfc/rfc9457.txt
    """

    def __init__(
        self,
        status_code: int,
        title: str,
        detail: Optional[str] = None,
        type_uri: Optional[str] = None,
        instance: Optional[str] = None,
        extensions: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize Problem Details exception.

        Args:
            status_code: HTTP status code
            title: Short, human-readable summary of the problem type
            detail: Human-readable explanation specific to this occurrence
            type_uri: URI reference that identifies the problem type
            instance: URI reference that identifies the specific occurrence
            extensions: Additional problem-specific information
            headers: HTTP headers to include in response
        """
        self.status_code = status_code
        self.title = title
        self.detail = detail
        self.type_uri = type_uri or f"about:blank#{status_code}"
        self.instance = instance
        self.extensions = extensions or {}

        # Create the problem details object
        self.problem_details: Dict[str, Any] = {
            "type": self.type_uri,
            "title": self.title,
            "status": self.status_code,
        }

        if self.detail:
            self.problem_details["detail"] = self.detail

        if self.instance:
            self.problem_details["instance"] = self.instance

        # Add extensions
        self.problem_details.update(self.extensions)

        super().__init__(
            status_code=status_code,
            detail=self.problem_details,
            headers=headers
        )

    @property
    def code(self) -> Optional[str]:
        return self.problem_details.get("code")

    @property
    def retryable(self) -> bool:
        return bool(self.problem_details.get("retryable", False))

    def annotate(self, **context: Any) -> "ProblemDetailsException":
        """Attach extra context (e.g. the failing cart selection) to the problem document."""
        for key, value in context.items():
            if isinstance(value, (date, datetime)):
                value = value.isoformat()
            elif isinstance(value, uuid.UUID):
                value = str(value)
            self.problem_details[key] = value
        return self


class ValidationError(ProblemDetailsException):
    """Exception for request validation errors."""

    def __init__(
        self,
        detail: str = "The request data failed validation",
        violations: Optional[list[Dict[str, str]]] = None,
        instance: Optional[str] = None,
    ):
        extensions: Dict[str, Any] = {"code": "VALIDATION_ERROR", "retryable": False}
        if violations:
            extensions["violations"] = violations

        super().__init__(
            status_code=422,
            title="Validation Error",
            detail=detail,
            type_uri=f"{PROBLEM_BASE_URI}/validation-error",
            instance=instance,
            extensions=extensions,
        )


class InvalidInputError(ProblemDetailsException):
    """Malformed date, quantity or other input the booking engine cannot act on."""

    def __init__(self, detail: str, field: Optional[str] = None):
        extensions: Dict[str, Any] = {"code": "INVALID_INPUT", "retryable": False}
        if field:
            extensions["field"] = field

        super().__init__(
            status_code=400,
            title="Invalid Input",
            detail=detail,
            type_uri=f"{PROBLEM_BASE_URI}/invalid-input",
            extensions=extensions,
        )


class AuthenticationError(ProblemDetailsException):
    """Exception for authentication errors."""

    def __init__(
        self,
        detail: str = "Authentication credentials are required",
        instance: Optional[str] = None,
    ):
        super().__init__(
            status_code=401,
            title="Authentication Required",
            detail=detail,
            type_uri=f"{PROBLEM_BASE_URI}/authentication-required",
            instance=instance,
            extensions={"code": "UNAUTHENTICATED", "retryable": False},
            headers={"WWW-Authenticate": "Bearer"},
        )


class AuthorizationError(ProblemDetailsException):
    """Exception for authorization errors."""

    def __init__(
        self,
        detail: str = "Insufficient permissions to access this resource",
        required_permissions: Optional[list] = None,
        instance: Optional[str] = None,
    ):
        extensions: Dict[str, Any] = {"code": "FORBIDDEN", "retryable": False}
        if required_permissions:
            extensions["required_permissions"] = required_permissions

        super().__init__(
            status_code=403,
            title="Access Forbidden",
            detail=detail,
            type_uri=f"{PROBLEM_BASE_URI}/access-forbidden",
            instance=instance,
            extensions=extensions,
        )


class NotFoundError(ProblemDetailsException):
    """Exception for resource not found errors."""

    def __init__(
        self,
        resource_type: str = "resource",
        resource_id: Optional[str] = None,
        detail: Optional[str] = None,
        instance: Optional[str] = None,
    ):
        if not detail:
            detail = f"The requested {resource_type}"
            if resource_id:
                detail += f" with ID '{resource_id}'"
            detail += " could not be found"

        extensions: Dict[str, Any] = {
            "code": "NOT_FOUND",
            "retryable": False,
            "resource_type": resource_type,
        }
        if resource_id:
            extensions["resource_id"] = resource_id

        super().__init__(
            status_code=404,
            title="Resource Not Found",
            detail=detail,
            type_uri=f"{PROBLEM_BASE_URI}/resource-not-found",
            instance=instance,
            extensions=extensions,
        )


class ConflictError(ProblemDetailsException):
    """Exception for resource conflict errors."""

    def __init__(
        self,
        detail: str = "The request conflicts with the current state of the resource",
        conflicting_resource: Optional[Dict[str, Any]] = None,
        instance: Optional[str] = None,
    ):
        extensions: Dict[str, Any] = {"code": "CONFLICT", "retryable": False}
        if conflicting_resource:
            extensions["conflicting_resource"] = conflicting_resource

        super().__init__(
            status_code=409,
            title="Resource Conflict",
            detail=detail,
            type_uri=f"{PROBLEM_BASE_URI}/resource-conflict",
            instance=instance,
            extensions=extensions,
        )


# Booking engine exceptions

class SlotNotFoundError(ProblemDetailsException):
    """The requested time range does not match any slot of the tour."""

    def __init__(self, tour_id: str, time_slot: str):
        super().__init__(
            status_code=404,
            title="Time Slot Not Found",
            detail=f"Time slot {time_slot} not found for tour {tour_id}",
            type_uri=f"{PROBLEM_BASE_URI}/slot-not-found",
            extensions={
                "code": "SLOT_NOT_FOUND",
                "retryable": False,
                "tour_id": tour_id,
                "time_slot": time_slot,
            },
        )


class SlotInactiveError(ProblemDetailsException):
    """The slot exists but is switched off in the tour's catalog."""

    def __init__(self, tour_id: str, time_slot: str):
        super().__init__(
            status_code=409,
            title="Time Slot Inactive",
            detail=f"Time slot {time_slot} is not available for booking",
            type_uri=f"{PROBLEM_BASE_URI}/slot-inactive",
            extensions={
                "code": "SLOT_INACTIVE",
                "retryable": False,
                "tour_id": tour_id,
                "time_slot": time_slot,
            },
        )


class CapacityExceededError(ProblemDetailsException):
    """The requested party would push the slot past its maximum capacity."""

    def __init__(
        self,
        time_slot: str,
        requested_quantity: int,
        remaining_capacity: int,
        max_capacity: int,
    ):
        super().__init__(
            status_code=409,
            title="Capacity Exceeded",
            detail=(
                f"Not enough capacity for {time_slot}. "
                f"Available: {remaining_capacity}, Requested: {requested_quantity}"
            ),
            type_uri=f"{PROBLEM_BASE_URI}/capacity-exceeded",
            extensions={
                "code": "CAPACITY_EXCEEDED",
                "retryable": False,
                "time_slot": time_slot,
                "requested_quantity": requested_quantity,
                "remaining_capacity": remaining_capacity,
                "max_capacity": max_capacity,
            },
        )

    @property
    def remaining_capacity(self) -> int:
        return self.problem_details["remaining_capacity"]


class BusyError(ProblemDetailsException):
    """A slot is contended by other checkouts; the caller may retry shortly."""

    def __init__(self, detail: str = "The requested slot is busy, please retry", retry_after: int = 1):
        super().__init__(
            status_code=503,
            title="Slot Busy",
            detail=detail,
            type_uri=f"{PROBLEM_BASE_URI}/busy",
            extensions={
                "code": "BUSY",
                "retryable": True,
                "retry_after_seconds": retry_after,
            },
            headers={"Retry-After": str(retry_after)},
        )


class PaymentVerificationFailedError(ProblemDetailsException):
    """Webhook payload whose signature does not match the shared secret."""

    def __init__(self, detail: str = "Webhook signature verification failed"):
        super().__init__(
            status_code=400,
            title="Payment Verification Failed",
            detail=detail,
            type_uri=f"{PROBLEM_BASE_URI}/payment-verification-failed",
            extensions={"code": "PAYMENT_VERIFICATION_FAILED", "retryable": False},
        )


class PaymentSessionFailedError(ProblemDetailsException):
    """The payment provider could not create a checkout session."""

    def __init__(self, detail: str = "The payment provider could not start checkout", released_reservation_ids: Optional[list[str]] = None):
        super().__init__(
            status_code=502,
            title="Payment Session Failed",
            detail=detail,
            type_uri=f"{PROBLEM_BASE_URI}/payment-session-failed",
            extensions={
                "code": "PAYMENT_SESSION_FAILED",
                "retryable": True,
                "released_reservation_ids": released_reservation_ids or [],
            },
        )


class PartialBatchFailureError(ProblemDetailsException):
    """One cart selection failed after earlier selections were already held."""

    def __init__(
        self,
        selection_index: int,
        cause: ProblemDetailsException,
        released_reservation_ids: list[str],
    ):
        super().__init__(
            status_code=cause.status_code,
            title="Partial Batch Failure",
            detail=(
                f"Selection {selection_index} failed: {cause.problem_details.get('detail', cause.title)}. "
                f"{len(released_reservation_ids)} earlier reservation(s) were released"
            ),
            type_uri=f"{PROBLEM_BASE_URI}/partial-batch-failure",
            extensions={
                "code": "PARTIAL_BATCH_FAILURE",
                "retryable": cause.retryable,
                "selection_index": selection_index,
                "released_reservation_ids": released_reservation_ids,
                "cause": cause.problem_details,
            },
            headers=cause.headers,
        )
        self.cause = cause


class InvalidStateTransitionError(ProblemDetailsException):
    """A reservation lifecycle transition that the state machine forbids."""

    def __init__(self, reservation_id: str, current_status: str, target_status: str):
        super().__init__(
            status_code=409,
            title="Invalid State Transition",
            detail=f"Reservation {reservation_id} cannot move from {current_status} to {target_status}",
            type_uri=f"{PROBLEM_BASE_URI}/invalid-state-transition",
            extensions={
                "code": "INVALID_STATE_TRANSITION",
                "retryable": False,
                "reservation_id": reservation_id,
                "current_status": current_status,
                "target_status": target_status,
            },
        )


class IdempotencyMismatchError(ProblemDetailsException):
    """Exception when idempotency key is reused with different request body."""

    def __init__(self, idempotency_key: str, method: str):
        super().__init__(
            status_code=422,
            title="Idempotency Key Mismatch",
            detail=f"Idempotency key '{idempotency_key}' was already used for '{method}' with a different request body",
            type_uri=f"{PROBLEM_BASE_URI}/idempotency-key-mismatch",
            extensions={
                "code": "IDEMPOTENCY_KEY_MISMATCH",
                "retryable": False,
                "idempotency_key": idempotency_key,
                "method": method,
            },
        )


async def problem_details_handler(request: Request, exc: ProblemDetailsException) -> JSONResponse:
    """
    Exception handler for Problem Details exceptions.

    Args:
        request: FastAPI request object
        exc: Problem Details exception

    Returns:
        JSONResponse: Problem Details formatted response
    """
    content = dict(exc.problem_details)
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        content.setdefault("request_id", request_id)

    return JSONResponse(
        status_code=exc.status_code,
        content=content,
        headers=exc.headers,
        media_type="application/problem+json",
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render FastAPI request validation failures as a problem document with violations."""
    violations = [
        {
            "path": ".".join(str(part) for part in error.get("loc", ())),
            "message": error.get("msg", "Invalid value"),
        }
        for error in exc.errors()
    ]
    problem = ValidationError(violations=violations, instance=str(request.url.path))
    return await problem_details_handler(request, problem)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Generic exception handler that converts unhandled exceptions to Problem Details format.

    Args:
        request: FastAPI request object
        exc: Unhandled exception

    Returns:
        JSONResponse: Problem Details formatted response
    """
    error_id = str(uuid.uuid4())

    logger.error(
        "Unhandled exception",
        exc_info=exc,
        extra={"error_id": error_id, "path": request.url.path},
    )

    problem_details = {
        "type": f"{PROBLEM_BASE_URI}/internal-server-error",
        "title": "Internal Server Error",
        "status": 500,
        "detail": "An unexpected error occurred while processing the request",
        "instance": str(request.url),
        "code": "INTERNAL_ERROR",
        "retryable": True,
        "error_id": error_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    return JSONResponse(
        status_code=500,
        content=problem_details,
        media_type="application/problem+json",
    )
