"""Common Pydantic schemas."""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Money(BaseModel):
    """Money representation with amount in minor units."""

    amount: int = Field(..., ge=0, description="Amount in minor units (e.g., cents, or yen)")
    currency: str = Field(..., min_length=3, max_length=3, pattern=r"^[A-Z]{3}$", description="ISO 4217 currency code")


class Violation(BaseModel):
    """Validation error violation."""

    path: str = Field(..., description="Dotted path to the invalid field")
    message: str = Field(..., description="Validation error message")


class Problem(BaseModel):
    """
    RFC 9457 Problem Details response.

    Checkout failures also name the failing cart selection; other
    problem-specific members pass through as extra fields.
    """

    type: Optional[str] = Field(None, description="Problem type URI")
    title: str = Field(..., description="Short human-readable summary")
    status: int = Field(..., description="HTTP status code")
    detail: Optional[str] = Field(None, description="Human-readable explanation")
    instance: Optional[str] = Field(None, description="URI reference for this occurrence")
    code: Optional[str] = Field(None, description="Application-specific error code")
    retryable: Optional[bool] = Field(None, description="Whether the operation can be retried")
    request_id: Optional[str] = Field(None, description="Request ID for debugging")
    violations: Optional[List[Violation]] = Field(None, description="Validation errors")
    selection_index: Optional[int] = Field(None, description="Index of the failing checkout selection")
    remaining_capacity: Optional[int] = Field(None, description="Party units still bookable in the slot")
    released_reservation_ids: Optional[List[str]] = Field(None, description="Holds released by the failed checkout")

    model_config = ConfigDict(extra="allow")


def problem_responses(*status_codes: int) -> dict[int, dict]:
    """OpenAPI ``responses`` entries documenting problem documents for the given statuses."""
    return {
        code: {"model": Problem, "content": {"application/problem+json": {}}}
        for code in status_codes
    }
