"""Response envelopes shared by every route.

Success: ``{success: true, data, message}``.
Failure: ``{success: false, error_code, message, recovery, details}``, where
``details`` is a dict for PartsDeskError and a list of field errors for
request validation.
"""

from collections.abc import Iterable
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field

from parts_shared.models.errors import ERROR_MESSAGES, ERROR_RECOVERY, ErrorCode

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    success: bool = True
    data: T
    message: str | None = None


class SuccessMessage(BaseModel):
    """Acknowledgement for operations that return no data."""

    success: bool = True
    message: str


class FieldError(BaseModel):
    """One invalid input, located by its path in the request."""

    loc: list[str] = Field(..., examples=[["body", "parts_cost"]])
    msg: str = Field(..., examples=["Input should be greater than or equal to 0"])
    type: str = Field(..., examples=["greater_than_equal"])


class ValidationErrorResponse(BaseModel):
    """400 body for requests that fail schema validation."""

    success: bool = False
    error_code: ErrorCode = ErrorCode.VALIDATION_FAILED
    message: str = ERROR_MESSAGES[ErrorCode.VALIDATION_FAILED]
    recovery: str = ERROR_RECOVERY[ErrorCode.VALIDATION_FAILED]
    details: list[FieldError] = Field(default_factory=list)

    @classmethod
    def from_errors(cls, errors: Iterable[dict[str, Any]]) -> "ValidationErrorResponse":
        """Build from pydantic/FastAPI ``errors()`` output."""
        return cls(
            details=[
                FieldError(
                    loc=[str(part) for part in error.get("loc", ())],
                    msg=str(error.get("msg", "")),
                    type=str(error.get("type", "")),
                )
                for error in errors
            ]
        )
