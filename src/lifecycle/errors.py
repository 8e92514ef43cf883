"""
Lifecycle errors.

Every error raised by the step lifecycle controller carries an ErrorCode,
an HTTP-mappable status code and structured details, and converts to a
standard ``ErrorResponse`` for whatever outer layer reports it.

    try:
        await controller.submit(record_id)
    except FormLifecycleError as e:
        body = e.to_response().model_dump()
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from http import HTTPStatus
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from form_engine import ValidationIssue


# =============================================================================
# ERROR CODES
# =============================================================================


class ErrorCode(str, Enum):
    """Error codes reported by the lifecycle controller."""
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_STEP_PAYLOAD = "INVALID_STEP_PAYLOAD"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    PERSISTENCE_UNAVAILABLE = "PERSISTENCE_UNAVAILABLE"


ERROR_CODE_STATUS_MAP: Dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_ERROR: HTTPStatus.BAD_REQUEST,
    ErrorCode.INVALID_STEP_PAYLOAD: HTTPStatus.BAD_REQUEST,
    ErrorCode.RESOURCE_NOT_FOUND: HTTPStatus.NOT_FOUND,
    ErrorCode.INVALID_TRANSITION: HTTPStatus.CONFLICT,
    ErrorCode.PERSISTENCE_UNAVAILABLE: HTTPStatus.SERVICE_UNAVAILABLE,
}


# =============================================================================
# ERROR RESPONSE MODELS
# =============================================================================


class FieldError(BaseModel):
    """Individual field validation error."""
    field: str = Field(..., description="Field id that caused the error")
    message: str = Field(..., description="Error message for this field")
    code: str = Field(default="invalid", description="Issue code for this field")
    row_id: Optional[str] = Field(None, description="Row id for repeatable rows")


class ErrorResponse(BaseModel):
    """Standardized error response."""
    error: bool = Field(default=True, description="Always true for errors")
    code: str = Field(..., description="Error code from ErrorCode enum")
    message: str = Field(..., description="Human-readable error message")
    status_code: int = Field(..., description="HTTP status code")
    timestamp: str = Field(..., description="ISO 8601 timestamp")
    request_id: str = Field(..., description="Unique request identifier for tracking")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error context")
    field_errors: Optional[List[FieldError]] = Field(None, description="Field-specific validation errors")


# =============================================================================
# EXCEPTIONS
# =============================================================================


class FormLifecycleError(Exception):
    """Base class for errors surfaced by the step lifecycle controller."""

    code: ErrorCode = ErrorCode.VALIDATION_ERROR

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        field_errors: Optional[List[Dict[str, Any]]] = None,
    ):
        self.message = message
        self.status_code = int(ERROR_CODE_STATUS_MAP[self.code])
        self.details = details
        self.field_errors = field_errors
        super().__init__(message)

    def to_response(self, request_id: Optional[str] = None) -> ErrorResponse:
        """Convert to ErrorResponse model."""
        return ErrorResponse(
            code=self.code.value,
            message=self.message,
            status_code=self.status_code,
            timestamp=datetime.utcnow().isoformat() + "Z",
            request_id=request_id or str(uuid.uuid4()),
            details=self.details,
            field_errors=[FieldError(**fe) for fe in self.field_errors] if self.field_errors else None,
        )


class InvalidTransitionError(FormLifecycleError):
    """Raised when an operation is not allowed in the record's current status."""

    code = ErrorCode.INVALID_TRANSITION

    def __init__(self, message: str, current_status: str, target_status: str):
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(
            message,
            details={"current_status": current_status, "target_status": target_status},
        )


class RecordNotFoundError(FormLifecycleError):
    """Raised when a record id does not exist."""

    code = ErrorCode.RESOURCE_NOT_FOUND

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"Form record '{record_id}' not found", details={"record_id": record_id})


class SubmissionRejectedError(FormLifecycleError):
    """Raised when full-form validation refuses a submit."""

    code = ErrorCode.VALIDATION_ERROR

    def __init__(self, issues: Sequence[ValidationIssue], incomplete_steps: Sequence[int] = ()):
        self.issues = list(issues)
        self.incomplete_steps = list(incomplete_steps)
        errors = [i for i in self.issues if i.is_error]
        parts = []
        if errors:
            parts.append(f"{len(errors)} validation error(s)")
        if self.incomplete_steps:
            parts.append(f"incomplete steps {self.incomplete_steps}")
        super().__init__(
            f"Submission rejected: {', '.join(parts)}",
            details={
                "issues": [i.to_dict() for i in self.issues],
                "incomplete_steps": self.incomplete_steps,
            },
            field_errors=[
                {
                    "field": i.field_id,
                    "message": i.message,
                    "code": i.code.value,
                    "row_id": i.row_id,
                }
                for i in errors
            ],
        )


class StepPayloadError(FormLifecycleError):
    """Raised when a step payload is structurally wrong for its step."""

    code = ErrorCode.INVALID_STEP_PAYLOAD

    def __init__(self, message: str, step: Optional[int] = None, field_id: Optional[str] = None):
        self.step = step
        self.field_id = field_id
        super().__init__(message, details={"step": step, "field_id": field_id})


class PersistenceError(FormLifecycleError):
    """Raised when the persistence collaborator keeps failing after retries."""

    code = ErrorCode.PERSISTENCE_UNAVAILABLE

    def __init__(self, message: str, last_exception: Optional[BaseException] = None, attempts: int = 0):
        self.last_exception = last_exception
        self.attempts = attempts
        super().__init__(
            message,
            details={
                "attempts": attempts,
                "last_error": str(last_exception) if last_exception else None,
            },
        )
