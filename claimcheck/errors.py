"""
Error definitions for ClaimCheck.

Error codes follow the pattern:
- INVALID_*: Input validation errors (caller-side fix needed, job fails immediately)
- CLAIM_SCORING: A single claim could not be scored (isolated, pipeline continues)
- SCHEMA_VIOLATION: Output breaks the data contract (blocking at finalization)
- *_NOT_FOUND: Resource not found errors
- *_FAILED / *_CANCELLED: Job-level terminal conditions
"""

import uuid
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """ClaimCheck error codes."""

    INVALID_INPUT = "INVALID_INPUT"
    """Raw tasks or source documents are malformed.
    Action: Fix the input and resubmit. No repair is attempted."""

    CLAIM_SCORING = "CLAIM_SCORING"
    """A claim value cannot be parsed or compared (e.g. non-numeric duration).
    Action: None required; the claim is skipped for that comparison."""

    SCHEMA_VIOLATION = "SCHEMA_VIOLATION"
    """The finalized schedule does not conform to the data contract.
    Action: Inspect details; the job is failed."""

    GENERATION_FAILED = "GENERATION_FAILED"
    """The upstream schedule generator failed or returned an unusable payload.
    Action: Retry later or with different documents."""

    JOB_NOT_FOUND = "JOB_NOT_FOUND"
    """Specified job_id is unknown to this orchestrator."""

    JOB_CANCELLED = "JOB_CANCELLED"
    """The job was cancelled between steps."""

    INTERNAL_ERROR = "INTERNAL_ERROR"
    """Unexpected internal error.
    Action: Check error_id in logs."""


class ClaimCheckError(Exception):
    """
    Base exception for ClaimCheck errors.

    Provides structured error responses for callers polling job status.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        error_id: str | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}
        self.error_id = error_id

    def to_dict(self) -> dict[str, Any]:
        """Convert error to a response dictionary."""
        result: dict[str, Any] = {
            "ok": False,
            "error_code": self.code.value,
            "error": self.message,
        }

        if self.error_id:
            result["error_id"] = self.error_id

        if self.details:
            result["details"] = self.details

        return result


class InputValidationError(ClaimCheckError):
    """Raised when raw tasks or documents are malformed."""

    def __init__(
        self,
        message: str,
        *,
        errors: list[dict[str, Any]] | None = None,
        field: str | None = None,
    ):
        details: dict[str, Any] = {}
        if field:
            details["field"] = field
        if errors:
            details["errors"] = errors

        super().__init__(
            ErrorCode.INVALID_INPUT,
            message,
            details=details if details else None,
        )


class ClaimScoringError(ClaimCheckError):
    """Raised when a single claim's value cannot be parsed or compared."""

    def __init__(self, claim_id: str, reason: str):
        self.claim_id = claim_id
        super().__init__(
            ErrorCode.CLAIM_SCORING,
            f"Cannot score claim {claim_id}: {reason}",
            details={"claim_id": claim_id, "reason": reason},
        )


class SchemaViolationError(ClaimCheckError):
    """Raised when the output schedule violates the data contract."""

    def __init__(self, message: str, *, errors: list[dict[str, Any]] | None = None):
        super().__init__(
            ErrorCode.SCHEMA_VIOLATION,
            message,
            details={"errors": errors} if errors else None,
        )


class GenerationError(ClaimCheckError):
    """Raised when the upstream task generator fails."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(
            ErrorCode.GENERATION_FAILED,
            message,
            details={"status_code": status_code} if status_code is not None else None,
        )


class JobNotFoundError(ClaimCheckError):
    """Raised when specified job_id does not exist."""

    def __init__(self, job_id: str):
        super().__init__(
            ErrorCode.JOB_NOT_FOUND,
            f"Job not found: {job_id}",
            details={"job_id": job_id},
        )


class JobCancelledError(ClaimCheckError):
    """Raised at a step boundary when cancellation was requested."""

    def __init__(self, job_id: str, *, step: str | None = None):
        details: dict[str, Any] = {"job_id": job_id}
        if step:
            details["step"] = step
        super().__init__(
            ErrorCode.JOB_CANCELLED,
            f"Job {job_id} was cancelled",
            details=details,
        )


def generate_error_id() -> str:
    """Generate unique error ID for log correlation."""
    return f"err_{uuid.uuid4().hex[:12]}"
