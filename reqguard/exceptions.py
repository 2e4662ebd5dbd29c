"""
Pipeline Exceptions
===================
Failure taxonomy of the security pipeline.

Each exception carries the HTTP status and the public ``error``/``message``
pair written into the response envelope. Only InternalError is logged at
ERROR; the rest are expected, user-facing outcomes.
"""

from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional


@dataclass
class FieldError:
    """One field-level validation failure."""
    field: str
    message: str
    code: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


class SecurityPipelineError(Exception):
    """Base exception for all pipeline rejections."""
    status_code: int = 500
    error: str = "Internal server error"
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        error: Optional[str] = None,
        details: Any = None,
    ):
        if message is not None:
            self.message = message
        if error is not None:
            self.error = error
        self.details = details
        super().__init__(f"{self.error}: {self.message} (Status: {self.status_code})")


class RateLimitExceeded(SecurityPipelineError):
    """Raised when a client exhausts its quota for a category."""
    status_code = 429
    error = "Rate limit exceeded"
    message = "Too many requests. Please try again later."

    def __init__(
        self,
        message: Optional[str] = None,
        remaining: int = 0,
        reset_at: Optional[int] = None,
        limit: Optional[int] = None,
    ):
        super().__init__(message)
        self.remaining = remaining
        self.reset_at = reset_at
        self.limit = limit


class InvalidOrigin(SecurityPipelineError):
    status_code = 403
    error = "Invalid origin"
    message = "Request origin not allowed"


class CSRFValidationFailed(SecurityPipelineError):
    status_code = 403
    error = "CSRF validation failed"
    message = "Invalid or missing CSRF token"


class PayloadTooLarge(SecurityPipelineError):
    status_code = 413
    error = "Request too large"
    message = "Request payload exceeds maximum allowed size"


class UnsupportedContentType(SecurityPipelineError):
    status_code = 400
    error = "Invalid content type"
    message = "Unsupported content type"


class ValidationFailed(SecurityPipelineError):
    """Raised when a request body or query fails schema validation."""
    status_code = 400
    error = "Validation error"
    message = "Invalid request data"

    def __init__(self, errors: Optional[List[FieldError]] = None, message: Optional[str] = None):
        super().__init__(message)
        self.errors: List[FieldError] = list(errors or [])


class Unauthorized(SecurityPipelineError):
    """Raised when the identity provider finds no valid session."""
    status_code = 401
    error = "Unauthorized"
    message = "Authentication required"


class Forbidden(SecurityPipelineError):
    """Raised when the session's role is not allowed on the route."""
    status_code = 403
    error = "Forbidden"
    message = "Insufficient permissions"


class InternalError(SecurityPipelineError):
    """Wraps an unexpected exception; its text never reaches the client."""
    status_code = 500

    def __init__(self, cause: Optional[BaseException] = None, category: str = "general"):
        super().__init__()
        self.cause = cause
        self.category = category
