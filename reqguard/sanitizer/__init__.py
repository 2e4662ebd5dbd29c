"""
Sanitizer Module
================
Validation, sanitization and schema helpers for untrusted input.
"""

from .validator import (
    validate_input,
    sanitize_input,
    sanitize_object_recursively,
    sanitize_string,
    validate_email,
    validate_url,
    validate_phone_number,
    validate_uuid,
    validate_json,
    is_safe_string,
    validate_upload,
    SAFE_HTML_TAGS,
)
from .schemas import (
    ValidationPatterns,
    safe_string,
    safe_text,
    validate_request_body,
    validate_query_params,
)

__all__ = [
    # Validator
    "validate_input",
    "sanitize_input",
    "sanitize_object_recursively",
    "sanitize_string",
    "validate_email",
    "validate_url",
    "validate_phone_number",
    "validate_uuid",
    "validate_json",
    "is_safe_string",
    "validate_upload",
    "SAFE_HTML_TAGS",
    # Schemas
    "ValidationPatterns",
    "safe_string",
    "safe_text",
    "validate_request_body",
    "validate_query_params",
]
