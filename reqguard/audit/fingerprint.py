"""
Error Fingerprinting
====================
Stable deduplication keys and category heuristics for error records.
"""

import hashlib
import json
import traceback
from typing import Optional


def compute_fingerprint(
    message: str,
    first_frame: Optional[str] = None,
    component: Optional[str] = None,
) -> str:
    """
    Compute the deduplication key of an error occurrence.

    Occurrences with the same message, first stack frame (or, without a
    stack, the component) and component collapse into one error row.

    Args:
        message: Error message or event description
        first_frame: First line of the stack trace, if any
        component: Component that raised or logged the error

    Returns:
        32 hex characters of a SHA-256 digest
    """
    hash_input = json.dumps(
        [message, first_frame or component or "", component or "unknown"],
        separators=(",", ":"),
    )
    return hashlib.sha256(hash_input.encode()).hexdigest()[:32]


def first_stack_frame(exc: BaseException) -> Optional[str]:
    """Innermost frame of an exception's traceback as 'file:line in func'."""
    tb = traceback.extract_tb(exc.__traceback__)
    if not tb:
        return None
    frame = tb[-1]
    return f"{frame.filename}:{frame.lineno} in {frame.name}"


def format_stack(exc: BaseException) -> str:
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))


def categorize_error(message: str, stack: str = "", error_type: str = "") -> str:
    """
    Classify an error for alert routing.

    Returns:
        One of network, database, payment, authentication, validation, ui,
        authorization, general
    """
    message = message.lower()
    stack = stack.lower()
    error_type = error_type.lower()

    if any(word in message for word in ("network", "fetch", "timeout", "connection")) \
            or error_type in ("timeouterror", "connectionerror", "connecterror"):
        return "network"
    if "database" in message or "sqlalchemy" in stack or "sqlalchemy" in message:
        return "database"
    if "payment" in message or "stripe" in message:
        return "payment"
    if any(word in message for word in ("auth", "unauthorized", "forbidden")):
        return "authentication"
    if any(word in message for word in ("validation", "invalid", "required")):
        return "validation"
    if any(word in stack for word in ("template", "jinja", "render")):
        return "ui"
    if "permission" in message or "access" in message:
        return "authorization"
    return "general"
