"""
Schema Validation Helpers
=========================
Pydantic building blocks for request bodies and query strings.

``safe_string``/``safe_text`` produce annotated ``str`` types that enforce
length, clean markup with bleach and check a character pattern.
``validate_request_body`` turns pydantic errors into FieldError lists wrapped
in ValidationFailed so the pipeline can answer 400 with field detail.
"""

import json
import re
from typing import Annotated, Any, Dict, List, Mapping, Optional, Type, TypeVar

from pydantic import AfterValidator, BaseModel, StringConstraints, ValidationError

from reqguard.exceptions import FieldError, ValidationFailed
from .validator import sanitize_object_recursively, sanitize_string

T = TypeVar("T", bound=BaseModel)


class ValidationPatterns:
    """Common field formats."""
    UUID = re.compile(
        r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
        re.IGNORECASE,
    )
    EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
    PHONE = re.compile(r"^\+?[1-9]\d{1,14}$")
    URL = re.compile(
        r"^https?://(www\.)?[-a-zA-Z0-9@:%._+~#=]{1,256}\.[a-zA-Z0-9()]{1,6}\b"
        r"([-a-zA-Z0-9()@:%_+.~#?&/=]*)$"
    )
    SLUG = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
    ALPHANUMERIC = re.compile(r"^[a-zA-Z0-9]+$")
    SAFE_STRING = re.compile(r"^[a-zA-Z0-9\s\-_.,!?()]+$")
    SAFE_TEXT = re.compile(r"^[a-zA-Z0-9\s\-_.,!?()\n\r]+$")
    HEX_COLOR = re.compile(r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$")
    POSTAL_CODE = re.compile(r"^[A-Z0-9\s\-]{3,10}$", re.IGNORECASE)
    TIME_24H = re.compile(r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$")
    DATE_ISO = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d{3})?Z?$")


def safe_string(
    min_length: int = 1,
    max_length: int = 100,
    pattern: Optional[re.Pattern] = ValidationPatterns.SAFE_STRING,
    allow_html: bool = False,
):
    """
    Build an annotated string type for short user-supplied fields.

    Args:
        min_length: Minimum length before cleaning
        max_length: Maximum length before and after cleaning
        pattern: Character pattern the cleaned value must match
        allow_html: Keep basic formatting tags

    Returns:
        ``Annotated[str, ...]`` usable as a pydantic field type
    """
    def _clean(value: str) -> str:
        return sanitize_string(
            value,
            allow_html=allow_html,
            max_length=max_length,
            pattern=pattern,
        )

    return Annotated[
        str,
        StringConstraints(strip_whitespace=True, min_length=min_length, max_length=max_length),
        AfterValidator(_clean),
    ]


def safe_text(min_length: int = 1, max_length: int = 1000, allow_html: bool = False):
    """Annotated string type for longer free text (descriptions, reviews)."""
    return safe_string(
        min_length=min_length,
        max_length=max_length,
        pattern=None if allow_html else ValidationPatterns.SAFE_TEXT,
        allow_html=allow_html,
    )


def field_errors(exc: ValidationError) -> List[FieldError]:
    return [
        FieldError(
            field=".".join(str(part) for part in err["loc"]),
            message=err["msg"],
            code=err["type"],
        )
        for err in exc.errors()
    ]


def validate_request_body(
    body: Any,
    model: Type[T],
    max_size: Optional[int] = None,
    sanitize: bool = False,
    strip_unknown: bool = False,
) -> T:
    """
    Validate a decoded JSON body against a pydantic model.

    Args:
        body: Decoded JSON value
        model: Pydantic model class
        max_size: Reject bodies whose JSON encoding exceeds this many characters
        sanitize: Run general sanitization over the body before validation
        strip_unknown: Drop fields the model does not declare (otherwise rejected)

    Returns:
        Validated model instance

    Raises:
        ValidationFailed: With one FieldError per problem
    """
    if max_size:
        body_size = len(json.dumps(body, default=str))
        if body_size > max_size:
            raise ValidationFailed(
                [FieldError(
                    field="",
                    message=f"Request body too large ({body_size} bytes, max {max_size})",
                    code="too_large",
                )]
            )

    if sanitize and isinstance(body, (dict, list)):
        body = sanitize_object_recursively(body)

    if not strip_unknown and isinstance(body, Mapping):
        declared = set(model.model_fields)
        declared.update(
            f.alias for f in model.model_fields.values() if f.alias
        )
        unknown = [key for key in body if key not in declared]
        if unknown and model.model_config.get("extra") != "allow":
            raise ValidationFailed(
                [FieldError(field=str(key), message="Unrecognized field", code="extra_forbidden")
                 for key in unknown]
            )

    try:
        return model.model_validate(body)
    except ValidationError as e:
        raise ValidationFailed(field_errors(e)) from e


def validate_query_params(params: Mapping[str, str], model: Type[T]) -> T:
    """Validate query-string parameters (last value wins) against a model."""
    flattened: Dict[str, str] = dict(params.items())
    return validate_request_body(flattened, model, strip_unknown=True)
