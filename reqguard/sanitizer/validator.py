"""
Input Validator and Sanitizer
=============================
Pattern-based validation and destructive sanitization of untrusted strings.

Sanitization strips every rule match until none remain before escaping, so
for every category ``validate_input(sanitize_input(s, c), c)`` holds. HTML
sanitization is idempotent: entities produced by a previous pass are left
untouched.
"""

import json
import re
from typing import Any, Iterable, Optional, Tuple
from urllib.parse import urlparse

import bleach

from reqguard.patterns import PatternCategory, get_patterns


_HTML_ESCAPES = {
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&#x27;",
    "/": "&#x2F;",
}
_HTML_SPECIAL = re.compile(r"[<>\"'/]")
_BARE_AMPERSAND = re.compile(r"&(?!(?:amp|lt|gt|quot|#x27|#x2F);)")

_SQL_ESCAPES = {
    "\\": "\\\\",
    "\x00": "\\0",
    "\n": "\\n",
    "\r": "\\r",
    "\x1a": "\\Z",
}
_SQL_SPECIAL = re.compile(r"[\\\x00\n\r\x1a]")

_LDAP_ESCAPES = str.maketrans({
    "\\": "\\5c",
    "(": "\\28",
    ")": "\\29",
    "*": "\\2a",
    "\x00": "\\00",
    "&": "\\26",
    "!": "\\21",
    "|": "\\7c",
})

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_WHITESPACE = re.compile(r"\s+")

# Tags kept by sanitize_string(allow_html=True)
SAFE_HTML_TAGS = ["b", "i", "em", "strong", "p", "br", "ul", "ol", "li"]

_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_EMAIL_SUSPICIOUS = (
    re.compile(r"<script", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+=", re.IGNORECASE),
    re.compile(r"\.\."),
    re.compile(r"[<>]"),
)
_URL_SUSPICIOUS = re.compile(r"(javascript|data|vbscript|file|ftp):", re.IGNORECASE)
_PHONE = re.compile(r"^\+?[1-9]\d{1,14}$")
_PHONE_FORMATTING = re.compile(r"[\s\-()+]")
_UUID = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)
_SAFE_STRING = re.compile(r"^[a-zA-Z0-9\s\-_.,!?()]+$")

# Upload limits per file kind: (allowed MIME types, max bytes)
UPLOAD_RULES = {
    "image": (("image/jpeg", "image/png", "image/gif", "image/webp"), 5 * 1024 * 1024),
    "document": (("application/pdf", "text/plain", "application/msword"), 10 * 1024 * 1024),
    "video": (("video/mp4", "video/webm", "video/ogg"), 100 * 1024 * 1024),
    "audio": (("audio/mp3", "audio/wav", "audio/ogg"), 10 * 1024 * 1024),
}


def _strip_patterns(value: str, patterns: Iterable[re.Pattern]) -> str:
    """Remove pattern matches until a full pass changes nothing."""
    patterns = tuple(patterns)
    while True:
        stripped = value
        for pattern in patterns:
            stripped = pattern.sub("", stripped)
        if stripped == value:
            return stripped
        value = stripped


def validate_input(value: Any, category: str = "general") -> bool:
    """
    Check a value against a category's injection rules.

    Args:
        value: Untrusted input; anything but a string is invalid
        category: One of html, sql, ldap, command, path, general

    Returns:
        True if no rule of the category matches
    """
    if not isinstance(value, str):
        return False
    return not any(p.search(value) for p in get_patterns(category))


def _sanitize_html(value: str) -> str:
    value = _strip_patterns(value, get_patterns(PatternCategory.HTML))
    value = _BARE_AMPERSAND.sub("&amp;", value)
    value = _HTML_SPECIAL.sub(lambda m: _HTML_ESCAPES[m.group(0)], value)
    return value.strip()


def _sanitize_sql(value: str) -> str:
    patterns = get_patterns(PatternCategory.SQL)
    value = _strip_patterns(value, patterns)
    value = _SQL_SPECIAL.sub(lambda m: _SQL_ESCAPES[m.group(0)], value)
    # Escaping can join a backslash to a keyword ("\rEVOKE"), strip again
    return _strip_patterns(value, patterns).strip()


def _sanitize_ldap(value: str) -> str:
    return value.translate(_LDAP_ESCAPES).strip()


def _sanitize_command(value: str) -> str:
    return _strip_patterns(value, get_patterns(PatternCategory.COMMAND)).strip()


def _sanitize_path(value: str) -> str:
    return _strip_patterns(value, get_patterns(PatternCategory.PATH)).strip()


def _sanitize_general(value: str) -> str:
    value = _sanitize_html(value)
    value = _sanitize_sql(value)
    value = _sanitize_command(value)
    value = _sanitize_path(value)
    value = _sanitize_ldap(value)
    value = _CONTROL_CHARS.sub("", value)
    value = _WHITESPACE.sub(" ", value).strip()

    patterns = get_patterns(PatternCategory.GENERAL)
    while True:
        previous = value
        value = _strip_patterns(value, patterns)
        value = _WHITESPACE.sub(" ", value).strip()
        if value == previous:
            return value


_SANITIZERS = {
    PatternCategory.HTML: _sanitize_html,
    PatternCategory.SQL: _sanitize_sql,
    PatternCategory.LDAP: _sanitize_ldap,
    PatternCategory.COMMAND: _sanitize_command,
    PatternCategory.PATH: _sanitize_path,
    PatternCategory.GENERAL: _sanitize_general,
}


def sanitize_input(value: Any, category: str = "general") -> str:
    """
    Destructively sanitize a value for a category.

    Args:
        value: Untrusted input; anything but a string yields ""
        category: One of html, sql, ldap, command, path, general

    Returns:
        Sanitized string that passes validate_input for the same category
    """
    if not isinstance(value, str):
        return ""
    return _SANITIZERS[PatternCategory(category)](value)


def sanitize_object_recursively(obj: Any) -> Any:
    """
    Sanitize every string value and string key of a nested structure.

    Dicts, lists and tuples are walked; other scalars pass through unchanged.
    """
    if isinstance(obj, str):
        return sanitize_input(obj, PatternCategory.GENERAL)
    if isinstance(obj, dict):
        return {
            (sanitize_input(key) if isinstance(key, str) else key): sanitize_object_recursively(val)
            for key, val in obj.items()
        }
    if isinstance(obj, list):
        return [sanitize_object_recursively(item) for item in obj]
    if isinstance(obj, tuple):
        return tuple(sanitize_object_recursively(item) for item in obj)
    return obj


def sanitize_string(
    value: str,
    allow_html: bool = False,
    max_length: Optional[int] = None,
    pattern: Optional[re.Pattern] = None,
) -> str:
    """
    Clean a free-text field with bleach.

    Args:
        value: Input text
        allow_html: Keep a small set of formatting tags instead of stripping all
        max_length: Truncate to this many characters
        pattern: Regex the cleaned value must match

    Returns:
        Cleaned string

    Raises:
        ValueError: If the cleaned value does not match pattern
    """
    if not value or not isinstance(value, str):
        return ""

    cleaned = bleach.clean(
        value.strip(),
        tags=SAFE_HTML_TAGS if allow_html else [],
        attributes={},
        strip=True,
    )

    if max_length and len(cleaned) > max_length:
        cleaned = cleaned[:max_length]

    if pattern is not None and not pattern.search(cleaned):
        raise ValueError(f"Input does not match required pattern: {pattern.pattern}")

    return cleaned


def validate_email(email: Any) -> bool:
    """Validate an email address and reject markup or traversal inside it."""
    if not email or not isinstance(email, str):
        return False
    if not _EMAIL.match(email):
        return False
    return not any(p.search(email) for p in _EMAIL_SUSPICIOUS)


def validate_url(url: Any) -> bool:
    """Accept only absolute http(s) URLs with no embedded dangerous scheme."""
    if not url or not isinstance(url, str):
        return False
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return False
    return not _URL_SUSPICIOUS.search(url)


def validate_phone_number(phone: Any) -> bool:
    if not phone or not isinstance(phone, str):
        return False
    cleaned = _PHONE_FORMATTING.sub("", phone)
    return bool(_PHONE.match(cleaned))


def validate_uuid(value: Any) -> bool:
    if not value or not isinstance(value, str):
        return False
    return bool(_UUID.match(value))


def validate_json(value: Any) -> bool:
    if not value or not isinstance(value, str):
        return False
    try:
        json.loads(value)
    except ValueError:
        return False
    return True


def is_safe_string(value: Any, allowed: Optional[re.Pattern] = None) -> bool:
    """True if value uses only allowed characters and passes general validation."""
    if not value or not isinstance(value, str):
        return False
    pattern = allowed or _SAFE_STRING
    return bool(pattern.match(value)) and validate_input(value, PatternCategory.GENERAL)


def validate_upload(
    size: int,
    content_type: str,
    kind: str,
    max_size: Optional[int] = None,
    allowed_types: Optional[Tuple[str, ...]] = None,
) -> Tuple[bool, Optional[str]]:
    """
    Check an uploaded file's size and MIME type for a file kind.

    Args:
        size: File size in bytes
        content_type: Declared MIME type
        kind: image, document, video or audio
        max_size: Override for the kind's size limit
        allowed_types: Override for the kind's MIME allow-list

    Returns:
        Tuple of (valid, error message or None)
    """
    default_types, default_max = UPLOAD_RULES[kind]
    max_size = max_size or default_max
    allowed_types = allowed_types or default_types

    if size > max_size:
        return False, (
            f"File size exceeds maximum allowed size of "
            f"{round(max_size / 1024 / 1024)}MB"
        )
    if content_type not in allowed_types:
        return False, (
            f"File type {content_type} is not allowed. "
            f"Allowed types: {', '.join(allowed_types)}"
        )
    return True, None
