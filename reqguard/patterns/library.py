"""
Injection Pattern Library
=========================
Static detection rules per injection category.

Every rule is a compiled regular expression. Validation rejects input that
matches any rule of a category; sanitization strips (or escapes) whatever
the rules match. The rules are a denylist and only a secondary control:
parameterized queries and context-aware output encoding stay the primary
defence.
"""

import re
from enum import Enum
from typing import Dict, Tuple


class PatternCategory(str, Enum):
    """Injection categories understood by the validator."""
    HTML = "html"
    SQL = "sql"
    LDAP = "ldap"
    COMMAND = "command"
    PATH = "path"
    GENERAL = "general"


_I = re.IGNORECASE

HTML_PATTERNS: Tuple[re.Pattern, ...] = (
    re.compile(r"<script\b[^>]*>.*?</script\s*>", _I | re.DOTALL),
    re.compile(r"</?\s*script\b[^>]*>?", _I),
    re.compile(r"\bon\w+\s*=", _I),
    re.compile(r"javascript\s*:", _I),
    re.compile(r"vbscript\s*:", _I),
    re.compile(r"data\s*:\s*text/html", _I),
    re.compile(r"data\s*:[\w/+.-]*;\s*base64", _I),
    re.compile(
        r"</?\s*(iframe|object|embed|link|meta|form|input|textarea|select|"
        r"button|style|base|svg|applet|frame|frameset)\b[^>]*>?",
        _I,
    ),
    re.compile(r"expression\s*\(", _I),
    re.compile(r"url\s*\(", _I),
    re.compile(r"@import", _I),
    re.compile(r"\beval\s*\(", _I),
    re.compile(r"\bsetTimeout\s*\(", _I),
    re.compile(r"\bsetInterval\s*\(", _I),
    re.compile(r"\bFunction\s*\(", _I),
)

SQL_PATTERNS: Tuple[re.Pattern, ...] = (
    re.compile(
        r"\b(SELECT|INSERT|UPDATE|DELETE|DROP|CREATE|ALTER|EXEC|EXECUTE|"
        r"UNION|TRUNCATE|GRANT|REVOKE)\b",
        _I,
    ),
    re.compile(r"(--|/\*|\*/|;|'|\"|`)"),
    re.compile(r"\b(OR|AND)\b.*?[=<>]", _I),
    re.compile(r"\bWAITFOR\s+DELAY\b", _I),
    re.compile(r"\b(SLEEP|BENCHMARK|PG_SLEEP)\s*\(", _I),
    re.compile(r"\b(CAST|CONVERT|CHAR|NCHAR|ASCII)\s*\(", _I),
    re.compile(
        r"\b(INFORMATION_SCHEMA|SYSOBJECTS|SYSCOLUMNS|PG_CATALOG|SQLITE_MASTER)\b",
        _I,
    ),
    re.compile(r"\b(xp_|sp_)\w+", _I),
    re.compile(r"\b(LOAD_FILE|INTO\s+OUTFILE|INTO\s+DUMPFILE)\b", _I),
)

LDAP_PATTERNS: Tuple[re.Pattern, ...] = (
    re.compile(r"[()*&|!\x00]"),
    # A backslash is only legal as the start of a \XX hex escape
    re.compile(r"\\(?![0-9A-Fa-f]{2})"),
)

COMMAND_PATTERNS: Tuple[re.Pattern, ...] = (
    re.compile(r"[;&|`$(){}\[\]<>]"),
    re.compile(r"[\r\n\x00]"),
    re.compile(r"\b(whoami|uname|ifconfig|netstat|nslookup|wget|curl)\b", _I),
    re.compile(
        r"\b(cat|ls|pwd|id|ps|ping|dig)\b(?=\s+(?:[-/~.\d]|https?:))",
        _I,
    ),
    re.compile(r"\.\./"),
    re.compile(r"~/"),
)

PATH_PATTERNS: Tuple[re.Pattern, ...] = (
    re.compile(r"\.\./"),
    re.compile(r"\.\.\\"),
    re.compile(r"%2e%2e(%2f|%5c|/|\\)", _I),
    re.compile(r"\.\.(%2f|%5c)", _I),
    re.compile(r"%252e%252e(%252f|%255c)", _I),
    re.compile(r"%c0%ae%c0%ae", _I),
    re.compile(r"(\x00|%00)"),
)

_CATEGORY_PATTERNS: Dict[PatternCategory, Tuple[re.Pattern, ...]] = {
    PatternCategory.HTML: HTML_PATTERNS,
    PatternCategory.SQL: SQL_PATTERNS,
    PatternCategory.LDAP: LDAP_PATTERNS,
    PatternCategory.COMMAND: COMMAND_PATTERNS,
    PatternCategory.PATH: PATH_PATTERNS,
}
_CATEGORY_PATTERNS[PatternCategory.GENERAL] = tuple(
    pattern
    for category in (
        PatternCategory.HTML,
        PatternCategory.SQL,
        PatternCategory.COMMAND,
        PatternCategory.PATH,
        PatternCategory.LDAP,
    )
    for pattern in _CATEGORY_PATTERNS[category]
)


def get_patterns(category) -> Tuple[re.Pattern, ...]:
    """
    Get the rule set for a category.

    Args:
        category: PatternCategory or its string value

    Returns:
        Tuple of compiled patterns

    Raises:
        ValueError: If the category is unknown
    """
    return _CATEGORY_PATTERNS[PatternCategory(category)]


def find_matches(value: str, category=PatternCategory.GENERAL) -> Tuple[str, ...]:
    """Return every substring of value matched by the category's rules."""
    found = []
    for pattern in get_patterns(category):
        found.extend(m.group(0) for m in pattern.finditer(value))
    return tuple(found)
