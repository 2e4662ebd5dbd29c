"""
Pattern Library
===============
Detection rules for HTML/script, SQL, LDAP, command and path-traversal
injection.
"""

from .library import (
    PatternCategory,
    HTML_PATTERNS,
    SQL_PATTERNS,
    LDAP_PATTERNS,
    COMMAND_PATTERNS,
    PATH_PATTERNS,
    get_patterns,
    find_matches,
)

__all__ = [
    "PatternCategory",
    "HTML_PATTERNS",
    "SQL_PATTERNS",
    "LDAP_PATTERNS",
    "COMMAND_PATTERNS",
    "PATH_PATTERNS",
    "get_patterns",
    "find_matches",
]
