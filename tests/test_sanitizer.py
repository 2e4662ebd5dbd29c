"""
Unit Tests for Patterns and Sanitizer
=====================================
"""

import pytest


HOSTILE_SAMPLES = [
    "<script>alert('xss')</script>Hello",
    "<img src=x onerror=alert(1)>",
    "'; DROP TABLE users; --",
    "admin)(|(password=*))",
    "$(whoami) && rm -rf /",
    "../../etc/passwd",
    "plain words only",
]


class TestPatterns:
    """Tests for the injection pattern library."""

    def test_general_is_union_of_categories(self):
        """General rules should include every specific rule."""
        from reqguard.patterns import PatternCategory, get_patterns

        general = set(get_patterns(PatternCategory.GENERAL))
        for category in ("html", "sql", "ldap", "command", "path"):
            assert set(get_patterns(category)) <= general

    def test_unknown_category_rejected(self):
        """Unknown categories should raise ValueError."""
        from reqguard.patterns import get_patterns

        with pytest.raises(ValueError):
            get_patterns("xml")

    def test_find_matches(self):
        """Should report the matched fragments."""
        from reqguard.patterns import find_matches

        matches = find_matches("../secret", "path")
        assert "../" in matches


class TestValidateInput:
    """Tests for validate_input."""

    def test_script_tag_rejected(self):
        """Script tags should fail HTML validation."""
        from reqguard.sanitizer import validate_input

        assert validate_input("<script>alert(1)</script>", "html") is False

    def test_plain_text_accepted(self):
        """Plain text should pass every category."""
        from reqguard.sanitizer import validate_input

        for category in ("html", "sql", "ldap", "command", "path", "general"):
            assert validate_input("Hello world", category) is True

    def test_sql_keywords_rejected(self):
        """SQL keywords and comment markers should fail SQL validation."""
        from reqguard.sanitizer import validate_input

        assert validate_input("1 UNION SELECT password FROM users", "sql") is False
        assert validate_input("name --", "sql") is False

    def test_ldap_hex_escape_accepted(self):
        """Well-formed \\XX escapes are legal in LDAP values."""
        from reqguard.sanitizer import validate_input

        assert validate_input("a\\2ab", "ldap") is True
        assert validate_input("a\\b", "ldap") is False

    def test_non_string_is_invalid(self):
        """Non-strings should never validate."""
        from reqguard.sanitizer import validate_input

        assert validate_input(123) is False
        assert validate_input(None, "html") is False


class TestSanitizeInput:
    """Tests for sanitize_input."""

    def test_script_stripped(self):
        """Script blocks should be removed entirely."""
        from reqguard.sanitizer import sanitize_input

        assert sanitize_input("<script>alert('xss')</script>Hello", "html") == "Hello"

    def test_general_strips_script(self):
        """General sanitization should keep the surrounding text."""
        from reqguard.sanitizer import sanitize_input

        assert sanitize_input("<script>alert('xss')</script>Hello World") == "Hello World"

    def test_html_special_characters_escaped(self):
        """Remaining markup characters should be entity-encoded."""
        from reqguard.sanitizer import sanitize_input

        assert sanitize_input('a < b "c"', "html") == "a &lt; b &quot;c&quot;"

    def test_html_idempotent(self):
        """Sanitizing HTML twice should not double-encode."""
        from reqguard.sanitizer import sanitize_input

        once = sanitize_input("Tom & Jerry <3 'quotes'", "html")
        assert "&amp;" in once
        assert sanitize_input(once, "html") == once

    def test_ldap_metacharacters_escaped(self):
        """LDAP metacharacters should become hex escapes."""
        from reqguard.sanitizer import sanitize_input

        assert sanitize_input("a*(b)", "ldap") == "a\\2a\\28b\\29"

    def test_path_traversal_removed(self):
        """Traversal sequences should be stripped."""
        from reqguard.sanitizer import sanitize_input

        assert sanitize_input("../../etc/passwd", "path") == "etc/passwd"

    def test_non_string_yields_empty(self):
        """Non-strings should sanitize to an empty string."""
        from reqguard.sanitizer import sanitize_input

        assert sanitize_input(None) == ""
        assert sanitize_input(42, "sql") == ""

    @pytest.mark.parametrize("category", ["html", "sql", "ldap", "command", "path", "general"])
    def test_sanitized_output_validates(self, category):
        """Sanitized output should always pass validation for its category."""
        from reqguard.sanitizer import sanitize_input, validate_input

        for sample in HOSTILE_SAMPLES:
            cleaned = sanitize_input(sample, category)
            assert validate_input(cleaned, category), (sample, cleaned)

    def test_recursive_object(self):
        """Nested keys and values should be sanitized; other scalars kept."""
        from reqguard.sanitizer import sanitize_object_recursively, validate_input

        result = sanitize_object_recursively({
            "name": "<script>x</script>Bob",
            "tags": ["ok", "../etc"],
            "count": 5,
            "<b>key</b>": None,
        })

        assert result["name"] == "Bob"
        assert result["tags"][0] == "ok"
        assert validate_input(result["tags"][1])
        assert result["count"] == 5
        assert all(validate_input(key) for key in result)


class TestSanitizeString:
    """Tests for bleach-backed free text cleaning."""

    def test_strips_tags_by_default(self):
        """All tags should be stripped unless HTML is allowed."""
        from reqguard.sanitizer import sanitize_string

        assert sanitize_string("<b>bold</b> text") == "bold text"

    def test_allow_html_keeps_safe_tags(self):
        """Safe formatting tags should survive with allow_html."""
        from reqguard.sanitizer import sanitize_string

        assert sanitize_string("<b>bold</b> text", allow_html=True) == "<b>bold</b> text"

    def test_max_length(self):
        """Output should be truncated to max_length."""
        from reqguard.sanitizer import sanitize_string

        assert sanitize_string("abcdefgh", max_length=3) == "abc"

    def test_pattern_mismatch_raises(self):
        """A required pattern that does not match should raise ValueError."""
        import re
        from reqguard.sanitizer import sanitize_string

        with pytest.raises(ValueError):
            sanitize_string("abc!", pattern=re.compile(r"^[a-z]+$"))


class TestFieldValidators:
    """Tests for the format validators."""

    def test_validate_email(self):
        from reqguard.sanitizer import validate_email

        assert validate_email("user@example.com") is True
        assert validate_email("not-an-email") is False
        assert validate_email("a<b@example.com") is False

    def test_validate_url(self):
        from reqguard.sanitizer import validate_url

        assert validate_url("https://example.com/path") is True
        assert validate_url("javascript:alert(1)") is False
        assert validate_url("ftp://example.com") is False

    def test_validate_phone_number(self):
        from reqguard.sanitizer import validate_phone_number

        assert validate_phone_number("+1 (555) 123-4567") is True
        assert validate_phone_number("abc") is False

    def test_validate_uuid(self):
        from reqguard.sanitizer import validate_uuid

        assert validate_uuid("123e4567-e89b-12d3-a456-426614174000") is True
        assert validate_uuid("123") is False

    def test_validate_json(self):
        from reqguard.sanitizer import validate_json

        assert validate_json('{"a": 1}') is True
        assert validate_json("{a: 1}") is False

    def test_is_safe_string(self):
        from reqguard.sanitizer import is_safe_string

        assert is_safe_string("Hello world 42") is True
        assert is_safe_string("rm -rf /") is False


class TestValidateUpload:
    """Tests for upload checks."""

    def test_accepts_valid_image(self):
        from reqguard.sanitizer import validate_upload

        assert validate_upload(1024, "image/png", "image") == (True, None)

    def test_rejects_oversized_file(self):
        from reqguard.sanitizer import validate_upload

        valid, error = validate_upload(6 * 1024 * 1024, "image/png", "image")
        assert valid is False
        assert "5MB" in error

    def test_rejects_wrong_type(self):
        from reqguard.sanitizer import validate_upload

        valid, error = validate_upload(1024, "application/x-msdownload", "document")
        assert valid is False
        assert "not allowed" in error
