#!/usr/bin/env python3
"""
Unit tests for input sanitizer.

Tests cover:
- Markup and query injection detection
- Structured input serialization
- Best-effort stripping
- SSRF URL validation
"""

import pytest

from requestguard.sanitizer import InputSanitizer


@pytest.fixture
def sanitizer():
    return InputSanitizer()


class TestIsSafe:
    """Test injection detection."""

    @pytest.mark.parametrize("text", [
        "hello world",
        "python tutorials for beginners",
        "price < 100 and rating > 4",
        "",
    ])
    def test_benign_text(self, sanitizer, text):
        assert sanitizer.is_safe(text)

    @pytest.mark.parametrize("text", [
        "<script>alert(1)</script>",
        "<SCRIPT src=x>",
        "javascript:alert(1)",
        "vbscript:msgbox",
        "<img src=x onerror=alert(1)>",
        "<iframe src=//evil>",
        "<object data=x>",
        "<embed src=x>",
        "eval(atob('x'))",
        "width: expression(alert(1))",
    ])
    def test_markup_injection(self, sanitizer, text):
        assert not sanitizer.is_safe(text)

    @pytest.mark.parametrize("text", [
        "1; DROP TABLE users",
        "1 UNION SELECT password FROM users",
        "admin' --",
        "x OR 1=1 --",
        'name" /*',
    ])
    def test_sql_injection(self, sanitizer, text):
        assert not sanitizer.is_safe(text)

    def test_dict_is_serialized(self, sanitizer):
        assert sanitizer.is_safe({"q": "weather today"})
        assert not sanitizer.is_safe({"q": "<script>alert(1)</script>"})

    def test_list_is_serialized(self, sanitizer):
        assert sanitizer.is_safe(["a", "b"])
        assert not sanitizer.is_safe(["a", "javascript:void(0)"])

    def test_nested_structure(self, sanitizer):
        assert not sanitizer.is_safe({"outer": {"inner": ["<iframe>"]}})

    @pytest.mark.parametrize("value", [None, 42, 3.14, object()])
    def test_unsupported_types_rejected(self, sanitizer, value):
        assert not sanitizer.is_safe(value)


class TestSanitize:
    """Test best-effort stripping."""

    def test_strips_script_block(self, sanitizer):
        assert sanitizer.sanitize("a<script>alert(1)</script>b") == "ab"

    def test_strips_event_handler(self, sanitizer):
        assert "onerror=" not in sanitizer.sanitize('<img onerror=alert(1)>')

    def test_strips_protocols(self, sanitizer):
        assert sanitizer.sanitize("javascript:go()") == "go()"

    def test_clean_text_unchanged(self, sanitizer):
        assert sanitizer.sanitize("plain text") == "plain text"

    def test_non_string_returned_unchanged(self, sanitizer):
        value = {"a": 1}
        assert sanitizer.sanitize(value) is value
        assert sanitizer.sanitize(None) is None


class TestIsSafeUrl:
    """Test SSRF URL validation."""

    @pytest.mark.parametrize("url", [
        "https://example.com",
        "http://example.com:8080/path?q=1",
        "https://8.8.8.8/dns",
    ])
    def test_public_urls(self, sanitizer, url):
        assert sanitizer.is_safe_url(url)

    @pytest.mark.parametrize("url", [
        "http://localhost/admin",
        "http://LOCALHOST:8080",
        "http://127.0.0.1/",
        "http://10.0.0.5/",
        "http://172.16.0.1/",
        "http://172.31.255.255/",
        "http://192.168.1.1/",
        "http://169.254.169.254/latest/meta-data",
        "http://[::1]/",
        "http://[fe80::1]/",
        "http://127.1.2.3/",
    ])
    def test_internal_urls(self, sanitizer, url):
        assert not sanitizer.is_safe_url(url)

    def test_non_private_172_range_allowed(self, sanitizer):
        assert sanitizer.is_safe_url("http://172.32.0.1/")

    @pytest.mark.parametrize("url", [
        "",
        "not a url",
        "/relative/path",
        "javascript:alert(1)",
        "http://example.com:99999/",
        None,
        123,
    ])
    def test_malformed_urls(self, sanitizer, url):
        assert not sanitizer.is_safe_url(url)
