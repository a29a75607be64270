#!/usr/bin/env python3
"""
Input sanitization and validation for request-derived text.

Stateless pattern matching used by every other component of the pipeline.

Security Considerations:
- Detection is pattern based; it is not a parser and can be bypassed
- sanitize() strips known markup-injection patterns but is lossy and
  best effort. Callers must reject on is_safe() == False instead of
  trusting sanitized output
- URL validation covers SSRF to internal addresses only; open redirects
  are not checked
"""

import ipaddress
import json
import logging
import re
from typing import Any
from urllib.parse import urlsplit


# Markup injection (XSS)
MARKUP_PATTERNS = [
    re.compile(r'<script', re.IGNORECASE),
    re.compile(r'javascript:', re.IGNORECASE),
    re.compile(r'vbscript:', re.IGNORECASE),
    re.compile(r'on\w+\s*=', re.IGNORECASE),
    re.compile(r'<iframe', re.IGNORECASE),
    re.compile(r'<object', re.IGNORECASE),
    re.compile(r'<embed', re.IGNORECASE),
    re.compile(r'eval\(', re.IGNORECASE),
    re.compile(r'expression\(', re.IGNORECASE),
]

# Query injection (SQL)
SQL_PATTERNS = [
    re.compile(
        r'(\b(SELECT|INSERT|UPDATE|DELETE|DROP|CREATE|ALTER|EXEC|UNION|SCRIPT)\b)',
        re.IGNORECASE,
    ),
    re.compile(
        r'(\b(OR|AND)\s+[\w\s=\'"]+\s*=\s*[\w\s=\'"]+\s*(--|#|/\*|\*/))',
        re.IGNORECASE,
    ),
    re.compile(r'([\'"])\s*(--|#|/\*|\*/)', re.IGNORECASE),
]

# Stripped by sanitize(), applied in order
STRIP_PATTERNS = [
    re.compile(r'<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>', re.IGNORECASE),
    re.compile(r'<iframe\b[^<]*(?:(?!</iframe>)<[^<]*)*</iframe>', re.IGNORECASE),
    re.compile(r'<object\b[^<]*(?:(?!</object>)<[^<]*)*</object>', re.IGNORECASE),
    re.compile(r'<embed\b[^>]*>', re.IGNORECASE),
    re.compile(r'javascript:', re.IGNORECASE),
    re.compile(r'vbscript:', re.IGNORECASE),
    re.compile(r'on\w+\s*=', re.IGNORECASE),
    re.compile(r'eval\(', re.IGNORECASE),
    re.compile(r'expression\(', re.IGNORECASE),
]

# Hostnames that point back into the local network (SSRF)
INTERNAL_HOST_PATTERNS = [
    re.compile(r'^localhost$', re.IGNORECASE),
    re.compile(r'^127\.0\.0\.1$'),
    re.compile(r'^10\.\d+\.\d+\.\d+$'),
    re.compile(r'^172\.(1[6-9]|2[0-9]|3[01])\.\d+\.\d+$'),
    re.compile(r'^192\.168\.\d+\.\d+$'),
    re.compile(r'^169\.254\.\d+\.\d+$'),
    re.compile(r'^::1$'),
    re.compile(r'^fe80::', re.IGNORECASE),
]


class InputSanitizer:
    """
    Pattern-based validator for untrusted text.

    Thread-safe: Yes (stateless, compiled patterns are read-only)
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def is_safe(self, value: Any) -> bool:
        """
        Check text or structured input for injection patterns.

        Args:
            value: String, or dict/list/tuple serialized to JSON first

        Returns:
            False if any markup or query injection pattern matches, or the
            input is of an unsupported type
        """
        if isinstance(value, str):
            text = value
        elif isinstance(value, (dict, list, tuple)):
            try:
                text = json.dumps(value, default=str, ensure_ascii=False)
            except (TypeError, ValueError) as e:
                self.logger.warning(f"Unserializable input rejected: {e}")
                return False
        else:
            return False

        if self.matches_markup(text):
            self.logger.info("Markup injection attempt detected")
            return False

        if self.matches_sql(text):
            self.logger.info("SQL injection attempt detected")
            return False

        return True

    def matches_markup(self, text: str) -> bool:
        return any(pattern.search(text) for pattern in MARKUP_PATTERNS)

    def matches_sql(self, text: str) -> bool:
        return any(pattern.search(text) for pattern in SQL_PATTERNS)

    def sanitize(self, value: Any) -> Any:
        """
        Strip markup-injection patterns from text.

        Non-string input is returned unchanged.
        """
        if not isinstance(value, str):
            return value

        sanitized = value
        for pattern in STRIP_PATTERNS:
            sanitized = pattern.sub('', sanitized)
        return sanitized

    def is_safe_url(self, url: Any) -> bool:
        """
        Validate URL against SSRF to internal addresses.

        Requires a scheme and a hostname. Rejects loopback, RFC1918,
        link-local and IPv6 loopback/link-local hosts. Everything else is
        accepted; open-redirect targets are not checked.
        """
        if not isinstance(url, str) or not url:
            return False

        try:
            parsed = urlsplit(url)
            hostname = parsed.hostname
            # Accessing port validates it
            parsed.port
        except ValueError:
            self.logger.info("Invalid URL format")
            return False

        if not parsed.scheme or not hostname:
            self.logger.info("Invalid URL format")
            return False

        if self._is_internal_host(hostname):
            self.logger.warning(f"SSRF attempt detected: host={hostname[:64]}")
            return False

        return True

    def _is_internal_host(self, hostname: str) -> bool:
        for pattern in INTERNAL_HOST_PATTERNS:
            if pattern.search(hostname):
                return True

        try:
            address = ipaddress.ip_address(hostname)
        except ValueError:
            return False

        return address.is_loopback or address.is_private or address.is_link_local
