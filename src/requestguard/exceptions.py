#!/usr/bin/env python3
"""
Exception taxonomy for the request guard.

Request-level rejections (rate limit, detector hit, ban, alert mode) are
returned as decisions and never raised. The exceptions below cover the
failures that happen outside a single allow/deny decision.
"""


class GuardError(Exception):
    """Base exception for request guard errors."""
    pass


class ValidationFailure(GuardError):
    """Malformed path, URL or input rejected before any side effect."""
    pass


class PersistenceFailure(GuardError):
    """Ban list or attack log could not be read or written."""
    pass


class NotificationFailure(GuardError):
    """Abuse notification could not be delivered."""
    pass


class ConfigurationError(GuardError):
    """Configuration file is invalid."""
    pass
