#!/usr/bin/env python3
"""
Logging setup with sensitive data redaction.

Attack payloads and notification settings pass through the logs, so every
handler installed here redacts credentials and contact details before a
record is written.
"""

import copy
import logging
import os
import re
from typing import Dict


class SensitiveDataFilter(logging.Filter):
    """Filter to prevent logging of sensitive data."""

    def __init__(self):
        super().__init__()
        # Patterns to redact from logs
        self.sensitive_patterns = [
            (re.compile(r'password["\']?\s*[:=]\s*["\']?([^"\'\s,}]+)', re.IGNORECASE), 'password=***REDACTED***'),
            (re.compile(r'api[_-]?key["\']?\s*[:=]\s*["\']?([^"\'\s,}]+)', re.IGNORECASE), 'api_key=***REDACTED***'),
            (re.compile(r'token["\']?\s*[:=]\s*["\']?([^"\'\s,}]+)', re.IGNORECASE), 'token=***REDACTED***'),
            (re.compile(r'secret["\']?\s*[:=]\s*["\']?([^"\'\s,}]+)', re.IGNORECASE), 'secret=***REDACTED***'),
            (re.compile(r'authorization:\s*Bearer\s+(\S+)', re.IGNORECASE), 'Authorization: Bearer ***REDACTED***'),
            (re.compile(r'(\d{13,19})'), '***CARD_REDACTED***'),
            (re.compile(r'([a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,})'), '***EMAIL_REDACTED***'),
        ]

    def redact(self, text: str) -> str:
        for pattern, replacement in self.sensitive_patterns:
            text = pattern.sub(replacement, text)
        return text

    def filter(self, record):
        """Filter sensitive data from log records."""
        record.msg = self.redact(str(record.msg))

        # Non-string args are left alone so %d style placeholders still format
        if isinstance(record.args, dict):
            record.args = {key: self._redact_arg(value) for key, value in record.args.items()}
        elif record.args:
            record.args = tuple(self._redact_arg(arg) for arg in record.args)

        return True

    def _redact_arg(self, arg):
        return self.redact(arg) if isinstance(arg, str) else arg


class SecureFormatter(logging.Formatter):
    """Formatter that hides stack traces in production."""

    def format(self, record):
        if not hasattr(record, 'event_type'):
            record.event_type = 'general'

        # In production, only log exception type, not full traceback.
        # A copy is formatted so other handlers still see exc_info.
        if record.exc_info and os.getenv('ENVIRONMENT') == 'production':
            exc_type, exc_value, _ = record.exc_info
            record = copy.copy(record)
            record.exc_text = f"{exc_type.__name__}: {exc_value}"
            record.exc_info = None

        return super().format(record)


def configure_logging(config: Dict, logger_name: str = 'requestguard') -> logging.Logger:
    """
    Install a redacting stream handler on the package logger.

    Calling it again replaces the handler instead of adding a second one.

    Args:
        config: Configuration dictionary (logging section is used)
        logger_name: Logger to configure

    Returns:
        The configured logger
    """
    logging_config = config.get('logging', {}) or {}
    log_level = str(logging_config.get('level', 'INFO')).upper()
    log_format = logging_config.get(
        'format', '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    logger = logging.getLogger(logger_name)
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    for handler in list(logger.handlers):
        if getattr(handler, '_requestguard_handler', False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setLevel(getattr(logging, log_level, logging.INFO))
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(SecureFormatter(log_format))
    handler._requestguard_handler = True

    logger.addHandler(handler)
    return logger
