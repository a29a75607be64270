#!/usr/bin/env python3
"""
Filesystem path guard.

Validates and constrains filesystem paths a request may reference. Not on
the hot request path; exposed to the host through the orchestrator's
secure_read_file / secure_write_file.

Security Considerations:
- Traversal sequences rejected before resolution, literal and
  percent-encoded
- Resolved path must stay under an allow-listed root (component-wise, so
  /srv/app-evil is not under /srv/app)
- Executable/binary extensions rejected for both read and write
- All validation happens before storage is touched (fail fast)
"""

import logging
import os
import re
import threading
from typing import Iterable, List, Optional

from .exceptions import ValidationFailure
from .sanitizer import InputSanitizer


DEFAULT_ALLOWED_ROOTS = (
    '/workspace',
    '/workspace/uploads',
    '/workspace/public',
)

DEFAULT_BLOCKED_EXTENSIONS = frozenset({
    '.exe', '.bat', '.cmd', '.sh', '.ps1', '.dll', '.so', '.dylib',
})

TRAVERSAL_PATTERN = re.compile(r'\.\./|\.\.\\|%2e%2e%2f|%2e%2e%5c', re.IGNORECASE)
CONTROL_CHAR_PATTERN = re.compile(r'[\x00-\x1f\x7f]')


class PathGuard:
    """
    Allow-list based path validator with guarded read/write.

    Thread-safe: Yes (allow-list mutations are locked)
    """

    def __init__(
        self,
        allowed_roots: Optional[Iterable[str]] = None,
        blocked_extensions: Optional[Iterable[str]] = None,
        sanitizer: Optional[InputSanitizer] = None,
    ):
        """
        Initialize path guard.

        Args:
            allowed_roots: Root directories requests may reference
            blocked_extensions: Extensions rejected for read and write
            sanitizer: Input sanitizer used to detect injected content
        """
        self.logger = logging.getLogger(__name__)
        self.sanitizer = sanitizer or InputSanitizer()
        self._lock = threading.Lock()
        self._allowed_roots: List[str] = []

        roots = DEFAULT_ALLOWED_ROOTS if allowed_roots is None else allowed_roots
        for root in roots:
            self.add_allowed_root(root)

        if blocked_extensions is None:
            self.blocked_extensions = DEFAULT_BLOCKED_EXTENSIONS
        else:
            self.blocked_extensions = frozenset(
                ext.lower() if ext.startswith('.') else f'.{ext.lower()}'
                for ext in blocked_extensions
            )

    @property
    def allowed_roots(self) -> List[str]:
        with self._lock:
            return list(self._allowed_roots)

    def add_allowed_root(self, root: str) -> None:
        """Add a root directory to the allow-list."""
        if not root or not isinstance(root, str):
            raise ValueError("Allowed root must be non-empty string")

        resolved = os.path.realpath(root)
        with self._lock:
            if resolved not in self._allowed_roots:
                self._allowed_roots.append(resolved)
        self.logger.info(f"Added allowed path: {resolved}")

    def is_allowed_path(self, path) -> bool:
        """
        Check if a path may be accessed.

        Returns:
            True if the path is clean and resolves under an allowed root
        """
        if not path or not isinstance(path, str):
            self.logger.info("Invalid file path provided")
            return False

        if CONTROL_CHAR_PATTERN.search(path):
            self.logger.warning("Control characters in file path")
            return False

        if self.sanitizer.sanitize(path) != path:
            self.logger.warning("Suspicious path detected after sanitization")
            return False

        if TRAVERSAL_PATTERN.search(path):
            self.logger.warning("Directory traversal attempt detected")
            return False

        resolved = os.path.realpath(path)
        for root in self.allowed_roots:
            if resolved == root or resolved.startswith(root.rstrip(os.sep) + os.sep):
                return True

        self.logger.info("Path is outside allowed directories")
        return False

    def is_extension_allowed(self, path: str) -> bool:
        _, ext = os.path.splitext(path)
        return ext.lower() not in self.blocked_extensions

    def secure_read(self, path: str, encoding: str = 'utf-8') -> str:
        """
        Read a text file after validation.

        Raises:
            ValidationFailure: Path or extension rejected
            OSError: Underlying read failed (propagated unchanged)
        """
        self._validate(path, 'read')

        with open(path, 'r', encoding=encoding) as f:
            return f.read()

    def secure_write(self, path: str, data: str, encoding: str = 'utf-8') -> bool:
        """
        Write a text file after validation, creating parent directories.

        Raises:
            ValidationFailure: Path or extension rejected
            OSError: Underlying write failed (propagated unchanged)
        """
        self._validate(path, 'write')

        directory = os.path.dirname(os.path.abspath(path))
        os.makedirs(directory, exist_ok=True)

        with open(path, 'w', encoding=encoding) as f:
            f.write(data)
        return True

    def _validate(self, path: str, operation: str) -> None:
        if not self.is_allowed_path(path):
            raise ValidationFailure("Invalid file path")

        if not self.is_extension_allowed(path):
            _, ext = os.path.splitext(path)
            self.logger.warning(
                f"Blocked attempt to {operation} file with dangerous extension: {ext}"
            )
            raise ValidationFailure("Blocked file extension")
