#!/usr/bin/env python3
"""
Rate limiting profile definitions and data structures.

This module defines the two operating profiles of the rate limiter and the
immutable result of a single window check.

Security Considerations:
- Profile limits are validated on load to prevent disabling the limiter
  through configuration (zero quota, huge windows)
- Window results are immutable once created
"""

import hashlib
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional


class RateProfile(Enum):
    """
    Rate limiter operating profiles.

    NORMAL: 100 requests per 15 minutes
        - Default profile for regular traffic

    STRICT: 10 requests per minute
        - Used in strict mode and during lockdown
        - Applies to every identity on its next request, no grandfathering
    """

    NORMAL = "normal"
    STRICT = "strict"

    @classmethod
    def from_string(cls, profile_str: str) -> Optional['RateProfile']:
        """
        Convert string to profile enum with validation.

        Security: Prevents enum injection via invalid strings.
        """
        try:
            return cls(profile_str.lower())
        except (ValueError, AttributeError):
            return None


@dataclass(frozen=True)
class ProfileLimits:
    """
    Window length and quota for one profile.

    Security: Immutable configuration prevents runtime tampering.
    """

    window_seconds: float
    quota: int

    MIN_WINDOW_SECONDS = 1.0
    MAX_WINDOW_SECONDS = 86400.0
    MAX_QUOTA = 1000000

    def __post_init__(self):
        """Validate limits on creation."""
        if not (self.MIN_WINDOW_SECONDS <= self.window_seconds <= self.MAX_WINDOW_SECONDS):
            raise ValueError(
                f"Window must be in [{self.MIN_WINDOW_SECONDS}, "
                f"{self.MAX_WINDOW_SECONDS}] seconds, got: {self.window_seconds}"
            )
        if not (1 <= self.quota <= self.MAX_QUOTA):
            raise ValueError(f"Quota must be in [1, {self.MAX_QUOTA}], got: {self.quota}")

    @classmethod
    def from_config_dict(cls, config: Dict, default: 'ProfileLimits') -> 'ProfileLimits':
        """
        Create from configuration dictionary with validation.

        Missing keys fall back to the given default.
        """
        try:
            return cls(
                window_seconds=float(config.get('window_seconds', default.window_seconds)),
                quota=int(config.get('quota', default.quota)),
            )
        except (TypeError, ValueError, AttributeError) as e:
            raise ValueError(f"Invalid rate limit configuration: {e}")


DEFAULT_LIMITS = {
    RateProfile.NORMAL: ProfileLimits(window_seconds=15 * 60.0, quota=100),
    RateProfile.STRICT: ProfileLimits(window_seconds=60.0, quota=10),
}

# Independent threshold of the rate-heuristic detector
DETECTOR_LIMITS = ProfileLimits(window_seconds=60.0, quota=50)


@dataclass(frozen=True)
class WindowResult:
    """
    Immutable outcome of one sliding-window check.

    count includes the request being checked.
    """

    identity: str
    count: int
    quota: int
    window_seconds: float
    timestamp: float

    def __post_init__(self):
        if self.count < 0:
            raise ValueError("Count cannot be negative")
        if not self.identity:
            raise ValueError("Identity cannot be empty")

    @property
    def exceeded(self) -> bool:
        return self.count > self.quota

    def to_dict(self) -> dict:
        """Convert to dictionary for logging/metrics."""
        return {
            'count': self.count,
            'quota': self.quota,
            'window_seconds': self.window_seconds,
            'identity_hash': hashlib.sha256(self.identity.encode()).hexdigest()[:16],
            'timestamp': self.timestamp,
        }
