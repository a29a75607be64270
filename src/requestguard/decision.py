#!/usr/bin/env python3
"""
Decision types returned by the security pipeline.

This module defines the outcome of running a request through the pipeline
and the process-wide security mode.

Security Considerations:
- Immutable decisions prevent tampering after the pipeline has run
- Status codes are derived from the decision type, never set by callers
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple


class SecurityMode(Enum):
    """
    Process-wide security mode.

    NORMAL: Initial state, normal rate profile
    STRICT: Tightened rate profile, alert mode unchanged
    LOCKDOWN: One-way escalation; suspicious identities banned, strict
        rate profile and alert mode forced on
    """

    NORMAL = "normal"
    STRICT = "strict"
    LOCKDOWN = "lockdown"

    @classmethod
    def from_string(cls, mode_str: str) -> Optional['SecurityMode']:
        """Convert string to mode enum with validation."""
        try:
            return cls(mode_str.lower())
        except (ValueError, AttributeError):
            return None


class DecisionType(Enum):
    """
    Outcome of a single request.

    ALLOW: Request passes to the application
    QUOTA_EXCEEDED: Rate limit hit, 429, no ban
    THREAT_DETECTED: Detector hit, 403, identity banned
    BANNED_CLIENT: Identity already banned, 403
    ALERT_BLOCK: Threat monitor flagged the request while in alert mode, 403
    SECURITY_ERROR: Pipeline failed unexpectedly, 403 (fail closed)
    """

    ALLOW = "allow"
    QUOTA_EXCEEDED = "quota_exceeded"
    THREAT_DETECTED = "threat_detected"
    BANNED_CLIENT = "banned_client"
    ALERT_BLOCK = "alert_block"
    SECURITY_ERROR = "security_error"

    def get_status_code(self) -> int:
        """Get HTTP status code for this decision."""
        status_codes = {
            DecisionType.ALLOW: 200,
            DecisionType.QUOTA_EXCEEDED: 429,
            DecisionType.THREAT_DETECTED: 403,
            DecisionType.BANNED_CLIENT: 403,
            DecisionType.ALERT_BLOCK: 403,
            DecisionType.SECURITY_ERROR: 403,
        }
        return status_codes[self]

    def is_blocking(self) -> bool:
        """Check if this decision terminates the exchange."""
        return self != DecisionType.ALLOW


@dataclass(frozen=True)
class Decision:
    """
    Immutable result of running a request through the pipeline.

    Security: Immutable to prevent tampering after creation.
    """

    decision_type: DecisionType
    reason: str
    identity: str
    detector_ids: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        """Validate decision on creation."""
        if not isinstance(self.decision_type, DecisionType):
            raise ValueError("decision_type must be DecisionType enum")
        if not self.reason:
            raise ValueError("Reason cannot be empty")
        if not self.identity:
            raise ValueError("Identity cannot be empty")
        if self.detector_ids and self.decision_type != DecisionType.THREAT_DETECTED:
            raise ValueError(
                f"Detector ids only valid for threat decisions, "
                f"got: {self.decision_type.value}"
            )

    @property
    def allowed(self) -> bool:
        return not self.decision_type.is_blocking()

    @property
    def status_code(self) -> int:
        return self.decision_type.get_status_code()

    @classmethod
    def allow(cls, identity: str, reason: str = "Allowed") -> 'Decision':
        return cls(DecisionType.ALLOW, reason, identity)

    def to_dict(self) -> dict:
        """Convert to dictionary for logging."""
        return {
            'allowed': self.allowed,
            'decision_type': self.decision_type.value,
            'status_code': self.status_code,
            'reason': self.reason,
            'identity': self.identity,
            'detector_ids': list(self.detector_ids),
        }
