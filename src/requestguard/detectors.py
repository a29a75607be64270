#!/usr/bin/env python3
"""
Detector registry for the intrusion guard.

Each detector is a tagged variant (one per DetectorKind) carrying its own
predicate configuration, so predicates are inspectable and testable in
isolation. The registry is a fixed ordered sequence of five built-ins.

Security Considerations:
- Detectors are independent: all enabled detectors run on every request
  and any of them may be disabled without affecting the others
- Predicates never raise on malformed request data; they serialize and
  match text only
"""

import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Pattern, Tuple

from .rate_limiter import SlidingWindowCounter
from .rate_profile import DETECTOR_LIMITS, ProfileLimits
from .request import GuardRequest, iter_strings, serialize
from .sanitizer import InputSanitizer
from .threat_monitor import AUTOMATED_USER_AGENTS


class DetectorKind(Enum):
    """
    Detector categories.

    INPUT_VALIDATION: Markup/query injection in body, query or route params
    RATE_LIMITING: Independent sliding-window quota (50/minute)
    URL_VALIDATION: SSRF/open-redirect heuristic on redirect or referer
    FILE_ACCESS: Path traversal in raw url and body
    SESSION_PROTECTION: Automated client user agents, missing Accept
    """

    INPUT_VALIDATION = "input-validation"
    RATE_LIMITING = "rate-limiting"
    URL_VALIDATION = "url-validation"
    FILE_ACCESS = "file-access"
    SESSION_PROTECTION = "session-protection"


INPUT_EXTRA_PATTERNS = (
    re.compile(r'document\.cookie', re.IGNORECASE),
    re.compile(r'\.\./|~/'),
)

REDIRECT_PATTERNS = (
    re.compile(
        r'^https?://(localhost|127\.0\.0\.1|10\.\d+\.\d+\.\d+|'
        r'172\.(1[6-9]|2[0-9]|3[01])\.\d+\.\d+|192\.168\.\d+\.\d+)',
        re.IGNORECASE,
    ),
    re.compile(r'^https?://[^/]*@', re.IGNORECASE),
    re.compile(r'169\.254\.\d+\.\d+'),
    re.compile(r'::1|fe80::', re.IGNORECASE),
)

FILE_ACCESS_PATTERNS = (
    re.compile(r'\.\./|\.\.\\'),
    re.compile(r'%2e%2e%2f|%2e%2e%5c', re.IGNORECASE),
    re.compile(r'0x2e0x2e0x2f', re.IGNORECASE),
    re.compile(r'/etc/passwd', re.IGNORECASE),
    re.compile(r'/windows/system32', re.IGNORECASE),
    re.compile(r'c:/windows', re.IGNORECASE),
)

BROWSER_ACCEPT_TYPES = ('text/html', '*/*')


@dataclass(frozen=True)
class Detector:
    """Base detector capability."""

    id: str
    kind: DetectorKind

    def detect(self, request: GuardRequest) -> bool:
        raise NotImplementedError

    def describe(self) -> dict:
        return {'id': self.id, 'type': self.kind.value}


@dataclass(frozen=True)
class InputValidationDetector(Detector):
    sanitizer: InputSanitizer = field(default_factory=InputSanitizer)
    extra_patterns: Tuple[Pattern, ...] = INPUT_EXTRA_PATTERNS

    def detect(self, request: GuardRequest) -> bool:
        sources = (
            request.body if request.body is not None else {},
            request.query or {},
            request.params or {},
        )
        for source in sources:
            text = serialize(source)
            if self.sanitizer.matches_markup(text):
                return True
            if any(pattern.search(text) for pattern in self.extra_patterns):
                return True
            # Query patterns see each value alone; serializer quotes would match
            if any(self.sanitizer.matches_sql(value) for value in iter_strings(source)):
                return True
        return False


@dataclass(frozen=True)
class RateHeuristicDetector(Detector):
    limits: ProfileLimits = DETECTOR_LIMITS
    counter: SlidingWindowCounter = field(default_factory=SlidingWindowCounter)

    def detect(self, request: GuardRequest) -> bool:
        return self.counter.hit(request.client_identity, self.limits).exceeded

    def sweep(self) -> int:
        return self.counter.sweep(self.limits.window_seconds)

    def describe(self) -> dict:
        description = super().describe()
        description['quota'] = self.limits.quota
        description['window_seconds'] = self.limits.window_seconds
        return description


@dataclass(frozen=True)
class UrlValidationDetector(Detector):
    patterns: Tuple[Pattern, ...] = REDIRECT_PATTERNS

    def detect(self, request: GuardRequest) -> bool:
        target = self._redirect_target(request)
        if not target:
            return False
        return any(pattern.search(target) for pattern in self.patterns)

    @staticmethod
    def _redirect_target(request: GuardRequest) -> Optional[str]:
        target = (request.query or {}).get('redirect')
        if not target and isinstance(request.body, dict):
            target = request.body.get('redirect')
        if not target:
            target = request.header('referer')
        if isinstance(target, (list, tuple)):
            target = target[0] if target else None
        return str(target) if target else None


@dataclass(frozen=True)
class FileAccessDetector(Detector):
    patterns: Tuple[Pattern, ...] = FILE_ACCESS_PATTERNS

    def detect(self, request: GuardRequest) -> bool:
        url = request.url or ''
        body = request.serialized_body()
        return any(
            pattern.search(url) or pattern.search(body) for pattern in self.patterns
        )


@dataclass(frozen=True)
class SessionDetector(Detector):
    user_agent_patterns: Tuple[Pattern, ...] = tuple(AUTOMATED_USER_AGENTS)
    accepted_types: Tuple[str, ...] = BROWSER_ACCEPT_TYPES

    def detect(self, request: GuardRequest) -> bool:
        user_agent = request.user_agent
        if any(pattern.search(user_agent) for pattern in self.user_agent_patterns):
            return True

        # Automated clients often omit a browser-like Accept header
        accept = request.header('accept')
        return not any(accepted in accept for accepted in self.accepted_types)


def build_default_detectors(
    sanitizer: Optional[InputSanitizer] = None,
    clock: Callable[[], float] = time.time,
    rate_limits: ProfileLimits = DETECTOR_LIMITS,
) -> Tuple[Detector, ...]:
    """
    Build the fixed ordered registry of built-in detectors.

    Args:
        sanitizer: Sanitizer shared with the rest of the pipeline
        clock: Time source for the rate-heuristic window
        rate_limits: Threshold of the rate-heuristic detector

    Returns:
        Tuple of detectors in evaluation order
    """
    sanitizer = sanitizer or InputSanitizer()
    return (
        InputValidationDetector(
            id='input-validator',
            kind=DetectorKind.INPUT_VALIDATION,
            sanitizer=sanitizer,
        ),
        RateHeuristicDetector(
            id='rate-heuristic',
            kind=DetectorKind.RATE_LIMITING,
            limits=rate_limits,
            counter=SlidingWindowCounter(clock),
        ),
        UrlValidationDetector(id='url-validator', kind=DetectorKind.URL_VALIDATION),
        FileAccessDetector(id='file-guard', kind=DetectorKind.FILE_ACCESS),
        SessionDetector(id='session-guard', kind=DetectorKind.SESSION_PROTECTION),
    )
