#!/usr/bin/env python3
"""
Threat monitor ("IDS" layer) for inbound requests.

This module classifies each request as suspicious or benign from pattern
heuristics and keeps a bounded rolling activity log.

Security Considerations:
- Normal operation only logs; alert mode turns a suspicious
  classification into a block (403)
- Activity log is capped (1000 records, trimmed to the newest 500) so a
  flood cannot exhaust memory; the trim happens under the same lock as
  the append
- Suspicious records are kept separately for investigation
"""

import logging
import re
import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional

from .request import GuardRequest
from .sanitizer import SQL_PATTERNS


MONITOR_MARKUP_PATTERNS = [
    re.compile(r'<script', re.IGNORECASE),
    re.compile(r'javascript:', re.IGNORECASE),
    re.compile(r'vbscript:', re.IGNORECASE),
    re.compile(r'on\w+\s*=', re.IGNORECASE),
    re.compile(r'<iframe', re.IGNORECASE),
    re.compile(r'eval\(', re.IGNORECASE),
]

PATH_TRAVERSAL_PATTERNS = [
    re.compile(r'\.\./|\.\.\\'),
    re.compile(r'%2e%2e%2f|%2e%2e%5c', re.IGNORECASE),
    re.compile(r'/etc/passwd', re.IGNORECASE),
    re.compile(r'/windows/system32', re.IGNORECASE),
]

AUTOMATED_USER_AGENTS = [
    re.compile(r'python-requests', re.IGNORECASE),
    re.compile(r'curl', re.IGNORECASE),
    re.compile(r'wget', re.IGNORECASE),
    re.compile(r'httpclient', re.IGNORECASE),
    re.compile(r'bot', re.IGNORECASE),
    re.compile(r'crawler', re.IGNORECASE),
    re.compile(r'spider', re.IGNORECASE),
]


@dataclass(frozen=True)
class ActivityRecord:
    """One inspected request."""

    timestamp: str
    identity: str
    method: str
    url: str
    user_agent: str
    suspicious: bool
    category: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


class ThreatMonitor:
    """
    Pattern-based request classifier with a rolling activity log.

    Thread-safe: Yes (single lock over logs and alert flag)
    """

    DEFAULT_MAX_ACTIVITIES = 1000
    DEFAULT_TRIM_TO = 500

    def __init__(
        self,
        max_activities: int = DEFAULT_MAX_ACTIVITIES,
        trim_to: int = DEFAULT_TRIM_TO,
    ):
        """
        Initialize threat monitor.

        Args:
            max_activities: Activity log cap
            trim_to: Records kept (newest) when the cap is exceeded

        Raises:
            ValueError: If trim_to is not below max_activities
        """
        if not (0 < trim_to < max_activities):
            raise ValueError("Must satisfy 0 < trim_to < max_activities")

        self.logger = logging.getLogger(__name__)
        self.max_activities = max_activities
        self.trim_to = trim_to
        self._alert_mode = False
        self._activity_log: List[ActivityRecord] = []
        self._suspicious_activities: List[ActivityRecord] = []
        self._lock = threading.Lock()

    @property
    def alert_mode(self) -> bool:
        with self._lock:
            return self._alert_mode

    def activate_alert_mode(self) -> None:
        with self._lock:
            self._alert_mode = True
        self.logger.warning("Alert mode activated - blocking suspicious requests")

    def deactivate_alert_mode(self) -> None:
        with self._lock:
            self._alert_mode = False
        self.logger.warning("Alert mode deactivated")

    def classify(self, request: GuardRequest) -> Optional[str]:
        """
        Classify a request.

        Returns:
            Category name of the first matching heuristic, or None if benign
        """
        url = request.url or ''
        body = request.serialized_body()

        for pattern in SQL_PATTERNS:
            if pattern.search(url) or pattern.search(body):
                return 'sql_injection'

        for pattern in MONITOR_MARKUP_PATTERNS:
            if pattern.search(url) or pattern.search(body):
                return 'xss'

        for pattern in PATH_TRAVERSAL_PATTERNS:
            if pattern.search(url) or pattern.search(body):
                return 'path_traversal'

        user_agent = request.user_agent
        for pattern in AUTOMATED_USER_AGENTS:
            if pattern.search(user_agent):
                return 'automated_client'

        return None

    def inspect(self, request: GuardRequest) -> ActivityRecord:
        """
        Classify and record one request.

        Every request lands in the bounded activity log; suspicious ones
        are also appended to the suspicious list.
        """
        category = self.classify(request)
        record = ActivityRecord(
            timestamp=datetime.now(timezone.utc).isoformat(),
            identity=request.client_identity,
            method=request.method,
            url=request.url,
            user_agent=request.user_agent,
            suspicious=category is not None,
            category=category,
        )

        with self._lock:
            self._activity_log.append(record)
            if len(self._activity_log) > self.max_activities:
                self._activity_log = self._activity_log[-self.trim_to:]
            if record.suspicious:
                self._suspicious_activities.append(record)

        if record.suspicious:
            self.logger.warning(
                f"Suspicious activity ({category}) from {record.identity[:45]}: "
                f"{record.method} {record.url[:128]}"
            )
        return record

    def should_block(self, record: ActivityRecord, alert_mode: Optional[bool] = None) -> bool:
        """
        Check if a recorded request must be blocked.

        Args:
            record: Record returned by inspect()
            alert_mode: Alert mode snapshot taken by the caller, defaults
                to the current flag
        """
        if alert_mode is None:
            alert_mode = self.alert_mode
        return record.suspicious and alert_mode

    @property
    def activity_log(self) -> List[ActivityRecord]:
        with self._lock:
            return list(self._activity_log)

    @property
    def suspicious_activities(self) -> List[ActivityRecord]:
        with self._lock:
            return list(self._suspicious_activities)

    def get_stats(self) -> Dict:
        with self._lock:
            last = self._suspicious_activities[-1] if self._suspicious_activities else None
            return {
                'total_activities': len(self._activity_log),
                'suspicious_activities': len(self._suspicious_activities),
                'alert_mode': self._alert_mode,
                'last_suspicious': last.to_dict() if last else None,
            }

    @classmethod
    def from_config(cls, config: Dict) -> 'ThreatMonitor':
        monitor_config = config.get('monitor', {}) or {}
        try:
            return cls(
                max_activities=int(monitor_config.get(
                    'max_activities', cls.DEFAULT_MAX_ACTIVITIES)),
                trim_to=int(monitor_config.get('trim_to', cls.DEFAULT_TRIM_TO)),
            )
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid monitor configuration: {e}")
