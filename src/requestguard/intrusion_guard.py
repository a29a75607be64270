#!/usr/bin/env python3
"""
Bot/intrusion guard for the security pipeline.

This module runs the detector registry against each request and manages
the suspicion and permanent-ban sets.

Security Considerations:
- Ban check short-circuits before any detector runs
- Every enabled detector runs on every request (no early exit), so
  attack records carry the complete list of triggering detectors
- Ban on first detection: any detector hit bans the identity permanently;
  unban() is the explicit recovery path for false positives
- Persistence and notifications are dispatched in the background after
  the decision is made; their failure never changes the decision
"""

import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from .detectors import Detector, RateHeuristicDetector, build_default_detectors
from .dispatcher import BackgroundDispatcher
from .metrics import BANNED_IDENTITIES, DETECTOR_HITS, SECURITY_EVENTS
from .notifier import AbuseNotifier, LoggingNotifier
from .rate_profile import DETECTOR_LIMITS, ProfileLimits
from .request import GuardRequest
from .sanitizer import InputSanitizer
from .storage import BanStore


BODY_SNAPSHOT_CHARS = 200


@dataclass(frozen=True)
class AttackRecord:
    """
    Immutable record of one detector hit.

    Security: Body is truncated to limit stored attacker payload.
    """

    timestamp: str
    identity: str
    method: str
    url: str
    user_agent: str
    detector_ids: Tuple[str, ...]
    body: Optional[str] = None

    def __post_init__(self):
        if not self.identity:
            raise ValueError("Identity cannot be empty")
        if not self.detector_ids:
            raise ValueError("Attack record requires at least one detector id")

    def to_dict(self) -> dict:
        record = asdict(self)
        record['detector_ids'] = list(self.detector_ids)
        return record


@dataclass(frozen=True)
class GuardVerdict:
    """Result of IntrusionGuard.evaluate()."""

    identity: str
    detector_ids: Tuple[str, ...] = field(default_factory=tuple)
    banned_before: bool = False

    @property
    def blocked(self) -> bool:
        return self.banned_before or bool(self.detector_ids)


class IntrusionGuard:
    """
    Detector registry with suspicion and permanent-ban sets.

    Thread-safe: Yes (single lock over sets, attack log and detector flags)
    """

    def __init__(
        self,
        store: BanStore,
        dispatcher: BackgroundDispatcher,
        notifier: Optional[AbuseNotifier] = None,
        detectors: Optional[Iterable[Detector]] = None,
        disabled_detectors: Optional[Iterable[str]] = None,
    ):
        """
        Initialize intrusion guard and load persisted bans.

        Args:
            store: Durable storage for bans and attack records
            dispatcher: Background runner for writes and notifications
            notifier: Abuse notifier, defaults to logging only
            detectors: Detector registry, defaults to the five built-ins
            disabled_detectors: Detector ids to start disabled

        Raises:
            PersistenceFailure: If persisted bans cannot be loaded
            ValueError: If detector ids are duplicated or unknown
        """
        self.store = store
        self.dispatcher = dispatcher
        self.notifier = notifier or LoggingNotifier()
        self.logger = logging.getLogger(__name__)

        self.detectors: Tuple[Detector, ...] = tuple(
            detectors if detectors is not None else build_default_detectors()
        )
        ids = [detector.id for detector in self.detectors]
        if len(ids) != len(set(ids)):
            raise ValueError("Detector ids must be unique")

        self._enabled: Dict[str, bool] = {detector_id: True for detector_id in ids}
        for detector_id in disabled_detectors or []:
            if detector_id not in self._enabled:
                raise ValueError(f"Unknown detector: {detector_id}")
            self._enabled[detector_id] = False

        self._lock = threading.Lock()
        self._suspicious: Set[str] = set()
        self._banned: Set[str] = set(self.store.load_bans())
        self._attack_log: List[AttackRecord] = []

        BANNED_IDENTITIES.set(len(self._banned))
        self.logger.info(
            f"Intrusion guard initialized: {len(self.detectors)} detectors, "
            f"{len(self._banned)} banned identities loaded"
        )

    def evaluate(self, request: GuardRequest) -> GuardVerdict:
        """
        Evaluate a request against the ban set and all enabled detectors.

        Args:
            request: Inbound request

        Returns:
            GuardVerdict; verdict.blocked means reject with 403
        """
        identity = request.client_identity

        if self.is_banned(identity):
            self.logger.info(f"Blocked permanently banned identity: {identity[:45]}")
            return GuardVerdict(identity=identity, banned_before=True)

        with self._lock:
            active = [d for d in self.detectors if self._enabled[d.id]]

        triggered = []
        for detector in active:
            if detector.detect(request):
                triggered.append(detector.id)
                DETECTOR_HITS.labels(detector=detector.id).inc()
                self.logger.warning(
                    f"Detector {detector.id} detected threat from {identity[:45]}"
                )

        if not triggered:
            return GuardVerdict(identity=identity)

        record = self._build_record(identity, request, triggered)
        with self._lock:
            self._attack_log.append(record)
            self._suspicious.add(identity)
            self._banned.add(identity)
            banned_count = len(self._banned)

        BANNED_IDENTITIES.set(banned_count)
        SECURITY_EVENTS.labels(event_type='permanent_ban', severity='critical').inc()
        self.logger.error(
            f"PERMANENT BAN: {identity[:45]} detectors={','.join(triggered)}"
        )

        record_dict = record.to_dict()
        self.dispatcher.submit('append-attack', self.store.append_attack, record_dict)
        self._persist_bans()
        self.dispatcher.submit('notify-ban', self.notifier.notify_ban, record_dict)

        return GuardVerdict(identity=identity, detector_ids=tuple(triggered))

    def lockdown(self) -> int:
        """
        Promote every suspicious identity to the ban set.

        Returns:
            Number of identities newly banned
        """
        with self._lock:
            snapshot = set(self._suspicious)
            promoted = snapshot - self._banned
            self._banned |= snapshot
            banned_count = len(self._banned)

        BANNED_IDENTITIES.set(banned_count)
        self._persist_bans()
        self.logger.error(
            f"Lockdown: {len(promoted)} identities added to permanent ban list"
        )
        return len(promoted)

    def unban(self, identity: str) -> bool:
        """
        Remove an identity from the ban and suspicion sets.

        Returns:
            True if the identity was banned
        """
        with self._lock:
            was_banned = identity in self._banned
            self._banned.discard(identity)
            self._suspicious.discard(identity)
            banned_count = len(self._banned)

        if was_banned:
            BANNED_IDENTITIES.set(banned_count)
            self._persist_bans()
            self.logger.warning(f"MANUAL UNBAN: {identity[:45]}")
        return was_banned

    def is_banned(self, identity: str) -> bool:
        with self._lock:
            return identity in self._banned

    @property
    def banned_identities(self) -> Set[str]:
        with self._lock:
            return set(self._banned)

    @property
    def suspicious_identities(self) -> Set[str]:
        with self._lock:
            return set(self._suspicious)

    @property
    def attack_log(self) -> List[AttackRecord]:
        with self._lock:
            return list(self._attack_log)

    def enable_detector(self, detector_id: str) -> None:
        self._set_detector(detector_id, True)

    def disable_detector(self, detector_id: str) -> None:
        self._set_detector(detector_id, False)

    def detector_status(self) -> List[Dict]:
        with self._lock:
            return [
                dict(detector.describe(), active=self._enabled[detector.id])
                for detector in self.detectors
            ]

    def sweep(self) -> int:
        """Evict stale windows of the rate-heuristic detector."""
        return sum(
            detector.sweep() for detector in self.detectors
            if isinstance(detector, RateHeuristicDetector)
        )

    def get_stats(self) -> Dict:
        with self._lock:
            return {
                'active_bots': sum(1 for enabled in self._enabled.values() if enabled),
                'suspicious_ips': len(self._suspicious),
                'perm_banned_ips': len(self._banned),
                'total_attacks_detected': len(self._attack_log),
            }

    def _set_detector(self, detector_id: str, enabled: bool) -> None:
        with self._lock:
            if detector_id not in self._enabled:
                raise ValueError(f"Unknown detector: {detector_id}")
            self._enabled[detector_id] = enabled
        self.logger.warning(
            f"Detector {detector_id} {'enabled' if enabled else 'disabled'}"
        )

    def _persist_bans(self) -> None:
        self.dispatcher.submit('save-bans', self._save_bans)

    def _save_bans(self) -> None:
        # Snapshot at write time so a retried or late write stores the latest set
        self.store.save_bans(self.banned_identities)

    @staticmethod
    def _build_record(identity: str, request: GuardRequest, triggered: List[str]) -> AttackRecord:
        body = None
        if request.body is not None:
            body = request.serialized_body()[:BODY_SNAPSHOT_CHARS]
        return AttackRecord(
            timestamp=datetime.now(timezone.utc).isoformat(),
            identity=identity,
            method=request.method,
            url=request.url,
            user_agent=request.user_agent,
            detector_ids=tuple(triggered),
            body=body,
        )

    @classmethod
    def from_config(
        cls,
        config: Dict,
        store: BanStore,
        dispatcher: BackgroundDispatcher,
        notifier: Optional[AbuseNotifier] = None,
        sanitizer: Optional[InputSanitizer] = None,
        clock: Callable[[], float] = time.time,
    ) -> 'IntrusionGuard':
        """Create IntrusionGuard from configuration dictionary."""
        rate_config = (config.get('rate_limits', {}) or {}).get('detector', {}) or {}
        limits = ProfileLimits.from_config_dict(rate_config, DETECTOR_LIMITS)

        detector_config = (config.get('security', {}) or {}).get('detectors', {}) or {}
        disabled = [
            detector_id for detector_id, enabled in detector_config.items()
            if not enabled
        ]

        return cls(
            store=store,
            dispatcher=dispatcher,
            notifier=notifier,
            detectors=build_default_detectors(sanitizer, clock, limits),
            disabled_detectors=disabled,
        )
