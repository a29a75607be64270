#!/usr/bin/env python3
"""
Security orchestrator for the request guard.

This module composes all security components into one ordered pipeline:
- Bot/intrusion guard (bans, detector registry)
- Rate limiter (sliding window, normal/strict profiles)
- Threat monitor (activity log, alert mode)

Security Considerations:
- Fail-secure: Unexpected errors result in blocking (403)
- Lockdown is a one-way escalation; release_lockdown() is a separate,
  explicit call and never happens automatically
- Mode changes and the per-request mode snapshot share one lock, so no
  request observes a partially applied lockdown
- Persistence and notifications never block the allow/deny decision
"""

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from .config import ConfigManager
from .decision import Decision, DecisionType, SecurityMode
from .dispatcher import BackgroundDispatcher
from .intrusion_guard import IntrusionGuard
from .log_filters import configure_logging
from .metrics import BLOCKED_REQUESTS, REQUEST_COUNT, SECURITY_EVENTS, start_metrics_server
from .notifier import create_notifier
from .path_guard import PathGuard
from .rate_limiter import RateLimiter
from .rate_profile import RateProfile
from .request import FALLBACK_IDENTITY, GuardRequest
from .sanitizer import InputSanitizer
from .storage import create_ban_store
from .threat_monitor import ThreatMonitor


class SecurityOrchestrator:
    """
    Ordered security pipeline with global enable flag and lockdown state.

    Usage:
        orchestrator = SecurityOrchestrator.from_config(config)
        decision = orchestrator.handle(request)
        if not decision.allowed:
            respond(decision.status_code, decision.reason)
    """

    DEFAULT_SWEEP_INTERVAL = 1000

    def __init__(
        self,
        intrusion_guard: IntrusionGuard,
        rate_limiter: Optional[RateLimiter] = None,
        threat_monitor: Optional[ThreatMonitor] = None,
        sanitizer: Optional[InputSanitizer] = None,
        path_guard: Optional[PathGuard] = None,
        dispatcher: Optional[BackgroundDispatcher] = None,
        enabled: bool = True,
        sweep_interval: int = DEFAULT_SWEEP_INTERVAL,
    ):
        """
        Initialize security orchestrator.

        Args:
            intrusion_guard: Ban and detector stage
            rate_limiter: Rate limiting stage
            threat_monitor: Classification stage
            sanitizer: Input sanitizer for the validation passthroughs
            path_guard: Path guard for secure file access
            dispatcher: Background dispatcher, closed by close()
            enabled: Initial value of the global enable flag
            sweep_interval: Handled requests between stale-window sweeps

        Raises:
            ValueError: If intrusion_guard is None or sweep_interval < 1
        """
        if intrusion_guard is None:
            raise ValueError("Intrusion guard is required")
        if sweep_interval < 1:
            raise ValueError("sweep_interval must be at least 1")

        self.logger = logging.getLogger(__name__)
        self.intrusion_guard = intrusion_guard
        self.rate_limiter = rate_limiter or RateLimiter()
        self.threat_monitor = threat_monitor or ThreatMonitor()
        self.sanitizer = sanitizer or InputSanitizer()
        self.path_guard = path_guard or PathGuard(sanitizer=self.sanitizer)
        self.dispatcher = dispatcher or intrusion_guard.dispatcher
        self.sweep_interval = sweep_interval

        self._mode_lock = threading.Lock()
        self._enabled = enabled
        self._mode = SecurityMode.NORMAL

        self._stats_lock = threading.Lock()
        self._requests_processed = 0
        self._threats_detected = 0
        self._requests_blocked = 0
        self._since_sweep = 0

        self.logger.info(
            f"SecurityOrchestrator initialized (enabled={enabled}, "
            f"sweep_interval={sweep_interval})"
        )

    @property
    def enabled(self) -> bool:
        with self._mode_lock:
            return self._enabled

    @property
    def mode(self) -> SecurityMode:
        with self._mode_lock:
            return self._mode

    def handle(self, request: GuardRequest) -> Decision:
        """
        Run a request through guard, limiter and monitor in that order.

        Args:
            request: Inbound request

        Returns:
            Decision; decision.allowed False means respond with
            decision.status_code and decision.reason

        Security:
            - Fail-secure: Errors result in blocking
            - Each stage may short-circuit the chain
        """
        identity = request.client_identity or FALLBACK_IDENTITY

        with self._mode_lock:
            if not self._enabled:
                return Decision.allow(identity, "Security disabled")
            profile = self.rate_limiter.profile
            alert_mode = self.threat_monitor.alert_mode

        try:
            self._count_request()
            decision = self._evaluate(request, identity, profile, alert_mode)
        except Exception as e:
            # Fail secure: Block on error
            self.logger.error(f"Error in security pipeline: {e}", exc_info=True)
            SECURITY_EVENTS.labels(event_type='pipeline_error', severity='critical').inc()
            decision = Decision(DecisionType.SECURITY_ERROR, "Security check failed", identity)

        self._record(decision)
        return decision

    def _evaluate(
        self,
        request: GuardRequest,
        identity: str,
        profile: RateProfile,
        alert_mode: bool,
    ) -> Decision:
        # Stage 1: bans and detectors
        if self.rate_limiter.is_blacklisted(identity):
            return Decision(DecisionType.BANNED_CLIENT, "Access denied", identity)

        verdict = self.intrusion_guard.evaluate(request)
        if verdict.banned_before:
            return Decision(DecisionType.BANNED_CLIENT, "Access denied", identity)
        if verdict.detector_ids:
            with self._stats_lock:
                self._threats_detected += 1
            return Decision(
                DecisionType.THREAT_DETECTED,
                "Access denied - security violation detected",
                identity,
                detector_ids=verdict.detector_ids,
            )

        # Stage 2: rate limiting
        if not self.rate_limiter.is_whitelisted(identity):
            if not self.rate_limiter.admit(identity, profile):
                return Decision(
                    DecisionType.QUOTA_EXCEEDED,
                    "Too many requests, please try again later",
                    identity,
                )

        # Stage 3: classification
        record = self.threat_monitor.inspect(request)
        if record.suspicious:
            with self._stats_lock:
                self._threats_detected += 1
            if self.threat_monitor.should_block(record, alert_mode):
                return Decision(
                    DecisionType.ALERT_BLOCK,
                    "Access denied - suspicious activity",
                    identity,
                )

        return Decision.allow(identity)

    def lockdown(self) -> int:
        """
        Emergency lockdown.

        Promotes every suspicious identity to the ban list, forces the
        strict rate profile and alert mode. One-way until release_lockdown().

        Returns:
            Number of identities newly banned
        """
        with self._mode_lock:
            promoted = self.intrusion_guard.lockdown()
            self.rate_limiter.enforce_strict_mode()
            self.threat_monitor.activate_alert_mode()
            self._mode = SecurityMode.LOCKDOWN

        SECURITY_EVENTS.labels(event_type='lockdown', severity='critical').inc()
        self.logger.error(f"EMERGENCY LOCKDOWN ACTIVATED: {promoted} identities banned")
        return promoted

    def enter_strict_mode(self) -> None:
        """Switch to the strict rate profile without touching alert mode."""
        with self._mode_lock:
            if self._mode == SecurityMode.LOCKDOWN:
                self.logger.warning("Strict mode requested during lockdown, ignored")
                return
            self.rate_limiter.enforce_strict_mode()
            self._mode = SecurityMode.STRICT

    def release_lockdown(self) -> None:
        """
        Return to normal operation.

        Restores the normal rate profile and turns alert mode off. Bans
        are kept; use unban() for individual identities.
        """
        with self._mode_lock:
            self.rate_limiter.set_profile(RateProfile.NORMAL)
            self.threat_monitor.deactivate_alert_mode()
            self._mode = SecurityMode.NORMAL
        self.logger.warning("Security mode released to normal")

    def enable(self) -> None:
        with self._mode_lock:
            self._enabled = True
        self.logger.info("Security system enabled")

    def disable(self) -> None:
        with self._mode_lock:
            self._enabled = False
        self.logger.warning("Security system disabled")

    def unban(self, identity: str, reason: Optional[str] = None) -> bool:
        """
        Manually unban an identity (e.g., for false positives).

        Returns:
            True if the identity was banned
        """
        was_unbanned = self.intrusion_guard.unban(identity)
        if was_unbanned:
            self.logger.warning(
                f"MANUAL UNBAN: {identity[:45]} Reason: {reason or 'Not specified'}"
            )
        return was_unbanned

    def add_to_whitelist(self, identity: str) -> None:
        self.rate_limiter.add_to_whitelist(identity)

    def add_to_blacklist(self, identity: str) -> None:
        self.rate_limiter.add_to_blacklist(identity)

    def sweep(self) -> int:
        """Evict stale rate windows from the limiter and the rate heuristic."""
        evicted = self.rate_limiter.sweep() + self.intrusion_guard.sweep()
        self.logger.debug(f"Sweep evicted {evicted} stale windows")
        return evicted

    def stats(self) -> Dict:
        """
        Snapshot of counters and component state.

        Returns:
            Dictionary with request counters, ban and activity counts,
            mode flags and a system status
        """
        # Mode flags are read under the lock lockdown() holds while flipping them
        with self._mode_lock:
            mode = self._mode
            enabled = self._enabled
            guard_stats = self.intrusion_guard.get_stats()
            monitor_stats = self.threat_monitor.get_stats()
            strict_mode = self.rate_limiter.strict_mode

        with self._stats_lock:
            counters = {
                'requests_processed': self._requests_processed,
                'threats_detected': self._threats_detected,
                'requests_blocked': self._requests_blocked,
            }

        return {
            **counters,
            'active_bot_count': guard_stats['active_bots'],
            'suspicious_count': guard_stats['suspicious_ips'],
            'banned_count': guard_stats['perm_banned_ips'],
            'attack_count': guard_stats['total_attacks_detected'],
            'mode': mode.value,
            'system_status': 'ACTIVE' if enabled else 'DISABLED',
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'alert_mode': monitor_stats['alert_mode'],
            'strict_mode': strict_mode,
            'activity_count': monitor_stats['total_activities'],
            'suspicious_activity_count': monitor_stats['suspicious_activities'],
            'detectors': self.intrusion_guard.detector_status(),
        }

    # Validation passthroughs for the host application

    def validate_input(self, value) -> bool:
        return self.sanitizer.is_safe(value)

    def validate_url(self, url) -> bool:
        return self.sanitizer.is_safe_url(url)

    def sanitize_input(self, value):
        return self.sanitizer.sanitize(value)

    def validate_path(self, path) -> bool:
        return self.path_guard.is_allowed_path(path)

    def secure_read_file(self, path: str) -> str:
        return self.path_guard.secure_read(path)

    def secure_write_file(self, path: str, data: str) -> bool:
        return self.path_guard.secure_write(path, data)

    def close(self, timeout: Optional[float] = None) -> None:
        """Flush pending background writes and stop the dispatcher."""
        if not self.dispatcher.drain(timeout):
            self.logger.warning("Background tasks still pending at shutdown")
        self.dispatcher.close()

    def _count_request(self) -> None:
        with self._stats_lock:
            self._requests_processed += 1
            self._since_sweep += 1
            sweep_due = self._since_sweep >= self.sweep_interval
            if sweep_due:
                self._since_sweep = 0

        if sweep_due:
            self.sweep()

    def _record(self, decision: Decision) -> None:
        REQUEST_COUNT.labels(decision=decision.decision_type.value).inc()
        if decision.allowed:
            return

        with self._stats_lock:
            self._requests_blocked += 1
        BLOCKED_REQUESTS.labels(reason=decision.decision_type.value).inc()

        log_level = logging.INFO if decision.decision_type == DecisionType.QUOTA_EXCEEDED else logging.WARNING
        self.logger.log(
            log_level,
            f"Security Decision: "
            f"Identity={decision.identity[:45]} "
            f"Action={decision.decision_type.value} "
            f"Status={decision.status_code} "
            f"Detectors={','.join(decision.detector_ids) or 'N/A'} "
            f"Reason={decision.reason}"
        )

    @classmethod
    def from_config(
        cls,
        config: Dict,
        clock: Callable[[], float] = time.time,
        dispatcher: Optional[BackgroundDispatcher] = None,
    ) -> 'SecurityOrchestrator':
        """
        Create SecurityOrchestrator from configuration dictionary.

        Args:
            config: Configuration dictionary
            clock: Time source for all sliding windows
            dispatcher: Optional pre-configured background dispatcher

        Returns:
            Configured SecurityOrchestrator instance

        Raises:
            PersistenceFailure: If the persisted ban list cannot be loaded
            ValueError: If a section holds invalid values
        """
        security_config = config.get('security', {}) or {}
        path_config = config.get('path_guard', {}) or {}
        dispatch_config = config.get('dispatcher', {}) or {}

        sanitizer = InputSanitizer()
        dispatcher = dispatcher or BackgroundDispatcher(
            max_attempts=int(dispatch_config.get('max_attempts', 3)),
            retry_delay=float(dispatch_config.get('retry_delay', 0.5)),
        )
        intrusion_guard = IntrusionGuard.from_config(
            config,
            store=create_ban_store(config),
            dispatcher=dispatcher,
            notifier=create_notifier(config),
            sanitizer=sanitizer,
            clock=clock,
        )

        return cls(
            intrusion_guard=intrusion_guard,
            rate_limiter=RateLimiter.from_config(config, clock),
            threat_monitor=ThreatMonitor.from_config(config),
            sanitizer=sanitizer,
            path_guard=PathGuard(
                allowed_roots=path_config.get('allowed_roots'),
                blocked_extensions=path_config.get('blocked_extensions'),
                sanitizer=sanitizer,
            ),
            dispatcher=dispatcher,
            enabled=bool(security_config.get('enabled', True)),
            sweep_interval=int(security_config.get('sweep_interval', cls.DEFAULT_SWEEP_INTERVAL)),
        )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"SecurityOrchestrator("
            f"mode={self.mode.value}, "
            f"enabled={self.enabled}, "
            f"store={self.intrusion_guard.store.__class__.__name__}, "
            f"notifier={self.intrusion_guard.notifier.__class__.__name__})"
        )


def create_security_orchestrator(config_path: str = "config/guard.yml") -> SecurityOrchestrator:
    """
    Load configuration, set up logging and metrics, build the orchestrator.

    Args:
        config_path: Path to the YAML configuration file

    Returns:
        Configured SecurityOrchestrator instance
    """
    config = ConfigManager(config_path).config
    configure_logging(config)
    start_metrics_server(config)
    return SecurityOrchestrator.from_config(config)
