"""Request filtering pipeline: sanitization, rate limiting, intrusion detection."""

from .exceptions import (
    GuardError,
    ValidationFailure,
    PersistenceFailure,
    NotificationFailure,
    ConfigurationError,
)
from .request import GuardRequest
from .decision import Decision, DecisionType, SecurityMode
from .sanitizer import InputSanitizer
from .path_guard import PathGuard
from .rate_profile import RateProfile, ProfileLimits, WindowResult
from .rate_limiter import RateLimiter, SlidingWindowCounter
from .threat_monitor import ThreatMonitor, ActivityRecord
from .detectors import Detector, DetectorKind, build_default_detectors
from .storage import BanStore, FileBanStore, RedisBanStore, create_ban_store
from .notifier import AbuseNotifier, LoggingNotifier, SmtpNotifier, create_notifier
from .dispatcher import BackgroundDispatcher
from .intrusion_guard import IntrusionGuard, AttackRecord, GuardVerdict
from .config import ConfigManager
from .log_filters import SensitiveDataFilter, SecureFormatter, configure_logging
from .security_manager import SecurityOrchestrator, create_security_orchestrator
from .middleware import GuardMiddleware

__version__ = "1.0.0"

__all__ = [
    'GuardError',
    'ValidationFailure',
    'PersistenceFailure',
    'NotificationFailure',
    'ConfigurationError',
    'GuardRequest',
    'Decision',
    'DecisionType',
    'SecurityMode',
    'InputSanitizer',
    'PathGuard',
    'RateProfile',
    'ProfileLimits',
    'WindowResult',
    'RateLimiter',
    'SlidingWindowCounter',
    'ThreatMonitor',
    'ActivityRecord',
    'Detector',
    'DetectorKind',
    'build_default_detectors',
    'BanStore',
    'FileBanStore',
    'RedisBanStore',
    'create_ban_store',
    'AbuseNotifier',
    'LoggingNotifier',
    'SmtpNotifier',
    'create_notifier',
    'BackgroundDispatcher',
    'IntrusionGuard',
    'AttackRecord',
    'GuardVerdict',
    'ConfigManager',
    'SensitiveDataFilter',
    'SecureFormatter',
    'configure_logging',
    'SecurityOrchestrator',
    'create_security_orchestrator',
    'GuardMiddleware',
]
