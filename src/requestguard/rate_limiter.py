#!/usr/bin/env python3
"""
Sliding-window rate limiter ("firewall" layer).

This module implements per-identity request counting over a sliding
window with two operating profiles (normal/strict).

Security Features:
- Read-modify-write of a window is atomic under the component lock
  (no lost updates from concurrent requests of the same identity)
- Rejected requests are counted too, so hammering keeps the window full
- Stale identities are evicted by sweep() to bound memory

Thread-safe: Yes (single coarse lock per counter)
"""

import logging
import threading
import time
from typing import Callable, Dict, Iterable, List, Optional

from .rate_profile import (
    DEFAULT_LIMITS,
    ProfileLimits,
    RateProfile,
    WindowResult,
)


class SlidingWindowCounter:
    """
    Per-identity timestamp windows.

    Shared by the rate limiter and the rate-heuristic detector; each owns
    its own instance so their thresholds stay independent.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._windows: Dict[str, List[float]] = {}
        self._lock = threading.Lock()

    def hit(self, identity: str, limits: ProfileLimits) -> WindowResult:
        """
        Record one request and return the resulting window state.

        Prunes timestamps older than the window, appends now, stores back.
        """
        with self._lock:
            now = self.clock()
            timestamps = self._windows.get(identity, [])
            valid = [ts for ts in timestamps if now - ts < limits.window_seconds]
            valid.append(now)
            self._windows[identity] = valid
            count = len(valid)

        return WindowResult(
            identity=identity,
            count=count,
            quota=limits.quota,
            window_seconds=limits.window_seconds,
            timestamp=now,
        )

    def sweep(self, max_window_seconds: float) -> int:
        """
        Evict identities with no timestamp inside max_window_seconds.

        Returns:
            Number of identities evicted
        """
        with self._lock:
            now = self.clock()
            stale = [
                identity for identity, timestamps in self._windows.items()
                if not timestamps or now - timestamps[-1] >= max_window_seconds
            ]
            for identity in stale:
                del self._windows[identity]
        return len(stale)

    def reset(self, identity: str) -> None:
        with self._lock:
            self._windows.pop(identity, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)


class RateLimiter:
    """
    Rate limiter with normal and strict profiles.

    Whitelist and blacklist are auxiliary state consulted by the
    orchestrator; they do not change the windowing algorithm.
    """

    def __init__(
        self,
        limits: Optional[Dict[RateProfile, ProfileLimits]] = None,
        clock: Callable[[], float] = time.time,
        whitelist: Optional[Iterable[str]] = None,
        blacklist: Optional[Iterable[str]] = None,
    ):
        """
        Initialize rate limiter.

        Args:
            limits: Per-profile window/quota, defaults to 100/15min and 10/1min
            clock: Time source in seconds
            whitelist: Identities the orchestrator exempts from rate limiting
            blacklist: Identities the orchestrator rejects outright
        """
        self.logger = logging.getLogger(__name__)
        self.limits = dict(DEFAULT_LIMITS)
        if limits:
            self.limits.update(limits)

        self.counter = SlidingWindowCounter(clock)
        self._profile = RateProfile.NORMAL
        self._lock = threading.Lock()
        self._whitelist = set(whitelist or [])
        self._blacklist = set(blacklist or [])

        self.logger.info(
            f"Rate limiter initialized: "
            f"normal={self.limits[RateProfile.NORMAL].quota}/"
            f"{self.limits[RateProfile.NORMAL].window_seconds:g}s "
            f"strict={self.limits[RateProfile.STRICT].quota}/"
            f"{self.limits[RateProfile.STRICT].window_seconds:g}s"
        )

    @property
    def profile(self) -> RateProfile:
        with self._lock:
            return self._profile

    @property
    def strict_mode(self) -> bool:
        return self.profile == RateProfile.STRICT

    def set_profile(self, profile: RateProfile) -> None:
        """Switch profile; applies to every identity on its next request."""
        if not isinstance(profile, RateProfile):
            raise ValueError("Profile must be RateProfile enum")
        with self._lock:
            self._profile = profile
        self.logger.warning(f"Rate limiter profile set to {profile.value}")

    def enforce_strict_mode(self) -> None:
        self.set_profile(RateProfile.STRICT)

    def check(self, identity: str, profile: Optional[RateProfile] = None) -> WindowResult:
        """
        Count one request for identity under the given (or active) profile.

        Args:
            identity: Client identity
            profile: Profile snapshot taken by the caller, defaults to active

        Returns:
            Window result; result.exceeded means reject (429)
        """
        if not identity or not isinstance(identity, str):
            raise ValueError("Identity must be non-empty string")

        limits = self.limits[profile or self.profile]
        result = self.counter.hit(identity, limits)

        if result.exceeded:
            self.logger.warning(
                f"Rate limit exceeded for {identity[:45]}: "
                f"{result.count}/{result.quota} in {result.window_seconds:g}s"
            )
        return result

    def admit(self, identity: str, profile: Optional[RateProfile] = None) -> bool:
        """Return True to allow, False to reject with 429."""
        return not self.check(identity, profile).exceeded

    def sweep(self) -> int:
        """Evict identities idle for longer than the largest window."""
        max_window = max(limits.window_seconds for limits in self.limits.values())
        evicted = self.counter.sweep(max_window)
        if evicted:
            self.logger.info(f"Evicted {evicted} stale rate windows")
        return evicted

    def add_to_whitelist(self, identity: str) -> None:
        with self._lock:
            self._whitelist.add(identity)
        self.logger.info(f"Added to whitelist: {identity[:45]}")

    def add_to_blacklist(self, identity: str) -> None:
        with self._lock:
            self._blacklist.add(identity)
        self.logger.info(f"Added to blacklist: {identity[:45]}")

    def is_whitelisted(self, identity: str) -> bool:
        with self._lock:
            return identity in self._whitelist

    def is_blacklisted(self, identity: str) -> bool:
        with self._lock:
            return identity in self._blacklist

    def get_stats(self) -> Dict:
        with self._lock:
            return {
                'profile': self._profile.value,
                'strict_mode': self._profile == RateProfile.STRICT,
                'tracked_identities': len(self.counter),
                'whitelisted': len(self._whitelist),
                'blacklisted': len(self._blacklist),
            }

    @classmethod
    def from_config(cls, config: Dict, clock: Callable[[], float] = time.time) -> 'RateLimiter':
        """
        Create RateLimiter from configuration dictionary.

        Raises:
            ValueError: If limits are invalid
        """
        rate_config = config.get('rate_limits', {}) or {}
        limits = {
            profile: ProfileLimits.from_config_dict(
                rate_config.get(profile.value, {}) or {},
                DEFAULT_LIMITS[profile],
            )
            for profile in RateProfile
        }
        security_config = config.get('security', {}) or {}
        return cls(
            limits=limits,
            clock=clock,
            whitelist=security_config.get('whitelist', []),
            blacklist=security_config.get('blacklist', []),
        )
