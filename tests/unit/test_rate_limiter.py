#!/usr/bin/env python3
"""
Unit tests for the sliding-window rate limiter.

Tests cover:
- Window pruning and quota boundary
- Profile switching without grandfathering
- Stale window eviction
- Concurrency (no lost updates)
- Configuration loading
"""

import threading

import pytest

from requestguard.rate_limiter import RateLimiter, SlidingWindowCounter
from requestguard.rate_profile import (
    DEFAULT_LIMITS,
    ProfileLimits,
    RateProfile,
    WindowResult,
)


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return RateLimiter(clock=clock)


class TestProfileLimits:
    """Test ProfileLimits validation."""

    def test_defaults(self):
        assert DEFAULT_LIMITS[RateProfile.NORMAL] == ProfileLimits(900.0, 100)
        assert DEFAULT_LIMITS[RateProfile.STRICT] == ProfileLimits(60.0, 10)

    @pytest.mark.parametrize("window,quota", [(0, 10), (100000, 10), (60, 0), (60, 2000000)])
    def test_invalid_limits(self, window, quota):
        with pytest.raises(ValueError):
            ProfileLimits(window_seconds=window, quota=quota)

    def test_from_config_dict_with_defaults(self):
        limits = ProfileLimits.from_config_dict({'quota': 5}, DEFAULT_LIMITS[RateProfile.STRICT])
        assert limits == ProfileLimits(60.0, 5)

    def test_from_config_dict_invalid(self):
        with pytest.raises(ValueError, match="Invalid rate limit configuration"):
            ProfileLimits.from_config_dict({'quota': 'many'}, DEFAULT_LIMITS[RateProfile.NORMAL])

    def test_profile_from_string(self):
        assert RateProfile.from_string("STRICT") == RateProfile.STRICT
        assert RateProfile.from_string("extreme") is None


class TestWindowResult:
    """Test WindowResult."""

    def test_exceeded_is_strictly_greater(self):
        assert not WindowResult("a", 10, 10, 60.0, 0.0).exceeded
        assert WindowResult("a", 11, 10, 60.0, 0.0).exceeded

    def test_to_dict_hashes_identity(self):
        data = WindowResult("1.2.3.4", 1, 10, 60.0, 5.0).to_dict()
        assert 'identity' not in data
        assert len(data['identity_hash']) == 16


class TestSlidingWindowCounter:
    """Test the per-identity timestamp windows."""

    def test_prunes_expired_timestamps(self, clock):
        counter = SlidingWindowCounter(clock)
        limits = ProfileLimits(60.0, 10)

        counter.hit("a", limits)
        counter.hit("a", limits)
        clock.advance(60)

        # Timestamps exactly one window old are dropped
        assert counter.hit("a", limits).count == 1

    def test_identities_are_independent(self, clock):
        counter = SlidingWindowCounter(clock)
        limits = ProfileLimits(60.0, 10)

        counter.hit("a", limits)
        assert counter.hit("b", limits).count == 1

    def test_sweep_evicts_idle_identities(self, clock):
        counter = SlidingWindowCounter(clock)
        limits = ProfileLimits(60.0, 10)

        counter.hit("old", limits)
        clock.advance(120)
        counter.hit("fresh", limits)

        assert counter.sweep(60.0) == 1
        assert len(counter) == 1

    def test_reset(self, clock):
        counter = SlidingWindowCounter(clock)
        counter.hit("a", ProfileLimits(60.0, 10))
        counter.reset("a")
        assert len(counter) == 0


class TestRateLimiter:
    """Test RateLimiter."""

    def test_normal_profile_allows_quota(self, limiter):
        results = [limiter.admit("5.6.7.8") for _ in range(101)]

        assert all(results[:100])
        assert results[100] is False

    def test_rejected_requests_still_counted(self, limiter):
        for _ in range(105):
            result = limiter.check("5.6.7.8")
        assert result.count == 105

    def test_window_expiry_readmits(self, limiter, clock):
        for _ in range(101):
            limiter.admit("5.6.7.8")
        clock.advance(900)

        assert limiter.admit("5.6.7.8")

    def test_strict_profile_applies_without_grandfathering(self, limiter):
        for _ in range(20):
            assert limiter.admit("1.1.1.1")

        limiter.enforce_strict_mode()

        # 20 prior requests already exceed the strict quota
        assert not limiter.admit("1.1.1.1")
        assert limiter.strict_mode

    def test_strict_profile_quota(self, limiter):
        limiter.enforce_strict_mode()
        results = [limiter.admit("2.2.2.2") for _ in range(11)]

        assert all(results[:10])
        assert not results[10]

    def test_explicit_profile_overrides_active(self, limiter):
        for _ in range(10):
            limiter.admit("3.3.3.3", RateProfile.STRICT)
        assert not limiter.admit("3.3.3.3", RateProfile.STRICT)
        assert limiter.profile == RateProfile.NORMAL

    def test_set_profile_back_to_normal(self, limiter):
        limiter.enforce_strict_mode()
        limiter.set_profile(RateProfile.NORMAL)
        assert not limiter.strict_mode

    def test_set_profile_rejects_strings(self, limiter):
        with pytest.raises(ValueError, match="RateProfile enum"):
            limiter.set_profile("strict")

    @pytest.mark.parametrize("identity", ["", None, 123])
    def test_invalid_identity(self, limiter, identity):
        with pytest.raises(ValueError):
            limiter.check(identity)

    def test_sweep_uses_largest_window(self, limiter, clock):
        limiter.admit("idle")
        clock.advance(120)
        assert limiter.sweep() == 0

        clock.advance(900)
        assert limiter.sweep() == 1

    def test_whitelist_and_blacklist(self, limiter):
        limiter.add_to_whitelist("10.0.0.1")
        limiter.add_to_blacklist("6.6.6.6")

        assert limiter.is_whitelisted("10.0.0.1")
        assert limiter.is_blacklisted("6.6.6.6")
        assert not limiter.is_whitelisted("6.6.6.6")

    def test_get_stats(self, limiter):
        limiter.admit("a")
        limiter.add_to_blacklist("b")

        stats = limiter.get_stats()

        assert stats['profile'] == 'normal'
        assert stats['strict_mode'] is False
        assert stats['tracked_identities'] == 1
        assert stats['blacklisted'] == 1

    def test_concurrent_hits_are_not_lost(self, clock):
        limiter = RateLimiter(
            limits={RateProfile.NORMAL: ProfileLimits(900.0, 1000000)}, clock=clock
        )

        def worker():
            for _ in range(250):
                limiter.admit("9.9.9.9")

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert limiter.check("9.9.9.9").count == 2001


class TestFromConfig:
    """Test configuration loading."""

    def test_from_config(self, clock):
        config = {
            'rate_limits': {
                'normal': {'window_seconds': 300, 'quota': 50},
                'strict': {'quota': 5},
            },
            'security': {'whitelist': ['10.0.0.1'], 'blacklist': ['6.6.6.6']},
        }

        limiter = RateLimiter.from_config(config, clock)

        assert limiter.limits[RateProfile.NORMAL] == ProfileLimits(300.0, 50)
        assert limiter.limits[RateProfile.STRICT] == ProfileLimits(60.0, 5)
        assert limiter.is_whitelisted('10.0.0.1')
        assert limiter.is_blacklisted('6.6.6.6')

    def test_from_empty_config(self):
        limiter = RateLimiter.from_config({})
        assert limiter.limits == DEFAULT_LIMITS

    def test_from_config_invalid(self):
        with pytest.raises(ValueError):
            RateLimiter.from_config({'rate_limits': {'normal': {'quota': 0}}})
