"""
Tests for the fixed-window admission throttle.
"""
from unittest.mock import patch

import pytest

from apps.core.rate_limiting import (
    AdmissionThrottle,
    CacheCounterStore,
    InMemoryCounterStore,
    ThrottlePolicy,
    Verdict,
    get_admission_throttle,
    reset_admission_throttle,
)


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class BrokenStore:
    def hit(self, key, window_seconds, now):
        raise ConnectionError('connection refused')

    def peek(self, key, now):
        raise ConnectionError('connection refused')


LOGIN = ThrottlePolicy(limit=5, window_millis=60000, fail_closed=True)
API = ThrottlePolicy(limit=300, window_millis=60000, fail_closed=False)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def throttle(clock):
    return AdmissionThrottle(
        policies={'login': LOGIN, 'api': API},
        store=InMemoryCounterStore(),
        clock=clock,
        enabled=True,
    )


class TestAdmit:

    def test_first_five_attempts_allowed(self, throttle):
        verdicts = [throttle.admit('203.0.113.7', 'login') for _ in range(5)]
        assert all(a.allowed for a in verdicts)
        assert [a.count for a in verdicts] == [1, 2, 3, 4, 5]

    def test_sixth_attempt_within_window_throttled(self, throttle, clock):
        for _ in range(5):
            throttle.admit('203.0.113.7', 'login')
            clock.advance(3)

        admission = throttle.admit('203.0.113.7', 'login')

        assert admission.verdict == Verdict.THROTTLED
        assert admission.reason == 'limit_exceeded'
        # Window opened at t=0, now t=15
        assert admission.retry_after == 45

    def test_window_reset_after_expiry(self, throttle, clock):
        for _ in range(7):
            throttle.admit('203.0.113.7', 'login')

        clock.advance(60)
        admission = throttle.admit('203.0.113.7', 'login')

        assert admission.allowed
        assert admission.count == 1

    def test_attempt_just_before_expiry_still_throttled(self, throttle, clock):
        for _ in range(5):
            throttle.admit('203.0.113.7', 'login')

        clock.advance(59.5)
        admission = throttle.admit('203.0.113.7', 'login')

        assert not admission.allowed
        assert admission.retry_after == 1

    def test_throttled_attempts_do_not_extend_window(self, throttle, clock):
        throttle.admit('203.0.113.7', 'login')
        for _ in range(50):
            clock.advance(1)
            throttle.admit('203.0.113.7', 'login')

        clock.advance(10)
        assert throttle.admit('203.0.113.7', 'login').allowed

    def test_keys_are_independent(self, throttle):
        for _ in range(6):
            throttle.admit('203.0.113.7', 'login')

        assert throttle.admit('203.0.113.8', 'login').allowed
        assert throttle.admit('203.0.113.7', 'api').allowed

    def test_missing_identity_shares_unknown_bucket(self, throttle):
        for _ in range(5):
            throttle.admit('', 'login')
        assert not throttle.admit(None, 'login').allowed

    def test_disabled_always_allows_without_counting(self, clock):
        store = InMemoryCounterStore()
        throttle = AdmissionThrottle(policies={'login': LOGIN}, store=store, clock=clock, enabled=False)

        assert all(throttle.admit('203.0.113.7', 'login').allowed for _ in range(20))
        assert store.peek('admission:login:203.0.113.7', clock()) is None

    def test_unknown_class_uses_default_policy(self, throttle):
        policy = throttle.policy_for('export')
        assert policy == ThrottlePolicy()
        assert policy.limit == 5
        assert policy.fail_closed is True

    def test_limit_one(self, clock):
        throttle = AdmissionThrottle(
            policies={'otp': ThrottlePolicy(limit=1, window_millis=1500)},
            store=InMemoryCounterStore(),
            clock=clock,
            enabled=True,
        )
        assert throttle.admit('x', 'otp').allowed
        admission = throttle.admit('x', 'otp')
        assert not admission.allowed
        assert admission.retry_after == 2
        clock.advance(1.5)
        assert throttle.admit('x', 'otp').allowed


class TestStoreFailure:

    @patch('apps.core.logging.sentry_sdk.capture_message')
    def test_fail_closed_policy_denies(self, capture_message, clock):
        throttle = AdmissionThrottle(policies={'login': LOGIN}, store=BrokenStore(), clock=clock, enabled=True)

        admission = throttle.admit('203.0.113.7', 'login')

        assert admission.verdict == Verdict.THROTTLED
        assert admission.reason == 'store_unavailable'
        assert admission.retry_after == 60
        capture_message.assert_called_once()

    @patch('apps.core.logging.sentry_sdk.capture_message')
    def test_fail_open_policy_allows(self, capture_message, clock):
        throttle = AdmissionThrottle(policies={'api': API}, store=BrokenStore(), clock=clock, enabled=True)

        admission = throttle.admit('203.0.113.7', 'api')

        assert admission.allowed
        assert admission.reason == 'store_unavailable'

    @patch('apps.core.logging.sentry_sdk.capture_message')
    def test_failure_is_logged(self, capture_message, clock, caplog):
        throttle = AdmissionThrottle(policies={'login': LOGIN}, store=BrokenStore(), clock=clock, enabled=True)

        with caplog.at_level('ERROR'):
            throttle.admit('203.0.113.7', 'login')

        events = [r for r in caplog.records if getattr(r, 'event_type', None) == 'throttle_store_unavailable']
        assert len(events) == 1
        assert events[0].error == 'ConnectionError'

    def test_status_tolerates_broken_store(self, clock):
        throttle = AdmissionThrottle(policies={'login': LOGIN}, store=BrokenStore(), clock=clock, enabled=True)
        status = throttle.status('203.0.113.7', 'login')
        assert status['current'] == 0
        assert status['remaining'] == 5


class TestStatus:

    def test_status_reports_window(self, throttle, clock):
        start = clock()
        for _ in range(3):
            throttle.admit('203.0.113.7', 'login')

        status = throttle.status('203.0.113.7', 'login')

        assert status == {
            'limit': 5,
            'current': 3,
            'remaining': 2,
            'reset_at': int(start + 60),
            'window_millis': 60000,
        }

    def test_status_for_idle_key(self, throttle):
        status = throttle.status('198.51.100.1', 'login')
        assert status['current'] == 0
        assert status['remaining'] == 5

    def test_remaining_never_negative(self, throttle):
        for _ in range(9):
            throttle.admit('203.0.113.7', 'login')
        assert throttle.status('203.0.113.7', 'login')['remaining'] == 0


class TestProcessWideThrottle:

    def test_built_from_settings(self, settings):
        settings.RBAC_THROTTLE_CLASSES = {'login': {'limit': 2, 'window_millis': 1000}}
        settings.RBAC_THROTTLE_ENABLED = True
        settings.RBAC_THROTTLE_CACHE = 'default'
        reset_admission_throttle()

        throttle = get_admission_throttle()

        assert throttle is get_admission_throttle()
        assert throttle.policy_for('login') == ThrottlePolicy(limit=2, window_millis=1000)
        assert isinstance(throttle.store, CacheCounterStore)
        assert throttle.enabled is True

    def test_reset_rebuilds(self):
        first = get_admission_throttle()
        reset_admission_throttle()
        assert get_admission_throttle() is not first
