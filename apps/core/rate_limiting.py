"""
Admission throttling for sensitive operations.

Implements a fixed-window limiter keyed by (identity key, operation class).
The window opens on the first attempt and is never extended by later
attempts, so a throttled caller always recovers at a known time.

Counters live in a counter store with an atomic increment-with-expiry
contract. When the store is unavailable the throttle fails closed for
policies marked fail_closed (all authentication endpoints).
"""
import logging
import math
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from django.conf import settings
from django.core.cache import caches
from django.core.exceptions import ImproperlyConfigured

logger = logging.getLogger(__name__)


DEFAULT_LIMIT = 5
DEFAULT_WINDOW_MILLIS = 60000

KEY_PREFIX = 'admission'


class Verdict(str, Enum):
    ALLOWED = 'allowed'
    THROTTLED = 'throttled'


class CounterStoreUnavailable(Exception):
    """Raised by a counter store that cannot be reached."""


@dataclass(frozen=True)
class ThrottlePolicy:
    """
    Limit for one operation class.

    Attributes:
        limit: admitted calls per window (>= 1)
        window_millis: window length in milliseconds (>= 1)
        fail_closed: deny when the counter store is unavailable
        key: identity source, 'ip' or 'post:<field>'
    """
    limit: int = DEFAULT_LIMIT
    window_millis: int = DEFAULT_WINDOW_MILLIS
    fail_closed: bool = True
    key: str = 'ip'

    def __post_init__(self):
        if isinstance(self.limit, bool) or not isinstance(self.limit, int) or self.limit < 1:
            raise ImproperlyConfigured(f"Throttle limit must be an integer >= 1, got {self.limit!r}")
        if (isinstance(self.window_millis, bool) or not isinstance(self.window_millis, int)
                or self.window_millis < 1):
            raise ImproperlyConfigured(
                f"Throttle window_millis must be an integer >= 1, got {self.window_millis!r}"
            )
        if self.key != 'ip' and not (self.key.startswith('post:') and len(self.key) > 5):
            raise ImproperlyConfigured(f"Throttle key must be 'ip' or 'post:<field>', got {self.key!r}")

    @property
    def window_seconds(self) -> float:
        return self.window_millis / 1000.0

    @classmethod
    def from_dict(cls, data: dict) -> 'ThrottlePolicy':
        unknown = set(data) - {'limit', 'window_millis', 'fail_closed', 'key'}
        if unknown:
            raise ImproperlyConfigured(f"Unknown throttle options: {sorted(unknown)}")
        return cls(**data)


@dataclass(frozen=True)
class Admission:
    verdict: Verdict
    limit: int
    count: int = 0
    retry_after: int = 0
    reason: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.verdict == Verdict.ALLOWED


@dataclass
class ThrottleWindow:
    key: str
    count: int
    window_start: float


class InMemoryCounterStore:
    """
    Process-local counter store.

    A single lock makes each hit an indivisible read-modify-write. A key's
    own expired window is replaced on its next hit; every purge_every hits
    the store also evicts all other expired windows, so idle identities do
    not accumulate. purge_expired() does the same on demand.
    """

    PURGE_EVERY = 1000

    def __init__(self, purge_every: int = PURGE_EVERY):
        self._windows: Dict[str, ThrottleWindow] = {}
        self._expiry: Dict[str, float] = {}
        self._lock = threading.Lock()
        self._purge_every = max(1, purge_every)
        self._hits = 0

    def hit(self, key: str, window_seconds: float, now: float) -> Tuple[int, float]:
        with self._lock:
            self._hits += 1
            if self._hits % self._purge_every == 0:
                self._purge_locked(now)

            window = self._windows.get(key)
            if window is None or now - window.window_start >= window_seconds:
                window = ThrottleWindow(key=key, count=0, window_start=now)
                self._windows[key] = window
                self._expiry[key] = now + window_seconds
            window.count += 1
            return window.count, window.window_start

    def peek(self, key: str, now: float) -> Optional[Tuple[int, float]]:
        with self._lock:
            window = self._windows.get(key)
            if window is None or now >= self._expiry[key]:
                return None
            return window.count, window.window_start

    def _purge_locked(self, now: float) -> int:
        expired = [k for k, exp in self._expiry.items() if now >= exp]
        for k in expired:
            del self._windows[k]
            del self._expiry[k]
        return len(expired)

    def purge_expired(self, now: float) -> int:
        with self._lock:
            return self._purge_locked(now)

    def clear(self) -> None:
        with self._lock:
            self._windows.clear()
            self._expiry.clear()

    def __len__(self) -> int:
        return len(self._windows)


class CacheCounterStore:
    """
    Counter store backed by a Django cache alias (Redis in production).

    The counter key's expiry is the only authority on the window: cache.add()
    opens it with a fractional-second timeout (django-redis sets it with PX,
    millisecond precision), and cache.incr() is atomic in both django-redis
    and locmem and keeps the original expiry, so later attempts never extend
    or reset the window. The stored start time is only used for retry_after.
    """

    def __init__(self, alias: str = 'default'):
        self.alias = alias

    @property
    def cache(self):
        return caches[self.alias]

    def hit(self, key: str, window_seconds: float, now: float) -> Tuple[int, float]:
        cache = self.cache
        start_key = f"{key}:start"

        for _ in range(3):
            if cache.add(key, 1, timeout=window_seconds):
                cache.set(start_key, now, timeout=window_seconds)
                return 1, now

            try:
                count = cache.incr(key)
            except ValueError:
                # Window expired between add() and incr()
                continue

            start = cache.get(start_key)
            if start is None or start > now:
                # Opened by a host whose clock runs ahead, or start not written yet
                start = now
            return count, start

        raise CounterStoreUnavailable(f"Could not update counter {key}")

    def peek(self, key: str, now: float) -> Optional[Tuple[int, float]]:
        cache = self.cache
        values = cache.get_many([key, f"{key}:start"])
        count = values.get(key)
        if count is None:
            return None
        start = values.get(f"{key}:start", now)
        return count, start


def _default_policies() -> Dict[str, ThrottlePolicy]:
    configured = getattr(settings, 'RBAC_THROTTLE_CLASSES', None) or {}
    return {name: ThrottlePolicy.from_dict(opts) for name, opts in configured.items()}


class AdmissionThrottle:
    """
    Fixed-window admission throttle.

    State machine per (identity key, operation class):
        Idle -> Counting(n, start) -> Exhausted (n > limit)
        Exhausted -> Counting(1, new start) once now - start >= window

    Usage:
        throttle = AdmissionThrottle()
        admission = throttle.admit('203.0.113.7', 'login')
        if not admission.allowed:
            ...  # 429, retry after admission.retry_after seconds
    """

    def __init__(
        self,
        policies: Optional[Dict[str, ThrottlePolicy]] = None,
        store=None,
        clock: Callable[[], float] = time.time,
        enabled: Optional[bool] = None,
    ):
        self.policies = dict(policies) if policies is not None else _default_policies()
        self.store = store if store is not None else CacheCounterStore(
            getattr(settings, 'RBAC_THROTTLE_CACHE', 'default')
        )
        self.clock = clock
        self.enabled = enabled if enabled is not None else getattr(settings, 'RBAC_THROTTLE_ENABLED', True)

    def policy_for(self, operation_class: str) -> ThrottlePolicy:
        policy = self.policies.get(operation_class)
        if policy is None:
            return ThrottlePolicy()
        return policy

    @staticmethod
    def _get_key(identity_key: str, operation_class: str) -> str:
        return f"{KEY_PREFIX}:{operation_class}:{identity_key}"

    def admit(self, identity_key: str, operation_class: str) -> Admission:
        """
        Count an attempt and decide whether it may proceed.

        Args:
            identity_key: caller identity (client IP or account identifier)
            operation_class: throttled operation class (e.g. 'login')

        Returns:
            Admission with verdict ALLOWED or THROTTLED. Store failures never
            raise; they resolve per the policy's fail_closed flag.
        """
        policy = self.policy_for(operation_class)

        if not self.enabled:
            return Admission(verdict=Verdict.ALLOWED, limit=policy.limit)

        key = self._get_key(identity_key or 'unknown', operation_class)
        now = self.clock()

        try:
            count, window_start = self.store.hit(key, policy.window_seconds, now)
        except Exception as e:
            return self._store_failure(e, identity_key, operation_class, policy)

        retry_after = max(1, math.ceil(window_start + policy.window_seconds - now))

        if count > policy.limit:
            logger.warning(
                f"Admission throttled for {operation_class}: "
                f"{count}/{policy.limit} attempts. Retry after {retry_after}s",
                extra={
                    'operation_class': operation_class,
                    'identity_key': identity_key,
                    'count': count,
                    'limit': policy.limit,
                }
            )
            return Admission(
                verdict=Verdict.THROTTLED,
                limit=policy.limit,
                count=count,
                retry_after=retry_after,
                reason='limit_exceeded',
            )

        logger.debug(f"Admitted {operation_class} attempt {count}/{policy.limit}")
        return Admission(verdict=Verdict.ALLOWED, limit=policy.limit, count=count)

    def _store_failure(self, exc, identity_key, operation_class, policy) -> Admission:
        from apps.core.logging import SecurityLogger

        logger.error(
            f"Admission counter store unavailable for {operation_class}: {exc}",
            extra={'operation_class': operation_class, 'fail_closed': policy.fail_closed},
        )
        SecurityLogger.log_event(
            'throttle_store_unavailable',
            level='error',
            operation_class=operation_class,
            identity_key=identity_key,
            fail_closed=policy.fail_closed,
            error=type(exc).__name__,
        )

        if policy.fail_closed:
            return Admission(
                verdict=Verdict.THROTTLED,
                limit=policy.limit,
                retry_after=max(1, math.ceil(policy.window_seconds)),
                reason='store_unavailable',
            )
        return Admission(verdict=Verdict.ALLOWED, limit=policy.limit, reason='store_unavailable')

    def status(self, identity_key: str, operation_class: str) -> dict:
        """
        Current window status for rate limit headers.

        Returns:
            Dict with limit, current, remaining and reset_at (unix timestamp)
        """
        policy = self.policy_for(operation_class)
        key = self._get_key(identity_key or 'unknown', operation_class)
        now = self.clock()

        try:
            found = self.store.peek(key, now)
        except Exception as e:
            logger.error(f"Error reading admission status: {e}")
            found = None

        if found is None:
            current, reset_at = 0, int(now)
        else:
            current, window_start = found
            reset_at = int(math.ceil(window_start + policy.window_seconds))

        return {
            'limit': policy.limit,
            'current': current,
            'remaining': max(0, policy.limit - current),
            'reset_at': reset_at,
            'window_millis': policy.window_millis,
        }


_throttle = None
_throttle_lock = threading.Lock()


def get_admission_throttle() -> AdmissionThrottle:
    """Return the process-wide throttle built from settings."""
    global _throttle
    if _throttle is None:
        with _throttle_lock:
            if _throttle is None:
                _throttle = AdmissionThrottle()
    return _throttle


def reset_admission_throttle() -> None:
    """Drop the process-wide throttle so it is rebuilt from current settings."""
    global _throttle
    with _throttle_lock:
        _throttle = None


def client_identity(request, key: str = 'ip') -> str:
    """
    Resolve the identity key for a request.

    'ip' uses REMOTE_ADDR, or the first X-Forwarded-For hop when
    RBAC_TRUST_X_FORWARDED_FOR is enabled. 'post:<field>' uses a request
    body field (e.g. 'post:email'), falling back to the IP when missing.
    """
    if key.startswith('post:'):
        field = key[5:]
        data = getattr(request, 'data', None)
        if data is None:
            data = request.POST
        value = data.get(field) if hasattr(data, 'get') else None
        if isinstance(value, str) and value:
            return f"{field}:{value.strip().lower()}"

    if getattr(settings, 'RBAC_TRUST_X_FORWARDED_FOR', False):
        forwarded = request.META.get('HTTP_X_FORWARDED_FOR', '')
        if forwarded:
            return forwarded.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR', 'unknown')


class AdmissionMiddleware:
    """
    Global per-client API budget.

    Applies the 'api' operation class to every non-public request and
    returns 429 responses when the budget is exhausted.
    """

    OPERATION_CLASS = 'api'

    PUBLIC_PATHS = [
        '/v1/health',
        '/admin/',
        '/static/',
    ]

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        if self._is_public_path(request.path):
            return self.get_response(request)

        throttle = get_admission_throttle()
        identity = client_identity(request, 'ip')
        admission = throttle.admit(identity, self.OPERATION_CLASS)

        if not admission.allowed:
            from django.http import JsonResponse

            response = JsonResponse(
                {
                    'error': f'Rate limit exceeded. Please try again in {admission.retry_after} seconds.',
                    'code': 'RATE_LIMIT_EXCEEDED',
                    'retry_after': admission.retry_after,
                    'request_id': getattr(request, 'request_id', None),
                },
                status=429
            )
            response['Retry-After'] = str(admission.retry_after)

            logger.warning(
                f"API budget exceeded for {identity}",
                extra={
                    'request_id': getattr(request, 'request_id', None),
                    'path': request.path,
                    'method': request.method,
                    'reason': admission.reason,
                }
            )
            return response

        response = self.get_response(request)

        window = throttle.status(identity, self.OPERATION_CLASS)
        response['X-RateLimit-Limit'] = str(window['limit'])
        response['X-RateLimit-Remaining'] = str(window['remaining'])
        response['X-RateLimit-Reset'] = str(window['reset_at'])
        return response

    def _is_public_path(self, path):
        return any(path.startswith(public_path) for public_path in self.PUBLIC_PATHS)
