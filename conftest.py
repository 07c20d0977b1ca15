"""
Pytest configuration and fixtures.
"""
import pytest
from django.conf import settings
import django
from django.core.management import call_command

TEST_PASSWORD = 'Str0ng-pass!42'
TEST_JWT_SECRET = 'test-jwt-key-9f8e7d6c5b4a3210ZYXWVUTSRQ'


def pytest_configure(config):
    """Configure Django settings for tests."""
    settings.DATABASES['default'] = {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
        'ATOMIC_REQUESTS': False,
    }
    settings.CACHES = {
        'default': {
            'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
            'LOCATION': 'gestion-tests',
        }
    }
    settings.JWT_SECRET_KEY = TEST_JWT_SECRET
    settings.SECURE_SSL_REDIRECT = False
    settings.PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']
    settings.EMAIL_BACKEND = 'django.core.mail.backends.locmem.EmailBackend'
    django.setup()


@pytest.fixture(scope='session')
def django_db_setup(django_db_setup, django_db_blocker):
    """Set up test database with migrations."""
    with django_db_blocker.unblock():
        call_command('migrate', '--run-syncdb', verbosity=0)


@pytest.fixture(autouse=True)
def clean_admission_state():
    """Every test starts with empty throttle counters and a fresh throttle."""
    from django.core.cache import caches
    from apps.core.rate_limiting import reset_admission_throttle

    reset_admission_throttle()
    for alias in settings.CACHES:
        caches[alias].clear()
    yield
    reset_admission_throttle()


@pytest.fixture(autouse=True)
def propagate_project_loggers(monkeypatch):
    """Let caplog (attached to the root logger) see 'apps' and 'security' records."""
    import logging

    for name in ('apps', 'security'):
        monkeypatch.setattr(logging.getLogger(name), 'propagate', True)


@pytest.fixture
def api_client():
    """Return DRF API client."""
    from rest_framework.test import APIClient
    return APIClient()


@pytest.fixture
def role_groups(db):
    """Create the auth Group for every role."""
    from django.contrib.auth.models import Group
    from apps.rbac.catalog import Role

    return {role: Group.objects.get_or_create(name=role.value)[0] for role in Role}


@pytest.fixture
def make_user(db, role_groups):
    """
    Factory for users holding a role.

    Usage:
        user = make_user('ADMIN')
        user = make_user(None, email='nobody@example.com')
    """
    from django.contrib.auth import get_user_model
    from apps.rbac.catalog import Role

    User = get_user_model()
    counter = {'n': 0}

    def _make(role=None, email=None, password=TEST_PASSWORD, **kwargs):
        counter['n'] += 1
        email = email or f'user{counter["n"]}@example.com'
        user = User.objects.create_user(
            username=email,
            email=email,
            password=password,
            **kwargs
        )
        if role is not None:
            user.groups.add(role_groups[Role(role)])
        return user

    return _make


@pytest.fixture
def admin_user(make_user):
    return make_user('ADMIN', email='admin@example.com')


@pytest.fixture
def tecnico_user(make_user):
    return make_user('TECNICO', email='tecnico@example.com')


@pytest.fixture
def read_only_user(make_user):
    return make_user('READ_ONLY', email='viewer@example.com')


@pytest.fixture
def make_token():
    """Factory for identity-provider tokens signed with the test key."""
    import time
    import jwt

    def _make(role='USER', email='token-user@example.com', expires_in=300, **claims):
        payload = {'email': email, 'role': role, 'exp': int(time.time()) + expires_in}
        payload.update(claims)
        return jwt.encode(payload, TEST_JWT_SECRET, algorithm='HS256')

    return _make
