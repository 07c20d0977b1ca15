from django.apps import AppConfig
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
import logging
import sys

logger = logging.getLogger(__name__)

KEYGEN_HINT = "python -c \"import secrets; print(secrets.token_urlsafe({}))\""


class CoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core'
    verbose_name = 'Core'

    def ready(self):
        """
        Validate security settings before the server accepts requests.

        Skipped for management commands other than runserver/test so that
        migrations and shell work with a partial configuration.
        """
        if 'runserver' not in sys.argv and 'gunicorn' not in sys.argv[0]:
            if len(sys.argv) > 1 and sys.argv[1] not in ['runserver', 'test']:
                return

        self._validate_jwt_configuration()
        self._validate_security_settings()
        self._validate_throttle_store()

        logger.info("✓ All startup security validations passed")

    def _validate_jwt_configuration(self):
        """
        Validate the key used to verify identity-provider tokens.

        The key is optional: without it only session callers are recognised.
        """
        jwt_secret = getattr(settings, 'JWT_SECRET_KEY', None)
        if not jwt_secret:
            logger.warning("⚠ JWT_SECRET_KEY is not set. Bearer tokens will be ignored.")
            return

        if len(jwt_secret) < 32:
            raise ImproperlyConfigured(
                f"JWT_SECRET_KEY must be at least 32 characters long. "
                f"Current length: {len(jwt_secret)}. Generate one with: {KEYGEN_HINT.format(32)}"
            )

        if jwt_secret == getattr(settings, 'SECRET_KEY', None):
            raise ImproperlyConfigured(
                "JWT_SECRET_KEY must be different from SECRET_KEY. "
                f"Generate a separate key with: {KEYGEN_HINT.format(32)}"
            )

        unique_chars = len(set(jwt_secret))
        if unique_chars < 16:
            raise ImproperlyConfigured(
                f"JWT_SECRET_KEY has insufficient entropy. "
                f"Found only {unique_chars} unique characters, need at least 16."
            )

        logger.info("✓ JWT configuration validated")

    def _validate_security_settings(self):
        """Validate general security settings."""
        debug = getattr(settings, 'DEBUG', False)
        secret_key = getattr(settings, 'SECRET_KEY', None)

        if not secret_key:
            raise ImproperlyConfigured(
                f"SECRET_KEY must be set in environment variables. Generate with: {KEYGEN_HINT.format(50)}"
            )

        if len(secret_key) < 50:
            logger.warning(
                f"⚠ SECRET_KEY is shorter than recommended (current: {len(secret_key)}, recommended: 50+)."
            )

        if not debug:
            weak_patterns = ['your-secret-key', 'change-me', 'insecure', '12345', 'password']
            secret_lower = secret_key.lower()
            for pattern in weak_patterns:
                if pattern in secret_lower:
                    raise ImproperlyConfigured(
                        f"SECRET_KEY appears to be a default or weak value (contains '{pattern}'). "
                        f"Generate a strong key with: {KEYGEN_HINT.format(50)}"
                    )

            for flag in ('SECURE_SSL_REDIRECT', 'SESSION_COOKIE_SECURE', 'CSRF_COOKIE_SECURE'):
                if not getattr(settings, flag, False):
                    logger.warning(f"⚠ {flag} is not enabled in production.")

        logger.info("✓ Security settings validated")

    def _validate_throttle_store(self):
        """
        The throttle counter store must be a configured cache.

        A per-process cache (locmem) lets each worker keep its own counts,
        which multiplies the effective limit by the number of workers.
        """
        alias = getattr(settings, 'RBAC_THROTTLE_CACHE', 'default')
        caches = getattr(settings, 'CACHES', {})
        if alias not in caches:
            raise ImproperlyConfigured(
                f"RBAC_THROTTLE_CACHE refers to cache alias {alias!r}, which is not in CACHES"
            )

        backend = caches[alias].get('BACKEND', '')
        if not settings.DEBUG and backend.endswith('LocMemCache'):
            logger.warning(
                f"⚠ Throttle counters use a per-process cache ({backend}). "
                f"Limits are enforced per worker, not per deployment. Set REDIS_URL."
            )
