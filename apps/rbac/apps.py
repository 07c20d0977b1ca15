"""
RBAC app configuration.
"""
from django.apps import AppConfig
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured


class RbacConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.rbac'
    verbose_name = 'RBAC (Role-Based Access Control)'

    def ready(self):
        """
        Validate the permission catalog, the operation registry and the
        throttle settings. A misconfiguration stops startup instead of
        silently denying (or admitting) everyone.
        """
        from apps.core.rate_limiting import ThrottlePolicy
        from apps.rbac.catalog import default_catalog
        from apps.rbac.policies import registry

        throttle_classes = getattr(settings, 'RBAC_THROTTLE_CLASSES', {}) or {}
        for name, data in throttle_classes.items():
            try:
                ThrottlePolicy.from_dict(data)
            except (TypeError, ImproperlyConfigured) as e:
                raise ImproperlyConfigured(f"RBAC_THROTTLE_CLASSES[{name!r}]: {e}") from e

        registry.validate(default_catalog, throttle_classes)
