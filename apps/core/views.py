"""
Core API views.
"""
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework import status
from django.db import connection
from django.core.cache import caches
from django.conf import settings
from drf_spectacular.utils import extend_schema
import logging

logger = logging.getLogger(__name__)


class HealthCheckView(APIView):
    """
    Health check endpoint to verify system dependencies.

    GET /v1/health/

    Returns 200 if all dependencies are healthy, 503 otherwise. The throttle
    counter store is reported separately: while it is down, login attempts
    are refused.
    """
    authentication_classes = []
    permission_classes = []

    @extend_schema(
        summary="Health check",
        description="Check the database, the default cache and the throttle counter store",
        responses={
            200: {
                'type': 'object',
                'properties': {
                    'status': {'type': 'string'},
                    'database': {'type': 'string'},
                    'cache': {'type': 'string'},
                    'throttle_store': {'type': 'string'},
                }
            },
            503: {
                'type': 'object',
                'properties': {
                    'status': {'type': 'string'},
                    'database': {'type': 'string'},
                    'cache': {'type': 'string'},
                    'throttle_store': {'type': 'string'},
                    'errors': {'type': 'array', 'items': {'type': 'string'}},
                }
            }
        }
    )
    def get(self, request):
        """Check health of all dependencies."""
        health_status = {
            'status': 'healthy',
            'database': 'unknown',
            'cache': 'unknown',
            'throttle_store': 'unknown',
        }
        errors = []

        try:
            with connection.cursor() as cursor:
                cursor.execute("SELECT 1")
            health_status['database'] = 'healthy'
        except Exception as e:
            health_status['database'] = 'unhealthy'
            errors.append(f"Database: {str(e)}")
            logger.error("Database health check failed", exc_info=True)

        aliases = [('cache', 'default')]
        aliases.append(('throttle_store', getattr(settings, 'RBAC_THROTTLE_CACHE', 'default')))
        for name, alias in aliases:
            try:
                backend = caches[alias]
                backend.set('health_check', 'ok', timeout=10)
                if backend.get('health_check') == 'ok':
                    health_status[name] = 'healthy'
                else:
                    health_status[name] = 'unhealthy'
                    errors.append(f"{name}: Unable to read test key")
            except Exception as e:
                health_status[name] = 'unhealthy'
                errors.append(f"{name}: {str(e)}")
                logger.error(f"{name} health check failed", exc_info=True)

        if errors:
            health_status['status'] = 'unhealthy'
            health_status['errors'] = errors
            return Response(health_status, status=status.HTTP_503_SERVICE_UNAVAILABLE)

        return Response(health_status, status=status.HTTP_200_OK)
