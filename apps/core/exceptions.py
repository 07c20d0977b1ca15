"""
Custom exceptions and the DRF exception handler.
"""
import logging

from rest_framework import exceptions, status
from rest_framework.response import Response

logger = logging.getLogger(__name__)


class AdmissionThrottled(exceptions.Throttled):
    """
    Raised when the admission throttle rejects an attempt.

    Kept distinct from PermissionDenied so clients can tell
    "try again later" apart from "not permitted".
    """
    default_code = 'RATE_LIMIT_EXCEEDED'

    def __init__(self, wait=None, operation_class=None, reason=None):
        super().__init__(wait=wait)
        self.operation_class = operation_class
        self.reason = reason


def _client_ip(request):
    if request is None:
        return 'unknown'
    return request.META.get('REMOTE_ADDR', 'unknown')


def custom_exception_handler(exc, context):
    """
    Exception handler that logs errors and returns a consistent format:
    {'error', 'code', 'request_id'} plus 'retry_after' for 429 responses.
    """
    # rest_framework.views loads DEFAULT_PERMISSION_CLASSES, which import this module
    from rest_framework.views import exception_handler

    request = context.get('request')
    request_id = getattr(request, 'request_id', None) if request else None

    if isinstance(exc, exceptions.Throttled):
        from apps.core.logging import SecurityLogger

        retry_after = int(exc.wait) if exc.wait is not None else 60
        operation_class = getattr(exc, 'operation_class', None)

        SecurityLogger.log_rate_limit_exceeded(
            endpoint=request.path if request else 'unknown',
            ip_address=_client_ip(request),
            operation_class=operation_class,
            reason=getattr(exc, 'reason', None),
        )

        response = Response(
            {
                'error': 'Rate limit exceeded. Please try again later.',
                'code': 'RATE_LIMIT_EXCEEDED',
                'request_id': request_id,
                'retry_after': retry_after,
            },
            status=status.HTTP_429_TOO_MANY_REQUESTS
        )
        response['Retry-After'] = str(retry_after)
        return response

    if isinstance(exc, (exceptions.PermissionDenied, exceptions.NotAuthenticated)):
        code = 'NOT_AUTHENTICATED' if isinstance(exc, exceptions.NotAuthenticated) else 'PERMISSION_DENIED'
        response = exception_handler(exc, context)
        response.data = {
            'error': str(exc.detail),
            'code': code,
            'request_id': request_id,
        }
        return response

    response = exception_handler(exc, context)

    if response is None:
        logger.error(
            f"API Exception: {exc.__class__.__name__}",
            extra={
                'exception': str(exc),
                'request_id': request_id,
                'path': request.path if request else None,
                'method': request.method if request else None,
            },
            exc_info=True
        )
        return Response(
            {
                'error': 'Internal server error',
                'code': 'INTERNAL_ERROR',
                'request_id': request_id,
            },
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    logger.info(
        f"API Exception: {exc.__class__.__name__}",
        extra={
            'request_id': request_id,
            'path': request.path if request else None,
            'status_code': response.status_code,
        }
    )

    if request_id and isinstance(response.data, dict):
        response.data['request_id'] = request_id

    return response


class GestionException(Exception):
    """Base exception for application-specific errors."""

    def __init__(self, message, details=None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class IdentityError(GestionException):
    """Raised when a caller identity cannot be established from a token."""
    status_code = 401
