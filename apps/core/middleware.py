"""
Core middleware for request processing.
"""
import logging
import threading
import uuid

from django.utils.deprecation import MiddlewareMixin

_local = threading.local()


def get_current_request_id():
    return getattr(_local, 'request_id', None)


class RequestIDMiddleware(MiddlewareMixin):
    """
    Attach a request_id to every request, its log records and its response.
    """

    def process_request(self, request):
        request_id = request.META.get('HTTP_X_REQUEST_ID') or str(uuid.uuid4())
        request.request_id = request_id
        _local.request_id = request_id

    def process_response(self, request, response):
        if hasattr(request, 'request_id'):
            response['X-Request-ID'] = request.request_id
        _local.request_id = None
        return response


class LoggingFilter(logging.Filter):
    """Add the current request_id to log records."""

    def filter(self, record):
        if not hasattr(record, 'request_id'):
            record.request_id = get_current_request_id() or '-'
        return True
