"""
Structured logging helpers: PII masking, JSON formatting and security events.
"""
import json
import logging
import re
import traceback
from datetime import datetime, timezone as dt_timezone

import sentry_sdk
from django.utils import timezone


class PIIMasker:
    """
    Mask sensitive data (emails, phone numbers, credentials) before it is logged.
    """

    PHONE_PATTERN = re.compile(r'\+?\d{10,15}')
    EMAIL_PATTERN = re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b')
    SECRET_PATTERN = re.compile(
        r'(api[_-]?key|token|secret|password|authorization)["\']?\s*[:=]\s*["\']?([^"\'\s,}]+)',
        re.IGNORECASE
    )
    JWT_PATTERN = re.compile(r'eyJ[a-zA-Z0-9_\-]+\.eyJ[a-zA-Z0-9_\-]+\.[a-zA-Z0-9_\-]+')

    SENSITIVE_FIELDS = {
        'password', 'new_password', 'passwd',
        'token', 'access_token', 'refresh_token', 'bearer_token',
        'secret', 'secret_key', 'api_key',
        'authorization',
    }

    @classmethod
    def mask_phone(cls, text):
        if not isinstance(text, str):
            return text
        return cls.PHONE_PATTERN.sub(lambda m: m.group(0)[:3] + '*' * (len(m.group(0)) - 3), text)

    @classmethod
    def mask_email(cls, text):
        """Keep the first character of the local part and the domain."""
        if not isinstance(text, str):
            return text

        def mask_email_match(match):
            username, _, domain = match.group(0).partition('@')
            if len(username) > 1:
                username = username[0] + '*' * (len(username) - 1)
            return f"{username}@{domain}"

        return cls.EMAIL_PATTERN.sub(mask_email_match, text)

    @classmethod
    def mask_secrets(cls, text):
        if not isinstance(text, str):
            return text
        text = cls.JWT_PATTERN.sub('[REDACTED_JWT]', text)
        return cls.SECRET_PATTERN.sub(r'\1: ********', text)

    @classmethod
    def mask_text(cls, text):
        if not isinstance(text, str):
            return text
        text = cls.mask_secrets(text)
        text = cls.mask_email(text)
        text = cls.mask_phone(text)
        return text

    @classmethod
    def mask_dict(cls, data):
        """Recursively mask sensitive fields and values in a dictionary."""
        if not isinstance(data, dict):
            return data

        masked = {}
        for key, value in data.items():
            if key.lower() in cls.SENSITIVE_FIELDS:
                masked[key] = '********' if value else value
            elif isinstance(value, dict):
                masked[key] = cls.mask_dict(value)
            elif isinstance(value, list):
                masked[key] = [
                    cls.mask_dict(item) if isinstance(item, dict) else cls.mask_text(item)
                    for item in value
                ]
            elif isinstance(value, str):
                masked[key] = cls.mask_text(value)
            else:
                masked[key] = value
        return masked


_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'created', 'filename', 'funcName', 'levelname',
    'levelno', 'lineno', 'module', 'msecs', 'message', 'pathname', 'process',
    'processName', 'relativeCreated', 'thread', 'threadName', 'exc_info',
    'exc_text', 'stack_info', 'taskName', 'request_id',
}


class JSONFormatter(logging.Formatter):
    """
    Format log records as JSON, masking PII in the message and extra fields.
    """

    def format(self, record):
        log_data = {
            'timestamp': datetime.now(dt_timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': PIIMasker.mask_text(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if hasattr(record, 'request_id'):
            log_data['request_id'] = record.request_id

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': PIIMasker.mask_text(str(record.exc_info[1])),
                'traceback': [
                    PIIMasker.mask_text(line)
                    for line in traceback.format_exception(*record.exc_info)
                ],
            }

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith('_'):
                continue
            if key.lower() in PIIMasker.SENSITIVE_FIELDS:
                log_data[key] = '********'
                continue
            if isinstance(value, dict):
                value = PIIMasker.mask_dict(value)
            elif isinstance(value, str):
                value = PIIMasker.mask_text(value)
            try:
                json.dumps(value)
                log_data[key] = value
            except (TypeError, ValueError):
                log_data[key] = PIIMasker.mask_text(str(value))

        return json.dumps(log_data)


class SecurityLogger:
    """
    Centralized logging of security events on the 'security' logger.

    Critical events are also sent to Sentry for alerting.
    """

    CRITICAL_EVENTS = {
        'throttle_store_unavailable',
    }

    @staticmethod
    def log_event(event_type: str, level: str = 'warning', **context):
        """
        Log a security event with structured data.

        Args:
            event_type: Type of event (e.g. 'failed_login', 'permission_denied')
            level: Log level ('info', 'warning', 'error', 'critical')
            **context: Additional context (ip_address, role, operation, ...)
        """
        logger = logging.getLogger('security')

        log_data = {
            'event_type': event_type,
            'timestamp': timezone.now().isoformat(),
        }
        log_data.update(context)
        log_data = PIIMasker.mask_dict(log_data)

        log_method = getattr(logger, level, logger.warning)
        log_method(f"Security event: {event_type}", extra=log_data)

        if event_type in SecurityLogger.CRITICAL_EVENTS:
            sentry_sdk.capture_message(
                f"Critical security event: {event_type}",
                level='error',
            )

    @staticmethod
    def log_failed_login(email: str, ip_address: str, user_agent: str = None, reason: str = None):
        SecurityLogger.log_event(
            'failed_login',
            level='warning',
            email=email,
            ip_address=ip_address,
            user_agent=user_agent,
            reason=reason
        )

    @staticmethod
    def log_permission_denied(role, operation: str, required: list, ip_address: str = None,
                              path: str = None):
        """
        Log a permission denial.

        Args:
            role: Caller role (None for anonymous callers)
            operation: Operation identifier that was denied
            required: Permission codes or roles the operation requires
            ip_address: IP address of the request
            path: Request path
        """
        SecurityLogger.log_event(
            'permission_denied',
            level='warning',
            role=str(role) if role else None,
            operation=operation,
            required=list(required),
            ip_address=ip_address,
            path=path,
        )

    @staticmethod
    def log_rate_limit_exceeded(endpoint: str, ip_address: str, operation_class: str = None,
                                limit: str = None, reason: str = None):
        SecurityLogger.log_event(
            'rate_limit_exceeded',
            level='warning',
            endpoint=endpoint,
            ip_address=ip_address,
            operation_class=operation_class,
            limit=limit,
            reason=reason,
        )
