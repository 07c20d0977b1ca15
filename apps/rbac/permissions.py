"""
DRF permission classes enforcing operation guard policies.

This is the server-side security boundary: it re-evaluates the caller's
role against the shared catalog on every request, independent of anything
the client UI decided.

- HasOperationPermission: enforces the GuardPolicy registered for view.operation
- IsAdminRole: single-role gate (ADMIN only)
"""
import logging

from rest_framework.permissions import BasePermission

from apps.rbac.context import get_caller
from apps.rbac.evaluator import default_evaluator
from apps.rbac.policies import registry, view_operation

logger = logging.getLogger(__name__)


def _log_denial(request, view, operation, required):
    from apps.core.logging import SecurityLogger

    caller = get_caller(request)
    SecurityLogger.log_permission_denied(
        role=caller.role,
        operation=operation,
        required=required,
        ip_address=request.META.get('REMOTE_ADDR', 'unknown'),
        path=request.path,
    )
    logger.warning(
        f"Permission denied: role {caller.role or 'anonymous'} on {operation}",
        extra={
            'role': caller.role.value if caller.role else None,
            'operation': operation,
            'required': list(required),
            'view': view.__class__.__name__,
            'method': request.method,
            'path': request.path,
            'request_id': getattr(request, 'request_id', None),
        }
    )


class HasOperationPermission(BasePermission):
    """
    Enforce the guard policy registered for the view's operation.

    Usage:
        class ClientListView(APIView):
            permission_classes = [HasOperationPermission]
            operation = 'clientes.list'

    A view whose operation is missing, unregistered or has no guard policy
    is denied: protection is never silently skipped.
    """

    evaluator = default_evaluator

    def get_operation(self, request, view):
        return view_operation(view, request.method)

    def has_permission(self, request, view):
        operation = self.get_operation(request, view)
        policy = registry.guard_for(operation) if operation else None

        if operation is None and getattr(view, 'operations', None):
            # Method the view does not map (OPTIONS, or one it does not implement)
            logger.debug(
                f"No operation mapped for {request.method} on {view.__class__.__name__}",
                extra={'view': view.__class__.__name__, 'method': request.method}
            )
            return False

        if policy is None:
            logger.error(
                f"View {view.__class__.__name__} uses HasOperationPermission "
                f"without a registered guard policy for {operation!r}",
                extra={'view': view.__class__.__name__, 'operation': operation}
            )
            return False

        caller = get_caller(request)
        if policy.admin_only:
            allowed = self.evaluator.is_admin(caller.role)
        elif policy.require_all:
            allowed = self.evaluator.check_all(caller.role, policy.checks)
        else:
            allowed = self.evaluator.check_any(caller.role, policy.checks)

        if not allowed:
            _log_denial(request, view, operation, policy.codes)
            return False

        logger.debug(
            f"Permission granted: role {caller.role} on {operation}",
            extra={'operation': operation, 'view': view.__class__.__name__}
        )
        return True


class IsAdminRole(BasePermission):
    """Admit only callers whose role is exactly ADMIN."""

    evaluator = default_evaluator

    def has_permission(self, request, view):
        caller = get_caller(request)
        if self.evaluator.is_admin(caller.role):
            return True

        operation = getattr(view, 'operation', None) or view.__class__.__name__
        _log_denial(request, view, operation, ['role:ADMIN'])
        return False
