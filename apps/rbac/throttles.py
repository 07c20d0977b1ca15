"""
DRF throttle class backed by the admission throttle.

Runs for anonymous callers too. A rejected attempt raises
AdmissionThrottled (429) before the view body executes.
"""
from rest_framework.throttling import BaseThrottle

from apps.core.exceptions import AdmissionThrottled
from apps.core.rate_limiting import client_identity, get_admission_throttle
from apps.rbac.policies import registry, view_operation


class OperationAdmissionThrottle(BaseThrottle):
    """
    Apply the throttle class registered for view.operation.

    Usage:
        class LoginView(APIView):
            throttle_classes = [OperationAdmissionThrottle]
            operation = 'auth.login'
    """

    def get_operation_class(self, request, view):
        operation = view_operation(view, request.method)
        return registry.throttle_for(operation) if operation else None

    def allow_request(self, request, view):
        operation_class = self.get_operation_class(request, view)
        if operation_class is None:
            return True

        throttle = get_admission_throttle()
        policy = throttle.policy_for(operation_class)
        identity = client_identity(request, policy.key)
        admission = throttle.admit(identity, operation_class)

        if not admission.allowed:
            raise AdmissionThrottled(
                wait=admission.retry_after,
                operation_class=operation_class,
                reason=admission.reason,
            )
        return True

    def wait(self):
        return None
