"""
Guard for server-rendered Django views.

This is the UX side of access control: it decides what a page shows a
denied caller (fallback, redirect, or nothing). The API permission
classes remain the security boundary.

The previous verdict is kept per session and operation so the redirect
fires once per allowed -> denied transition, not on every denied request.
"""
from django.core.exceptions import ImproperlyConfigured
from django.http import HttpResponse, HttpResponseRedirect

from apps.rbac.context import get_caller
from apps.rbac.guards import GuardOutcome
from apps.rbac.policies import registry

SESSION_KEY_PREFIX = 'rbac:guard:'


class GuardedViewMixin:
    """
    Usage:
        class ClientesPage(GuardedViewMixin, TemplateView):
            operation = 'clientes.list'
            template_name = 'clientes/list.html'

    The registered GuardPolicy may carry a fallback: an HttpResponse, a
    string, or a callable returning either.
    """

    operation = None

    def get_guard_policy(self):
        policy = registry.guard_for(self.operation) if self.operation else None
        if policy is None:
            raise ImproperlyConfigured(f"No guard policy registered for operation {self.operation!r}")
        return policy

    def dispatch(self, request, *args, **kwargs):
        policy = self.get_guard_policy()
        redirects = []
        guard = policy.build_guard(navigate=redirects.append)

        session = getattr(request, 'session', None)
        state_key = f"{SESSION_KEY_PREFIX}{self.operation}"
        if session is not None:
            guard.last_verdict = session.get(state_key)

        decision = guard.evaluate(get_caller(request).role)

        if session is not None:
            session[state_key] = decision.allowed

        if decision.allowed:
            return super().dispatch(request, *args, **kwargs)

        if decision.outcome == GuardOutcome.FALLBACK:
            content = decision.content
            if isinstance(content, HttpResponse):
                return content
            return HttpResponse(content, status=403)

        if decision.outcome == GuardOutcome.REDIRECT and redirects:
            return HttpResponseRedirect(redirects[-1])

        return HttpResponse(status=403)
