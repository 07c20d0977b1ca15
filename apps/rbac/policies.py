"""
Operation policy registry.

Every protected operation is declared here once, by identifier, with its
guard policy (which permission checks, ALL or ANY, how to deny) and/or its
throttle class. Views refer to operations through their `operation`
attribute; nothing is attached through decorators.

    class ClientDeleteView(APIView):
        permission_classes = [HasOperationPermission]
        operation = 'clientes.delete'
"""
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, Optional, Tuple

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

from apps.rbac.catalog import PermissionCatalog, coerce_action, coerce_resource, default_catalog
from apps.rbac.evaluator import PermissionCheck, PermissionEvaluator
from apps.rbac.guards import AccessGuard, AdminGuard


def _as_check(value) -> PermissionCheck:
    if isinstance(value, PermissionCheck):
        return value
    if isinstance(value, str):
        return PermissionCheck.parse(value)
    resource, action = value
    return PermissionCheck(resource=resource, action=action)


@dataclass(frozen=True)
class GuardPolicy:
    """
    Declarative guard configuration.

    Attributes:
        checks: permission checks, as PermissionCheck, 'resource:action' codes
            or (resource, action) pairs
        require_all: ALL (True) or ANY (False) composition
        redirect_to: redirect target when denied; None uses
            RBAC_GUARD_DEFAULT_REDIRECT, '' disables the redirect
        fallback: content (or callable) rendered instead when denied
        admin_only: single-role gate, ignores checks
        protected: an empty check list is a configuration fault unless False
    """
    checks: Tuple[PermissionCheck, ...] = ()
    require_all: bool = True
    redirect_to: Optional[str] = None
    fallback: Any = None
    admin_only: bool = False
    protected: bool = True

    def __post_init__(self):
        object.__setattr__(self, 'checks', tuple(_as_check(c) for c in self.checks))
        if self.admin_only and self.checks:
            raise ImproperlyConfigured('An admin_only guard policy must not declare permission checks')
        if self.protected and not self.admin_only and not self.checks:
            raise ImproperlyConfigured(
                'Protected guard policy declared with an empty check list '
                '(an empty ALL-gate admits everyone); set protected=False if intended'
            )

    @property
    def codes(self) -> Tuple[str, ...]:
        if self.admin_only:
            return ('role:ADMIN',)
        return tuple(c.code for c in self.checks)

    def resolved_redirect(self) -> Optional[str]:
        if self.redirect_to is None:
            return getattr(settings, 'RBAC_GUARD_DEFAULT_REDIRECT', '/dashboard') or None
        return self.redirect_to or None

    def build_guard(self, navigate: Optional[Callable[[str], Any]] = None,
                    evaluator: Optional[PermissionEvaluator] = None) -> AccessGuard:
        if self.admin_only:
            return AdminGuard(
                fallback=self.fallback,
                redirect_to=self.resolved_redirect(),
                navigate=navigate,
                evaluator=evaluator,
            )
        return AccessGuard(
            checks=self.checks,
            require_all=self.require_all,
            fallback=self.fallback,
            redirect_to=self.resolved_redirect(),
            navigate=navigate,
            evaluator=evaluator,
        )


@dataclass(frozen=True)
class OperationPolicy:
    operation: str
    guard: Optional[GuardPolicy] = None
    throttle: Optional[str] = None
    description: str = field(default='', compare=False)


class OperationRegistry:
    """Mapping from operation identifier to its policy. Populated at import time."""

    def __init__(self):
        self._policies: Dict[str, OperationPolicy] = {}
        self._lock = threading.Lock()

    def register(self, operation: str, guard: GuardPolicy = None, throttle: str = None,
                 description: str = '') -> OperationPolicy:
        if not operation:
            raise ImproperlyConfigured('Operation identifier must be a non-empty string')
        if guard is None and throttle is None:
            raise ImproperlyConfigured(f"Operation {operation!r} declares neither a guard nor a throttle")

        policy = OperationPolicy(operation=operation, guard=guard, throttle=throttle,
                                 description=description)
        with self._lock:
            if operation in self._policies:
                raise ImproperlyConfigured(f"Operation {operation!r} is already registered")
            self._policies[operation] = policy
        return policy

    def get(self, operation: str) -> Optional[OperationPolicy]:
        return self._policies.get(operation)

    def guard_for(self, operation: str) -> Optional[GuardPolicy]:
        policy = self.get(operation)
        return policy.guard if policy else None

    def throttle_for(self, operation: str) -> Optional[str]:
        policy = self.get(operation)
        return policy.throttle if policy else None

    def validate(self, catalog: PermissionCatalog = None, throttle_classes=None) -> None:
        """
        Check every declaration against the catalog and throttle settings.

        Raises:
            ImproperlyConfigured: for checks naming undefined resources/actions
                or pairs with no catalog rule, and for unknown throttle classes
        """
        catalog = catalog if catalog is not None else default_catalog
        if throttle_classes is None:
            throttle_classes = getattr(settings, 'RBAC_THROTTLE_CLASSES', {}) or {}

        for policy in self:
            if policy.guard is not None:
                for check in policy.guard.checks:
                    if coerce_resource(check.resource) is None or coerce_action(check.action) is None:
                        raise ImproperlyConfigured(
                            f"Operation {policy.operation!r} references undefined permission {check.code!r}"
                        )
                    if (check.resource, check.action) not in catalog:
                        raise ImproperlyConfigured(
                            f"Operation {policy.operation!r} requires {check.code!r}, "
                            f"which has no catalog rule and would deny everyone"
                        )
            if policy.throttle is not None and policy.throttle not in throttle_classes:
                raise ImproperlyConfigured(
                    f"Operation {policy.operation!r} uses unknown throttle class {policy.throttle!r}"
                )

    def __iter__(self) -> Iterator[OperationPolicy]:
        return iter(list(self._policies.values()))

    def __contains__(self, operation) -> bool:
        return operation in self._policies

    def __len__(self) -> int:
        return len(self._policies)


def view_operation(view, method: str) -> Optional[str]:
    """
    Operation a view performs for an HTTP method.

    Views declare either `operation` or a per-method `operations` dict.
    HEAD falls back to the GET operation, as Django serves it with get().
    """
    operations = getattr(view, 'operations', None)
    if not operations:
        return getattr(view, 'operation', None)

    method = method.lower()
    if method == 'head' and 'head' not in operations:
        method = 'get'
    return operations.get(method)


registry = OperationRegistry()


# Authentication endpoints: throttled, open to anonymous callers
registry.register('auth.login', throttle='login', description='Log in with email and password')
registry.register('auth.password-reset', throttle='password-reset',
                  description='Request a password reset email')
registry.register('auth.password-reset-confirm', throttle='password-reset-confirm',
                  description='Set a new password with a reset token')

# Permission catalog
registry.register('rbac.catalog', guard=GuardPolicy(admin_only=True),
                  description='Full permission matrix')

# Business surfaces
registry.register('dashboard.view', guard=GuardPolicy(checks=['dashboard:read']))

registry.register('usuarios.manage', guard=GuardPolicy(admin_only=True),
                  description='User administration area')
registry.register('usuarios.list', guard=GuardPolicy(checks=['usuarios:read']))
registry.register('usuarios.create', guard=GuardPolicy(checks=['usuarios:create']))
registry.register('usuarios.update', guard=GuardPolicy(checks=['usuarios:read', 'usuarios:update']))
registry.register('usuarios.delete', guard=GuardPolicy(checks=['usuarios:delete']))

registry.register('clientes.list', guard=GuardPolicy(checks=['clientes:read']))
registry.register('clientes.create', guard=GuardPolicy(checks=['clientes:create']))
registry.register('clientes.update', guard=GuardPolicy(checks=['clientes:read', 'clientes:update']))
registry.register('clientes.delete', guard=GuardPolicy(checks=['clientes:delete']))

registry.register('tipos-de-servicio.list', guard=GuardPolicy(checks=['tipos-de-servicio:read']))
registry.register('tipos-de-servicio.create', guard=GuardPolicy(checks=['tipos-de-servicio:create']))
registry.register('tipos-de-servicio.update', guard=GuardPolicy(checks=['tipos-de-servicio:update']))
registry.register('tipos-de-servicio.delete', guard=GuardPolicy(checks=['tipos-de-servicio:delete']))

registry.register('perfil.view', guard=GuardPolicy(checks=['perfil:read']))
registry.register('perfil.update', guard=GuardPolicy(checks=['perfil:update']))

registry.register('pagos.list', guard=GuardPolicy(checks=['pagos:read']))
registry.register('pagos.create', guard=GuardPolicy(checks=['pagos:create']))
