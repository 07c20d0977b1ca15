"""
Permission catalog: the static (resource, action) -> roles matrix.

The catalog is the single source of truth for who may do what. It is built
once at import time and never mutated. Lookups are total: a pair without a
rule resolves to an empty role set (closed-world default-deny), never an error.
"""
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, Optional, Tuple

from django.core.exceptions import ImproperlyConfigured
from django.db import models


class Role(models.TextChoices):
    ADMIN = 'ADMIN', 'Administrador'
    USER = 'USER', 'Usuario'
    TECNICO = 'TECNICO', 'Técnico'
    READ_ONLY = 'READ_ONLY', 'Solo lectura'


class Resource(models.TextChoices):
    USUARIOS = 'usuarios', 'Usuarios'
    CLIENTES = 'clientes', 'Clientes'
    TIPOS_DE_SERVICIO = 'tipos-de-servicio', 'Tipos de servicio'
    DASHBOARD = 'dashboard', 'Dashboard'
    PERFIL = 'perfil', 'Perfil'
    PAGOS = 'pagos', 'Pagos'


class Action(models.TextChoices):
    CREATE = 'create', 'Crear'
    READ = 'read', 'Ver'
    UPDATE = 'update', 'Editar'
    DELETE = 'delete', 'Eliminar'


def _coerce(enum_cls, value):
    """Return the enum member for value, or None if it is not a member."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except (ValueError, TypeError):
        return None


def coerce_role(value) -> Optional[Role]:
    return _coerce(Role, value)


def coerce_resource(value) -> Optional[Resource]:
    return _coerce(Resource, value)


def coerce_action(value) -> Optional[Action]:
    return _coerce(Action, value)


@dataclass(frozen=True)
class PermissionRule:
    resource: Resource
    action: Action
    roles: FrozenSet[Role]

    @property
    def code(self) -> str:
        return f"{self.resource.value}:{self.action.value}"


def rule(resource, action, *roles) -> PermissionRule:
    """
    Build a PermissionRule, rejecting values outside the enumerations.

    Raises:
        ImproperlyConfigured: if resource, action or any role is undefined
    """
    res = coerce_resource(resource)
    act = coerce_action(action)
    if res is None:
        raise ImproperlyConfigured(f"Permission rule references undefined resource: {resource!r}")
    if act is None:
        raise ImproperlyConfigured(f"Permission rule references undefined action: {action!r}")

    coerced = set()
    for r in roles:
        role = coerce_role(r)
        if role is None:
            raise ImproperlyConfigured(
                f"Permission rule {res.value}:{act.value} references undefined role: {r!r}"
            )
        coerced.add(role)

    return PermissionRule(resource=res, action=act, roles=frozenset(coerced))


class PermissionCatalog:
    """
    Immutable lookup table of permission rules.

    Usage:
        catalog = PermissionCatalog([
            rule('clientes', 'delete', Role.ADMIN),
        ])
        catalog.lookup('clientes', 'delete')   # frozenset({Role.ADMIN})
        catalog.lookup('clientes', 'archive')  # frozenset()
    """

    def __init__(self, rules: Iterable[PermissionRule]):
        index: Dict[Tuple[Resource, Action], PermissionRule] = {}
        for r in rules:
            if not isinstance(r, PermissionRule):
                raise ImproperlyConfigured(f"Catalog entries must be PermissionRule, got {type(r).__name__}")
            key = (r.resource, r.action)
            if key in index:
                raise ImproperlyConfigured(f"Duplicate permission rule for {r.code}")
            index[key] = r
        self._index = index
        self._rules = tuple(index.values())

    def lookup(self, resource, action) -> FrozenSet[Role]:
        res = coerce_resource(resource)
        act = coerce_action(action)
        if res is None or act is None:
            return frozenset()
        found = self._index.get((res, act))
        if found is None:
            return frozenset()
        return found.roles

    def rules(self) -> Tuple[PermissionRule, ...]:
        return self._rules

    def resources(self) -> Tuple[Resource, ...]:
        seen = []
        for r in self._rules:
            if r.resource not in seen:
                seen.append(r.resource)
        return tuple(seen)

    def actions_for(self, resource) -> Tuple[Action, ...]:
        res = coerce_resource(resource)
        return tuple(r.action for r in self._rules if r.resource == res)

    def __contains__(self, key) -> bool:
        resource, action = key
        res = coerce_resource(resource)
        act = coerce_action(action)
        return (res, act) in self._index

    def __len__(self) -> int:
        return len(self._rules)


_ALL = (Role.ADMIN, Role.USER, Role.TECNICO)

PERMISSION_RULES = (
    # Dashboard
    rule(Resource.DASHBOARD, Action.READ, *_ALL, Role.READ_ONLY),

    # Usuarios
    rule(Resource.USUARIOS, Action.CREATE, Role.ADMIN),
    rule(Resource.USUARIOS, Action.READ, Role.ADMIN),
    rule(Resource.USUARIOS, Action.UPDATE, Role.ADMIN),
    rule(Resource.USUARIOS, Action.DELETE, Role.ADMIN),

    # Clientes
    rule(Resource.CLIENTES, Action.CREATE, *_ALL),
    rule(Resource.CLIENTES, Action.READ, *_ALL),
    rule(Resource.CLIENTES, Action.UPDATE, Role.ADMIN, Role.USER),
    rule(Resource.CLIENTES, Action.DELETE, Role.ADMIN),

    # Tipos de servicio
    rule(Resource.TIPOS_DE_SERVICIO, Action.CREATE, Role.ADMIN),
    rule(Resource.TIPOS_DE_SERVICIO, Action.READ, *_ALL),
    rule(Resource.TIPOS_DE_SERVICIO, Action.UPDATE, Role.ADMIN),
    rule(Resource.TIPOS_DE_SERVICIO, Action.DELETE, Role.ADMIN),

    # Perfil personal
    rule(Resource.PERFIL, Action.READ, *_ALL),
    rule(Resource.PERFIL, Action.UPDATE, *_ALL),

    # Pagos
    rule(Resource.PAGOS, Action.CREATE, Role.ADMIN, Role.TECNICO),
    rule(Resource.PAGOS, Action.READ, Role.ADMIN, Role.TECNICO, Role.READ_ONLY),
)

default_catalog = PermissionCatalog(PERMISSION_RULES)
