"""
Permission evaluator.

Answers "may this role do X?" against the permission catalog, for a single
check or for ALL/ANY compositions of checks. Evaluation is pure: no locking,
no caching, no exceptions. Unknown (resource, action) pairs and absent roles
always deny.
"""
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from apps.rbac.catalog import (
    Action, PermissionCatalog, Resource, Role, coerce_role, default_catalog
)


@dataclass(frozen=True)
class PermissionCheck:
    """A (resource, action) pair submitted for evaluation."""
    resource: str
    action: str

    @classmethod
    def parse(cls, code: str) -> 'PermissionCheck':
        """
        Build a check from its 'resource:action' code.

        Raises:
            ValueError: if code is not of the form 'resource:action'
        """
        resource, sep, action = (code or '').partition(':')
        if not sep or not resource or not action:
            raise ValueError(f"Invalid permission code: {code!r} (expected 'resource:action')")
        return cls(resource=resource, action=action)

    @property
    def code(self) -> str:
        resource = self.resource.value if isinstance(self.resource, Resource) else self.resource
        action = self.action.value if isinstance(self.action, Action) else self.action
        return f"{resource}:{action}"


class PermissionEvaluator:
    """
    Evaluates permission checks for a caller's role.

    Both guard flavours (resource/action and admin-only) go through this
    class so role logic lives in exactly one place.
    """

    def __init__(self, catalog: PermissionCatalog = None):
        self.catalog = catalog if catalog is not None else default_catalog

    def check(self, role: Optional[Role], resource, action) -> bool:
        """Return True iff role is present and allowed by the catalog rule."""
        role = coerce_role(role)
        if role is None:
            return False
        return role in self.catalog.lookup(resource, action)

    def check_all(self, role: Optional[Role], checks: Iterable[PermissionCheck]) -> bool:
        """
        Return True iff every check passes.

        An empty list is vacuously True: never guard something that needs
        protection with zero checks.
        """
        return all(self.check(role, c.resource, c.action) for c in checks)

    def check_any(self, role: Optional[Role], checks: Iterable[PermissionCheck]) -> bool:
        """Return True iff at least one check passes. An empty list is False."""
        return any(self.check(role, c.resource, c.action) for c in checks)

    def has_role(self, role: Optional[Role], required: Role) -> bool:
        """Single-role gate. No catalog lookup."""
        role = coerce_role(role)
        if role is None:
            return False
        return role == required

    def is_admin(self, role: Optional[Role]) -> bool:
        return self.has_role(role, Role.ADMIN)

    def permission_map(self, role: Optional[Role]) -> Dict[str, bool]:
        """Map every catalog rule code to the verdict for role."""
        return {
            r.code: self.check(role, r.resource, r.action)
            for r in self.catalog.rules()
        }


default_evaluator = PermissionEvaluator()
