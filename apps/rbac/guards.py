"""
Access guards for protected surfaces.

An AccessGuard wraps a unit of UI or server logic with the evaluator's
verdict and a denial policy:

1. fallback content, if configured
2. otherwise a redirect through the navigate callback, rendering nothing
3. otherwise nothing

The verdict is recomputed on every evaluation. The only state kept is the
previous verdict, so the redirect fires once per allowed -> denied
transition rather than on every denied evaluation.

AdminGuard is the single-role flavour: permitted iff the role is ADMIN.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, Optional, Sequence

from apps.rbac.catalog import Role
from apps.rbac.evaluator import PermissionCheck, PermissionEvaluator, default_evaluator

logger = logging.getLogger(__name__)


class GuardOutcome(str, Enum):
    ALLOW = 'allow'
    FALLBACK = 'fallback'
    REDIRECT = 'redirect'
    NOTHING = 'nothing'


@dataclass(frozen=True)
class GuardDecision:
    outcome: GuardOutcome
    content: Any = None
    redirect_to: Optional[str] = None
    redirected: bool = False

    @property
    def allowed(self) -> bool:
        return self.outcome == GuardOutcome.ALLOW


class AccessGuard:
    """
    Guard a surface behind one or more permission checks.

    Usage:
        guard = AccessGuard(
            checks=[PermissionCheck('clientes', 'update')],
            redirect_to='/dashboard',
            navigate=router.push,
        )
        guard.render(caller.role, content)
    """

    def __init__(
        self,
        checks: Iterable[PermissionCheck] = (),
        require_all: bool = True,
        fallback: Any = None,
        redirect_to: Optional[str] = None,
        navigate: Optional[Callable[[str], Any]] = None,
        evaluator: Optional[PermissionEvaluator] = None,
    ):
        self.checks: Sequence[PermissionCheck] = tuple(checks)
        self.require_all = require_all
        self.fallback = fallback
        self.redirect_to = redirect_to
        self.navigate = navigate
        self.evaluator = evaluator or default_evaluator
        # None until the first evaluation
        self.last_verdict: Optional[bool] = None

    def set_checks(self, checks: Iterable[PermissionCheck], require_all: Optional[bool] = None) -> None:
        self.checks = tuple(checks)
        if require_all is not None:
            self.require_all = require_all

    def verdict(self, role: Optional[Role]) -> bool:
        if self.require_all:
            return self.evaluator.check_all(role, self.checks)
        return self.evaluator.check_any(role, self.checks)

    def evaluate(self, role: Optional[Role]) -> GuardDecision:
        allowed = self.verdict(role)
        previous = self.last_verdict
        self.last_verdict = allowed

        if allowed:
            return GuardDecision(outcome=GuardOutcome.ALLOW)

        if self.fallback is not None:
            content = self.fallback() if callable(self.fallback) else self.fallback
            return GuardDecision(outcome=GuardOutcome.FALLBACK, content=content)

        if self.redirect_to:
            if previous is False:
                # Already redirected for this denial
                return GuardDecision(outcome=GuardOutcome.NOTHING)

            logger.debug(
                f"Guard denied role {role}, redirecting to {self.redirect_to}",
                extra={
                    'role': str(role) if role else None,
                    'checks': [c.code for c in self.checks],
                    'redirect_to': self.redirect_to,
                }
            )
            if self.navigate is not None:
                self.navigate(self.redirect_to)
            return GuardDecision(
                outcome=GuardOutcome.REDIRECT,
                redirect_to=self.redirect_to,
                redirected=True,
            )

        return GuardDecision(outcome=GuardOutcome.NOTHING)

    def render(self, role: Optional[Role], content: Any) -> Any:
        """Return content if allowed, the fallback if configured, else None."""
        decision = self.evaluate(role)
        if decision.allowed:
            return content
        return decision.content


class AdminGuard(AccessGuard):
    """Guard that admits only the ADMIN role, without a catalog lookup."""

    def __init__(self, fallback: Any = None, redirect_to: Optional[str] = None,
                 navigate: Optional[Callable[[str], Any]] = None,
                 evaluator: Optional[PermissionEvaluator] = None):
        super().__init__(
            checks=(),
            fallback=fallback,
            redirect_to=redirect_to,
            navigate=navigate,
            evaluator=evaluator,
        )

    def verdict(self, role: Optional[Role]) -> bool:
        return self.evaluator.is_admin(role)
