"""
Caller context: the role and identity of whoever is making a request.

The context is supplied by the identity layer and never mutated here.
Two sources are recognised:

- a bearer JWT issued by the external identity provider, carrying 'email'
  and 'role' claims
- a Django session user whose role is the single auth Group named after a Role

Anything else yields an anonymous caller (role=None), which every check denies.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import jwt
from django.conf import settings
from django.utils.deprecation import MiddlewareMixin

from apps.core.exceptions import IdentityError
from apps.rbac.catalog import Role, coerce_role

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallerContext:
    role: Optional[Role] = None
    identity: Optional[str] = None

    @property
    def is_anonymous(self) -> bool:
        return self.role is None


ANONYMOUS = CallerContext()


def caller_from_token(token: str) -> CallerContext:
    """
    Decode a bearer JWT and build the caller context from its claims.

    Raises:
        IdentityError: if the token is invalid, expired or lacks email/role
    """
    secret = getattr(settings, 'JWT_SECRET_KEY', None)
    if not secret:
        raise IdentityError('JWT_SECRET_KEY is not configured')

    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[getattr(settings, 'JWT_ALGORITHM', 'HS256')],
            leeway=getattr(settings, 'JWT_LEEWAY_SECONDS', 0),
        )
    except jwt.ExpiredSignatureError as e:
        raise IdentityError('Token expired') from e
    except jwt.InvalidTokenError as e:
        raise IdentityError(f'Invalid token: {type(e).__name__}') from e

    email = payload.get('email')
    role = coerce_role(payload.get('role'))
    if not email or role is None:
        raise IdentityError('Token payload must carry email and a known role')

    return CallerContext(role=role, identity=email)


def role_for_user(user) -> Optional[Role]:
    """
    Resolve the role of a Django user from its auth groups.

    Returns None for anonymous/inactive users, users without a role group,
    and users with more than one role group.
    """
    if user is None or not getattr(user, 'is_authenticated', False) or not user.is_active:
        return None

    names = set(user.groups.values_list('name', flat=True))
    roles = [role for role in Role if role.value in names]
    if len(roles) != 1:
        if roles:
            logger.warning(
                f"User {user.pk} has {len(roles)} role groups, treating as anonymous",
                extra={'roles': [r.value for r in roles]}
            )
        return None
    return roles[0]


def caller_from_user(user) -> CallerContext:
    role = role_for_user(user)
    if role is None:
        return ANONYMOUS
    return CallerContext(role=role, identity=user.get_username())


def _bearer_token(request) -> Optional[str]:
    header = request.META.get('HTTP_AUTHORIZATION', '')
    parts = header.split()
    if len(parts) != 2 or parts[0] != 'Bearer':
        return None
    return parts[1]


class CallerContextMiddleware(MiddlewareMixin):
    """
    Attach request.caller for the access guards.

    Must run after AuthenticationMiddleware so session users are available.
    An invalid bearer token yields an anonymous caller rather than an error:
    the guards deny anonymous callers anyway.
    """

    def process_request(self, request):
        token = _bearer_token(request)
        if token:
            try:
                request.caller = caller_from_token(token)
            except IdentityError as e:
                logger.info(
                    f"Bearer token rejected: {e.message}",
                    extra={'request_id': getattr(request, 'request_id', None)}
                )
                request.caller = ANONYMOUS
            return None

        request.caller = caller_from_user(getattr(request, 'user', None))
        return None


def get_caller(request) -> CallerContext:
    return getattr(request, 'caller', None) or ANONYMOUS
