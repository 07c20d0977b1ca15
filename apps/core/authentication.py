"""
Custom DRF authentication classes.
"""
from rest_framework.authentication import SessionAuthentication


class CallerAuthentication(SessionAuthentication):
    """
    DRF authentication class that uses the caller set by CallerContextMiddleware.

    The middleware resolves the caller from a bearer token or the session;
    this class hands it to DRF as request.auth so permission classes can
    tell anonymous callers (NotAuthenticated) from denied ones.

    Session callers get the same CSRF enforcement as SessionAuthentication.
    """

    def authenticate(self, request):
        """
        Returns:
            tuple: (user, caller) if the caller has a role, None otherwise
        """
        django_request = request._request
        caller = getattr(django_request, 'caller', None)

        if caller is None or caller.role is None:
            return None

        if not django_request.META.get('HTTP_AUTHORIZATION', '').startswith('Bearer '):
            self.enforce_csrf(request)

        return (getattr(django_request, 'user', None), caller)
