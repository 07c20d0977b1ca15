"""
Authentication REST API views.

Implements endpoints for:
- Login
- Password reset (request and confirm)

All three are open to anonymous callers and gated by the admission
throttle: each view names its operation, and the registry maps that
operation to a throttle class (see apps.rbac.policies). A throttled
attempt is answered with 429 before the view body runs.
"""
import logging

from django.conf import settings
from django.contrib.auth import authenticate, get_user_model, login
from django.contrib.auth.tokens import default_token_generator
from django.core.mail import send_mail
from django.utils.encoding import force_bytes, force_str
from django.utils.http import urlsafe_base64_decode, urlsafe_base64_encode
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiExample, extend_schema
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.rbac.context import caller_from_user
from apps.rbac.serializers import (
    LoginSerializer, PasswordResetRequestSerializer, PasswordResetSerializer
)
from apps.rbac.throttles import OperationAdmissionThrottle

logger = logging.getLogger(__name__)

RATE_LIMIT_EXAMPLE = OpenApiExample(
    'Rate Limit Exceeded',
    value={
        'error': 'Too many attempts. Please try again later.',
        'code': 'RATE_LIMIT_EXCEEDED',
        'retry_after': 42
    },
    response_only=True,
    status_codes=['429']
)


def _validation_error(serializer):
    return Response(
        {
            'error': 'Validation error',
            'details': serializer.errors
        },
        status=status.HTTP_400_BAD_REQUEST
    )


@extend_schema(
    tags=['Authentication'],
    summary='Login user',
    description='''
Authenticate with email and password and open a session.

**No authentication required** - this is a public endpoint.

**Rate limit**: 5 attempts per 60 seconds per client IP. The window opens at
the first attempt; further attempts inside it get 429 with Retry-After.
    ''',
    request=LoginSerializer,
    responses={
        200: OpenApiTypes.OBJECT,
        400: OpenApiTypes.OBJECT,
        401: OpenApiTypes.OBJECT,
        429: OpenApiTypes.OBJECT,
    },
    examples=[
        OpenApiExample(
            'Login Request',
            value={
                'email': 'user@example.com',
                'password': 'SecurePass123!'
            },
            request_only=True
        ),
        OpenApiExample(
            'Success Response',
            value={
                'user': {'id': 7, 'email': 'user@example.com'},
                'role': 'TECNICO',
                'message': 'Login successful'
            },
            response_only=True
        ),
        RATE_LIMIT_EXAMPLE,
    ]
)
class LoginView(APIView):
    """
    POST /v1/auth/login

    No authentication required.
    Throttled by the 'login' class.
    """
    authentication_classes = []
    permission_classes = []
    throttle_classes = [OperationAdmissionThrottle]
    operations = {'post': 'auth.login'}

    def post(self, request):
        from apps.core.logging import SecurityLogger

        serializer = LoginSerializer(data=request.data)
        if not serializer.is_valid():
            return _validation_error(serializer)

        email = serializer.validated_data['email']
        User = get_user_model()
        account = User.objects.filter(email__iexact=email).first()
        user = None
        if account is not None:
            user = authenticate(
                request._request,
                username=account.get_username(),
                password=serializer.validated_data['password']
            )

        if user is None:
            SecurityLogger.log_failed_login(
                email=email,
                ip_address=request.META.get('REMOTE_ADDR', 'unknown'),
                user_agent=request.META.get('HTTP_USER_AGENT', 'unknown'),
                reason='Invalid credentials'
            )
            return Response(
                {
                    'error': 'Invalid email or password',
                    'code': 'INVALID_CREDENTIALS'
                },
                status=status.HTTP_401_UNAUTHORIZED
            )

        login(request._request, user)
        caller = caller_from_user(user)

        return Response(
            {
                'user': {
                    'id': user.pk,
                    'email': user.email,
                    'first_name': user.first_name,
                    'last_name': user.last_name,
                },
                'role': caller.role.value if caller.role else None,
                'message': 'Login successful'
            },
            status=status.HTTP_200_OK
        )


@extend_schema(
    tags=['Authentication'],
    summary='Request password reset',
    description='''
Send a password reset link to the given email if an account exists.

The response is the same whether or not the account exists.

**Rate limit**: 3 requests per 60 seconds per client IP.
    ''',
    request=PasswordResetRequestSerializer,
    responses={
        200: OpenApiTypes.OBJECT,
        400: OpenApiTypes.OBJECT,
        429: OpenApiTypes.OBJECT,
    },
    examples=[RATE_LIMIT_EXAMPLE]
)
class ForgotPasswordView(APIView):
    """
    POST /v1/auth/forgot-password

    No authentication required.
    Throttled by the 'password-reset' class.
    """
    authentication_classes = []
    permission_classes = []
    throttle_classes = [OperationAdmissionThrottle]
    operations = {'post': 'auth.password-reset'}

    def post(self, request):
        serializer = PasswordResetRequestSerializer(data=request.data)
        if not serializer.is_valid():
            return _validation_error(serializer)

        email = serializer.validated_data['email']
        User = get_user_model()
        user = User.objects.filter(email__iexact=email, is_active=True).first()

        # Same response either way to prevent email enumeration
        if user is not None:
            uid = urlsafe_base64_encode(force_bytes(user.pk))
            token = default_token_generator.make_token(user)
            reset_url = f"{settings.FRONTEND_URL}/reset-password?uid={uid}&token={token}"
            try:
                send_mail(
                    subject='Reset your password',
                    message=(
                        'You requested to reset your password.\n\n'
                        f'Follow the link below to choose a new one:\n\n{reset_url}\n\n'
                        "If you didn't request this, please ignore this email."
                    ),
                    from_email=settings.DEFAULT_FROM_EMAIL,
                    recipient_list=[user.email],
                )
            except Exception as e:
                logger.error(
                    f"Failed to send password reset email: {e}",
                    extra={'user_id': user.pk},
                    exc_info=True
                )

        return Response(
            {
                'message': 'If an account exists with this email, a password reset link has been sent.'
            },
            status=status.HTTP_200_OK
        )


@extend_schema(
    tags=['Authentication'],
    summary='Reset password',
    description='''
Set a new password with the uid and token from the reset email.

**Rate limit**: 3 requests per 60 seconds per client IP.
    ''',
    request=PasswordResetSerializer,
    responses={
        200: OpenApiTypes.OBJECT,
        400: OpenApiTypes.OBJECT,
        429: OpenApiTypes.OBJECT,
    },
    examples=[RATE_LIMIT_EXAMPLE]
)
class ResetPasswordView(APIView):
    """
    POST /v1/auth/reset-password

    No authentication required.
    Throttled by the 'password-reset-confirm' class.
    """
    authentication_classes = []
    permission_classes = []
    throttle_classes = [OperationAdmissionThrottle]
    operations = {'post': 'auth.password-reset-confirm'}

    def post(self, request):
        serializer = PasswordResetSerializer(data=request.data)
        if not serializer.is_valid():
            return _validation_error(serializer)

        User = get_user_model()
        try:
            pk = force_str(urlsafe_base64_decode(serializer.validated_data['uid']))
            user = User.objects.get(pk=pk)
        except (TypeError, ValueError, OverflowError, User.DoesNotExist):
            user = None

        if user is None or not default_token_generator.check_token(
                user, serializer.validated_data['token']):
            return Response(
                {
                    'error': 'Invalid or expired reset token',
                    'code': 'INVALID_TOKEN'
                },
                status=status.HTTP_400_BAD_REQUEST
            )

        user.set_password(serializer.validated_data['new_password'])
        user.save(update_fields=['password'])
        logger.info("Password reset completed", extra={'user_id': user.pk})

        return Response(
            {
                'message': 'Password reset successfully'
            },
            status=status.HTTP_200_OK
        )
