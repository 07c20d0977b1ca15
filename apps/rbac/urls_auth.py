"""
URL routing for authentication endpoints.
"""
from django.urls import path
from apps.rbac.views_auth import ForgotPasswordView, LoginView, ResetPasswordView

app_name = 'auth'

urlpatterns = [
    path('login', LoginView.as_view(), name='login'),

    # Password reset
    path('forgot-password', ForgotPasswordView.as_view(), name='forgot-password'),
    path('reset-password', ResetPasswordView.as_view(), name='reset-password'),
]
