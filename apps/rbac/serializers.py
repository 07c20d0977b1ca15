"""
RBAC serializers for REST API endpoints.

Provides serialization for:
- Authentication (login, password reset)
- The permission catalog and the caller's permission map
"""
from rest_framework import serializers
from django.contrib.auth.password_validation import validate_password


# ===== AUTHENTICATION SERIALIZERS =====

class LoginSerializer(serializers.Serializer):
    """Serializer for user login."""

    email = serializers.EmailField(required=True)
    password = serializers.CharField(
        required=True,
        write_only=True,
        style={'input_type': 'password'}
    )

    def validate_email(self, value):
        return value.lower()


class PasswordResetRequestSerializer(serializers.Serializer):
    """Serializer for requesting password reset."""

    email = serializers.EmailField(required=True)

    def validate_email(self, value):
        """Normalize email to lowercase."""
        return value.lower()


class PasswordResetSerializer(serializers.Serializer):
    """Serializer for resetting password with a uid/token pair from the reset email."""

    uid = serializers.CharField(required=True)
    token = serializers.CharField(required=True)
    new_password = serializers.CharField(
        required=True,
        write_only=True,
        min_length=6,
        style={'input_type': 'password'}
    )

    def validate_new_password(self, value):
        validate_password(value)
        return value


# ===== PERMISSION SERIALIZERS =====

class PermissionRuleSerializer(serializers.Serializer):
    """One catalog entry: resource, action and the roles allowed to perform it."""

    code = serializers.CharField(read_only=True)
    resource = serializers.CharField(read_only=True)
    action = serializers.CharField(read_only=True)
    roles = serializers.SerializerMethodField()

    def get_roles(self, obj):
        return sorted(role.value for role in obj.roles)


class CallerPermissionsSerializer(serializers.Serializer):
    """The caller's role and a code -> bool map over the whole catalog."""

    role = serializers.CharField(allow_null=True, read_only=True)
    identity = serializers.CharField(allow_null=True, read_only=True)
    is_admin = serializers.BooleanField(read_only=True)
    permissions = serializers.DictField(child=serializers.BooleanField(), read_only=True)
