"""
RBAC REST API views.

Implements endpoints for:
- The full permission catalog (admin only)
- The caller's own role and permission map

Client UIs load the catalog from here instead of keeping their own copy,
so the matrix they hide and show elements by is the one the server enforces.
"""
from rest_framework import status
from rest_framework.views import APIView
from rest_framework.response import Response
from drf_spectacular.utils import extend_schema, OpenApiExample

from apps.rbac.catalog import default_catalog
from apps.rbac.context import get_caller
from apps.rbac.evaluator import default_evaluator
from apps.rbac.permissions import HasOperationPermission
from apps.rbac.serializers import CallerPermissionsSerializer, PermissionRuleSerializer


@extend_schema(
    tags=['RBAC - Permissions'],
    summary='List permission catalog',
    description='''
List every (resource, action) pair and the roles allowed to perform it.

**Required role**: ADMIN
    ''',
    responses={200: PermissionRuleSerializer(many=True)},
    examples=[
        OpenApiExample(
            'Success Response',
            value={
                'count': 1,
                'results': [
                    {
                        'code': 'clientes:update',
                        'resource': 'clientes',
                        'action': 'update',
                        'roles': ['ADMIN', 'USER']
                    }
                ]
            },
            response_only=True
        )
    ]
)
class PermissionCatalogView(APIView):
    """
    GET /v1/rbac/permissions

    Required role: ADMIN
    """
    permission_classes = [HasOperationPermission]
    operation = 'rbac.catalog'

    def get(self, request):
        rules = default_catalog.rules()
        serializer = PermissionRuleSerializer(rules, many=True)
        return Response(
            {
                'count': len(rules),
                'results': serializer.data
            },
            status=status.HTTP_200_OK
        )


@extend_schema(
    tags=['RBAC - Permissions'],
    summary="Get the caller's permissions",
    description='''
Return the caller's role and, for every catalog entry, whether the role is
allowed. Anonymous callers get role null and every entry false.

**No role required**.
    ''',
    responses={200: CallerPermissionsSerializer},
    examples=[
        OpenApiExample(
            'Success Response',
            value={
                'role': 'READ_ONLY',
                'identity': 'viewer@example.com',
                'is_admin': False,
                'permissions': {'dashboard:read': True, 'clientes:read': False}
            },
            response_only=True
        )
    ]
)
class CallerPermissionsView(APIView):
    """
    GET /v1/rbac/permissions/me
    """
    permission_classes = []

    def get(self, request):
        caller = get_caller(request)
        serializer = CallerPermissionsSerializer({
            'role': caller.role.value if caller.role else None,
            'identity': caller.identity,
            'is_admin': default_evaluator.is_admin(caller.role),
            'permissions': default_evaluator.permission_map(caller.role),
        })
        return Response(serializer.data, status=status.HTTP_200_OK)
