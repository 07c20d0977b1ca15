"""
RBAC API URLs.

Provides endpoints for:
- The permission catalog
- The caller's permission map
"""
from django.urls import path
from apps.rbac.views import CallerPermissionsView, PermissionCatalogView

app_name = 'rbac'

urlpatterns = [
    path('rbac/permissions', PermissionCatalogView.as_view(), name='permission-catalog'),
    path('rbac/permissions/me', CallerPermissionsView.as_view(), name='permission-me'),
]
