"""
RBAC (Role-Based Access Control) application.

Provides:
- A static permission catalog (resource, action) -> roles
- A pure evaluator for single, ALL and ANY permission checks
- Access guards with fallback / redirect denial policies
- DRF permission classes enforcing the same catalog on the server
"""
